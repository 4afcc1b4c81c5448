# partitioning.py
# ------------------------------------------------------------
# Static work division for the reconstruction.
#
# - projection_range: projections of one rank, remainder on the last rank
# - balanced_projection_range: remainder spread one per rank (extension)
# - slice_chunks: contiguous Z-slice ranges for the thread pool
# - collective_schedule: order of the lockstep reads of the whole group
#
# All functions are deterministic, every rank recomputes the same
# division from the shared constants.
# ------------------------------------------------------------

from .process_group import GroupContext


def projection_range(num_projections, context):
    """
    Half-open range of projection ids handled by `context.rank`.

    Every rank gets num_projections // size projections; the last rank
    also takes the remainder.
    """
    per_rank = num_projections // context.size
    start_id = context.rank * per_rank
    if context.rank != context.size - 1:
        stop_id = (context.rank + 1) * per_rank
    else:
        stop_id = num_projections
    return range(start_id, stop_id)


def balanced_projection_range(num_projections, context):
    """
    Half-open range of projection ids handled by `context.rank`.

    The first num_projections % size ranks take one extra projection, so
    range lengths differ by at most one.
    """
    per_rank, remainder = divmod(num_projections, context.size)
    start_id = context.rank * per_rank + min(context.rank, remainder)
    stop_id = start_id + per_rank + (1 if context.rank < remainder else 0)
    return range(start_id, stop_id)


PARTITIONERS = {
    "static": projection_range,
    "balanced": balanced_projection_range,
}


def slice_chunks(num_slices, n_chunks):
    """
    Split [0, num_slices) into at most `n_chunks` contiguous, disjoint (start, stop) ranges.

    Each chunk is handed to one worker, which then owns the output rows
    volume[start:stop] exclusively.
    """
    if num_slices < 1:
        return []
    n_chunks = max(1, min(int(n_chunks), num_slices))
    chunk_size, remainder = divmod(num_slices, n_chunks)

    chunks = []
    start = 0
    for i in range(n_chunks):
        stop = start + chunk_size + (1 if i < remainder else 0)
        chunks.append((start, stop))
        start = stop
    return chunks


def collective_schedule(num_projections, size, partitioner=projection_range):
    """
    Order in which the whole group reads projections.

    Step k lists (owner_rank, projection_id) for the k-th projection of every
    rank that still has one. All ranks read every listed projection together,
    so the collective reads match even when ranges differ in length; only the
    owner keeps and back-projects it.

    Yields
    ------
    list of (int, int)
    """
    ranges = [partitioner(num_projections, GroupContext(rank, size)) for rank in range(size)]
    num_steps = max(len(ids) for ids in ranges)
    for step in range(num_steps):
        yield [(rank, ids[step]) for rank, ids in enumerate(ranges) if step < len(ids)]
