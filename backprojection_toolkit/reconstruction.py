# reconstruction.py
# ------------------------------------------------------------
# Main Reconstruction Pipeline for distributed back-projection
#
# This module defines the reconstruction flow run by every rank:
# - Load the global voxel coordinate tables
# - Walk the collective read schedule, keeping the own projections
# - Back-project each own projection into a local partial volume
#   (Z slices spread over a joblib thread pool)
# - Sum-reduce all partial volumes onto the coordinator, then barrier
# - Coordinator: save the volume, report checksum and timings
#
# Depends on:
# - geometry_reader.py / projection_loader.py
# - partitioning.py
# - backprojection.py
# - saving_utils.py
# - logger.py
# ------------------------------------------------------------

import time

import numpy as np
from joblib import Parallel, cpu_count

from .logger             import write_log, log_step
from .geometry_reader    import ScanConstants, load_global_data
from .projection_loader  import load_projection_data, check_volume_memory
from .partitioning       import PARTITIONERS, collective_schedule
from .backprojection     import backproject_projection
from .saving_utils       import save_outputs


def main_reconstruction_flow(num_voxels, input_dir, group, output_file=None,
                             scan=None, n_jobs=None, partition="static",
                             save_central_slice=False):
    """
    Perform the CT reconstruction on one rank of `group`.

    Every rank of the group must call this with the same arguments.

    Parameters:
        num_voxels: int, voxels per axis (volume assumed cubic)
        input_dir: str, the CT data directory
        group: ProcessGroup of this rank
        output_file: str or None, RAW output written by the coordinator
        scan: ScanConstants, defaults to the standard data set
        n_jobs: int, worker threads for the slice loop (default: all cores)
        partition: "static" (remainder on the last rank) or "balanced"
        save_central_slice: bool, also save a PNG of the central slice

    Returns:
        recon: (V, V, V) float32 final volume on the coordinator, None elsewhere
        summary: dict with the timings (and checksum on the coordinator)
    """
    context = group.context
    scan = scan if scan is not None else ScanConstants()
    if partition not in PARTITIONERS:
        raise ValueError(f"Unknown partition '{partition}', expected one of {sorted(PARTITIONERS)}")
    if n_jobs is None or n_jobs < 1:
        n_jobs = cpu_count()

    # Notice, the disk access is timed as well
    begin = time.time()
    reading_time = 0.0
    computation_time = 0.0

    check_volume_memory(num_voxels, context)
    gdata = load_global_data(num_voxels, input_dir, group)

    # The size of the reconstruction volume is assumed a cube.
    slice_size = num_voxels * num_voxels
    recon_volume = np.zeros((num_voxels, slice_size), dtype=np.float32)

    own_ids = PARTITIONERS[partition](scan.num_projections, context)
    write_log(f"Assigned projections [{own_ids.start}, {own_ids.stop}) "
              f"({len(own_ids)} of {scan.num_projections}), {n_jobs} threads", rank=context.rank)

    # === 1. Back-projection of the own projections ===
    with Parallel(n_jobs=n_jobs, backend="threading", prefer="threads") as parallel:
        for step in collective_schedule(scan.num_projections, context.size, PARTITIONERS[partition]):
            pdata = None
            with log_step("Reading", quiet=True) as reading:
                for owner, projection_id in step:
                    loaded = load_projection_data(projection_id, num_voxels, input_dir, scan, group)
                    if owner == context.rank:
                        pdata = loaded
            reading_time += reading.elapsed

            if pdata is None:
                continue
            with log_step("Back-projection", quiet=True) as computing:
                backproject_projection(recon_volume, gdata, pdata, scan, n_jobs=n_jobs, parallel=parallel)
            computation_time += computing.elapsed

    write_log(f"Local back-projection done: reading {reading_time:.2f} sec, "
              f"computation {computation_time:.2f} sec", rank=context.rank)

    # === 2. Combine the partial volumes on the coordinator ===
    recon_final = group.sum_reduce(recon_volume)
    group.barrier()

    summary = {
        "rank": context.rank,
        "projections": len(own_ids),
        "reading_time": reading_time,
        "computation_time": computation_time,
    }
    if not context.is_coordinator:
        return None, summary

    # === 3. Coordinator: save and report ===
    recon_final = recon_final.reshape(num_voxels, num_voxels, num_voxels)
    with log_step("Writing", quiet=True) as writing:
        save_outputs(output_file, recon_final, save_central_slice=save_central_slice)
    elapsed = time.time() - begin

    checksum = float(np.sum(recon_final, dtype=np.float64))
    summary.update(
        checksum=checksum,
        elapsed_time=elapsed,
        writing_time=writing.elapsed,
    )
    write_log(f"checksum: {checksum}")
    write_log(f"elapsed time: {elapsed:.6f} sec")
    write_log(f"reading time: {reading_time:.6f} sec")
    write_log(f"writing time: {writing.elapsed:.6f} sec")
    write_log(f"computation time: {computation_time:.6f} sec")

    return recon_final, summary
