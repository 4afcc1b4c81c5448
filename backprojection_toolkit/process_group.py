# process_group.py
# ------------------------------------------------------------
# Process group abstraction for the distributed reconstruction.
#
# A process group exposes the only three points where ranks talk
# to each other:
# - collective_read(filename, offset, count): all ranks read together
# - sum_reduce(local, root): element-wise sum of all local volumes
# - barrier(): wait until every rank arrived
#
# Every member must call the same collectives in the same order and
# with the same arguments. Skipping one on any member blocks the rest
# of the group forever under MPI.
#
# Provides:
# - GroupContext               → immutable (rank, size) value
# - ProcessGroup               → the collective contract
# - SimulatedProcessGroup      → in-process members (threads) that fail
#                                fast on mismatched call sequences
# - run_simulated_group(...)   → run one function on S simulated ranks
#
# The MPI implementation lives in mpi_group.py.
# ------------------------------------------------------------

##% import libraries
import abc
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

FLOAT_BYTES = np.dtype(np.float32).itemsize
COORDINATOR_RANK = 0


class CollectiveMismatchError(RuntimeError):
    """Members of a process group did not call the same collective."""


@dataclass(frozen=True)
class GroupContext:
    """Rank of this process and size of its group."""

    rank: int
    size: int

    def __post_init__(self):
        if self.size < 1:
            raise ValueError(f"Group size must be positive, got {self.size}")
        if not 0 <= self.rank < self.size:
            raise ValueError(f"Rank {self.rank} outside group of size {self.size}")

    @property
    def is_coordinator(self):
        return self.rank == COORDINATOR_RANK


class ProcessGroup(abc.ABC):
    """
    Collective operations shared by all members of a process group.

    Attributes
    ----------
    context : GroupContext
        Rank and size of the calling member.
    """

    context = None  # set by every implementation in __init__

    @property
    def processor_name(self):
        return socket.gethostname()

    @abc.abstractmethod
    def collective_read(self, filename, offset, count):
        """
        Read `count` float32 values starting at element `offset` of `filename`.
        Every member calls it with identical arguments.
        Raises OSError when the file cannot be opened or holds fewer than
        `count` values past `offset`.
        """

    @abc.abstractmethod
    def sum_reduce(self, local, root=COORDINATOR_RANK):
        """
        Element-wise sum of every member's `local` array.
        Returns the sum on `root`, None on the other members.
        """

    @abc.abstractmethod
    def barrier(self):
        """Block until every member arrived."""


#=========================================
#%  In-process simulation of a process group

class _Rendezvous:
    """Shared meeting point of the simulated members."""

    def __init__(self, size, timeout=None):
        self.size = size
        self._barrier = threading.Barrier(size, timeout=timeout)
        self._slots = [None] * size

    def exchange(self, rank, signature, payload=None):
        """
        Publish (signature, payload) and collect everyone's entry.
        All members compare the signatures; any difference raises on all of them.
        """
        self._slots[rank] = (signature, payload)
        self._wait(signature)
        entries = list(self._slots)
        # second wait: nobody overwrites its slot before all have copied
        self._wait(signature)

        signatures = [entry[0] for entry in entries]
        if any(sig != signatures[0] for sig in signatures):
            calls = ", ".join(f"rank {r}: {sig}" for r, sig in enumerate(signatures))
            raise CollectiveMismatchError(f"Mismatched collective calls ({calls})")
        return [entry[1] for entry in entries]

    def abort(self):
        self._barrier.abort()

    def _wait(self, signature):
        try:
            self._barrier.wait()
        except threading.BrokenBarrierError as exc:
            raise CollectiveMismatchError(
                f"Collective {signature[0]!r} abandoned: another member failed or timed out"
            ) from exc


class SimulatedProcessGroup(ProcessGroup):
    """One member of a group simulated with threads in a single process."""

    def __init__(self, context, rendezvous):
        self.context = context
        self._rendezvous = rendezvous

    def collective_read(self, filename, offset, count):
        filename, offset, count = str(filename), int(offset), int(count)
        self._rendezvous.exchange(self.context.rank, ("collective_read", filename, offset, count))

        with open(filename, "rb") as f:
            f.seek(offset * FLOAT_BYTES)
            data = np.fromfile(f, dtype=np.float32, count=count)
        if data.size != count:
            raise OSError(
                f"Short read from {filename}: expected {count} floats at offset {offset}, got {data.size}"
            )
        return data

    def sum_reduce(self, local, root=COORDINATOR_RANK):
        local = np.ascontiguousarray(local, dtype=np.float32)
        parts = self._rendezvous.exchange(
            self.context.rank, ("sum_reduce", local.shape, int(root)), local.copy()
        )
        if self.context.rank != root:
            return None

        # rank order, so repeated runs give bitwise identical sums
        total = np.zeros_like(local)
        for part in parts:
            total += part
        return total

    def barrier(self):
        self._rendezvous.exchange(self.context.rank, ("barrier",))


def run_simulated_group(size, target, *args, timeout=None, **kwargs):
    """
    Run `target(group, *args, **kwargs)` on `size` simulated ranks.

    Parameters
    ----------
    size : int
        Number of members in the group.
    target : callable
        Function executed by every member, first argument is its ProcessGroup.
    timeout : float or None
        Seconds a member waits at a collective before the group is declared broken.
        None (default) waits forever; a finite value also breaks valid runs whose
        members compute longer than that between two collectives.

    Returns
    -------
    list
        Return value of `target` for every rank, in rank order.

    Raises the first non-collective error of any member (the root cause),
    otherwise the first CollectiveMismatchError.
    """
    if size < 1:
        raise ValueError(f"Group size must be positive, got {size}")
    rendezvous = _Rendezvous(size, timeout)

    def member(rank):
        group = SimulatedProcessGroup(GroupContext(rank, size), rendezvous)
        try:
            result = target(group, *args, **kwargs)
            # members leaving early meet the others still inside a collective
            rendezvous.exchange(rank, ("exit",))
        except BaseException:
            rendezvous.abort()
            raise
        return result

    with ThreadPoolExecutor(max_workers=size, thread_name_prefix="sim-rank") as pool:
        futures = [pool.submit(member, rank) for rank in range(size)]
        errors = [future.exception() for future in futures]

    root_causes = [e for e in errors if e is not None and not isinstance(e, CollectiveMismatchError)]
    if root_causes:
        raise root_causes[0]
    mismatches = [e for e in errors if e is not None]
    if mismatches:
        raise mismatches[0]
    return [future.result() for future in futures]
