# mpi_group.py
# ------------------------------------------------------------
# MPI implementation of the process group (mpi4py).
#
# - collective_read: MPI-IO, file view at the byte offset, Read_all,
#                    short reads raise OSError
# - sum_reduce:      MPI Reduce with MPI.SUM onto the root rank
# - barrier:         MPI Barrier
#
# Kept apart from process_group.py so that importing the toolkit does
# not require an MPI runtime.
# ------------------------------------------------------------

##% import libraries
import numpy as np
from mpi4py import MPI

from .process_group import ProcessGroup, GroupContext, COORDINATOR_RANK, FLOAT_BYTES


class MPIProcessGroup(ProcessGroup):
    """
    Process group backed by an MPI communicator.

    Parameters
    ----------
    comm : mpi4py.MPI.Comm, optional
        Communicator of the group. Defaults to MPI.COMM_WORLD.
    """

    def __init__(self, comm=None):
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.context = GroupContext(self.comm.Get_rank(), self.comm.Get_size())

    @property
    def processor_name(self):
        return MPI.Get_processor_name()

    def collective_read(self, filename, offset, count):
        data = np.zeros(int(count), dtype=np.float32)
        try:
            fh = MPI.File.Open(self.comm, str(filename), MPI.MODE_RDONLY)
        except MPI.Exception as exc:
            raise OSError(f"Couldn't open file for reading: {filename}") from exc
        status = MPI.Status()
        try:
            fh.Set_view(int(offset) * FLOAT_BYTES, MPI.FLOAT, MPI.FLOAT, "native")
            fh.Read_all([data, MPI.FLOAT], status)
        except MPI.Exception as exc:
            raise OSError(f"Couldn't read {count} floats from {filename}") from exc
        finally:
            fh.Close()

        # MPI-IO stops silently at end of file
        received = status.Get_count(MPI.FLOAT)
        if received != int(count):
            raise OSError(
                f"Short read from {filename}: expected {count} floats at offset {offset}, got {received}"
            )
        return data

    def sum_reduce(self, local, root=COORDINATOR_RANK):
        local = np.ascontiguousarray(local, dtype=np.float32)
        final = np.zeros_like(local) if self.context.rank == root else None
        self.comm.Reduce(
            [local, MPI.FLOAT],
            [final, MPI.FLOAT] if final is not None else None,
            op=MPI.SUM,
            root=root,
        )
        return final

    def barrier(self):
        self.comm.Barrier()

    def abort(self, errorcode=1):
        """Terminate every process of the communicator."""
        self.comm.Abort(errorcode)
