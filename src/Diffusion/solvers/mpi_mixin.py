"""Collectives the distributed driver needs on top of BaseSolver."""

import numpy as np
from mpi4py import MPI

from ..datastructures import SlabStats


class MPISolverMixin:
    """Communicator handle, MPI clock and field reductions.

    Listed before the base class so its ``_get_time``, ``_reduce_sum`` and
    ``_barrier`` replace the single-process ones::

        class DiffusionMPISolver(MPISolverMixin, BaseSolver):
            def __init__(self, params, comm=None):
                self._init_mpi(comm)
                ...
    """

    def _init_mpi(self, comm=None):
        self.comm = MPI.COMM_WORLD if comm is None else comm
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()

    def _get_time(self) -> float:
        return MPI.Wtime()

    def _reduce_sum(self, local_sum: float) -> float:
        total = np.zeros(1)
        self.comm.Allreduce(np.array([local_sum], dtype=np.float64), total, op=MPI.SUM)
        return float(total[0])

    def _reduce_stats(self, local: SlabStats, n_local: int) -> SlabStats:
        """Combine per-rank statistics into whole-grid ones (collective)."""
        lo = np.zeros(1)
        hi = np.zeros(1)
        self.comm.Allreduce(np.array([local.min]), lo, op=MPI.MIN)
        self.comm.Allreduce(np.array([local.max]), hi, op=MPI.MAX)
        total = self._reduce_sum(local.mean * n_local)
        n_total = self._reduce_sum(float(n_local))
        return SlabStats(step=local.step, min=float(lo[0]), max=float(hi[0]), mean=total / n_total)

    def _barrier(self):
        self.comm.Barrier()
