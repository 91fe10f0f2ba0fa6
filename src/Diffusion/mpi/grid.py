"""Distributed slab abstraction for the parallel diffusion solver.

This module provides a DistributedSlab class that encapsulates:
- Row-slab decomposition of the N x N grid
- Double-buffered slab storage (host or CUDA)
- Halo exchange with the row neighbors
- Initial condition seeding and per-rank diagnostics

The solver interacts with this single interface rather than managing
MPI and device details directly.
"""

from __future__ import annotations

import numpy as np
from mpi4py import MPI

from ..datastructures import LocalParams, SlabStats
from ..problems import seed_hot_square
from .buffers import create_slab_buffers
from .decomposition import SlabDecomposition
from .halo import HaloExchanger


class DistributedSlab:
    """One worker's slab of a distributed N x N grid.

    Parameters
    ----------
    N : int
        Global grid size (N x N including boundaries)
    comm : MPI.Comm
        MPI communicator
    device : str
        'host' for NumPy slabs (default), 'cuda' for device slabs

    Example
    -------
    >>> slab = DistributedSlab(N=64, comm=MPI.COMM_WORLD, device='cuda')
    >>> slab.seed(hot_size=8, hot_value=1.0)
    >>> slab.halo.prime()
    """

    def __init__(self, N: int, comm: MPI.Comm = MPI.COMM_WORLD, device: str = "host"):
        self.N = N
        self.comm = comm
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        self.device = device

        # Domain decomposition, validated before anything is allocated
        self._decomp = SlabDecomposition(N, self.size)
        self.partition = self._decomp.get_rank_info(self.rank)
        self.local_shape = (self.partition.local_row_count, self.partition.local_col_count)
        self.halo_shape = self.partition.halo_shape

        self.buffers = create_slab_buffers(device, self.halo_shape)
        self.halo = HaloExchanger(self.comm, self.partition, self.buffers)

        # Host copy of the final slab once the run has finished
        self.u = None

    def seed(self, hot_size: int, hot_value: float = 1.0):
        """Zero both slots and write the clipped hot square into them."""
        host = np.zeros(self.halo_shape, dtype=np.float64)
        seed_hot_square(host, self.partition, hot_size, hot_value)
        self.buffers.upload(host, "current")
        self.buffers.upload(host, "next")

    def interior(self) -> np.ndarray:
        """Host copy of the authoritative rows (no halos)."""
        slab = self.u if self.u is not None else self.buffers.to_host()
        return slab[1:-1]

    def local_statistics(self, step: int) -> SlabStats:
        """Min/max/mean over this rank's authoritative cells (synchronous copy)."""
        cells = self.interior()
        return SlabStats(
            step=step,
            min=float(cells.min()),
            max=float(cells.max()),
            mean=float(cells.mean()),
        )

    def finish(self) -> np.ndarray:
        """Copy the final slab to host and release slab storage."""
        self.u = self.buffers.to_host()
        self.buffers.release()
        return self.u

    def gather_global(self, root: int = 0) -> np.ndarray | None:
        """Assemble the N x N field on ``root`` (post-run validation only)."""
        pieces = self.comm.gather(self.interior(), root=root)
        if self.rank != root:
            return None
        return np.vstack(pieces)

    def get_rank_info(self) -> LocalParams:
        """Get topology info for this rank (for MLflow artifact)."""
        return LocalParams(
            rank=self.rank,
            hostname=MPI.Get_processor_name(),
            neighbors=self.partition.neighbors,
            local_shape=self.local_shape,
            global_row_offset=self.partition.global_row_offset,
            device=self.device,
        )

    def get_halo_size_bytes(self) -> int:
        """Calculate total bytes transferred per halo exchange."""
        return self.halo.get_halo_size_bytes()
