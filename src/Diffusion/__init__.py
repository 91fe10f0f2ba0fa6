"""Distributed accelerator diffusion solver package.

Solves the 2D heat equation with an explicit five-point stencil on an
N x N grid split into row slabs across MPI ranks. Each rank runs the stencil
on an accelerator (Numba CUDA, shared-memory tiled) or on the host (NumPy,
Numba), and trades one halo row with each row neighbor per timestep while
the kernel runs.

Solvers
-------
Parallel (MPI):
- DiffusionMPISolver: row-slab decomposition with overlapped halo exchange

Reference (no MPI):
- diffuse_sequential: plain NumPy stencil for correctness checks
"""

from .datastructures import (
    GlobalParams,
    GlobalMetrics,
    LocalParams,
    LocalMetrics,
    Partition,
    SlabStats,
)
from .errors import (
    DiffusionError,
    ConfigurationError,
    AllocationError,
    AcceleratorError,
    TransportError,
)
from .kernels import NumPyKernel, NumbaKernel, CudaTiledKernel, KernelLaunch, create_kernel
from .solvers import DiffusionMPISolver, abort_on_fatal, log_fatal
from .mpi import DistributedSlab, SlabDecomposition, partition
from .problems import create_initial_condition, hot_square_bounds, seed_hot_square
from .sequential import diffuse_sequential
from .runner import job_environment, run_solver

__all__ = [
    # Data structures
    "GlobalParams",
    "GlobalMetrics",
    "LocalParams",
    "LocalMetrics",
    "Partition",
    "SlabStats",
    # Errors
    "DiffusionError",
    "ConfigurationError",
    "AllocationError",
    "AcceleratorError",
    "TransportError",
    # Kernels
    "NumPyKernel",
    "NumbaKernel",
    "CudaTiledKernel",
    "KernelLaunch",
    "create_kernel",
    # Solvers
    "DiffusionMPISolver",
    "abort_on_fatal",
    "log_fatal",
    # Grid
    "DistributedSlab",
    "SlabDecomposition",
    "partition",
    # Problem setup
    "create_initial_condition",
    "hot_square_bounds",
    "seed_hot_square",
    "diffuse_sequential",
    # Utilities
    "job_environment",
    "run_solver",
]
