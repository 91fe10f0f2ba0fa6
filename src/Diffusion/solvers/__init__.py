"""Diffusion solvers.

Parallel (MPI):
- DiffusionMPISolver: row-slab decomposition, accelerator kernel, overlapped halo exchange
"""

from .diffusion_mpi import DiffusionMPISolver, abort_on_fatal, log_fatal

__all__ = [
    "DiffusionMPISolver",
    "abort_on_fatal",
    "log_fatal",
]
