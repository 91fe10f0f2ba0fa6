"""MPI domain decomposition and communication.

This package provides:
- DistributedSlab: Unified interface for one worker's slab
- SlabDecomposition: Row-slab splitting of the global grid
- SlabBuffers: Double-buffered host/CUDA slab storage
- HaloExchanger: Non-blocking halo exchange with row neighbors
"""

from .grid import DistributedSlab
from .decomposition import SlabDecomposition, partition
from .buffers import SlabBuffers, HostSlabBuffers, CudaSlabBuffers, create_slab_buffers
from .halo import HaloExchange, HaloExchanger, ExchangePhase, HALO_TAG

__all__ = [
    "DistributedSlab",
    "SlabDecomposition",
    "partition",
    "SlabBuffers",
    "HostSlabBuffers",
    "CudaSlabBuffers",
    "create_slab_buffers",
    "HaloExchange",
    "HaloExchanger",
    "ExchangePhase",
    "HALO_TAG",
]
