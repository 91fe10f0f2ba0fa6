"""Double-buffered local slab storage.

Each worker owns two slabs of shape ``(local_row_count + 2, N)`` held in two
arena slots. ``current`` and ``next`` are addressed by a slot index that
flips on ``swap()``; data is never copied between the slots.

Halo rows travel through four host staging rows (``send_top``,
``send_bottom``, ``recv_top``, ``recv_bottom``). Row copies run on the
transfer stream, the stencil on the compute stream.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import numpy as np
from numba import cuda

from ..errors import AllocationError, accelerator_op

log = logging.getLogger(__name__)


class SlabBuffers(ABC):
    """Abstract base for a worker's slab pair, staging rows and streams."""

    device = "host"

    def __init__(self, halo_shape: tuple[int, int], dtype=np.float64):
        self.halo_shape = tuple(halo_shape)
        self.dtype = dtype
        self.local_row_count = self.halo_shape[0] - 2
        self.index = 0

        ncols = self.halo_shape[1]
        self.send_top = self._alloc_staging(ncols)
        self.send_bottom = self._alloc_staging(ncols)
        self.recv_top = self._alloc_staging(ncols)
        self.recv_bottom = self._alloc_staging(ncols)

        self._slots = [self._alloc_slab(), self._alloc_slab()]
        self.compute_stream = None
        self.transfer_stream = None
        self.released = False
        log.debug(f"Allocated {self.device} slab pair {self.halo_shape}")

    # --- arena slots -------------------------------------------------------

    @property
    def current(self):
        return self._slots[self.index]

    @property
    def next(self):
        return self._slots[1 - self.index]

    def slot(self, which: str):
        """'current' or 'next' slab."""
        if which == "current":
            return self.current
        if which == "next":
            return self.next
        raise ValueError(f"Unknown slot: {which}")

    def swap(self):
        """Exchange the roles of current and next."""
        self.index = 1 - self.index

    # --- backend hooks -----------------------------------------------------

    @abstractmethod
    def _alloc_slab(self):
        """Allocate one zeroed slab."""

    @abstractmethod
    def _alloc_staging(self, ncols: int) -> np.ndarray:
        """Allocate one zeroed host staging row."""

    @abstractmethod
    def stage_row(self, which: str, row: int, out: np.ndarray):
        """Start copying ``slab[row]`` into host row ``out`` on the transfer stream."""

    @abstractmethod
    def merge_row(self, src: np.ndarray, which: str, row: int):
        """Start copying host row ``src`` into ``slab[row]`` on the transfer stream."""

    @abstractmethod
    def upload(self, host: np.ndarray, which: str = "current"):
        """Blocking copy of a full host slab into a slot."""

    @abstractmethod
    def to_host(self, which: str = "current") -> np.ndarray:
        """Blocking copy of a full slot back to host memory."""

    def synchronize_transfer(self):
        """Wait for outstanding row copies."""

    def synchronize(self):
        """Wait for both streams."""

    def release(self):
        """Drop all storage. Buffers are unusable afterwards."""
        self._slots = []
        self.send_top = self.send_bottom = self.recv_top = self.recv_bottom = None
        self.released = True


class HostSlabBuffers(SlabBuffers):
    """NumPy slabs; copies complete immediately, so there are no streams."""

    def _alloc_slab(self):
        try:
            return np.zeros(self.halo_shape, dtype=self.dtype)
        except MemoryError as exc:
            raise AllocationError(f"host slab {self.halo_shape}") from exc

    def _alloc_staging(self, ncols: int) -> np.ndarray:
        try:
            return np.zeros(ncols, dtype=self.dtype)
        except MemoryError as exc:
            raise AllocationError(f"host staging row ({ncols},)") from exc

    def stage_row(self, which: str, row: int, out: np.ndarray):
        out[:] = self.slot(which)[row]

    def merge_row(self, src: np.ndarray, which: str, row: int):
        self.slot(which)[row] = src

    def upload(self, host: np.ndarray, which: str = "current"):
        self.slot(which)[...] = host

    def to_host(self, which: str = "current") -> np.ndarray:
        return self.slot(which).copy()


class CudaSlabBuffers(SlabBuffers):
    """Device slabs with pinned host staging rows and two CUDA streams."""

    device = "cuda"

    def __init__(self, halo_shape: tuple[int, int], dtype=np.float64):
        super().__init__(halo_shape, dtype)
        with accelerator_op("stream create"):
            self.compute_stream = cuda.stream()
            self.transfer_stream = cuda.stream()

    def _alloc_slab(self):
        with accelerator_op(f"device slab allocation {self.halo_shape}"):
            return cuda.to_device(np.zeros(self.halo_shape, dtype=self.dtype))

    def _alloc_staging(self, ncols: int) -> np.ndarray:
        with accelerator_op("pinned staging allocation"):
            row = cuda.pinned_array(ncols, dtype=self.dtype)
        row[:] = 0.0
        return row

    def stage_row(self, which: str, row: int, out: np.ndarray):
        with accelerator_op(f"device-to-host copy of row {row}"):
            self.slot(which)[row].copy_to_host(out, stream=self.transfer_stream)

    def merge_row(self, src: np.ndarray, which: str, row: int):
        with accelerator_op(f"host-to-device copy of row {row}"):
            self.slot(which)[row].copy_to_device(src, stream=self.transfer_stream)

    def upload(self, host: np.ndarray, which: str = "current"):
        with accelerator_op("slab upload"):
            self.slot(which).copy_to_device(np.ascontiguousarray(host, dtype=self.dtype))

    def to_host(self, which: str = "current") -> np.ndarray:
        self.synchronize()
        with accelerator_op("slab download"):
            return self.slot(which).copy_to_host()

    def synchronize_transfer(self):
        with accelerator_op("transfer stream synchronize"):
            self.transfer_stream.synchronize()

    def synchronize(self):
        with accelerator_op("stream synchronize"):
            self.compute_stream.synchronize()
            self.transfer_stream.synchronize()

    def release(self):
        if not self.released:
            self.synchronize()
        super().release()
        self.compute_stream = self.transfer_stream = None


def create_slab_buffers(device: str, halo_shape: tuple[int, int]) -> SlabBuffers:
    """Factory: 'host' for NumPy slabs, 'cuda' for device slabs."""
    if device == "host":
        return HostSlabBuffers(halo_shape)
    elif device == "cuda":
        return CudaSlabBuffers(halo_shape)
    else:
        raise ValueError(f"Unknown buffer device: {device}")
