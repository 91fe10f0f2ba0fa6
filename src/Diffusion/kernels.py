"""Five-point diffusion stencil kernels.

Every kernel maps a ``(rows + 2, cols)`` slab ``cur`` to ``nxt``:

    nxt[i, j] = cur[i, j] + coeff * (cur[i+1, j] + cur[i-1, j]
                                     + cur[i, j+1] + cur[i, j-1] - 4 cur[i, j])

with ``coeff = D * dt / dx**2``, for ``row_lo <= i <= row_hi`` and
``1 <= j <= cols - 2``. Every other authoritative cell is copied unchanged.
A launch covers rows ``first..last`` (default: all of ``1..rows``), so the
edge rows a neighbor needs can be computed ahead of the interior. Halo rows 0
and ``rows + 1`` of ``nxt`` are never written; they belong to the halo
exchange.
"""

import logging
import math
import time

import numpy as np
import numba
from numba import cuda, float64, njit, prange

from .errors import ConfigurationError, accelerator_op

log = logging.getLogger(__name__)

# Explicit scheme is stable for D*dt/dx^2 <= 1/4 in 2D
STABILITY_LIMIT = 0.25

# Max threads per block is 1024 = 32 x 32
MAX_CUDA_TILE = 32


def _row_span(cur, first, last):
    rows = cur.shape[0] - 2
    return max(first, 1), rows if last is None else min(last, rows)


@njit(parallel=True)
def _diffuse_numba(cur, nxt, coeff, row_lo, row_hi, first, last):
    """Numba JIT implementation of one diffusion step over rows first..last."""
    cols = cur.shape[1]

    for i in prange(first, last + 1):
        if i < row_lo or i > row_hi:
            for j in range(cols):
                nxt[i, j] = cur[i, j]
        else:
            nxt[i, 0] = cur[i, 0]
            nxt[i, cols - 1] = cur[i, cols - 1]
            for j in range(1, cols - 1):
                c = cur[i, j]
                nxt[i, j] = c + coeff * (
                    cur[i + 1, j] + cur[i - 1, j] + cur[i, j + 1] + cur[i, j - 1] - 4.0 * c
                )


def _build_tiled_kernel(tile: int):
    """Compile-time specialization of the shared-memory kernel for one tile size."""
    span = tile + 2
    n_threads = tile * tile
    n_shared = span * span

    @cuda.jit
    def diffuse_tiled(cur, nxt, coeff, row_lo, row_hi, first, last):
        smem = cuda.shared.array(shape=(span, span), dtype=float64)
        n_rows = cur.shape[0]
        n_cols = cur.shape[1]

        tx = cuda.threadIdx.x
        ty = cuda.threadIdx.y
        row0 = first + cuda.blockIdx.y * tile
        col0 = cuda.blockIdx.x * tile

        # Whole block loads the tile plus its one-cell margin, so margin cells
        # next to a partial tile or the slab edge are filled too.
        k = ty * tile + tx
        while k < n_shared:
            si = k // span
            sj = k - si * span
            gi = row0 - 1 + si
            gj = col0 - 1 + sj
            if gi >= 0 and gi < n_rows and gj >= 0 and gj < n_cols:
                smem[si, sj] = cur[gi, gj]
            else:
                smem[si, sj] = 0.0
            k += n_threads

        cuda.syncthreads()

        i = row0 + ty
        j = col0 + tx
        if i <= last and j < n_cols:
            c = smem[ty + 1, tx + 1]
            if i >= row_lo and i <= row_hi and j >= 1 and j <= n_cols - 2:
                nxt[i, j] = c + coeff * (
                    smem[ty + 2, tx + 1]
                    + smem[ty, tx + 1]
                    + smem[ty + 1, tx + 2]
                    + smem[ty + 1, tx]
                    - 4.0 * c
                )
            else:
                nxt[i, j] = c

    return diffuse_tiled


_TILED_KERNELS = {}


def _tiled_kernel(tile: int):
    if tile not in _TILED_KERNELS:
        _TILED_KERNELS[tile] = _build_tiled_kernel(tile)
    return _TILED_KERNELS[tile]


class KernelLaunch:
    """Future for one in-flight stencil update.

    ``wait()`` blocks until the compute stream has drained and returns the
    time from launch to completion.
    """

    def __init__(self, sync=None):
        self._sync = sync
        self.started = time.perf_counter()
        self.elapsed = None

    def done(self) -> bool:
        return self.elapsed is not None

    def wait(self) -> float:
        if self.elapsed is None:
            if self._sync is not None:
                with accelerator_op("compute stream synchronize"):
                    self._sync()
            self.elapsed = time.perf_counter() - self.started
        return self.elapsed


class NumPyKernel:
    """NumPy-based diffusion kernel (host arrays)."""

    device = "host"

    def __init__(self, coeff: float, tile_size: int = 16, numba_threads: int = 1):
        self.coeff = coeff
        self.observed_numba_threads = None  # Not applicable for NumPy

    def step(self, cur: np.ndarray, nxt: np.ndarray, row_lo: int, row_hi: int,
             first: int = 1, last: int = None):
        """Perform one diffusion step on rows ``first..last``."""
        first, last = _row_span(cur, first, last)
        if last < first:
            return
        nxt[first : last + 1] = cur[first : last + 1]

        lo, hi = max(row_lo, first), min(row_hi, last)
        if hi < lo or cur.shape[1] < 3:
            return

        c = cur[lo : hi + 1, 1:-1]
        nxt[lo : hi + 1, 1:-1] = c + self.coeff * (
            cur[lo + 1 : hi + 2, 1:-1]
            + cur[lo - 1 : hi, 1:-1]
            + cur[lo : hi + 1, 2:]
            + cur[lo : hi + 1, :-2]
            - 4.0 * c
        )

    def launch(self, cur, nxt, row_lo, row_hi, first=1, last=None, stream=None) -> KernelLaunch:
        """Run synchronously; the returned future is already complete."""
        launch = KernelLaunch()
        self.step(cur, nxt, row_lo, row_hi, first, last)
        launch.wait()
        return launch

    def warmup(self, warmup_size: int = 10):
        """No-op for NumPy kernel."""
        pass


class NumbaKernel(NumPyKernel):
    """Numba JIT-compiled diffusion kernel (host arrays, parallel rows)."""

    def __init__(self, coeff: float, tile_size: int = 16, numba_threads: int = 1):
        self.coeff = coeff

        # Set requested threads (may be clamped by NUMBA_NUM_THREADS env var)
        if numba_threads is not None:
            numba.set_num_threads(numba_threads)

        # Record what Numba actually reports
        self.observed_numba_threads = numba.get_num_threads()

    def step(self, cur: np.ndarray, nxt: np.ndarray, row_lo: int, row_hi: int,
             first: int = 1, last: int = None):
        """Perform one diffusion step on rows ``first..last``."""
        first, last = _row_span(cur, first, last)
        if last < first:
            return
        _diffuse_numba(cur, nxt, self.coeff, row_lo, row_hi, first, last)

    def warmup(self, warmup_size: int = 10):
        """Trigger JIT compilation with a small problem."""
        cur = np.random.rand(warmup_size + 2, warmup_size)
        nxt = np.zeros_like(cur)
        _diffuse_numba(cur, nxt, self.coeff, 1, warmup_size, 1, warmup_size)


class CudaTiledKernel:
    """Shared-memory tiled CUDA kernel (device arrays).

    Each block of ``tile_size x tile_size`` threads stages its tile and a
    one-cell margin in shared memory, so the four neighbor reads of every
    cell hit shared memory instead of global memory.
    """

    device = "cuda"

    def __init__(self, coeff: float, tile_size: int = 16, numba_threads: int = 1):
        if not 1 <= tile_size <= MAX_CUDA_TILE:
            raise ConfigurationError(
                f"CUDA tile_size must be in [1, {MAX_CUDA_TILE}], got {tile_size}"
            )
        self.coeff = coeff
        self.tile_size = tile_size
        self.observed_numba_threads = None
        self._kernel = _tiled_kernel(tile_size)

    def launch_config(self, n_rows: int, n_cols: int) -> tuple:
        """Grid and block dimensions covering ``n_rows x n_cols`` cells."""
        tile = self.tile_size
        griddim = (math.ceil(n_cols / tile), math.ceil(n_rows / tile))
        return griddim, (tile, tile)

    def step(self, cur, nxt, row_lo: int, row_hi: int, first: int = 1, last: int = None,
             stream=0):
        """Enqueue one diffusion step over rows ``first..last`` on ``stream``; does not block."""
        first, last = _row_span(cur, first, last)
        if last < first:
            return
        griddim, blockdim = self.launch_config(last - first + 1, cur.shape[1])
        with accelerator_op("stencil kernel launch"):
            self._kernel[griddim, blockdim, stream](
                cur, nxt, self.coeff, row_lo, row_hi, first, last
            )

    def launch(self, cur, nxt, row_lo, row_hi, first=1, last=None, stream=None) -> KernelLaunch:
        if stream is None:
            launch = KernelLaunch(sync=cuda.synchronize)
            self.step(cur, nxt, row_lo, row_hi, first, last)
        else:
            launch = KernelLaunch(sync=stream.synchronize)
            self.step(cur, nxt, row_lo, row_hi, first, last, stream)
        return launch

    def warmup(self, warmup_size: int = 10):
        """Trigger JIT compilation with a small problem."""
        with accelerator_op("kernel warmup"):
            d_cur = cuda.to_device(np.random.rand(warmup_size + 2, warmup_size))
            d_nxt = cuda.device_array_like(d_cur)
            self.step(d_cur, d_nxt, 1, warmup_size)
            cuda.synchronize()


_KERNELS = {
    "numpy": NumPyKernel,
    "numba": NumbaKernel,
    "cuda": CudaTiledKernel,
}


def create_kernel(name: str, coeff: float, tile_size: int = 16, numba_threads: int = 1):
    """Factory: 'numpy', 'numba' (host) or 'cuda' (tiled accelerator kernel)."""
    if name not in _KERNELS:
        raise ConfigurationError(f"Unknown kernel: {name}")
    if coeff > STABILITY_LIMIT:
        log.warning(
            f"D*dt/dx^2 = {coeff:g} exceeds {STABILITY_LIMIT}; explicit scheme is unstable"
        )
    return _KERNELS[name](coeff, tile_size=tile_size, numba_threads=numba_threads)
