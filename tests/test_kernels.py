"""Tests for the diffusion stencil kernels."""

import numpy as np
import pytest
from numba import cuda

from Diffusion import (
    ConfigurationError,
    CudaTiledKernel,
    NumbaKernel,
    NumPyKernel,
    create_kernel,
    diffuse_sequential,
)


def random_slab(rows, cols, seed=0):
    return np.random.default_rng(seed).random((rows + 2, cols))


def run_host(kernel, cur, row_lo, row_hi, first=1, last=None):
    nxt = np.full_like(cur, -1.0)
    kernel.step(cur, nxt, row_lo, row_hi, first, last)
    return nxt


def run_cuda(kernel, cur, row_lo, row_hi, first=1, last=None):
    d_cur = cuda.to_device(cur)
    d_nxt = cuda.to_device(np.full_like(cur, -1.0))
    kernel.launch(d_cur, d_nxt, row_lo, row_hi, first, last).wait()
    return d_nxt.copy_to_host()


def test_numpy_and_numba_identical():
    """NumPy and Numba kernels should produce identical results."""
    cur = random_slab(9, 11)
    numba_kernel = NumbaKernel(coeff=0.2, numba_threads=1)
    numba_kernel.warmup()

    expected = run_host(NumPyKernel(coeff=0.2), cur, 1, 9)
    actual = run_host(numba_kernel, cur, 1, 9)

    assert np.array_equal(expected, actual)


@pytest.mark.parametrize("tile_size", [4, 8])
def test_cuda_tiled_matches_numpy(tile_size):
    """Tiled kernel agrees with NumPy, including partial tiles at the slab edge."""
    cur = random_slab(10, 13)
    kernel = CudaTiledKernel(coeff=0.15, tile_size=tile_size)

    expected = run_host(NumPyKernel(coeff=0.15), cur, 2, 9)
    actual = run_cuda(kernel, cur, 2, 9)

    np.testing.assert_allclose(actual[1:-1], expected[1:-1], rtol=0, atol=1e-15)


def test_cuda_tiled_row_range_matches_numpy():
    """A launch restricted to one row only writes that row."""
    cur = random_slab(7, 9)
    kernel = CudaTiledKernel(coeff=0.1, tile_size=4)

    expected = run_host(NumPyKernel(coeff=0.1), cur, 1, 7, first=7, last=7)
    actual = run_cuda(kernel, cur, 1, 7, first=7, last=7)

    np.testing.assert_allclose(actual[7], expected[7], rtol=0, atol=1e-15)
    assert np.all(actual[1:7] == -1.0)


@pytest.mark.parametrize("kernel", [NumPyKernel(coeff=0.2), NumbaKernel(coeff=0.2)])
def test_halo_rows_never_written(kernel):
    cur = random_slab(6, 8)
    nxt = run_host(kernel, cur, 1, 6)

    assert np.all(nxt[0] == -1.0)
    assert np.all(nxt[-1] == -1.0)


@pytest.mark.parametrize("kernel", [NumPyKernel(coeff=0.2), NumbaKernel(coeff=0.2)])
def test_fixed_cells_copied(kernel):
    """Boundary columns and rows outside [row_lo, row_hi] are copied unchanged."""
    cur = random_slab(6, 8)
    nxt = run_host(kernel, cur, 2, 5)

    assert np.array_equal(nxt[1:-1, 0], cur[1:-1, 0])
    assert np.array_equal(nxt[1:-1, -1], cur[1:-1, -1])
    assert np.array_equal(nxt[1], cur[1])
    assert np.array_equal(nxt[6], cur[6])
    assert not np.array_equal(nxt[3, 1:-1], cur[3, 1:-1])


def test_edges_then_interior_equals_full_step():
    """Splitting a step into edge rows and interior rows changes nothing."""
    cur = random_slab(8, 10)
    kernel = NumPyKernel(coeff=0.2)
    full = run_host(kernel, cur, 1, 8)

    split = np.full_like(cur, -1.0)
    kernel.step(cur, split, 1, 8, 1, 1)
    kernel.step(cur, split, 1, 8, 8, 8)
    kernel.step(cur, split, 1, 8, 2, 7)

    assert np.array_equal(full, split)


def test_empty_row_range_is_noop():
    cur = random_slab(1, 6)
    nxt = run_host(NumPyKernel(coeff=0.2), cur, 1, 1, first=2, last=0)

    assert np.all(nxt == -1.0)


def test_single_slab_matches_sequential_reference():
    """A full-height slab with zero halos reproduces the reference stencil."""
    N, T, coeff = 10, 5, 0.2
    u0 = np.random.default_rng(1).random((N, N))

    cur = np.zeros((N + 2, N))
    cur[1:-1] = u0
    nxt = cur.copy()
    kernel = NumPyKernel(coeff=coeff)
    for _ in range(T):
        kernel.step(cur, nxt, 2, N - 1)
        cur, nxt = nxt, cur

    np.testing.assert_allclose(cur[1:-1], diffuse_sequential(u0, T, coeff), atol=1e-12)


def test_launch_future_reports_elapsed():
    cur = random_slab(4, 6)
    launch = NumPyKernel(coeff=0.1).launch(cur, np.zeros_like(cur), 1, 4)

    assert launch.done()
    assert launch.wait() >= 0.0


def test_cuda_launch_config_covers_partial_tiles():
    kernel = CudaTiledKernel(coeff=0.1, tile_size=16)
    griddim, blockdim = kernel.launch_config(33, 20)

    assert griddim == (2, 3)
    assert blockdim == (16, 16)


@pytest.mark.parametrize("tile_size", [0, 33])
def test_cuda_tile_size_validated(tile_size):
    with pytest.raises(ConfigurationError):
        CudaTiledKernel(coeff=0.1, tile_size=tile_size)


def test_unknown_kernel_rejected():
    with pytest.raises(ConfigurationError):
        create_kernel("fortran", 0.1)


def test_unstable_coefficient_warns(caplog):
    with caplog.at_level("WARNING", logger="Diffusion.kernels"):
        kernel = create_kernel("numpy", 0.3)

    assert isinstance(kernel, NumPyKernel)
    assert "unstable" in caplog.text
