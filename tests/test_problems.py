"""Tests for problem setup utilities."""

import numpy as np
import pytest
from Diffusion import (
    create_initial_condition,
    diffuse_sequential,
    hot_square_bounds,
    partition,
    seed_hot_square,
)


class TestInitialCondition:
    """Tests for the centered hot square."""

    def test_single_hot_cell_at_center(self):
        u = create_initial_condition(8, hot_size=1, hot_value=1.0)

        assert u[4, 4] == 1.0
        assert u.sum() == 1.0

    def test_hot_square_bounds(self):
        assert hot_square_bounds(256, 16) == (120, 136)
        assert hot_square_bounds(8, 1) == (4, 5)

    def test_grid_dtype(self):
        assert create_initial_condition(10, 2).dtype == np.float64

    @pytest.mark.parametrize("size", [1, 2, 3, 5])
    def test_seeded_slabs_reassemble_global_field(self, size):
        """Clipped per-rank squares stitch back into the global square."""
        N, hot_size = 12, 5
        pieces = []
        for rank in range(size):
            info = partition(N, size, rank)
            slab = np.zeros(info.halo_shape)
            seed_hot_square(slab, info, hot_size, 2.0)
            assert np.all(slab[0] == 0.0) and np.all(slab[-1] == 0.0)
            pieces.append(slab[1:-1])

        expected = create_initial_condition(N, hot_size, 2.0)
        assert np.array_equal(np.vstack(pieces), expected)


class TestSequentialReference:
    """Tests for the single-process reference stencil."""

    def test_one_step_spreads_to_neighbors(self):
        u = diffuse_sequential(create_initial_condition(8), T=1, coeff=0.001)

        assert u[4, 4] == pytest.approx(0.996)
        for i, j in [(3, 4), (5, 4), (4, 3), (4, 5)]:
            assert u[i, j] == pytest.approx(0.001)

    def test_boundaries_fixed(self):
        u0 = np.random.default_rng(0).random((10, 10))
        u = diffuse_sequential(u0, T=20, coeff=0.2)

        assert np.array_equal(u[0], u0[0])
        assert np.array_equal(u[-1], u0[-1])
        assert np.array_equal(u[:, 0], u0[:, 0])
        assert np.array_equal(u[:, -1], u0[:, -1])

    def test_input_not_modified(self):
        u0 = create_initial_condition(8)
        diffuse_sequential(u0, T=3, coeff=0.1)

        assert u0.sum() == 1.0
