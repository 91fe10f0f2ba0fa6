"""Initial conditions for the diffusion problem.

The field starts at zero with a square hot region of side ``hot_size``
centered on the global grid. Workers seed only the part of the square that
falls inside their own slab.
"""

import numpy as np

from .datastructures import Partition


def hot_square_bounds(N: int, hot_size: int) -> tuple[int, int]:
    """Half-open index range ``[lo, hi)`` of the hot square along either axis."""
    lo = N // 2 - hot_size // 2
    return lo, lo + hot_size


def create_initial_condition(N: int, hot_size: int = 1, hot_value: float = 1.0) -> np.ndarray:
    """Full N x N initial field (for reference runs and tests only)."""
    u = np.zeros((N, N), dtype=np.float64)
    lo, hi = hot_square_bounds(N, hot_size)
    u[lo:hi, lo:hi] = hot_value
    return u


def seed_hot_square(slab: np.ndarray, partition: Partition, hot_size: int, hot_value: float):
    """Write the hot square, clipped to this partition, into a host slab.

    ``slab`` has shape ``partition.halo_shape``; local row ``k`` holds global
    row ``global_row_offset + k - 1``.
    """
    lo, hi = hot_square_bounds(partition.local_col_count, hot_size)
    row_lo = max(lo, partition.global_row_offset)
    row_hi = min(hi, partition.global_row_end)
    if row_lo >= row_hi:
        return

    local = slice(row_lo - partition.global_row_offset + 1, row_hi - partition.global_row_offset + 1)
    slab[local, lo:hi] = hot_value
