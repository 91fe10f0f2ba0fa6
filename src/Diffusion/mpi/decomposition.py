"""Row-slab domain decomposition.

Pure geometric logic with no MPI dependencies: every worker derives the
full partition table from ``(N, size)`` without communicating.
"""

from __future__ import annotations

from ..datastructures import Partition
from ..errors import ConfigurationError


class SlabDecomposition:
    """Split the rows of an N x N grid across ``size`` workers.

    Remainder rows go to the lowest ranks, so row counts differ by at most
    one and are non-increasing in rank order.

    Parameters
    ----------
    N : int
        Global grid size (N x N, boundaries included).
    size : int
        Number of workers.

    Examples
    --------
    >>> decomp = SlabDecomposition(N=10, size=3)
    >>> [p.local_row_count for p in decomp.get_all_rank_info()]
    [4, 3, 3]
    """

    def __init__(self, N: int, size: int):
        if N < 1:
            raise ConfigurationError(f"Grid size must be positive, got N={N}")
        if size < 1:
            raise ConfigurationError(f"Worker count must be positive, got {size}")
        if size > N:
            raise ConfigurationError(
                f"{size} workers for {N} rows would leave empty partitions"
            )
        self.N = N
        self.size = size
        self._rank_info = [self._decompose(rank) for rank in range(size)]

    def _decompose(self, rank: int) -> Partition:
        base, rem = divmod(self.N, self.size)
        count = base + (1 if rank < rem else 0)
        offset = rank * base + min(rank, rem)
        return Partition(
            rank=rank,
            local_row_count=count,
            local_col_count=self.N,
            global_row_offset=offset,
            top=rank - 1 if rank > 0 else None,
            bottom=rank + 1 if rank < self.size - 1 else None,
        )

    def get_rank_info(self, rank: int) -> Partition:
        """Partition for a specific rank."""
        if not 0 <= rank < self.size:
            raise ConfigurationError(f"Rank {rank} outside [0, {self.size})")
        return self._rank_info[rank]

    def get_all_rank_info(self) -> list[Partition]:
        """Partitions for all ranks, in rank order."""
        return list(self._rank_info)


def partition(N: int, size: int, rank: int) -> Partition:
    """Partition for one rank; shortcut for ``SlabDecomposition(...).get_rank_info``."""
    return SlabDecomposition(N, size).get_rank_info(rank)
