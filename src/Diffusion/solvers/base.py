"""Base class for diffusion drivers."""

import time
from abc import ABC, abstractmethod

from ..datastructures import GlobalMetrics, GlobalParams, LocalMetrics, SlabStats


class BaseSolver(ABC):
    """Timestep bookkeeping shared by diffusion drivers.

    Subclasses own the field and the kernel; this class owns ``metrics``
    (one ``GlobalMetrics`` per run) and ``timeseries`` (the per-rank
    ``LocalMetrics`` collector) and turns the latter into the former.
    """

    def __init__(self, params: GlobalParams):
        self.params = params
        self.N = params.N
        self.T = params.T

        self.metrics = GlobalMetrics()
        self.timeseries = LocalMetrics()

    @abstractmethod
    def solve(self) -> GlobalMetrics:
        """Advance T timesteps and return the run metrics."""

    def warmup(self, warmup_size: int = 10):
        """Compile the stencil ahead of the timed loop."""
        self.kernel.warmup(warmup_size=warmup_size)

    def _get_time(self) -> float:
        return time.perf_counter()

    def _reduce_sum(self, local_sum: float) -> float:
        return local_sum

    def _barrier(self):
        pass

    def _reset(self):
        """Forget any previous run."""
        self.timeseries.clear()
        self.metrics = GlobalMetrics()

    def _compute_metrics(self, wall_time: float, iterations: int, n_cells: int):
        """Fill ``metrics`` from the collected per-step timings.

        Parameters
        ----------
        wall_time : float
            Seconds spent in the timestep loop.
        iterations : int
            Timesteps taken.
        n_cells : int
            Cells this rank updates per step (for Mlup/s).
        """
        ts = self.timeseries
        m = self.metrics
        m.wall_time = wall_time
        m.iterations = iterations
        m.exchanges = ts.exchanges
        m.total_compute_time = ts.total_compute_time
        m.total_halo_time = ts.total_halo_time

        if iterations:
            m.time_per_iter = wall_time / iterations
        if wall_time <= 0:
            return
        m.compute_pct = 100.0 * m.total_compute_time / wall_time
        m.comm_pct = 100.0 * m.total_halo_time / wall_time
        if iterations:
            m.mlups = n_cells * iterations / wall_time / 1e6

    def _record_final(self, stats: SlabStats):
        """Store the end-of-run field statistics."""
        self.metrics.final_min = stats.min
        self.metrics.final_max = stats.max
        self.metrics.final_mean = stats.mean
