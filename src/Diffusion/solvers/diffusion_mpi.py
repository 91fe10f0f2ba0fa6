"""MPI-parallel diffusion solver (iteration driver)."""

import logging

import numpy as np

from .base import BaseSolver
from .mpi_mixin import MPISolverMixin
from ..datastructures import GlobalMetrics, GlobalParams, SlabStats
from ..errors import DiffusionError
from ..kernels import create_kernel
from ..mpi.grid import DistributedSlab

log = logging.getLogger(__name__)


def abort_on_fatal(solver, exc: DiffusionError):
    """Default fatal policy: report and take the whole job down."""
    log.critical(f"Rank {solver.rank}: {type(exc).__name__}: {exc}")
    solver.comm.Abort(1)


def log_fatal(solver, exc: DiffusionError):
    """Report only; ``run`` re-raises the error afterwards."""
    log.error(f"Rank {solver.rank}: {type(exc).__name__}: {exc}")


class DiffusionMPISolver(MPISolverMixin, BaseSolver):
    """Distributed explicit diffusion solver.

    Each rank owns a row slab, runs the stencil kernel on it and trades one
    halo row with each row neighbor per timestep. One timestep is

        edge rows (transfer stream) -> stage edge rows -> launch interior
        (compute stream) -> post messages -> wait messages + merge halos
        -> wait interior -> sync streams -> swap

    so the interior kernel runs while the freshly computed edge rows are in
    flight, and every halo row read at step t+1 holds the neighbor's step t+1
    value. On accelerators the edge rows are enqueued on the transfer stream
    and their time lands in the communication share.

    Parameters
    ----------
    params : GlobalParams
        Validated run configuration.
    comm : MPI.Comm, optional
        Communicator (default: MPI.COMM_WORLD).
    on_fatal : callable, optional
        ``on_fatal(solver, exc)`` called by ``run()`` for any DiffusionError.
        Defaults to logging and ``comm.Abort(1)``.
    """

    def __init__(self, params: GlobalParams, comm=None, on_fatal=abort_on_fatal):
        self._init_mpi(comm)
        super().__init__(params)
        self.on_fatal = on_fatal

        self.kernel = create_kernel(
            params.kernel,
            params.coeff,
            tile_size=params.tile_size,
            numba_threads=params.numba_threads,
        )
        self.grid = None
        self.partition = None
        self.u = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self):
        """Partition, allocate, seed, prime halos and line up all ranks."""
        if self.grid is not None:
            return
        self._reset()

        self.grid = DistributedSlab(self.N, self.comm, device=self.kernel.device)
        self.partition = self.grid.partition
        self.grid.seed(self.params.hot_size, self.params.hot_value)
        self.warmup()

        self.timeseries.exchanges += self.grid.halo.prime()

        # Everyone ready before timing starts
        self._barrier()

    def step(self, t: int):
        """Advance one timestep."""
        if self.grid is None or self.u is not None:
            raise RuntimeError("step() requires an initialized, unfinished solver")
        buffers = self.grid.buffers
        cur, nxt = buffers.current, buffers.next
        row_lo, row_hi = self.partition.update_rows

        # Rows the neighbors need first, ordered before their staging copies
        edges = [
            self.kernel.launch(cur, nxt, row_lo, row_hi, row, row, stream=buffers.transfer_stream)
            for row in self.partition.edge_rows
        ]
        exchange = self.grid.halo.begin(source="next")

        # Both futures exist before either is awaited
        first, last = self.partition.interior_rows
        launch = self.kernel.launch(
            cur, nxt, row_lo, row_hi, first, last, stream=buffers.compute_stream
        )
        exchange.post()

        # Join
        exchanged = exchange.wait(target="next")
        compute_time = launch.wait() + sum(e.elapsed for e in edges if e.done())
        t0 = self._get_time()
        buffers.synchronize()
        halo_time = exchange.elapsed + self._get_time() - t0

        buffers.swap()
        self.timeseries.record_step(compute_time, halo_time, exchanged)

        interval = self.params.print_interval
        if interval and t % interval == 0:
            self.sample_statistics(t)

    def sample_statistics(self, t: int):
        """Copy the whole slab to host and log min/max/mean. Blocks both streams."""
        stats = self.grid.local_statistics(t)
        self.timeseries.stats_history.append(stats)
        log.info(stats.format(self.rank))
        return stats

    def solve(self) -> GlobalMetrics:
        """Run all T timesteps and collect the final slab on the host.

        Slab storage is released on the way out, also when a step fails.
        """
        try:
            self.initialize()

            t_start = self._get_time()
            for t in range(self.T):
                self.step(t)
            wall_time = self._get_time() - t_start

            self.u = self.grid.finish()
        finally:
            if self.u is None and self.grid is not None and not self.grid.buffers.released:
                self.grid.buffers.release()

        self._finalize(wall_time)
        log.info(self.timeseries.summary(self.rank))
        return self.metrics

    def run(self) -> GlobalMetrics:
        """``solve()`` with the fatal-error policy applied at one boundary."""
        try:
            return self.solve()
        except DiffusionError as exc:
            self.on_fatal(self, exc)
            raise

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _finalize(self, wall_time: float):
        """Finalize metrics after solve."""
        self.timeseries.wall_time = wall_time
        n_cells = self.partition.local_row_count * self.partition.local_col_count
        self._compute_metrics(wall_time, self.T, n_cells)

        self._record_final(self.grid.local_statistics(self.T))

    def global_mass(self) -> float:
        """Sum of the field over the whole grid (collective)."""
        return self._reduce_sum(float(self.grid.interior().sum()))

    def global_statistics(self) -> SlabStats:
        """Min/max/mean over the whole grid at the current step (collective)."""
        local = self.grid.local_statistics(len(self.timeseries.compute_times))
        return self._reduce_stats(local, self.partition.local_row_count * self.N)

    def gather_global(self, root: int = 0):
        """Full N x N field on ``root``, None elsewhere (collective)."""
        return self.grid.gather_global(root=root)

    def halo_mismatch(self, root: int = 0) -> float | None:
        """Largest gap between a halo row and the neighbor row it mirrors.

        Collective. The value lands on ``root``, None elsewhere.
        """
        slab = self.current_slab()
        rows = self.comm.gather((slab[0], slab[1], slab[-2], slab[-1]), root=root)
        if self.rank != root:
            return None
        worst = 0.0
        for (_, _, upper_last, upper_halo), (lower_halo, lower_first, _, _) in zip(rows, rows[1:]):
            worst = max(
                worst,
                float(np.abs(lower_halo - upper_last).max()),
                float(np.abs(upper_halo - lower_first).max()),
            )
        return worst

    def get_rank_info(self):
        return self.grid.get_rank_info()

    @property
    def halo_size_mb(self) -> float:
        return self.grid.get_halo_size_bytes() / (1024 * 1024)

    @property
    def local_shape(self) -> tuple:
        return self.grid.local_shape

    def current_slab(self) -> np.ndarray:
        """Host copy of the current slab including halo rows."""
        if self.u is not None:
            return self.u.copy()
        return self.grid.buffers.to_host("current")
