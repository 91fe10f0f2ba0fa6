"""Data structures for solver configuration and results.

Architecture: 2x2 matrix of Params vs Metrics × Global vs Local

                 Params (input/config)         Metrics (output/results)
                 ─────────────────────         ────────────────────────
Global           GlobalParams                  GlobalMetrics
(same across     N, T, D, dt, dx,              wall_time, mlups,
ranks / agg)     kernel, tile_size...          compute_pct, comm_pct...

Local            LocalParams                   LocalMetrics
(per-rank)       rank, hostname,               compute_times[],
                 neighbors, local_shape...     halo_times[], stats...
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError

KERNELS = ("numpy", "numba", "cuda")


# ============================================================================
# Global (identical across ranks, or aggregated on rank 0)
# ============================================================================


@dataclass
class GlobalParams:
    """Run configuration - built from the Hydra config, logged to MLflow as params.

    Immutable configuration set before the run. Identical across all MPI ranks.
    """

    # Required
    N: int
    T: int

    # Physics
    D: float = 0.1
    dt: float = 0.01
    dx: float = 1.0

    # Initial condition: square hot region centered on the grid
    hot_size: int = 1
    hot_value: float = 1.0

    # Accelerator
    kernel: str = "numpy"  # "numpy" | "numba" | "cuda"
    tile_size: int = 16
    numba_threads: int = 1

    # Diagnostics (0 disables periodic sampling)
    print_interval: int = 100

    # Parallelization
    n_ranks: int = 1

    # Experiment tracking
    experiment_name: str = "default"

    # Auto-detected at runtime (not from config)
    environment: str = field(init=False)
    coeff: float = field(init=False)

    def __post_init__(self):
        """Validate and compute derived values after initialization."""
        if self.N < 3:
            raise ConfigurationError(f"Grid size N must be at least 3, got {self.N}")
        if self.T < 0:
            raise ConfigurationError(f"Timestep count T must be >= 0, got {self.T}")
        if self.dx <= 0 or self.dt <= 0 or self.D < 0:
            raise ConfigurationError("Require dx > 0, dt > 0 and D >= 0")
        if self.kernel not in KERNELS:
            raise ConfigurationError(
                f"Unknown kernel: {self.kernel}. Use one of {', '.join(KERNELS)}."
            )
        if self.tile_size < 1:
            raise ConfigurationError(f"tile_size must be positive, got {self.tile_size}")
        if self.print_interval < 0:
            raise ConfigurationError("print_interval must be >= 0")
        if not 0 < self.hot_size <= self.N:
            raise ConfigurationError(f"hot_size must be in [1, N], got {self.hot_size}")
        if self.n_ranks > self.N:
            raise ConfigurationError(
                f"n_ranks={self.n_ranks} exceeds grid rows N={self.N}"
            )

        self.coeff = self.D * self.dt / (self.dx * self.dx)
        self.environment = (
            "hpc"
            if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID")
            else "local"
        )

    @classmethod
    def from_config(cls, cfg, **overrides) -> "GlobalParams":
        """Build from a Hydra/OmegaConf config, ignoring keys we don't own."""
        names = {
            name for name, f in cls.__dataclass_fields__.items() if f.init
        }
        values = {k: cfg.get(k) for k in names if cfg.get(k) is not None}
        values.update(overrides)
        return cls(**values)

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict (exclude derived)."""
        exclude = {"coeff"}
        return {k: v for k, v in self.__dict__.items() if k not in exclude}


@dataclass
class GlobalMetrics:
    """Per-run results - logged to MLflow as metrics."""

    iterations: int = 0
    wall_time: Optional[float] = None

    # Timing breakdown (sum across all iterations)
    total_compute_time: Optional[float] = None
    total_halo_time: Optional[float] = None
    compute_pct: Optional[float] = None
    comm_pct: Optional[float] = None
    time_per_iter: Optional[float] = None

    exchanges: int = 0

    # Field diagnostics at the end of the run
    final_min: Optional[float] = None
    final_max: Optional[float] = None
    final_mean: Optional[float] = None

    # Million Lattice Updates per Second
    mlups: Optional[float] = None

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (no None)."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


# ============================================================================
# Local (per-rank)
# ============================================================================


@dataclass
class LocalParams:
    """Per-rank geometry - gathered to rank 0, logged as table artifact."""

    rank: int
    hostname: str = ""
    neighbors: Dict[str, Optional[int]] = field(default_factory=dict)
    local_shape: Optional[Tuple[int, int]] = None
    global_row_offset: int = 0
    device: str = "host"


@dataclass
class SlabStats:
    """Min/max/mean of a worker's authoritative rows at one timestep."""

    step: int
    min: float
    max: float
    mean: float

    def format(self, rank: int) -> str:
        return f"step {self.step} rank {rank} min={self.min:f} max={self.max:f} avg={self.mean:f}"


@dataclass
class LocalMetrics:
    """Per-rank metrics collector.

    Owned by one solver and only ever touched by its own rank. Accumulated
    during solve, reported once afterwards.
    """

    compute_times: List[float] = field(default_factory=list)
    halo_times: List[float] = field(default_factory=list)
    stats_history: List[SlabStats] = field(default_factory=list)

    wall_time: float = 0.0
    exchanges: int = 0

    def record_step(self, compute_time: float, halo_time: float, exchanges: int):
        """Accumulate one timestep."""
        self.compute_times.append(compute_time)
        self.halo_times.append(halo_time)
        self.exchanges += exchanges

    @property
    def total_compute_time(self) -> float:
        return float(sum(self.compute_times))

    @property
    def total_halo_time(self) -> float:
        return float(sum(self.halo_times))

    def summary(self, rank: int) -> str:
        """Final per-rank summary line."""
        n = len(self.compute_times)
        total = self.wall_time
        compute_pct = 100.0 * self.total_compute_time / total if total > 0 else 0.0
        comm_pct = 100.0 * self.total_halo_time / total if total > 0 else 0.0
        avg_ms = 1e3 * total / n if n else 0.0
        return (
            f"rank {rank} total={total:.4f}s compute={compute_pct:.1f}% "
            f"comm={comm_pct:.1f}% exchanges={self.exchanges} avg_iter={avg_ms:.3f}ms"
        )

    def clear(self):
        """Clear all timeseries data."""
        self.compute_times.clear()
        self.halo_times.clear()
        self.stats_history.clear()
        self.wall_time = 0.0
        self.exchanges = 0

    def to_mlflow_batch(self) -> list:
        """Convert timeseries to MLflow Metric objects for batch logging."""
        from mlflow.entities import Metric

        series = {"compute_times": self.compute_times, "halo_times": self.halo_times}
        return [
            Metric(key=name, value=value, timestamp=0, step=step)
            for name, values in series.items()
            for step, value in enumerate(values)
        ]


# ============================================================================
# Partition geometry
# ============================================================================


@dataclass(frozen=True)
class Partition:
    """One worker's row slab of the global grid.

    The slab buffer is ``(local_row_count + 2, local_col_count)``: rows 0 and
    ``local_row_count + 1`` are halo rows owned by the neighbors.
    """

    rank: int
    local_row_count: int
    local_col_count: int
    global_row_offset: int
    top: Optional[int] = None  # rank - 1, None for rank 0
    bottom: Optional[int] = None  # rank + 1, None for the last rank

    @property
    def global_row_end(self) -> int:
        return self.global_row_offset + self.local_row_count

    @property
    def halo_shape(self) -> Tuple[int, int]:
        return (self.local_row_count + 2, self.local_col_count)

    @property
    def neighbors(self) -> Dict[str, Optional[int]]:
        return {"top": self.top, "bottom": self.bottom}

    @property
    def n_neighbors(self) -> int:
        return sum(n is not None for n in (self.top, self.bottom))

    @property
    def update_rows(self) -> Tuple[int, int]:
        """Inclusive local row range the stencil updates.

        Global rows 0 and N-1 are fixed, so the first and last rank give up
        their outermost authoritative row.
        """
        row_lo = 2 if self.top is None else 1
        row_hi = self.local_row_count - 1 if self.bottom is None else self.local_row_count
        return row_lo, row_hi

    @property
    def edge_rows(self) -> List[int]:
        """Authoritative rows a neighbor reads as its halo."""
        rows = []
        if self.top is not None:
            rows.append(1)
        if self.bottom is not None and self.local_row_count not in rows:
            rows.append(self.local_row_count)
        return rows

    @property
    def interior_rows(self) -> Tuple[int, int]:
        """Inclusive row range left once the edge rows are taken out (may be empty)."""
        first = 2 if self.top is not None else 1
        last = self.local_row_count - 1 if self.bottom is not None else self.local_row_count
        return first, last
