"""MLflow tracking for diffusion runs (rank 0 only)."""

from .io import (
    setup_mlflow_tracking,
    start_mlflow_run_context,
    run_names,
    log_parameters,
    log_metrics_dict,
    log_timeseries_metrics,
    log_rank_table,
)

__all__ = [
    "setup_mlflow_tracking",
    "start_mlflow_run_context",
    "run_names",
    "log_parameters",
    "log_metrics_dict",
    "log_timeseries_metrics",
    "log_rank_table",
]
