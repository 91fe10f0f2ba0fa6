"""MLflow tracking for diffusion runs.

Runs are grouped as ``<experiment> / N<grid size> / <kernel>_N<N>_p<ranks>``:
one parent run per grid size, one nested child run per solver launch.
Only rank 0 talks to MLflow.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path

import mlflow
import pandas as pd

log = logging.getLogger(__name__)

DATABRICKS_PREFIX = "/Shared/DiffusionMPI"
BATCH_SIZE = 1000  # MLflow log_batch limit


def setup_mlflow_tracking(mode: str = "local") -> bool:
    """Point MLflow at a backend.

    Parameters
    ----------
    mode : str
        ``"local"`` (./mlruns), ``"databricks"`` or ``"off"``.

    Returns
    -------
    bool
        Whether anything should be logged.
    """
    if mode == "off":
        log.info("MLflow tracking disabled")
        return False

    if mode == "local":
        uri = (Path.cwd() / "mlruns").as_uri()
        mlflow.set_tracking_uri(uri)
        log.info(f"MLflow tracking to {uri}")
    elif mode == "databricks":
        try:
            mlflow.login(backend="databricks", interactive=False)
        except Exception as e:
            raise RuntimeError(
                "Databricks login failed; configure DATABRICKS_HOST and DATABRICKS_TOKEN"
            ) from e
        mlflow.set_tracking_uri("databricks")
        log.info("MLflow tracking to Databricks")
    else:
        log.warning(f"Unknown MLflow mode '{mode}', keeping {mlflow.get_tracking_uri()}")
    return True


def run_names(params) -> tuple[str, str]:
    """Parent and child run names for a GlobalParams."""
    return f"N{params.N}", f"{params.kernel}_N{params.N}_p{params.n_ranks}"


def _find_parent(experiment_id: str, name: str):
    client = mlflow.tracking.MlflowClient()
    runs = client.search_runs(
        experiment_ids=[experiment_id],
        filter_string=f"tags.mlflow.runName = '{name}' AND tags.is_parent = 'true'",
        max_results=1,
    )
    return runs[0].info.run_id if runs else None


@contextmanager
def start_mlflow_run_context(params, prefix: str = DATABRICKS_PREFIX):
    """Open the nested child run for one solver launch, reusing the grid-size parent."""
    experiment = params.experiment_name
    if mlflow.get_tracking_uri() == "databricks" and not experiment.startswith("/"):
        experiment = f"{prefix}/{experiment}"
    exp = mlflow.set_experiment(experiment)

    parent_name, child_name = run_names(params)
    parent_id = _find_parent(exp.experiment_id, parent_name)

    with mlflow.start_run(run_id=parent_id, run_name=parent_name, tags={"is_parent": "true"}):
        with mlflow.start_run(run_name=child_name, nested=True) as run:
            mlflow.set_tags(
                {
                    "environment": params.environment,
                    "kernel": params.kernel,
                    "n_ranks": params.n_ranks,
                    "scheduler_job": os.environ.get("SLURM_JOB_ID") or os.environ.get("LSB_JOBID") or "",
                }
            )
            log.info(f"MLflow run {experiment}/{parent_name}/{child_name} ({run.info.run_id})")
            yield run


def log_parameters(params: dict):
    """Log run parameters to the active run."""
    mlflow.log_params(params)


def log_metrics_dict(metrics: dict):
    """Log scalar metrics to the active run, skipping unset ones."""
    mlflow.log_metrics({k: v for k, v in metrics.items() if v is not None})


def log_timeseries_metrics(timeseries) -> int:
    """Log per-step compute and halo times of a LocalMetrics as stepped metrics."""
    run = mlflow.active_run()
    if run is None:
        return 0
    client = mlflow.tracking.MlflowClient()
    metrics = timeseries.to_mlflow_batch()
    for start in range(0, len(metrics), BATCH_SIZE):
        client.log_batch(run_id=run.info.run_id, metrics=metrics[start : start + BATCH_SIZE], synchronous=True)
    log.info(f"Logged {len(metrics)} per-step timings")
    return len(metrics)


def log_rank_table(rows: list[dict], artifact_file: str = "ranks.json") -> pd.DataFrame:
    """Log one row per rank (slab geometry, device, timings) as a table artifact."""
    df = pd.DataFrame(rows).sort_values("rank")
    mlflow.log_table(df, artifact_file=artifact_file)
    if "hostname" in df.columns:
        mlflow.log_param("nodes", df["hostname"].nunique())
    if "total_halo_time" in df.columns:
        mlflow.log_metric("max_rank_halo_time", float(df["total_halo_time"].max()))
    return df
