"""
Unified Solver Runner - runs in-process or re-launches under mpiexec based on n_ranks.

Usage:
    python run_solver.py N=512 T=1000 kernel=cuda
    python run_solver.py n_ranks=4 N=1024 T=500 kernel=cuda tile_size=16
    python run_solver.py -cn config --multirun n_ranks=1,2,4
"""

import logging
import os
import subprocess
import sys
from dataclasses import asdict

import hydra
from omegaconf import DictConfig, OmegaConf

log = logging.getLogger(__name__)

# Keys forwarded to the mpiexec subprocess
_FORWARDED = [
    "N", "T", "D", "dt", "dx", "hot_size", "hot_value", "kernel", "tile_size",
    "numba_threads", "print_interval", "n_ranks", "experiment_name",
]


def _run(cfg: DictConfig, comm):
    """Run the solver on this rank and log results from rank 0."""
    from Diffusion import DiffusionMPISolver, GlobalParams

    rank, n_ranks = comm.Get_rank(), comm.Get_size()
    params = GlobalParams.from_config(cfg, n_ranks=n_ranks)

    if rank == 0:
        log.info(f"{params.kernel}, N={params.N}, T={params.T}, ranks={n_ranks}")

    solver = DiffusionMPISolver(params, comm=comm)
    solver.run()

    info = asdict(solver.get_rank_info())
    neighbors = info.pop("neighbors")
    info["local_shape"] = str(info["local_shape"])
    rank_rows = comm.gather({**info, **neighbors, **solver.metrics.to_mlflow()}, root=0)
    mass = solver.global_mass()

    if rank == 0:
        _log_results(cfg, params, solver, rank_rows, mass)


def _log_results(cfg, params, solver, rank_rows: list, mass: float):
    """Log solver results to MLflow."""
    import numpy as np

    from utils.mlflow import (
        setup_mlflow_tracking,
        start_mlflow_run_context,
        log_parameters,
        log_metrics_dict,
        log_timeseries_metrics,
        log_rank_table,
    )

    m = solver.metrics
    log.info(
        f"Done: {m.iterations} steps, time={m.wall_time:.3f}s, mass={mass:.6g}"
        + (f", {m.mlups:.1f} Mlup/s" if m.mlups else "")
    )

    if not setup_mlflow_tracking(mode=cfg.mlflow.mode):
        return

    with start_mlflow_run_context(params):
        extra = {"halo_size_mb": solver.halo_size_mb}
        if solver.kernel.observed_numba_threads is not None:
            extra["observed_numba_threads"] = solver.kernel.observed_numba_threads
        log_parameters({**params.to_mlflow(), **extra})
        log_metrics_dict({**m.to_mlflow(), "global_mass": mass})
        log_rank_table(rank_rows)
        if m.iterations:
            halo_us = np.asarray(solver.timeseries.halo_times) * 1e6
            log_metrics_dict({f"halo_time_{k}_us": float(fn(halo_us)) for k, fn in
                              [("mean", np.mean), ("std", np.std), ("min", np.min), ("max", np.max)]})
        log_timeseries_metrics(solver.timeseries)


def _spawn_mpi(cfg: DictConfig, n_ranks: int):
    """Re-launch this script under mpiexec with the resolved config."""
    from Diffusion import job_environment

    mpi = cfg.get("mpi", {})
    env = job_environment({"MPI_SUBPROCESS": "1"})

    cmd = ["mpiexec", "-n", str(n_ranks)]
    if mpi.get("bind_to"):
        cmd.extend(["--bind-to", str(mpi.bind_to)])
    cmd.extend([sys.executable, os.path.abspath(__file__)])

    for key in _FORWARDED:
        val = cfg.get(key)
        if val is not None:
            cmd.append(f"{key}={val}")
    cmd.append(f"mlflow.mode={cfg.mlflow.mode}")

    result = subprocess.run(cmd, capture_output=True, text=True, env=env)
    for line in (result.stdout or "").strip().split("\n"):
        if line:
            log.info(line)
    for line in (result.stderr or "").strip().split("\n"):
        if line:
            log.warning(line) if "error" in line.lower() else log.info(line)
    if result.returncode != 0:
        log.error(f"mpiexec exited with code {result.returncode}")
        sys.exit(result.returncode)


@hydra.main(config_path="Experiments/hydra-conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Entry point - runs in-process or spawns MPI based on n_ranks."""
    n_ranks = cfg.get("n_ranks", 1)
    log.info(f"N={cfg.N}, T={cfg.T}, n_ranks={n_ranks}")

    if n_ranks == 1:
        from mpi4py import MPI

        _run(cfg, MPI.COMM_WORLD)
    else:
        _spawn_mpi(cfg, n_ranks)


if __name__ == "__main__":
    if os.environ.get("MPI_SUBPROCESS"):
        from mpi4py import MPI

        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        _run(OmegaConf.from_dotlist(sys.argv[1:]), MPI.COMM_WORLD)
    else:
        main()
