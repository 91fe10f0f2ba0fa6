"""Launch the distributed solver in a separate ``mpiexec`` job.

Used by the integration tests and the scaling experiments; rank 0 of the job
writes one JSON record that is read back here.
"""

import json
import os
import subprocess
import sys
import tempfile
from pathlib import Path

WORKER_MODULE = "Diffusion.helpers.runner_helper"

# Launcher state an MPI-initialized parent exports; a nested mpiexec must not inherit it
LAUNCHER_ENV_PREFIXES = ("OMPI_", "PMIX_", "OPAL_", "PMI_", "HYDRA_")


def job_environment(extra: dict = None, base: dict = None) -> dict:
    """Environment for a nested mpiexec: the parent's minus launcher state, plus ``extra``."""
    env = {
        k: v for k, v in (os.environ if base is None else base).items()
        if not k.startswith(LAUNCHER_ENV_PREFIXES)
    }
    env.update({k: str(v) for k, v in (extra or {}).items()})
    return env


def run_solver(N: int, T: int, n_ranks: int = 1, output: str = None, env: dict = None, **kwargs) -> dict:
    """Diffuse an N x N field for T steps on ``n_ranks`` MPI processes.

    Parameters
    ----------
    N : int
        Grid size
    T : int
        Number of timesteps
    n_ranks : int
        Number of MPI ranks
    output : str, optional
        Where rank 0 writes its JSON record (a temporary file otherwise)
    env : dict, optional
        Extra environment variables for the job (e.g. NUMBA_ENABLE_CUDASIM)
    **kwargs
        Extra GlobalParams fields (D, dt, dx, kernel, tile_size, ...) and
        ``validate=True`` to gather the field and compare it with the
        sequential reference.

    Returns
    -------
    dict
        Parameters, rank 0 metrics and field diagnostics, or an ``error``
        key holding the job's stderr when it failed.
    """
    import pandas as pd

    keep = output is not None
    path = Path(output) if keep else Path(tempfile.mkstemp(suffix=".json")[1])

    job = {"N": N, "T": T, "output": str(path), **kwargs}
    cmd = ["mpiexec", "-n", str(n_ranks), sys.executable, "-m", WORKER_MODULE, json.dumps(job)]
    proc = subprocess.run(cmd, capture_output=True, text=True, env=job_environment(env))

    try:
        if proc.returncode != 0:
            return {"error": proc.stderr, "returncode": proc.returncode}
        if not path.exists() or path.stat().st_size == 0:
            return {"error": "worker wrote no result", "stderr": proc.stderr}
        return pd.read_json(path, orient="records").iloc[0].to_dict()
    finally:
        if not keep:
            path.unlink(missing_ok=True)
