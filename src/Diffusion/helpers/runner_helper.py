"""MPI worker for run_solver: mpiexec -n X python -m Diffusion.helpers.runner_helper '{job}'"""

import json
import logging
import sys
from dataclasses import asdict

import numpy as np
import pandas as pd
from mpi4py import MPI

from Diffusion import DiffusionMPISolver, GlobalParams, create_initial_condition, diffuse_sequential

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

job = json.loads(sys.argv[1])
comm = MPI.COMM_WORLD
rank = comm.Get_rank()

output_path = job.pop("output", None)
validate = job.pop("validate", False)

params = GlobalParams(n_ranks=comm.Get_size(), **job)
solver = DiffusionMPISolver(params, comm=comm)
solver.run()

# Collectives: every rank takes part
stats = solver.global_statistics()
record = {**params.to_mlflow(), **asdict(solver.metrics)}
record.update(
    global_mass=solver.global_mass(),
    global_min=stats.min,
    global_max=stats.max,
    global_mean=stats.mean,
    halo_size_mb=solver.halo_size_mb,
)

if validate:
    field = solver.gather_global()
    mismatch = solver.halo_mismatch()
    if rank == 0:
        record["halo_mismatch"] = mismatch
        u0 = create_initial_condition(params.N, params.hot_size, params.hot_value)
        expected = diffuse_sequential(u0, params.T, params.coeff)
        record["max_abs_error"] = float(np.abs(field - expected).max())

if rank == 0 and output_path:
    pd.DataFrame([record]).to_json(output_path, orient="records")
