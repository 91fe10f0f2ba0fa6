"""
Generate Scaling Analysis Data
===============================

Strong scaling of the distributed diffusion solver: a fixed N x N grid run
for T steps on an increasing number of ranks.

Each configuration is launched through ``run_solver`` (one ``mpiexec`` per
rank count) and the results are collected into one parquet file.

Usage: python Experiments/scaling/compute_scaling.py
"""

# %%
# Setup
# -----

import logging
from pathlib import Path

import pandas as pd

from Diffusion import run_solver

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
log = logging.getLogger(__name__)

data_dir = Path(__file__).resolve().parent / "data"
data_dir.mkdir(parents=True, exist_ok=True)

# Test parameters
N = 1024
T = 200
kernel = "numpy"
rank_counts = [1, 2, 4, 8]

# %%
# Strong Scaling
# --------------
# Fixed problem size, varying number of ranks

results = []
for n_ranks in rank_counts:
    log.info(f"Strong scaling: N={N}, T={T}, ranks={n_ranks}")
    r = run_solver(N=N, T=T, n_ranks=n_ranks, kernel=kernel, hot_size=N // 8, print_interval=0)
    if "error" in r:
        log.error(f"ranks={n_ranks} failed: {r['error']}")
        continue
    results.append(r)

# %%
# Speedup and efficiency relative to one rank
# -------------------------------------------

df = pd.DataFrame(results)
if not df.empty:
    t1 = df.loc[df["n_ranks"] == df["n_ranks"].min(), "wall_time"].iloc[0]
    df["speedup"] = t1 / df["wall_time"]
    df["efficiency"] = df["speedup"] / df["n_ranks"]

    output = data_dir / f"strong_scaling_{kernel}_N{N}.parquet"
    df.to_parquet(output, index=False)
    log.info(f"Saved {len(df)} rows to {output}")
    print(df[["n_ranks", "wall_time", "compute_pct", "comm_pct", "mlups", "speedup"]])
