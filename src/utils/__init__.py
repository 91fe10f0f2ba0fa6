"""Support code outside the solver package: experiment tracking.

    from utils.mlflow import setup_mlflow_tracking, start_mlflow_run_context
"""

import warnings

# MLflow warns about its file store on every import
warnings.filterwarnings("ignore", category=FutureWarning, module="mlflow")
