"""
Optional MLflow tracking of comparison runs.

A run records the flattened configuration, one metric per model and summary
statistic, the AUC of every cross-validation fold (``step`` = fold number) and
the report files (ROC figures, importance chart, ``metrics.yaml``).
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import mlflow
import numpy as np
from mlflow.tracking import MlflowClient

logger = logging.getLogger(__name__)


class ExperimentTracker:
    """MLflow experiment tracking wrapper."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize experiment tracker.

        Args:
            config: MLflow settings ('tracking_uri', 'experiment_name')
        """
        self.config = config
        self.tracking_uri = config.get('tracking_uri', 'file:./mlruns')
        self.experiment_name = config.get('experiment_name', 'subphenotype_comparison')

        mlflow.set_tracking_uri(self.tracking_uri)

        # A deleted experiment of the same name is restored rather than shadowed
        existing = mlflow.get_experiment_by_name(self.experiment_name)
        if existing is not None and existing.lifecycle_stage == 'deleted':
            MlflowClient().restore_experiment(existing.experiment_id)
            logger.info(f"Restored deleted experiment '{self.experiment_name}'")

        experiment = mlflow.set_experiment(self.experiment_name)
        self.experiment_id = experiment.experiment_id
        logger.info(f"Tracking runs in experiment '{self.experiment_name}' at {self.tracking_uri}")

    def start_run(self, run_name: Optional[str] = None):
        """Start MLflow run."""
        return mlflow.start_run(run_name=run_name)

    def log_params(self, params: Dict[str, Any], prefix: str = ""):
        """Log the (nested) pipeline configuration as flat parameters."""
        for key, value in self._flatten_dict(params, prefix).items():
            try:
                mlflow.log_param(key, value)
            except Exception as e:
                logger.warning(f"Failed to log param {key}: {e}")

    def log_model_metrics(self, model_metrics: Dict[str, Dict[str, float]]):
        """Log ``<model>_<metric>`` for every finite value of the comparison table."""
        metrics = {
            f"{model}_{key}": float(value)
            for model, values in model_metrics.items()
            for key, value in values.items()
            if value is not None and np.isfinite(value)
        }
        if metrics:
            mlflow.log_metrics(metrics)
        logger.info(f"Logged {len(metrics)} comparison metrics")

    def log_fold_aucs(self, model: str, fold_aucs: List[float]):
        """Log the AUC of each cross-validation fold as one metric history."""
        for fold, value in enumerate(fold_aucs):
            if np.isnan(value):
                logger.debug(f"{model} fold {fold}: AUC undefined, not logged")
                continue
            mlflow.log_metric(f"{model}_fold_auc", float(value), step=fold)

    def log_reports(self, paths: Iterable[Path], artifact_path: str = "reports"):
        """Attach report files to the active run."""
        for path in paths:
            path = Path(path)
            if not path.is_file():
                logger.warning(f"Report file not found, not logged: {path}")
                continue
            mlflow.log_artifact(str(path), artifact_path=artifact_path)

    def _flatten_dict(self, d: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
        """Flatten nested dictionary for parameter logging."""
        items = {}
        for key, value in d.items():
            new_key = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                items.update(self._flatten_dict(value, new_key))
            else:
                items[new_key] = str(value)
        return items


@contextmanager
def tracking_run(tracker: Optional[ExperimentTracker], run_name: Optional[str] = None):
    """Run context that is a no-op when tracking is disabled."""
    if tracker is None:
        yield None
        return
    with tracker.start_run(run_name) as run:
        yield run


def setup_experiment_tracking(config: Dict[str, Any]) -> Optional[ExperimentTracker]:
    """Return a tracker when ``experiment_tracking.backend`` is ``mlflow``, else ``None``."""
    tracking_config = config.get('experiment_tracking', {})

    if tracking_config.get('backend', 'none') == 'mlflow':
        return ExperimentTracker(tracking_config.get('mlflow', {}))
    logger.info("Experiment tracking disabled")
    return None
