"""Utility modules for evaluation, plotting and experiment tracking."""

from .experiment_tracking import ExperimentTracker, setup_experiment_tracking
from .model_utils import (
    compute_roc,
    compute_auc,
    ThresholdOptimizer,
    ModelEvaluator,
    ModelComparator
)
from .plotting import plot_roc_comparison, plot_feature_importance

__all__ = [
    'ExperimentTracker',
    'setup_experiment_tracking',
    'compute_roc',
    'compute_auc',
    'ThresholdOptimizer',
    'ModelEvaluator',
    'ModelComparator',
    'plot_roc_comparison',
    'plot_feature_importance'
]
