"""
Model utilities for ROC/AUC computation, threshold optimization and model comparison.

Predictions are frames with a true ``Class`` column and a ``prob_class0`` score.
Because the score is P(class = 0), class 0 is the event for every ROC-derived
quantity here: sensitivity is the share of class-0 records scored above the
threshold.
"""

import numpy as np
import pandas as pd
from typing import Dict, Tuple, Optional
from sklearn.metrics import (
    auc, f1_score, precision_score, recall_score, accuracy_score, roc_curve, confusion_matrix
)
import logging

logger = logging.getLogger(__name__)

# Shared by cohort tables and prediction frames
TARGET_COLUMN = 'Class'
PROBABILITY_COLUMN = 'prob_class0'


def _event_and_score(predictions: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
    y_event = (predictions[TARGET_COLUMN].astype(int) == 0).astype(int).to_numpy()
    scores = predictions[PROBABILITY_COLUMN].astype(float).to_numpy()
    return y_event, scores


def compute_roc(predictions: pd.DataFrame) -> pd.DataFrame:
    """
    ROC curve points swept from the highest score to the lowest.

    Records sharing a score enter the curve together as one step, so tied
    scores never depend on row order.

    Args:
        predictions: Frame with ``Class`` and ``prob_class0`` columns

    Returns:
        Frame with ``fpr`` (1 - specificity), ``tpr`` (sensitivity) and
        ``threshold``; starts at (0, 0) and ends at (1, 1)
    """
    y_event, scores = _event_and_score(predictions)
    if len(np.unique(y_event)) < 2:
        logger.warning("ROC curve undefined: predictions contain a single class")
        return pd.DataFrame({'fpr': [np.nan], 'tpr': [np.nan], 'threshold': [np.nan]})

    fpr, tpr, thresholds = roc_curve(y_event, scores, drop_intermediate=False)
    return pd.DataFrame({'fpr': fpr, 'tpr': tpr, 'threshold': thresholds})


def compute_auc(predictions: pd.DataFrame) -> float:
    """Area under the ROC curve by trapezoidal integration; ``nan`` for a single class."""
    roc = compute_roc(predictions)
    if roc['fpr'].isnull().any():
        return float('nan')
    return float(auc(roc['fpr'], roc['tpr']))


class ThresholdOptimizer:
    """Optimize classification threshold based on different strategies."""

    def __init__(self, method: str = 'youden_j'):
        """
        Initialize threshold optimizer.

        Args:
            method: Optimization method ('youden_j', 'f1_optimal')
        """
        self.method = method

    def optimize(self, y_true: np.ndarray, y_proba: np.ndarray) -> float:
        """
        Find optimal threshold.

        Args:
            y_true: True binary labels (1 = event)
            y_proba: Predicted event probabilities

        Returns:
            Optimal threshold value
        """
        if self.method == 'f1_optimal':
            return self._optimize_f1(y_true, y_proba)
        elif self.method == 'youden_j':
            return self._optimize_youden_j(y_true, y_proba)
        else:
            raise ValueError(f"Unknown optimization method: {self.method}")

    def optimize_predictions(self, predictions: pd.DataFrame) -> float:
        """Optimal threshold on the class-0 score of a predictions frame."""
        y_event, scores = _event_and_score(predictions)
        return self.optimize(y_event, scores)

    def _optimize_f1(self, y_true: np.ndarray, y_proba: np.ndarray) -> float:
        """Find threshold that maximizes F1 score."""
        thresholds = np.linspace(0.01, 0.99, 99)
        best_f1 = 0
        best_threshold = 0.5

        for threshold in thresholds:
            y_pred = (y_proba >= threshold).astype(int)
            f1 = f1_score(y_true, y_pred, zero_division=0)

            if f1 > best_f1:
                best_f1 = f1
                best_threshold = threshold

        logger.info(f"Optimal threshold for F1: {best_threshold:.3f} (F1: {best_f1:.3f})")
        return float(best_threshold)

    def _optimize_youden_j(self, y_true: np.ndarray, y_proba: np.ndarray) -> float:
        """Find threshold using Youden's J statistic (sensitivity + specificity - 1)."""
        fpr, tpr, thresholds = roc_curve(y_true, y_proba)

        # Youden's J = TPR - FPR; the first point has an infinite threshold
        j_scores = tpr[1:] - fpr[1:]
        best_idx = int(np.argmax(j_scores)) + 1

        best_threshold = float(min(thresholds[best_idx], 1.0))
        logger.info(f"Optimal threshold from Youden's J: {best_threshold:.3f}")
        return best_threshold


class ModelEvaluator:
    """Threshold-based classification metrics."""

    def calculate_metrics(self,
                          y_true: np.ndarray,
                          y_pred: np.ndarray) -> Dict[str, float]:
        """
        Calculate evaluation metrics at a fixed operating point.

        Args:
            y_true: True binary labels (1 = event)
            y_pred: Predicted binary labels

        Returns:
            Dictionary of metrics
        """
        metrics = {}

        metrics['accuracy'] = accuracy_score(y_true, y_pred)
        metrics['precision'] = precision_score(y_true, y_pred, zero_division=0)
        metrics['recall'] = recall_score(y_true, y_pred, zero_division=0)
        metrics['f1_score'] = f1_score(y_true, y_pred, zero_division=0)

        tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
        metrics['true_negatives'] = int(tn)
        metrics['false_positives'] = int(fp)
        metrics['false_negatives'] = int(fn)
        metrics['true_positives'] = int(tp)

        metrics['specificity'] = tn / (tn + fp) if (tn + fp) > 0 else 0
        metrics['sensitivity'] = tp / (tp + fn) if (tp + fn) > 0 else 0
        metrics['npv'] = tn / (tn + fn) if (tn + fn) > 0 else 0  # Negative Predictive Value
        metrics['ppv'] = tp / (tp + fp) if (tp + fp) > 0 else 0  # Positive Predictive Value

        return {k: float(v) for k, v in metrics.items()}

    def evaluate_predictions(self, predictions: pd.DataFrame, threshold: float = 0.5) -> Dict[str, float]:
        """AUC plus threshold metrics for a predictions frame."""
        y_event, scores = _event_and_score(predictions)
        metrics = self.calculate_metrics(y_event, (scores >= threshold).astype(int))
        metrics['roc_auc'] = compute_auc(predictions)
        metrics['threshold'] = float(threshold)
        return metrics


class ModelComparator:
    """Compare multiple models."""

    def __init__(self):
        """Initialize comparator."""
        self.results = {}

    def add_model(self, name: str, metrics: Dict[str, float]):
        """Add (or extend) the metrics recorded for a model."""
        self.results.setdefault(name, {}).update(metrics)

    def compare_models(self, sort_by: str = 'cv_auc') -> pd.DataFrame:
        """Create comparison table."""
        if not self.results:
            return pd.DataFrame()

        comparison_df = pd.DataFrame(self.results).T
        comparison_df.index.name = 'model'

        if sort_by in comparison_df.columns:
            comparison_df = comparison_df.sort_values(sort_by, ascending=False)

        return comparison_df

    def get_best_model(self, metric: str = 'cv_auc') -> Optional[str]:
        """Get name of best performing model."""
        if not self.results:
            return None

        best_score = -1
        best_model = None

        for model_name, metrics in self.results.items():
            score = metrics.get(metric)
            if score is not None and not np.isnan(score) and score > best_score:
                best_score = score
                best_model = model_name

        return best_model
