"""
Comparison plots for ROC curves and random forest feature importance.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import pandas as pd

logger = logging.getLogger(__name__)

MODEL_COLORS = {
    'svm': '#1f77b4',
    'knn': '#ff7f0e',
    'xgboost': '#2ca02c',
    'random_forest': '#d62728',
    'naive_bayes': '#9467bd',
}


def plot_roc_comparison(curves: Dict[str, Tuple[str, pd.DataFrame, float]],
                        title: str,
                        output_path: Union[str, Path],
                        dpi: int = 150) -> Path:
    """
    Overlay one ROC curve per model with its AUC in the legend.

    Args:
        curves: model name -> (display label, ROC frame with ``fpr``/``tpr``, AUC)
        title: Figure title
        output_path: PNG destination
        dpi: Output resolution

    Returns:
        Path of the saved figure
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(7, 6))
    for name, (label, roc, auc_value) in curves.items():
        ax.plot(roc['fpr'], roc['tpr'], lw=1.8, color=MODEL_COLORS.get(name),
                label=f"{label} (AUC = {auc_value:.3f})")

    ax.plot([0, 1], [0, 1], linestyle='--', color='grey', lw=1, label='Chance')
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1.02)
    ax.set_xlabel('1 - Specificity')
    ax.set_ylabel('Sensitivity')
    ax.set_title(title)
    ax.legend(loc='lower right', fontsize=9)
    ax.grid(alpha=0.3)

    fig.tight_layout()
    fig.savefig(output_path, dpi=dpi)
    plt.close(fig)
    logger.info(f"ROC comparison saved to {output_path}")
    return output_path


def plot_feature_importance(importance: pd.Series,
                            output_path: Union[str, Path],
                            top_n: Optional[int] = 20,
                            title: str = 'Random Forest feature importance (impurity)') -> Path:
    """Horizontal bar chart of the ``top_n`` most important features."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    top = importance.sort_values(ascending=False)
    if top_n:
        top = top.head(top_n)

    fig, ax = plt.subplots(figsize=(7, max(3, 0.3 * len(top))))
    ax.barh(top.index[::-1], top.values[::-1], color=MODEL_COLORS['random_forest'])
    ax.set_xlabel('Mean decrease in impurity')
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    logger.info(f"Feature importance plot saved to {output_path}")
    return output_path
