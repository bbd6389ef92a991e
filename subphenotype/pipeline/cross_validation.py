"""
K-fold cross-validation shared by all classifier strategies.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import KFold, StratifiedKFold

from subphenotype.pipeline.dataset import TARGET_COLUMN
from subphenotype.pipeline.strategies import ClassifierStrategy
from subphenotype.utils.model_utils import compute_auc

logger = logging.getLogger(__name__)


@dataclass
class FoldAssignment:
    """Fold label per row of the training cohort.

    Built once per run and handed to every strategy so that all models are
    scored on identical partitions.
    """
    fold_ids: np.ndarray
    n_splits: int = 10
    random_state: int = 42

    @classmethod
    def create(cls, data: pd.DataFrame, n_splits: int = 10, random_state: int = 42) -> 'FoldAssignment':
        """Partition rows into ``n_splits`` disjoint folds.

        Folds are class-stratified when every class has at least ``n_splits``
        records. Otherwise a seeded, unstratified ``KFold`` is used; folds
        without both classes then score a ``nan`` AUC.

        Raises:
            ValueError: the cohort has fewer records than ``n_splits``
        """
        y = data[TARGET_COLUMN].astype(int).to_numpy()
        if len(y) < n_splits:
            raise ValueError(f"Cannot build {n_splits} folds from {len(y)} records")

        min_class_count = int(np.bincount(y, minlength=2).min())
        if min_class_count < n_splits:
            logger.warning(f"Rarest class has {min_class_count} records (< {n_splits} folds); "
                           f"using unstratified folds")
            splitter = KFold(n_splits=n_splits, shuffle=True, random_state=random_state)
        else:
            splitter = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=random_state)

        fold_ids = np.empty(len(y), dtype=int)
        for fold, (_, test_idx) in enumerate(splitter.split(np.zeros(len(y)), y)):
            fold_ids[test_idx] = fold

        logger.info(f"Created {n_splits} folds (seed={random_state}), sizes: "
                    f"{np.bincount(fold_ids, minlength=n_splits).tolist()}")
        return cls(fold_ids=fold_ids, n_splits=n_splits, random_state=random_state)

    def splits(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        """Yield positional (train, test) indices fold by fold."""
        for fold in range(self.n_splits):
            test_mask = self.fold_ids == fold
            yield np.flatnonzero(~test_mask), np.flatnonzero(test_mask)

    def __len__(self):
        return len(self.fold_ids)


@dataclass
class CrossValidationResult:
    """Out-of-fold predictions and per-fold AUCs of one strategy."""
    strategy_name: str
    predictions: pd.DataFrame
    fold_aucs: List[float] = field(default_factory=list)

    @property
    def mean_auc(self) -> float:
        return float(np.nanmean(self.fold_aucs)) if self.fold_aucs else float('nan')

    @property
    def std_auc(self) -> float:
        return float(np.nanstd(self.fold_aucs)) if self.fold_aucs else float('nan')

    @property
    def pooled_auc(self) -> float:
        """AUC over the concatenated out-of-fold predictions."""
        return compute_auc(self.predictions)


def _fit_predict_fold(strategy: ClassifierStrategy,
                      data: pd.DataFrame,
                      fold: int,
                      train_idx: np.ndarray,
                      test_idx: np.ndarray) -> Tuple[int, pd.DataFrame]:
    model = strategy.fit(data.iloc[train_idx])
    predictions = strategy.predict_proba(model, data.iloc[test_idx])
    predictions['fold'] = fold
    return fold, predictions


class CrossValidationRunner:
    """Fit a strategy on k-1 folds and score the held-out fold, k times."""

    def __init__(self, n_splits: int = 10, random_state: int = 42, n_jobs: Optional[int] = 1):
        self.n_splits = n_splits
        self.random_state = random_state
        self.n_jobs = n_jobs

    def create_folds(self, data: pd.DataFrame) -> FoldAssignment:
        return FoldAssignment.create(data, n_splits=self.n_splits, random_state=self.random_state)

    def run(self,
            strategy: ClassifierStrategy,
            data: pd.DataFrame,
            folds: Optional[FoldAssignment] = None) -> CrossValidationResult:
        """Cross-validate ``strategy`` on an imputed cohort.

        Args:
            strategy: Classifier strategy to evaluate
            data: Imputed training cohort
            folds: Shared fold assignment; created from ``n_splits``/``random_state`` if omitted

        Returns:
            Result holding exactly one out-of-fold prediction per record, in the
            cohort's row order, plus the AUC of every fold
        """
        start_time = time.time()
        if folds is None:
            folds = self.create_folds(data)
        if len(folds) != len(data):
            raise ValueError(f"Fold assignment covers {len(folds)} rows, cohort has {len(data)}")

        logger.info(f"Cross-validating {strategy.label} with {folds.n_splits} folds")
        fold_outputs = Parallel(n_jobs=self.n_jobs)(
            delayed(_fit_predict_fold)(strategy, data, fold, train_idx, test_idx)
            for fold, (train_idx, test_idx) in enumerate(folds.splits())
        )
        fold_outputs = sorted(fold_outputs, key=lambda item: item[0])

        fold_aucs = []
        for fold, predictions in fold_outputs:
            auc = compute_auc(predictions)
            fold_aucs.append(auc)
            logger.debug(f"{strategy.label} fold {fold + 1}/{folds.n_splits}: AUC={auc:.3f}")

        # Restore cohort row order
        positions = np.concatenate([test_idx for _, test_idx in folds.splits()])
        predictions = pd.concat([p for _, p in fold_outputs]).iloc[np.argsort(positions, kind='stable')]

        result = CrossValidationResult(
            strategy_name=strategy.name,
            predictions=predictions,
            fold_aucs=fold_aucs,
        )
        elapsed_time = time.time() - start_time
        logger.info(f"{strategy.label} CV AUC: {result.mean_auc:.3f} ± {result.std_auc:.3f} "
                    f"({elapsed_time:.2f} seconds)")
        return result
