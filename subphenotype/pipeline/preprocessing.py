"""
Data preprocessing utilities for imputing missing clinical values and validating ranges.
"""

import pandas as pd
import logging
import time
from typing import Dict, List, Optional
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.ensemble import RandomForestRegressor
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer

from subphenotype.exceptions import ImputationError
from subphenotype.pipeline.dataset import BINARY_COLUMNS, FEATURE_COLUMNS, TARGET_COLUMN

logger = logging.getLogger(__name__)


class ForestImputer(BaseEstimator, TransformerMixin):
    """Iterative random-forest imputation of missing feature values (missForest style).

    Each column with missing entries is regressed on every other feature column,
    round after round, until the estimates stop changing by more than ``tol`` or
    ``max_iter`` rounds have run. Observed cells are never modified.
    """

    def __init__(self,
                 max_iter: int = 10,
                 n_estimators: int = 100,
                 tol: float = 1e-3,
                 random_state: int = 42,
                 n_jobs: Optional[int] = None):
        """
        Initialize the imputer.

        Args:
            max_iter: Maximum number of imputation rounds
            n_estimators: Trees in each per-column random forest
            tol: Stopping tolerance on the change between rounds
            random_state: Seed shared by the forests and the imputation order
            n_jobs: Parallel jobs for each random forest
        """
        self.max_iter = max_iter
        self.n_estimators = n_estimators
        self.tol = tol
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.imputer_ = None
        self.feature_columns_ = []
        self.missing_columns_ = []

    def fit(self, X: pd.DataFrame, y=None):
        """Fit the per-column forests on the cohort."""
        start_time = time.time()
        logger.info("Fitting forest imputer...")

        self.feature_columns_ = list(X.columns)
        check_no_empty_columns(X)
        self.missing_columns_ = [col for col in X.columns if X[col].isnull().any()]

        if not self.missing_columns_:
            logger.info("No missing values found; imputation not required")
            self.imputer_ = None
            return self

        self.imputer_ = IterativeImputer(
            estimator=RandomForestRegressor(
                n_estimators=self.n_estimators,
                random_state=self.random_state,
                n_jobs=self.n_jobs,
            ),
            max_iter=self.max_iter,
            tol=self.tol,
            initial_strategy='median',
            skip_complete=True,
            random_state=self.random_state,
        )
        self.imputer_.fit(X[self.feature_columns_])

        elapsed_time = time.time() - start_time
        logger.info(f"Fitted forest imputer for {len(self.missing_columns_)} incomplete columns "
                    f"({self.imputer_.n_iter_} rounds) in {elapsed_time:.2f} seconds")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        """Replace missing cells with forest estimates, keeping observed cells as they are."""
        start_time = time.time()
        logger.info("Imputing missing values...")

        X = X[self.feature_columns_]
        missing_mask = X.isnull()
        if not missing_mask.values.any():
            return X.copy()

        check_no_empty_columns(X)
        if self.imputer_ is None:
            raise ImputationError("Imputer was fitted on complete data and cannot impute "
                                  f"columns {missing_mask.any()[missing_mask.any()].index.tolist()}")

        estimates = pd.DataFrame(self.imputer_.transform(X), index=X.index, columns=self.feature_columns_)
        X_imputed = X.where(~missing_mask, estimates)

        # Binary columns stay binary
        for col in BINARY_COLUMNS:
            if col in X_imputed.columns and missing_mask[col].any():
                rows = missing_mask[col]
                X_imputed.loc[rows, col] = X_imputed.loc[rows, col].round().clip(0, 1)

        elapsed_time = time.time() - start_time
        logger.info(f"Imputed {int(missing_mask.values.sum())} cells in {elapsed_time:.2f} seconds")
        return X_imputed


def check_no_empty_columns(X: pd.DataFrame):
    """Raise ``ImputationError`` for any column without a single observed value."""
    empty = [col for col in X.columns if X[col].isnull().all()]
    if empty:
        raise ImputationError(f"Cannot impute columns with no observed values: {empty}", columns=empty)


def impute_cohort(df: pd.DataFrame,
                  seed: int = 42,
                  name: str = 'cohort',
                  **params) -> pd.DataFrame:
    """Impute the feature columns of one cohort with its own fitted imputer.

    ``Class`` is neither used as a predictor nor modified. Returns a new frame with
    the same index and columns as ``df``.
    """
    logger.info(f"Imputing {name} cohort ({len(df)} records)")
    imputer = ForestImputer(random_state=seed, **params)
    features = imputer.fit_transform(df[FEATURE_COLUMNS])

    imputed = df.copy()
    imputed[FEATURE_COLUMNS] = features
    return imputed


class DataValidator:
    """Validate data quality and clinical plausibility."""

    def __init__(self):
        self.validation_rules = {}

    def add_rule(self, feature: str, rule_type: str, **kwargs):
        """Add validation rule for a feature."""
        if feature not in self.validation_rules:
            self.validation_rules[feature] = []

        self.validation_rules[feature].append({
            'type': rule_type,
            'params': kwargs
        })

    def validate(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """Validate dataframe against rules."""
        violations = {}

        for feature, rules in self.validation_rules.items():
            if feature not in df.columns:
                continue

            feature_violations = []

            for rule in rules:
                if rule['type'] == 'range':
                    min_val = rule['params'].get('min')
                    max_val = rule['params'].get('max')

                    if min_val is not None:
                        violation_count = (df[feature] < min_val).sum()
                        if violation_count > 0:
                            feature_violations.append(f"{violation_count} values below minimum {min_val}")

                    if max_val is not None:
                        violation_count = (df[feature] > max_val).sum()
                        if violation_count > 0:
                            feature_violations.append(f"{violation_count} values above maximum {max_val}")

                elif rule['type'] == 'categorical':
                    allowed_values = rule['params'].get('allowed_values', [])
                    observed = df[feature].dropna()
                    violation_count = (~observed.isin(allowed_values)).sum()

                    if violation_count > 0:
                        feature_violations.append(f"{violation_count} invalid categorical values")

                elif rule['type'] == 'missing_rate':
                    max_missing_rate = rule['params'].get('max_rate', 0.5)
                    missing_rate = df[feature].isnull().mean()

                    if missing_rate > max_missing_rate:
                        feature_violations.append(f"Missing rate {missing_rate:.2%} exceeds {max_missing_rate:.2%}")

                elif rule['type'] == 'ordered_pair':
                    # <lab>_min must not exceed <lab>_max
                    upper = rule['params']['upper']
                    if upper in df.columns:
                        violation_count = (df[feature] > df[upper]).sum()
                        if violation_count > 0:
                            feature_violations.append(f"{violation_count} values above {upper}")

            if feature_violations:
                violations[feature] = feature_violations

        return violations

    def setup_clinical_rules(self, max_missing_rate: float = 0.5):
        """Setup plausibility rules for pediatric labs and vital signs."""
        self.add_rule('sex', 'categorical', allowed_values=[0, 1])
        self.add_rule('age_years', 'range', min=0, max=21)

        # Labs (ALC/ANC/platelets in 10^3/uL, ALT/AST in U/L)
        for lab in ['alc', 'anc', 'alt', 'ast', 'platelets', 'creatinine', 'bun']:
            self.add_rule(f'{lab}_min', 'range', min=0)
            self.add_rule(f'{lab}_max', 'range', min=0)
        for lab in ['hemoglobin', 'albumin']:
            self.add_rule(f'{lab}_min', 'range', min=0, max=25)
            self.add_rule(f'{lab}_max', 'range', min=0, max=25)
        self.add_rule('sodium_min', 'range', min=100, max=180)
        self.add_rule('sodium_max', 'range', min=100, max=180)

        # Vital signs
        for vital in ['sbp', 'dbp']:
            self.add_rule(f'{vital}_min', 'range', min=20, max=250)
            self.add_rule(f'{vital}_max', 'range', min=20, max=250)
        self.add_rule('spo2_min', 'range', min=0, max=100)
        self.add_rule('spo2_max', 'range', min=0, max=100)
        self.add_rule('heart_rate_min', 'range', min=20, max=300)
        self.add_rule('heart_rate_max', 'range', min=20, max=300)

        for col in FEATURE_COLUMNS:
            if col.endswith('_min'):
                self.add_rule(col, 'ordered_pair', upper=col[:-len('_min')] + '_max')
            self.add_rule(col, 'missing_rate', max_rate=max_missing_rate)

        self.add_rule(TARGET_COLUMN, 'categorical', allowed_values=[0, 1])


def log_missing_values(df: pd.DataFrame, name: str = 'cohort') -> Dict[str, float]:
    """Log per-column missing rates and return them as a dict."""
    rates = df.isnull().mean()
    rates = rates[rates > 0]
    total = int(df.isnull().values.sum())
    logger.info(f"{name}: {total} missing cells across {len(rates)} columns "
                f"({total / max(df.size, 1):.1%} of all cells)")
    for col, rate in rates.sort_values(ascending=False).items():
        logger.debug(f"  {col}: {rate:.1%} missing")
    return {col: float(rate) for col, rate in rates.items()}

