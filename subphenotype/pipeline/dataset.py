"""
Cohort loading: reads a cohort CSV into a typed table with the fixed clinical schema.
"""

import logging
import time
from pathlib import Path
from typing import List, Tuple, Union

import pandas as pd

from subphenotype.exceptions import SchemaError
from subphenotype.utils.model_utils import TARGET_COLUMN

logger = logging.getLogger(__name__)

RECORD_ID_COLUMN = 'record_id'

# 0 = hypoinflammatory, 1 = hyperinflammatory
CLASS_LABELS = {0: 'hypoinflammatory', 1: 'hyperinflammatory'}

SEX_COLUMN = 'sex'
SEX_ENCODING = {'F': 0, 'M': 1}

DEMOGRAPHIC_COLUMNS = [SEX_COLUMN, 'age_years']

LAB_VITAL_COLUMNS = [
    'alc_min', 'alc_max',
    'anc_min', 'anc_max',
    'alt_min', 'alt_max',
    'ast_min', 'ast_max',
    'platelets_min', 'platelets_max',
    'hemoglobin_min', 'hemoglobin_max',
    'sodium_min', 'sodium_max',
    'albumin_min', 'albumin_max',
    'creatinine_min', 'creatinine_max',
    'bun_min', 'bun_max',
    'sbp_min', 'sbp_max',
    'dbp_min', 'dbp_max',
    'spo2_min', 'spo2_max',
    'heart_rate_min', 'heart_rate_max',
]

FEATURE_COLUMNS = DEMOGRAPHIC_COLUMNS + LAB_VITAL_COLUMNS
NUMERIC_COLUMNS = ['age_years'] + LAB_VITAL_COLUMNS
BINARY_COLUMNS = [SEX_COLUMN]
EXPECTED_COLUMNS = FEATURE_COLUMNS + [TARGET_COLUMN]


class TabularDataset:
    """Load one cohort CSV and normalize it to the shared feature schema.

    The training cohort is expected to be outcome-complete; only cohorts loaded
    with ``drop_missing_outcome=True`` (the validation cohort) have rows with a
    missing ``Class`` removed.
    """

    def __init__(self, name: str = 'training', drop_missing_outcome: bool = False):
        self.name = name
        self.drop_missing_outcome = drop_missing_outcome

    def load(self, path: Union[str, Path]) -> pd.DataFrame:
        """Read, encode and check a cohort file.

        Args:
            path: CSV file, UTF-8 with or without byte-order mark

        Returns:
            DataFrame indexed by ``record_id`` with ``FEATURE_COLUMNS`` and ``Class``

        Raises:
            OSError: the file is absent or unreadable
            SchemaError: expected columns are absent or ``Class`` is not 0/1
        """
        start_time = time.time()
        p = Path(path)
        logger.info(f"Loading {self.name} cohort from {p}")

        raw = self._read_csv(p)
        self._check_columns(raw, p)

        df = self._set_record_index(raw)
        ignored = [c for c in df.columns if c not in EXPECTED_COLUMNS]
        if ignored:
            logger.debug(f"Ignoring columns outside the schema: {ignored}")
        df = df[EXPECTED_COLUMNS].copy()

        df[SEX_COLUMN] = encode_sex(df[SEX_COLUMN])
        df = coerce_numeric(df, NUMERIC_COLUMNS)
        df = self._prepare_target(df, p)

        elapsed_time = time.time() - start_time
        logger.info(f"Loaded {self.name} cohort: {df.shape[0]} records, "
                    f"{len(FEATURE_COLUMNS)} features in {elapsed_time:.2f} seconds")
        prevalence = df[TARGET_COLUMN].mean() if len(df) else float('nan')
        logger.info(f"Hyperinflammatory prevalence ({self.name}): {prevalence:.3f}")
        return df

    def _read_csv(self, path: Path) -> pd.DataFrame:
        if not path.is_file():
            raise FileNotFoundError(f"Cohort file not found: {path}")
        try:
            return pd.read_csv(path, encoding='utf-8-sig', dtype=str, keep_default_na=True)
        except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise IOError(f"Cannot read cohort file {path}: {e}") from e

    def _check_columns(self, raw: pd.DataFrame, path: Path):
        raw.columns = [str(c).strip() for c in raw.columns]
        missing = [c for c in EXPECTED_COLUMNS if c not in raw.columns]
        if missing:
            raise SchemaError(f"{path}: missing expected columns {missing}",
                              columns=missing, source=str(path))

    def _set_record_index(self, raw: pd.DataFrame) -> pd.DataFrame:
        if RECORD_ID_COLUMN in raw.columns:
            df = raw.set_index(RECORD_ID_COLUMN)
        else:
            df = raw.copy()
            df.index = pd.RangeIndex(len(df))
        df.index.name = RECORD_ID_COLUMN
        return df

    def _prepare_target(self, df: pd.DataFrame, path: Path) -> pd.DataFrame:
        target = pd.to_numeric(df[TARGET_COLUMN], errors='coerce')
        missing_outcome = target.isnull()

        if missing_outcome.any():
            if self.drop_missing_outcome:
                logger.info(f"Dropping {int(missing_outcome.sum())} {self.name} records "
                            f"with missing {TARGET_COLUMN}")
                df = df.loc[~missing_outcome].copy()
                target = target.loc[~missing_outcome]
            else:
                raise SchemaError(
                    f"{path}: {int(missing_outcome.sum())} {self.name} records have a "
                    f"missing {TARGET_COLUMN}; this cohort must be outcome-complete",
                    columns=[TARGET_COLUMN], source=str(path))

        invalid = ~target.isin([0, 1])
        if invalid.any():
            bad_values = sorted(target[invalid].unique().tolist())
            raise SchemaError(f"{path}: {TARGET_COLUMN} must be 0/1, found {bad_values}",
                              columns=[TARGET_COLUMN], source=str(path))

        df[TARGET_COLUMN] = target.astype(int)
        return df


def encode_sex(values: pd.Series) -> pd.Series:
    """Map M/F to 1/0; anything else becomes missing."""
    normalized = values.fillna('').astype(str).str.strip().str.upper()
    return normalized.map(SEX_ENCODING).astype(float)


def coerce_numeric(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """Convert text columns to floats; malformed tokens become NaN."""
    for col in columns:
        original_missing = df[col].isnull()
        df[col] = pd.to_numeric(df[col], errors='coerce').astype(float)
        coerced = int((df[col].isnull() & ~original_missing).sum())
        if coerced:
            logger.warning(f"Column '{col}': {coerced} non-numeric values treated as missing")
    return df


def split_features_target(df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
    """Return the feature matrix and the 0/1 target of a cohort."""
    return df[FEATURE_COLUMNS], df[TARGET_COLUMN].astype(int)


def load_cohorts(training_path, validation_path) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Load the training and validation cohorts independently."""
    train = TabularDataset('training', drop_missing_outcome=False).load(training_path)
    valid = TabularDataset('validation', drop_missing_outcome=True).load(validation_path)
    return train, valid
