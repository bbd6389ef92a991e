"""
Synthetic Cohort Generator

Generates synthetic pediatric cohorts with the clinical feature schema used by
the comparison pipeline. Hyperinflammatory records are shifted toward lower
lymphocyte and platelet counts, higher transaminases, lower albumin and sodium
and lower blood pressure, so that classifiers have signal to find.
"""

import argparse
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import yaml

from subphenotype.pipeline.dataset import FEATURE_COLUMNS, RECORD_ID_COLUMN, TARGET_COLUMN

logger = logging.getLogger(__name__)

# (hypoinflammatory mean, hyperinflammatory mean, sd, lower bound, upper bound)
LAB_PROFILES: Dict[str, Tuple[float, float, float, float, float]] = {
    'alc': (2.2, 0.8, 0.6, 0.05, 8.0),
    'anc': (6.0, 9.5, 2.5, 0.1, 30.0),
    'alt': (35.0, 75.0, 20.0, 5.0, 600.0),
    'ast': (40.0, 80.0, 20.0, 5.0, 600.0),
    'platelets': (260.0, 140.0, 60.0, 10.0, 900.0),
    'hemoglobin': (11.5, 10.2, 1.3, 5.0, 18.0),
    'sodium': (137.0, 132.0, 3.0, 115.0, 160.0),
    'albumin': (3.6, 2.8, 0.4, 1.0, 5.5),
    'creatinine': (0.45, 0.75, 0.2, 0.1, 5.0),
    'bun': (10.0, 18.0, 5.0, 1.0, 120.0),
    'sbp': (102.0, 88.0, 10.0, 40.0, 180.0),
    'dbp': (60.0, 48.0, 8.0, 20.0, 120.0),
    'spo2': (97.0, 93.0, 2.0, 60.0, 100.0),
    'heart_rate': (115.0, 140.0, 18.0, 40.0, 250.0),
}


class CohortDataGenerator:
    """Generate synthetic cohorts with min/max lab and vital-sign features."""

    def __init__(self, seed: int = 42, separation: float = 1.0):
        """
        Args:
            seed: Random seed for reproducibility
            separation: Scales the distance between the two subphenotype means
        """
        self.seed = seed
        self.separation = separation
        self.rng = np.random.default_rng(seed)

    def generate_cohort(self,
                        n_records: int,
                        hyper_fraction: float = 0.5,
                        missing_rate: float = 0.0,
                        missing_outcome_rate: float = 0.0) -> pd.DataFrame:
        """
        Generate one cohort.

        Args:
            n_records: Number of records
            hyper_fraction: Share of hyperinflammatory (``Class`` = 1) records
            missing_rate: Share of feature cells set to missing, at random
            missing_outcome_rate: Share of records whose ``Class`` is set to missing

        Returns:
            DataFrame with ``record_id``, sex as M/F, the numeric features and ``Class``
        """
        n_hyper = int(round(n_records * hyper_fraction))
        classes = np.array([1] * n_hyper + [0] * (n_records - n_hyper))
        self.rng.shuffle(classes)

        data = {
            RECORD_ID_COLUMN: [f'R{i:05d}' for i in range(n_records)],
            'sex': self.rng.choice(['M', 'F'], size=n_records, p=[0.58, 0.42]),
            'age_years': np.round(np.clip(self.rng.normal(9.0, 4.0, n_records), 0.2, 20.9), 1),
        }

        for lab, (hypo_mean, hyper_mean, sd, lower, upper) in LAB_PROFILES.items():
            shift = (hyper_mean - hypo_mean) * self.separation
            centre = hypo_mean + shift * classes
            low = centre - np.abs(self.rng.normal(0.5 * sd, 0.25 * sd, n_records))
            high = centre + np.abs(self.rng.normal(0.5 * sd, 0.25 * sd, n_records))
            noise = self.rng.normal(0, sd, n_records)
            low = np.clip(low + noise, lower, upper)
            high = np.clip(np.maximum(high + noise, low), lower, upper)
            data[f'{lab}_min'] = np.round(low, 2)
            data[f'{lab}_max'] = np.round(high, 2)

        df = pd.DataFrame(data)
        df[TARGET_COLUMN] = classes

        if missing_rate > 0:
            df = self.add_missing_values(df, missing_rate)
        if missing_outcome_rate > 0:
            mask = self.rng.random(n_records) < missing_outcome_rate
            df[TARGET_COLUMN] = df[TARGET_COLUMN].astype('Int64').mask(mask)

        logger.info(f"Generated cohort: {n_records} records, {n_hyper} hyperinflammatory, "
                    f"{int(df[FEATURE_COLUMNS].isnull().values.sum())} missing feature cells")
        return df

    def add_missing_values(self, df: pd.DataFrame, missing_rate: float) -> pd.DataFrame:
        """Null a random share of feature cells, keeping at least one observed value per column."""
        df = df.copy()
        mask = self.rng.random((len(df), len(FEATURE_COLUMNS))) < missing_rate
        for j, col in enumerate(FEATURE_COLUMNS):
            col_mask = mask[:, j]
            if col_mask.all():
                col_mask[self.rng.integers(len(df))] = False
            df[col] = df[col].mask(col_mask)
        return df

    def generate_cohorts(self,
                         n_training: int = 100,
                         n_validation: int = 40,
                         hyper_fraction: float = 0.5,
                         missing_rate: float = 0.1,
                         validation_missing_outcome_rate: float = 0.0) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Generate an outcome-complete training cohort and a validation cohort."""
        train = self.generate_cohort(n_training, hyper_fraction, missing_rate)
        valid = self.generate_cohort(n_validation, hyper_fraction, missing_rate,
                                     missing_outcome_rate=validation_missing_outcome_rate)
        valid[RECORD_ID_COLUMN] = [f'V{i:05d}' for i in range(len(valid))]
        return train, valid


def save_cohort(df: pd.DataFrame, path, with_bom: bool = True) -> Path:
    """Write a cohort CSV (UTF-8, optionally with byte-order mark)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False, encoding='utf-8-sig' if with_bom else 'utf-8')
    logger.info(f"Saved {len(df)} records to {path}")
    return path


def main(argv: Optional[list] = None):
    """Main function for command-line usage."""
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Generate synthetic training and validation cohorts")
    parser.add_argument("--n_training", type=int, default=100, help="Records in the training cohort")
    parser.add_argument("--n_validation", type=int, default=40, help="Records in the validation cohort")
    parser.add_argument("--hyper_fraction", type=float, default=0.5, help="Share of hyperinflammatory records")
    parser.add_argument("--missing_rate", type=float, default=0.1, help="Share of feature cells set to missing")
    parser.add_argument("--output_dir", type=str, default="./data/raw", help="Output directory")
    parser.add_argument("--config", type=str, default=None, help="Pipeline config (reads random_seed)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (overrides config)")
    args = parser.parse_args(argv)

    seed = 42
    if args.config and Path(args.config).exists():
        with open(args.config, 'r', encoding='utf-8') as f:
            seed = (yaml.safe_load(f) or {}).get('random_seed', seed)
    if args.seed is not None:
        seed = args.seed

    generator = CohortDataGenerator(seed=seed)
    train, valid = generator.generate_cohorts(
        n_training=args.n_training,
        n_validation=args.n_validation,
        hyper_fraction=args.hyper_fraction,
        missing_rate=args.missing_rate,
    )

    output_dir = Path(args.output_dir)
    save_cohort(train, output_dir / "training_cohort.csv")
    save_cohort(valid, output_dir / "validation_cohort.csv")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
