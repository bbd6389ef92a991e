"""Test configuration and fixtures."""

import pytest
import pandas as pd
import numpy as np
import tempfile
from pathlib import Path

from subphenotype.data_generation.generate_cohort_data import CohortDataGenerator, save_cohort
from subphenotype.pipeline.dataset import TabularDataset
from subphenotype.pipeline.preprocessing import impute_cohort

# Small forests keep imputation quick in tests
FAST_IMPUTATION = {'max_iter': 3, 'n_estimators': 10}


@pytest.fixture
def temp_directory():
    """Create temporary directory for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture(scope="session")
def raw_cohorts():
    """Synthetic training (100 rows, 50/50) and validation (40 rows) cohorts with 10% missing cells."""
    generator = CohortDataGenerator(seed=7)
    return generator.generate_cohorts(
        n_training=100,
        n_validation=40,
        hyper_fraction=0.5,
        missing_rate=0.1,
    )


@pytest.fixture(scope="session")
def cohort_files(raw_cohorts, tmp_path_factory):
    """Training and validation cohorts written as BOM-prefixed CSV files."""
    directory = tmp_path_factory.mktemp("cohorts")
    train, valid = raw_cohorts
    return (
        save_cohort(train, directory / "training_cohort.csv"),
        save_cohort(valid, directory / "validation_cohort.csv"),
    )


@pytest.fixture(scope="session")
def loaded_cohorts(cohort_files):
    """Cohorts after loading, encoding and outcome checks."""
    training_path, validation_path = cohort_files
    train = TabularDataset('training', drop_missing_outcome=False).load(training_path)
    valid = TabularDataset('validation', drop_missing_outcome=True).load(validation_path)
    return train, valid


@pytest.fixture(scope="session")
def imputed_cohorts(loaded_cohorts):
    """Independently imputed training and validation cohorts."""
    train, valid = loaded_cohorts
    return (
        impute_cohort(train, seed=42, name='training', **FAST_IMPUTATION),
        impute_cohort(valid, seed=42, name='validation', **FAST_IMPUTATION),
    )


@pytest.fixture
def perfect_predictions():
    """Every class-0 record scored 1.0 and every class-1 record scored 0.0."""
    return pd.DataFrame({
        'Class': [0, 0, 0, 1, 1, 1],
        'prob_class0': [1.0, 1.0, 1.0, 0.0, 0.0, 0.0],
    })


@pytest.fixture
def noisy_predictions():
    """Imperfect predictions with a few tied scores."""
    rng = np.random.default_rng(0)
    y = np.array([0] * 30 + [1] * 30)
    scores = np.round(np.clip(0.6 - 0.2 * y + rng.normal(0, 0.2, len(y)), 0, 1), 1)
    return pd.DataFrame({'Class': y, 'prob_class0': scores})


@pytest.fixture
def sample_config(cohort_files, temp_directory):
    """Pipeline configuration pointing at the synthetic cohort files."""
    training_path, validation_path = cohort_files
    return {
        'random_seed': 42,
        'data': {
            'training_path': str(training_path),
            'validation_path': str(validation_path),
        },
        'imputation': dict(FAST_IMPUTATION),
        'cross_validation': {'n_splits': 10},
        'evaluation': {'threshold_method': 'youden_j'},
        'output': {'directory': str(temp_directory / "reports")},
        'experiment_tracking': {'backend': 'none'},
    }
