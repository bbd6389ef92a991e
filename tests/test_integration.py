"""
Integration tests for the comparison pipeline.
"""
import pytest
import numpy as np
import yaml
from sklearn.metrics import auc
from unittest.mock import patch

from subphenotype.data_generation import generate_cohort_data
from subphenotype.data_generation.generate_cohort_data import CohortDataGenerator, save_cohort
from subphenotype.pipeline import comparison_pipeline
from subphenotype.pipeline.comparison_pipeline import SubphenotypeComparisonPipeline
from subphenotype.pipeline.dataset import TARGET_COLUMN
from subphenotype.pipeline.strategies import DEFAULT_STRATEGIES
from subphenotype.utils import model_utils


@pytest.fixture(scope="module")
def completed_run(cohort_files, tmp_path_factory):
    """One full comparison run over the synthetic cohorts with default models."""
    training_path, validation_path = cohort_files
    output_dir = tmp_path_factory.mktemp("reports")
    config = {
        'random_seed': 42,
        'imputation': {'max_iter': 3, 'n_estimators': 10},
        'cross_validation': {'n_splits': 10},
        'experiment_tracking': {'backend': 'none'},
    }

    pipeline = SubphenotypeComparisonPipeline(config)
    metrics = pipeline.run_pipeline(str(training_path), str(validation_path), str(output_dir))
    return pipeline, metrics, output_dir


def test_every_model_gets_cv_and_validation_auc(completed_run):
    """Test that every model reports a CV and a validation AUC."""
    pipeline, metrics, _ = completed_run

    assert set(metrics) == set(DEFAULT_STRATEGIES)
    for name in DEFAULT_STRATEGIES:
        assert 0.0 <= metrics[name]['cv_auc'] <= 1.0
        assert 0.0 <= metrics[name]['validation_auc'] <= 1.0
        assert len(pipeline.cv_results[name].fold_aucs) == 10


def test_predictions_cover_both_cohorts(completed_run, raw_cohorts):
    """Test that predictions cover every record of both cohorts."""
    pipeline, _, _ = completed_run
    raw_train, raw_valid = raw_cohorts

    for name in DEFAULT_STRATEGIES:
        cv_predictions = pipeline.cv_results[name].predictions
        assert list(cv_predictions.index) == list(raw_train['record_id'])
        assert cv_predictions['prob_class0'].between(0, 1).all()

        valid_predictions = pipeline.validation_predictions[name]
        assert list(valid_predictions.index) == list(raw_valid['record_id'])


def test_models_share_fold_assignment(completed_run):
    """Test that all models were cross-validated on the same folds."""
    pipeline, _, _ = completed_run
    folds = [pipeline.cv_results[name].predictions['fold'].to_numpy() for name in DEFAULT_STRATEGIES]
    for fold_ids in folds[1:]:
        np.testing.assert_array_equal(fold_ids, folds[0])


def test_outputs_written(completed_run):
    """Test that plots and metrics.yaml are written."""
    _, metrics, output_dir = completed_run

    for filename in ("cv_roc_curves.png", "validation_roc_curves.png", "rf_feature_importance.png"):
        assert (output_dir / filename).exists()

    with open(output_dir / "metrics.yaml", encoding="utf-8") as f:
        saved = yaml.safe_load(f)

    assert saved['n_training'] == 100
    assert saved['n_validation'] == 40
    assert saved['best_model'] in DEFAULT_STRATEGIES
    assert saved['models']['svm']['cv_auc'] == pytest.approx(metrics['svm']['cv_auc'])
    assert len(saved['fold_aucs']['knn']) == 10


def test_run_requires_paths():
    """Test that a run without cohort paths is rejected."""
    pipeline = SubphenotypeComparisonPipeline({'experiment_tracking': {'backend': 'none'}})
    with pytest.raises(ValueError):
        pipeline.run_pipeline()


def test_main_with_config_file(cohort_files, temp_directory):
    """Test the command line entry point with a config file."""
    training_path, validation_path = cohort_files
    config = {
        'random_seed': 1,
        'data': {'training_path': str(training_path), 'validation_path': str(validation_path)},
        'imputation': {'max_iter': 2, 'n_estimators': 5},
        'models': {'enabled': ['knn', 'naive_bayes']},
        'cross_validation': {'n_splits': 5},
        'experiment_tracking': {'backend': 'none'},
    }
    config_path = temp_directory / "config.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    output_dir = temp_directory / "out"

    exit_code = comparison_pipeline.main(["--config", str(config_path), "--output", str(output_dir)])

    assert exit_code == 0
    saved = yaml.safe_load((output_dir / "metrics.yaml").read_text(encoding="utf-8"))
    assert set(saved['models']) == {'knn', 'naive_bayes'}
    assert not (output_dir / "rf_feature_importance.png").exists()


def test_main_missing_input_file(temp_directory):
    """Test that a missing cohort file gives exit code 1."""
    config = {
        'data': {
            'training_path': str(temp_directory / "missing_training.csv"),
            'validation_path': str(temp_directory / "missing_validation.csv"),
        },
        'experiment_tracking': {'backend': 'none'},
    }
    config_path = temp_directory / "config.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")

    assert comparison_pipeline.main(["--config", str(config_path)]) == 1


def test_main_missing_config(temp_directory):
    """Test that a missing config file gives exit code 1."""
    assert comparison_pipeline.main(["--config", str(temp_directory / "absent.yaml")]) == 1


def test_generate_cohorts_cli(temp_directory):
    """Test the cohort generator entry point."""
    exit_code = generate_cohort_data.main([
        "--n_training", "30", "--n_validation", "12", "--output_dir", str(temp_directory), "--seed", "5",
    ])

    assert exit_code == 0
    with open(temp_directory / "training_cohort.csv", "rb") as f:
        assert f.read(3) == b"\xef\xbb\xbf"
    assert (temp_directory / "validation_cohort.csv").exists()


def test_cv_plot_labelled_with_pooled_auc(completed_run, temp_directory):
    """Test that the cross-validation ROC legend reports the AUC of the plotted pooled curve."""
    pipeline, _, _ = completed_run

    with patch('subphenotype.pipeline.comparison_pipeline.plot_roc_comparison') as mock_plot, \
            patch('subphenotype.pipeline.comparison_pipeline.plot_feature_importance'):
        pipeline.render_plots(temp_directory)

    cv_curves = mock_plot.call_args_list[0][0][0]
    for name, (_, roc, auc_value) in cv_curves.items():
        result = pipeline.cv_results[name]
        assert auc_value == pytest.approx(result.pooled_auc)
        assert auc_value == pytest.approx(auc(roc['fpr'], roc['tpr']))


def test_main_with_rare_positive_class(cohort_files, temp_directory):
    """Test a full run on a training cohort with only 8 hyperinflammatory records."""
    _, validation_path = cohort_files
    raw = CohortDataGenerator(seed=13).generate_cohort(100, hyper_fraction=0.08)
    training_path = save_cohort(raw, temp_directory / "rare_training.csv")
    config = {
        'data': {'training_path': str(training_path), 'validation_path': str(validation_path)},
        'imputation': {'max_iter': 2, 'n_estimators': 5},
        'models': {'enabled': ['knn']},
        'experiment_tracking': {'backend': 'none'},
    }
    config_path = temp_directory / "config.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    output_dir = temp_directory / "out"

    exit_code = comparison_pipeline.main(["--config", str(config_path), "--output", str(output_dir)])

    assert exit_code == 0
    saved = yaml.safe_load((output_dir / "metrics.yaml").read_text(encoding="utf-8"))
    assert saved['n_training'] == 100
    assert len(saved['fold_aucs']['knn']) == 10


def test_load_data_uses_cohort_loader(cohort_files):
    """Test that the pipeline loads cohorts through the shared loader and column names."""
    training_path, validation_path = cohort_files
    pipeline = SubphenotypeComparisonPipeline({'experiment_tracking': {'backend': 'none'}})

    with patch('subphenotype.pipeline.comparison_pipeline.load_cohorts',
               wraps=comparison_pipeline.load_cohorts) as mock_load:
        train, valid = pipeline.load_data(str(training_path), str(validation_path))

    mock_load.assert_called_once_with(str(training_path), str(validation_path))
    assert TARGET_COLUMN == model_utils.TARGET_COLUMN
    assert TARGET_COLUMN in train.columns and TARGET_COLUMN in valid.columns
