"""
Main Comparison Pipeline
"""

from __future__ import annotations

import warnings
# IterativeImputer warns on every cohort that hits max_iter
warnings.filterwarnings("ignore", message=".*Early stopping criterion not reached.*")

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import yaml
from tqdm import tqdm

from subphenotype.exceptions import SubphenotypePipelineError
from subphenotype.pipeline.cross_validation import CrossValidationResult, CrossValidationRunner, FoldAssignment
from subphenotype.pipeline.dataset import load_cohorts
from subphenotype.pipeline.preprocessing import DataValidator, impute_cohort, log_missing_values
from subphenotype.pipeline.strategies import (
    ClassifierStrategy, FittedModel, RandomForestStrategy, build_strategies
)
from subphenotype.utils.experiment_tracking import setup_experiment_tracking, tracking_run
from subphenotype.utils.model_utils import (
    ModelComparator, ModelEvaluator, ThresholdOptimizer, compute_auc, compute_roc
)
from subphenotype.utils.plotting import plot_feature_importance, plot_roc_comparison

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/pipeline_config.yaml"


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    """Read the YAML configuration; a missing path yields an empty config."""
    if not config_path:
        return {}
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def convert_numpy_types(obj):
    """Convert numpy types to native Python types for YAML serialization."""
    if isinstance(obj, dict):
        return {str(k): convert_numpy_types(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy_types(v) for v in obj]
    elif hasattr(obj, 'item'):  # numpy scalar
        return obj.item()
    elif hasattr(obj, 'tolist'):  # numpy array
        return obj.tolist()
    return obj


# =====================
# SubphenotypeComparisonPipeline
# =====================
class SubphenotypeComparisonPipeline:
    """Impute both cohorts, then cross-validate and externally validate every classifier strategy."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.seed = int(self.config.get("random_seed", 42))
        self.n_jobs = self.config.get("processing", {}).get("n_jobs", 1)

        self.strategies: List[ClassifierStrategy] = []
        self.folds: Optional[FoldAssignment] = None
        self.cv_results: Dict[str, CrossValidationResult] = {}
        self.validation_predictions: Dict[str, pd.DataFrame] = {}
        self.models: Dict[str, FittedModel] = {}
        self.comparator = ModelComparator()

        eval_cfg = self.config.get("evaluation", {})
        self.threshold_optimizer = ThresholdOptimizer(method=eval_cfg.get("threshold_method", "youden_j"))
        self.experiment_tracker = setup_experiment_tracking(self.config)

    # ---------- Data ----------
    def load_data(self, training_path: str, validation_path: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Load both cohorts independently; only the validation cohort drops missing outcomes."""
        return load_cohorts(training_path, validation_path)

    def validate_data(self, df: pd.DataFrame, name: str) -> Dict[str, List[str]]:
        logger.info(f"Validating {name} data quality...")
        validator = DataValidator()
        validator.setup_clinical_rules(
            max_missing_rate=self.config.get("imputation", {}).get("max_missing_rate", 0.5)
        )
        violations = validator.validate(df)
        if violations:
            logger.warning(f"Found {len(violations)} data quality issues in {name} cohort")
            for feature, issues in violations.items():
                logger.warning(f"  {feature}: {'; '.join(issues)}")
        else:
            logger.info(f"{name} data validation passed")
        log_missing_values(df, name)
        return violations

    # ---------- Imputation ----------
    def impute(self, train: pd.DataFrame, valid: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Impute each cohort with its own imputer so no information crosses cohorts."""
        imp_cfg = self.config.get("imputation", {})
        params = {
            "max_iter": imp_cfg.get("max_iter", 10),
            "n_estimators": imp_cfg.get("n_estimators", 100),
            "tol": imp_cfg.get("tol", 1e-3),
            "n_jobs": self.n_jobs,
        }
        train_imputed = impute_cohort(train, seed=self.seed, name="training", **params)
        valid_imputed = impute_cohort(valid, seed=self.seed, name="validation", **params)
        return train_imputed, valid_imputed

    # ---------- Strategies ----------
    def build_strategies(self) -> List[ClassifierStrategy]:
        model_cfg = self.config.get("models", {})
        self.strategies = build_strategies(
            names=model_cfg.get("enabled"),
            random_state=self.seed,
            n_jobs=self.n_jobs,
            params=model_cfg.get("params"),
        )
        return self.strategies

    # ---------- Cross-validation ----------
    def cross_validate(self, train: pd.DataFrame) -> Dict[str, CrossValidationResult]:
        cv_cfg = self.config.get("cross_validation", {})
        runner = CrossValidationRunner(
            n_splits=cv_cfg.get("n_splits", 10),
            random_state=self.seed,
            n_jobs=cv_cfg.get("n_jobs", 1),
        )
        # One partition for every strategy
        self.folds = runner.create_folds(train)

        for strategy in tqdm(self.strategies, desc="Cross-validation", unit="model"):
            result = runner.run(strategy, train, folds=self.folds)
            self.cv_results[strategy.name] = result
            self.comparator.add_model(strategy.name, {
                "cv_auc": result.mean_auc,
                "cv_auc_std": result.std_auc,
                "cv_pooled_auc": result.pooled_auc,
            })
        return self.cv_results

    # ---------- Held-out evaluation ----------
    def evaluate_holdout(self, train: pd.DataFrame, valid: pd.DataFrame) -> Dict[str, pd.DataFrame]:
        """Fit each strategy once on the full training cohort and score the validation cohort."""
        evaluator = ModelEvaluator()

        for strategy in tqdm(self.strategies, desc="Validation", unit="model"):
            logger.info(f"Fitting {strategy.label} on the full training cohort")
            model = strategy.fit(train)
            predictions = strategy.predict_proba(model, valid)
            self.models[strategy.name] = model
            self.validation_predictions[strategy.name] = predictions

            metrics = {"validation_auc": compute_auc(predictions)}
            if strategy.name in self.cv_results:
                threshold = self.threshold_optimizer.optimize_predictions(
                    self.cv_results[strategy.name].predictions
                )
                threshold_metrics = evaluator.evaluate_predictions(predictions, threshold)
                for key in ("threshold", "sensitivity", "specificity", "accuracy", "ppv", "npv"):
                    metrics[f"validation_{key}"] = threshold_metrics[key]
            self.comparator.add_model(strategy.name, metrics)
            logger.info(f"{strategy.label} validation AUC: {metrics['validation_auc']:.3f}")

        return self.validation_predictions

    # ---------- Reporting ----------
    def render_plots(self, output_dir: Path) -> List[Path]:
        labels = {s.name: s.label for s in self.strategies}
        paths = []

        if self.cv_results:
            cv_curves = {
                name: (labels[name], compute_roc(result.predictions), result.pooled_auc)
                for name, result in self.cv_results.items()
            }
            n_splits = self.folds.n_splits if self.folds is not None else "k"
            paths.append(plot_roc_comparison(
                cv_curves,
                f"{n_splits}-fold cross-validation ROC (pooled out-of-fold, training cohort)",
                output_dir / "cv_roc_curves.png",
            ))

        if self.validation_predictions:
            valid_curves = {
                name: (labels[name], compute_roc(predictions), compute_auc(predictions))
                for name, predictions in self.validation_predictions.items()
            }
            paths.append(plot_roc_comparison(
                valid_curves, "Validation cohort ROC", output_dir / "validation_roc_curves.png"
            ))

        rf_model = self.models.get(RandomForestStrategy.name)
        if rf_model is not None:
            paths.append(plot_feature_importance(
                rf_model.metadata["feature_importance"], output_dir / "rf_feature_importance.png"
            ))
        return paths

    def summarize(self) -> pd.DataFrame:
        table = self.comparator.compare_models(sort_by="cv_auc")
        if table.empty:
            return table

        display_cols = [c for c in ("cv_auc", "cv_auc_std", "validation_auc") if c in table.columns]
        logger.info("AUC comparison:\n" + table[display_cols].to_string(float_format=lambda v: f"{v:.3f}"))
        best = self.comparator.get_best_model("cv_auc")
        if best is not None:
            logger.info(f"Best model by cross-validation AUC: {best}")
        return table

    def save_metrics(self, output_dir: Path, metrics: Dict[str, Any]) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / "metrics.yaml"
        path.write_text(yaml.safe_dump(convert_numpy_types(metrics), sort_keys=False), encoding="utf-8")
        logger.info(f"Metrics written to {path}")
        return path

    # ---------- Orchestration ----------
    def run_pipeline(self,
                     training_path: Optional[str] = None,
                     validation_path: Optional[str] = None,
                     output_dir: Optional[str] = None) -> Dict[str, Dict[str, float]]:
        """Run the whole comparison and return per-model metrics."""
        data_cfg = self.config.get("data", {})
        training_path = training_path or data_cfg.get("training_path")
        validation_path = validation_path or data_cfg.get("validation_path")
        if not training_path or not validation_path:
            raise ValueError("Both training and validation cohort paths are required")
        output = Path(output_dir or self.config.get("output", {}).get("directory", "./reports"))

        logger.info("Starting subphenotype classifier comparison...")
        with tracking_run(self.experiment_tracker, self.config.get("run_name")):
            if self.experiment_tracker:
                self.experiment_tracker.log_params(self.config)

            train, valid = self.load_data(training_path, validation_path)
            self.validate_data(train, "training")
            self.validate_data(valid, "validation")

            train_imputed, valid_imputed = self.impute(train, valid)

            self.build_strategies()
            self.cross_validate(train_imputed)
            self.evaluate_holdout(train_imputed, valid_imputed)

            table = self.summarize()
            metrics = {name: row.dropna().to_dict() for name, row in table.iterrows()}
            metrics_out = {
                "models": metrics,
                "best_model": self.comparator.get_best_model("cv_auc"),
                "fold_aucs": {name: r.fold_aucs for name, r in self.cv_results.items()},
                "n_training": len(train_imputed),
                "n_validation": len(valid_imputed),
            }

            report_paths = self.render_plots(output)
            report_paths.append(self.save_metrics(output, metrics_out))

            if self.experiment_tracker:
                self.experiment_tracker.log_model_metrics(metrics)
                for name, result in self.cv_results.items():
                    self.experiment_tracker.log_fold_aucs(name, result.fold_aucs)
                self.experiment_tracker.log_reports(report_paths)

        logger.info("Pipeline completed successfully!")
        return metrics


# =====================
# CLI entrypoint
# =====================

def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    parser = argparse.ArgumentParser(description="Compare classifiers for subphenotype prediction")
    parser.add_argument("--config", type=str, default=DEFAULT_CONFIG_PATH, help="Path to pipeline configuration file")
    parser.add_argument("--output", type=str, default=None, help="Output directory for plots and metrics")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        np.random.seed(config.get("random_seed", 42))

        pipeline = SubphenotypeComparisonPipeline(config)
        pipeline.run_pipeline(output_dir=args.output)
    except (OSError, ValueError, SubphenotypePipelineError) as e:
        logger.error(f"Pipeline aborted: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
