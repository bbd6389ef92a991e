"""Pipeline components: loading, imputation, classifier strategies and cross-validation."""

from .dataset import TabularDataset, load_cohorts, split_features_target

from .preprocessing import (
    ForestImputer,
    DataValidator,
    impute_cohort,
)

from .strategies import (
    ClassifierStrategy,
    FittedModel,
    SVMStrategy,
    KNNStrategy,
    GradientBoostedTreesStrategy,
    RandomForestStrategy,
    NaiveBayesStrategy,
    build_strategies,
)

from .cross_validation import FoldAssignment, CrossValidationRunner, CrossValidationResult

from .comparison_pipeline import SubphenotypeComparisonPipeline

__all__ = [
    'TabularDataset',
    'load_cohorts',
    'split_features_target',
    'ForestImputer',
    'DataValidator',
    'impute_cohort',
    'ClassifierStrategy',
    'FittedModel',
    'SVMStrategy',
    'KNNStrategy',
    'GradientBoostedTreesStrategy',
    'RandomForestStrategy',
    'NaiveBayesStrategy',
    'build_strategies',
    'FoldAssignment',
    'CrossValidationRunner',
    'CrossValidationResult',
    'SubphenotypeComparisonPipeline',
]
