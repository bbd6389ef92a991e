"""
Subphenotype Classifier Comparison

Imputes missing clinical values in a training and a validation cohort, then
compares SVM, KNN, XGBoost, random forest and kernel naive Bayes classifiers
for predicting the hyperinflammatory subphenotype, by cross-validation and on
the held-out validation cohort.
"""

__version__ = "1.0.0"

from .exceptions import SubphenotypePipelineError, SchemaError, ImputationError
from .data_generation import CohortDataGenerator
from .pipeline import (
    TabularDataset,
    ForestImputer,
    ClassifierStrategy,
    CrossValidationRunner,
    SubphenotypeComparisonPipeline
)
from .utils import (
    compute_roc,
    compute_auc,
    ModelComparator
)

__all__ = [
    'SubphenotypePipelineError',
    'SchemaError',
    'ImputationError',
    'CohortDataGenerator',
    'TabularDataset',
    'ForestImputer',
    'ClassifierStrategy',
    'CrossValidationRunner',
    'SubphenotypeComparisonPipeline',
    'compute_roc',
    'compute_auc',
    'ModelComparator'
]
