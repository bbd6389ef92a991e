"""
Classifier strategies

Every model family is wrapped in a ``ClassifierStrategy`` exposing the same
fit / predict_proba contract, so cross-validation and held-out evaluation can
treat SVM, KNN, gradient boosting, random forest and naive Bayes alike.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

import numpy as np
import pandas as pd
from scipy.special import logsumexp
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.ensemble import RandomForestClassifier
from sklearn.neighbors import KernelDensity, KNeighborsClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC
from sklearn.utils.validation import check_is_fitted
import xgboost as xgb

from subphenotype.pipeline.dataset import CLASS_LABELS, FEATURE_COLUMNS, TARGET_COLUMN
from subphenotype.utils.model_utils import PROBABILITY_COLUMN

logger = logging.getLogger(__name__)


class KernelDensityNB(BaseEstimator, ClassifierMixin):
    """Naive Bayes with a Gaussian kernel density estimate per class and feature.

    Bandwidths follow Silverman's rule of thumb on each class/feature sample.
    """

    def __init__(self, kernel: str = 'gaussian', min_bandwidth: float = 1e-3):
        self.kernel = kernel
        self.min_bandwidth = min_bandwidth

    def fit(self, X, y):
        X = np.asarray(X, dtype=float)
        y = np.asarray(y)
        self.classes_ = np.unique(y)
        if len(self.classes_) < 2:
            raise ValueError(f"KernelDensityNB needs two classes, got {self.classes_.tolist()}")

        self.class_log_prior_ = np.log(np.array([np.mean(y == c) for c in self.classes_]))
        self.densities_ = []
        for c in self.classes_:
            X_c = X[y == c]
            self.densities_.append([
                KernelDensity(kernel=self.kernel, bandwidth=self._bandwidth(X_c[:, j])).fit(X_c[:, [j]])
                for j in range(X.shape[1])
            ])
        self.n_features_in_ = X.shape[1]
        return self

    def _bandwidth(self, values: np.ndarray) -> float:
        n = len(values)
        sd = np.std(values, ddof=1) if n > 1 else 0.0
        iqr = np.subtract(*np.percentile(values, [75, 25]))
        spread = min(sd, iqr / 1.34) if iqr > 0 else sd
        if spread <= 0:
            spread = abs(np.mean(values)) or 1.0
        return max(0.9 * spread * n ** (-0.2), self.min_bandwidth)

    def _joint_log_likelihood(self, X) -> np.ndarray:
        check_is_fitted(self, 'densities_')
        X = np.asarray(X, dtype=float)
        jll = np.zeros((X.shape[0], len(self.classes_)))
        for i, class_densities in enumerate(self.densities_):
            jll[:, i] = self.class_log_prior_[i]
            for j, kde in enumerate(class_densities):
                jll[:, i] += kde.score_samples(X[:, [j]])
        return jll

    def predict_proba(self, X) -> np.ndarray:
        jll = self._joint_log_likelihood(X)
        return np.exp(jll - logsumexp(jll, axis=1, keepdims=True))

    def predict(self, X) -> np.ndarray:
        return self.classes_[np.argmax(self._joint_log_likelihood(X), axis=1)]


@dataclass
class FittedModel:
    """A trained estimator plus what is needed to score new records."""
    strategy_name: str
    estimator: Any
    feature_columns: List[str]
    class0_index: int
    fit_seconds: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)


class ClassifierStrategy(ABC):
    """Uniform fit / predict_proba contract over one model family.

    Targets are held as 0/1 internally. Strategies with ``target_encoding ==
    'categorical'`` receive class names at the estimator boundary, strategies
    with ``'numeric'`` receive the 0/1 integers.
    """

    name: str = ''
    label: str = ''
    target_encoding: str = 'categorical'

    def __init__(self, random_state: int = 42, n_jobs: Optional[int] = None):
        self.random_state = random_state
        self.n_jobs = n_jobs

    @abstractmethod
    def build_estimator(self):
        """Return a fresh, unfitted estimator."""

    def encode_target(self, y: pd.Series) -> np.ndarray:
        y = y.astype(int)
        if self.target_encoding == 'numeric':
            return y.to_numpy()
        return y.map(CLASS_LABELS).to_numpy()

    def class0_value(self):
        return 0 if self.target_encoding == 'numeric' else CLASS_LABELS[0]

    def fit(self, train: pd.DataFrame, feature_columns: Optional[List[str]] = None) -> FittedModel:
        """Train a new estimator on an imputed cohort."""
        start_time = time.time()
        feature_columns = list(feature_columns or FEATURE_COLUMNS)
        X = train[feature_columns]
        y = self.encode_target(train[TARGET_COLUMN])

        estimator = self.build_estimator()
        estimator.fit(X, y)

        classes = list(estimator.classes_)
        fitted = FittedModel(
            strategy_name=self.name,
            estimator=estimator,
            feature_columns=feature_columns,
            class0_index=classes.index(self.class0_value()),
            fit_seconds=time.time() - start_time,
        )
        logger.debug(f"Fitted {self.label} on {len(train)} records in {fitted.fit_seconds:.2f} seconds")
        return fitted

    def predict_proba(self, model: FittedModel, data: pd.DataFrame) -> pd.DataFrame:
        """Score records; one row per record with its true ``Class`` and P(class = 0)."""
        proba = model.estimator.predict_proba(data[model.feature_columns])
        predictions = pd.DataFrame(
            {
                TARGET_COLUMN: data[TARGET_COLUMN].astype(int).to_numpy(),
                PROBABILITY_COLUMN: proba[:, model.class0_index],
            },
            index=data.index,
        )
        return predictions

    def __repr__(self):
        return f"{self.__class__.__name__}(random_state={self.random_state})"


class SVMStrategy(ClassifierStrategy):
    """Linear-kernel support vector machine on standardized features."""
    name = 'svm'
    label = 'SVM'

    def __init__(self, cost: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        self.cost = cost

    def build_estimator(self):
        return Pipeline([
            ('scaler', StandardScaler()),
            ('model', SVC(kernel='linear', C=self.cost, probability=True, random_state=self.random_state)),
        ])


class KNNStrategy(ClassifierStrategy):
    """k-nearest neighbors on standardized features."""
    name = 'knn'
    label = 'KNN'

    def __init__(self, n_neighbors: int = 5, **kwargs):
        super().__init__(**kwargs)
        self.n_neighbors = n_neighbors

    def build_estimator(self):
        return Pipeline([
            ('scaler', StandardScaler()),
            ('model', KNeighborsClassifier(n_neighbors=self.n_neighbors, n_jobs=self.n_jobs)),
        ])


class GradientBoostedTreesStrategy(ClassifierStrategy):
    """XGBoost ensemble; the only family trained on a numeric 0/1 target."""
    name = 'xgboost'
    label = 'XGBoost'
    target_encoding = 'numeric'

    def __init__(self,
                 n_estimators: int = 1000,
                 max_depth: int = 6,
                 min_child_weight: float = 10,
                 learning_rate: float = 0.01,
                 **kwargs):
        super().__init__(**kwargs)
        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.min_child_weight = min_child_weight
        self.learning_rate = learning_rate

    def build_estimator(self):
        return xgb.XGBClassifier(
            n_estimators=self.n_estimators,
            max_depth=self.max_depth,
            min_child_weight=self.min_child_weight,
            learning_rate=self.learning_rate,
            objective='binary:logistic',
            eval_metric='logloss',
            tree_method='hist',
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )


class RandomForestStrategy(ClassifierStrategy):
    """Random forest with impurity-based feature importance."""
    name = 'random_forest'
    label = 'Random Forest'

    def __init__(self, n_estimators: int = 1000, **kwargs):
        super().__init__(**kwargs)
        self.n_estimators = n_estimators

    def build_estimator(self):
        return RandomForestClassifier(
            n_estimators=self.n_estimators,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )

    def fit(self, train: pd.DataFrame, feature_columns: Optional[List[str]] = None) -> FittedModel:
        fitted = super().fit(train, feature_columns)
        fitted.metadata['feature_importance'] = self.feature_importances(fitted)
        return fitted

    @staticmethod
    def feature_importances(model: FittedModel) -> pd.Series:
        """Mean decrease in impurity per feature, largest first."""
        return pd.Series(
            model.estimator.feature_importances_, index=model.feature_columns, name='importance'
        ).sort_values(ascending=False)


class NaiveBayesStrategy(ClassifierStrategy):
    """Naive Bayes with kernel density per-feature likelihoods."""
    name = 'naive_bayes'
    label = 'Naive Bayes'

    def build_estimator(self):
        return KernelDensityNB()


STRATEGY_REGISTRY: Dict[str, Type[ClassifierStrategy]] = {
    SVMStrategy.name: SVMStrategy,
    KNNStrategy.name: KNNStrategy,
    GradientBoostedTreesStrategy.name: GradientBoostedTreesStrategy,
    RandomForestStrategy.name: RandomForestStrategy,
    NaiveBayesStrategy.name: NaiveBayesStrategy,
}

DEFAULT_STRATEGIES = list(STRATEGY_REGISTRY)


def build_strategies(names: Optional[List[str]] = None,
                     random_state: int = 42,
                     n_jobs: Optional[int] = None,
                     params: Optional[Dict[str, Dict[str, Any]]] = None) -> List[ClassifierStrategy]:
    """Instantiate strategies by registry name, in the order given.

    ``params`` maps a strategy name to keyword overrides for its constructor.
    """
    names = names or DEFAULT_STRATEGIES
    params = params or {}
    strategies = []
    for name in names:
        if name not in STRATEGY_REGISTRY:
            raise ValueError(f"Unknown strategy: {name}. Available: {DEFAULT_STRATEGIES}")
        strategy_cls = STRATEGY_REGISTRY[name]
        strategies.append(strategy_cls(random_state=random_state, n_jobs=n_jobs, **params.get(name, {})))
    logger.info(f"Classifier strategies: {[s.label for s in strategies]}")
    return strategies
