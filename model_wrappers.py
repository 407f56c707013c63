"""Cross-validated k-NN and multinomial logistic regression on reduced features."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import GridSearchCV, StratifiedKFold
from sklearn.neighbors import KNeighborsClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from error_handling import (
    MalformedFeatureDataError,
    MalformedLabelDataError,
    UnsupportedMethodError,
)
from pipeline_config import PipelineConfig

LOGGER = logging.getLogger("histolearn.models")


@dataclass(frozen=True)
class FittedClassifier:
    """Final estimator refit on all training rows after hyperparameter selection.

    ``estimator`` is a scaler + classifier pipeline, so callers only ever pass the
    raw reduced features.
    """

    kind: str
    estimator: Pipeline
    classes: List[object]
    features: List[str]
    best_params: Dict[str, object]
    cv_score: float
    n_splits: int
    cv_results: pd.DataFrame = field(repr=False)

    def _frame(self, X: object) -> pd.DataFrame:
        matrix = np.asarray(X, dtype=float)
        if matrix.ndim != 2 or matrix.shape[1] != len(self.features):
            raise MalformedFeatureDataError(
                f"Classifier expects {len(self.features)} reduced features, got shape {matrix.shape}."
            )
        return pd.DataFrame(matrix, columns=self.features)

    def predict(self, X: object) -> pd.Categorical:
        """Return one predicted label per row, using the training categories."""

        predictions = self.estimator.predict(self._frame(X))
        return pd.Categorical(predictions, categories=self.classes)

    def predict_proba(self, X: object) -> pd.DataFrame:
        probabilities = self.estimator.predict_proba(self._frame(X))
        return pd.DataFrame(probabilities, columns=list(self.estimator.classes_))


def _label_array(y: Sequence[object]) -> np.ndarray:
    return np.asarray(y)


def _check_classes(y: np.ndarray) -> pd.Series:
    counts = pd.Series(y).value_counts()
    if len(counts) < 2:
        raise MalformedLabelDataError(
            f"Training requires at least two classes, found {len(counts)}."
        )
    return counts


def resolve_cv_folds(y: Sequence[object], requested: int, *, every_class: bool = False) -> int:
    """Reduce the fold count to what the class sizes allow (never below 2).

    By default the largest class bounds the fold count and must hold at least
    two rows; stratified folds then leave small classes out of some test
    folds. With ``every_class=True`` each class must hold at least two rows and
    the smallest class bounds the fold count, so every training fold sees every
    class.
    """

    counts = _check_classes(_label_array(y))
    if every_class:
        limit = int(counts.min())
        if limit < 2:
            raise MalformedLabelDataError(
                "Cross-validation needs at least two rows in every class; "
                f"class sizes are {counts.to_dict()}."
            )
    else:
        limit = int(counts.max())
        if limit < 2:
            raise MalformedLabelDataError(
                "Cross-validation needs at least one class with two or more rows; "
                f"class sizes are {counts.to_dict()}."
            )
    n_splits = max(2, min(int(requested), limit))
    if n_splits < requested:
        LOGGER.warning(
            "Reducing cross-validation from %d to %d folds for class sizes %s",
            requested,
            n_splits,
            counts.to_dict(),
        )
    return n_splits


def knn_candidate_grid(candidates: Sequence[int], n_samples: int, n_splits: int) -> List[int]:
    """Drop neighbour counts that exceed the smallest cross-validation training fold."""

    max_neighbors = max(1, n_samples - math.ceil(n_samples / n_splits) - 1)
    grid = sorted({int(k) for k in candidates if 1 <= int(k) <= max_neighbors})
    if not grid:
        grid = list(range(1, min(max_neighbors, 10) + 1))
        LOGGER.warning(
            "No neighbour candidates fit %d training rows per fold; falling back to %s",
            max_neighbors,
            grid,
        )
    return grid


def _grid_search(
    pipeline: Pipeline,
    param_grid: Dict[str, List[object]],
    X: pd.DataFrame,
    y: np.ndarray,
    *,
    n_splits: int,
    random_state: int,
    n_jobs: int,
) -> GridSearchCV:
    cv = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=random_state)
    search = GridSearchCV(
        pipeline,
        param_grid,
        cv=cv,
        scoring="accuracy",
        n_jobs=n_jobs,
        refit=True,
    )
    search.fit(X, y)
    if not np.isfinite(search.best_score_):
        raise MalformedLabelDataError(
            f"Cross-validation could not score any candidate over {n_splits} folds; "
            "check that every class has enough labelled rows."
        )
    return search


def _cv_table(search: GridSearchCV, param: str) -> pd.DataFrame:
    results = search.cv_results_
    return pd.DataFrame(
        {
            param.split("__", 1)[-1]: list(results[f"param_{param}"]),
            "mean_accuracy": results["mean_test_score"],
            "std_accuracy": results["std_test_score"],
            "rank": results["rank_test_score"],
        }
    )


def _as_training_frame(X: object) -> pd.DataFrame:
    if isinstance(X, pd.DataFrame):
        return X
    matrix = np.asarray(X, dtype=float)
    return pd.DataFrame(matrix, columns=[f"x{index}" for index in range(1, matrix.shape[1] + 1)])


def train_knn(
    X: object,
    y: Sequence[object],
    config: Optional[PipelineConfig] = None,
) -> FittedClassifier:
    """Tune the neighbour count by stratified CV and refit on every row."""

    config = config or PipelineConfig()
    X_frame = _as_training_frame(X)
    labels = _label_array(y)
    n_splits = resolve_cv_folds(labels, config.cv_folds)
    grid = knn_candidate_grid(config.knn_candidates, len(labels), n_splits)

    pipeline = Pipeline(
        [
            ("scaler", StandardScaler()),
            ("knn", KNeighborsClassifier()),
        ]
    )
    search = _grid_search(
        pipeline,
        {"knn__n_neighbors": grid},
        X_frame,
        labels,
        n_splits=n_splits,
        random_state=config.random_state,
        n_jobs=config.n_jobs,
    )
    n_neighbors = int(search.best_params_["knn__n_neighbors"])
    LOGGER.info(
        "k-NN selected k=%d (CV accuracy %.3f over %d folds)",
        n_neighbors,
        search.best_score_,
        n_splits,
    )
    return FittedClassifier(
        kind="knn",
        estimator=search.best_estimator_,
        classes=list(pd.Categorical(y).categories),
        features=list(X_frame.columns),
        best_params={"n_neighbors": n_neighbors},
        cv_score=float(search.best_score_),
        n_splits=n_splits,
        cv_results=_cv_table(search, "knn__n_neighbors"),
    )


def train_logistic(
    X: object,
    y: Sequence[object],
    config: Optional[PipelineConfig] = None,
) -> FittedClassifier:
    """Fit multinomial logistic regression with CV-selected regularisation."""

    config = config or PipelineConfig()
    X_frame = _as_training_frame(X)
    labels = _label_array(y)
    n_splits = resolve_cv_folds(labels, config.cv_folds, every_class=True)

    pipeline = Pipeline(
        [
            ("scaler", StandardScaler()),
            (
                "logreg",
                LogisticRegression(
                    max_iter=config.logistic_max_iter,
                    random_state=config.random_state,
                ),
            ),
        ]
    )
    search = _grid_search(
        pipeline,
        {"logreg__C": [float(c) for c in config.logistic_c_grid]},
        X_frame,
        labels,
        n_splits=n_splits,
        random_state=config.random_state,
        n_jobs=config.n_jobs,
    )
    best_c = float(search.best_params_["logreg__C"])
    LOGGER.info(
        "Logistic regression selected C=%.4g (CV accuracy %.3f over %d folds)",
        best_c,
        search.best_score_,
        n_splits,
    )
    return FittedClassifier(
        kind="logistic",
        estimator=search.best_estimator_,
        classes=list(pd.Categorical(y).categories),
        features=list(X_frame.columns),
        best_params={"C": best_c},
        cv_score=float(search.best_score_),
        n_splits=n_splits,
        cv_results=_cv_table(search, "logreg__C"),
    )


TRAINERS: Dict[str, Callable[..., FittedClassifier]] = {
    "knn": train_knn,
    "logistic": train_logistic,
}


def available_models() -> List[str]:
    return sorted(TRAINERS.keys())


def normalise_model_name(model_name: object) -> str:
    if not isinstance(model_name, str):
        raise UnsupportedMethodError(
            f"Unsupported model type: {model_name!r}. Supported: {', '.join(available_models())}"
        )
    key = model_name.strip().lower().replace(" ", "_").replace("-", "_")
    aliases = {
        "k_nn": "knn",
        "k_nearest_neighbors": "knn",
        "k_nearest_neighbours": "knn",
        "logreg": "logistic",
        "logistic_regression": "logistic",
        "multinom": "logistic",
    }
    key = aliases.get(key, key)
    if key not in TRAINERS:
        raise UnsupportedMethodError(
            f"Unsupported model type: {model_name!r}. Supported: {', '.join(available_models())}"
        )
    return key


def fit_classifier(
    model_name: str,
    X: object,
    y: Sequence[object],
    config: Optional[PipelineConfig] = None,
) -> FittedClassifier:
    return TRAINERS[normalise_model_name(model_name)](X, y, config)


__all__ = [
    "FittedClassifier",
    "TRAINERS",
    "available_models",
    "fit_classifier",
    "knn_candidate_grid",
    "normalise_model_name",
    "resolve_cv_folds",
    "train_knn",
    "train_logistic",
]
