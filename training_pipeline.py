"""Reduction + classification pipeline: training, evaluation and metadata.

``train_model`` fits a reducer on a labelled :class:`FeatureLabelSet`, trains the
requested classifier on the reduced features and packages both with the
training confusion matrix into a :class:`TrainedPipeline`. ``evaluate_model``
reuses that fitted reducer on held-out data (it never refits) and reports
train/test confusion matrices and accuracies.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from matplotlib.figure import Figure
from sklearn.metrics import accuracy_score, confusion_matrix

from error_handling import InvalidInputTypeError, MalformedFeatureDataError
from feature_sets import FeatureLabelSet, ensure_feature_set
from model_wrappers import FittedClassifier, fit_classifier, normalise_model_name
from pipeline_config import PipelineConfig
from plots import plot_confusion_matrix
from reductions import FittedReducer, normalise_reduction_name, reduce_dimensions

LOGGER = logging.getLogger("histolearn.training")


@dataclasses.dataclass(frozen=True)
class TrainedPipeline:
    """Fitted reducer and classifier plus the training-set metrics."""

    reducer: FittedReducer
    classifier: FittedClassifier
    method: Tuple[str, str]
    dr_dim: int
    train_confusion: pd.DataFrame
    train_accuracy: float
    train_predictions: pd.Categorical
    classes: List[object]
    config: PipelineConfig
    training_time: float = 0.0

    @property
    def effective_dim(self) -> int:
        return self.reducer.n_components


@dataclasses.dataclass(frozen=True)
class EvaluationResult:
    """Train/test confusion heat maps and accuracies for one evaluation."""

    train_conf_matrix: Figure
    train_metric: float
    test_conf_matrix: Figure
    test_metric: float
    train_confusion: pd.DataFrame
    test_confusion: pd.DataFrame
    test_predictions: pd.Categorical

    def as_dict(self) -> Dict[str, object]:
        return {
            "train_conf_matrix": self.train_conf_matrix,
            "train_metric": self.train_metric,
            "test_conf_matrix": self.test_conf_matrix,
            "test_metric": self.test_metric,
        }


def ensure_trained_pipeline(value: object, name: str = "trained_model") -> TrainedPipeline:
    if not isinstance(value, TrainedPipeline):
        raise InvalidInputTypeError(
            f"`{name}` must be a TrainedPipeline returned by train_model(), got {type(value).__name__}."
        )
    return value


def _classification_metrics(
    y_true: Sequence[object],
    y_pred: Sequence[object],
    class_labels: Optional[Sequence[object]] = None,
) -> Tuple[float, pd.DataFrame]:
    """Return accuracy and the confusion table (rows = true, columns = predicted)."""

    true_values = np.asarray(y_true)
    pred_values = np.asarray(y_pred)
    accuracy = float(accuracy_score(true_values, pred_values))

    if class_labels is None:
        class_labels = list(pd.Categorical(np.concatenate([true_values, pred_values])).categories)
    labels = list(class_labels)
    matrix = confusion_matrix(true_values, pred_values, labels=labels)
    table = pd.DataFrame(
        matrix.astype(int),
        index=pd.Index(labels, name="True Label"),
        columns=pd.Index(labels, name="Predicted Label"),
    )
    return accuracy, table


def _union_classes(*groups: Sequence[object]) -> List[object]:
    classes: List[object] = []
    for group in groups:
        for value in group:
            if value not in classes:
                classes.append(value)
    return classes


def train_model(
    feature_embedding: FeatureLabelSet,
    dr: str = "pca",
    dr_k: int = 20,
    model: str = "knn",
    *,
    config: Optional[PipelineConfig] = None,
) -> TrainedPipeline:
    """Reduce labelled embeddings and fit a classifier on the reduced features.

    Parameters
    ----------
    feature_embedding:
        Labelled set returned by :func:`feature_sets.load_embeddings`.
    dr:
        Dimensionality reduction method; only ``"pca"`` is supported.
    dr_k:
        Requested number of components. Must not exceed the feature column
        count; it is clipped to ``min(n_samples, n_features)`` during the fit.
    model:
        ``"knn"`` or ``"logistic"``.
    config:
        Seeds and cross-validation settings; defaults to :class:`PipelineConfig`.
    """

    feature_embedding = ensure_feature_set(feature_embedding)
    labels = feature_embedding.require_labels("training")
    dr_key = normalise_reduction_name(dr)
    model_key = normalise_model_name(model)
    config = config or PipelineConfig()

    start = time.time()
    reduction = reduce_dimensions(
        feature_embedding.features,
        dr_key,
        dr_k,
        random_state=config.random_state,
    )
    LOGGER.info(
        "Training %s on %d samples reduced to %d dimensions (%d requested)",
        model_key,
        feature_embedding.n_samples,
        reduction.model.n_components,
        reduction.model.requested_dim,
    )

    classifier = fit_classifier(model_key, reduction.reduced, labels, config)
    predictions = classifier.predict(reduction.reduced)
    classes = list(labels.categories)
    accuracy, table = _classification_metrics(labels, predictions, classes)
    elapsed = time.time() - start
    LOGGER.info("Training accuracy %.3f (%.2fs)", accuracy, elapsed)

    return TrainedPipeline(
        reducer=reduction.model,
        classifier=classifier,
        method=(dr_key, model_key),
        dr_dim=reduction.model.requested_dim,
        train_confusion=table,
        train_accuracy=accuracy,
        train_predictions=predictions,
        classes=classes,
        config=config,
        training_time=elapsed,
    )


def predict_labels(trained_model: TrainedPipeline, data: FeatureLabelSet) -> pd.Categorical:
    """Project ``data`` with the stored reducer and predict one label per row."""

    trained_model = ensure_trained_pipeline(trained_model)
    data = ensure_feature_set(data, "data")
    if data.n_features != trained_model.reducer.n_features:
        raise MalformedFeatureDataError(
            f"Model was trained on {trained_model.reducer.n_features} feature columns, "
            f"test data has {data.n_features}."
        )
    projected = trained_model.reducer.transform(data.features)
    reduced = projected.iloc[:, : trained_model.effective_dim]
    return trained_model.classifier.predict(reduced)


def evaluate_model(trained_model: TrainedPipeline, test_data: FeatureLabelSet) -> EvaluationResult:
    """Score a trained pipeline on held-out data and plot both confusion matrices."""

    test_data = ensure_feature_set(test_data, "test_data")
    trained_model = ensure_trained_pipeline(trained_model)
    test_labels = test_data.require_labels("evaluation")

    predictions = predict_labels(trained_model, test_data)
    classes = _union_classes(trained_model.classes, list(test_labels.categories))
    test_accuracy, test_table = _classification_metrics(test_labels, predictions, classes)
    LOGGER.info(
        "Evaluated %s on %d samples: train accuracy %.3f, test accuracy %.3f",
        "+".join(trained_model.method),
        test_data.n_samples,
        trained_model.train_accuracy,
        test_accuracy,
    )

    return EvaluationResult(
        train_conf_matrix=plot_confusion_matrix(trained_model.train_confusion, "Train Confusion Matrix"),
        train_metric=float(trained_model.train_accuracy),
        test_conf_matrix=plot_confusion_matrix(test_table, "Test Confusion Matrix"),
        test_metric=test_accuracy,
        train_confusion=trained_model.train_confusion,
        test_confusion=test_table,
        test_predictions=predictions,
    )


def prepare_metadata(result: TrainedPipeline) -> Dict[str, object]:
    return {
        "method": list(result.method),
        "dr_dim": result.dr_dim,
        "effective_dim": result.effective_dim,
        "explained_variance_ratio": [float(v) for v in result.reducer.explained_variance_ratio],
        "classifier_params": dict(result.classifier.best_params),
        "cv_accuracy": result.classifier.cv_score,
        "cv_folds": result.classifier.n_splits,
        "train_accuracy": result.train_accuracy,
        "train_confusion": result.train_confusion.to_numpy().tolist(),
        "classes": list(map(str, result.classes)),
        "n_features": result.reducer.n_features,
        "training_time": result.training_time,
        "config": result.config.to_dict(),
    }


__all__ = [
    "EvaluationResult",
    "TrainedPipeline",
    "ensure_trained_pipeline",
    "evaluate_model",
    "predict_labels",
    "prepare_metadata",
    "train_model",
]
