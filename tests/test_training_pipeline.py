from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from error_handling import (
    InvalidDimensionError,
    InvalidInputTypeError,
    MalformedFeatureDataError,
    MalformedLabelDataError,
    MissingRequiredLabelError,
    UnsupportedMethodError,
)
from feature_sets import load_embeddings
from pipeline_config import PipelineConfig
from training_pipeline import (
    EvaluationResult,
    TrainedPipeline,
    evaluate_model,
    predict_labels,
    prepare_metadata,
    train_model,
)


def _two_cluster_set(seed: int, per_class: int = 20, n_features: int = 10):
    rng = np.random.default_rng(seed)
    group_a = rng.normal(0.0, 1.0, size=(per_class, n_features))
    group_b = rng.normal(3.0, 1.0, size=(per_class, n_features))
    features = pd.DataFrame(np.vstack([group_a, group_b]))
    labels = ["A"] * per_class + ["B"] * per_class
    return load_embeddings(features, labels)


@pytest.fixture(scope="module")
def train_set():
    return _two_cluster_set(1)


@pytest.fixture(scope="module")
def test_set():
    return _two_cluster_set(2)


@pytest.fixture(scope="module")
def knn_pipeline(train_set):
    return train_model(train_set, "pca", 5, "knn")


def test_train_returns_pipeline(knn_pipeline):
    assert isinstance(knn_pipeline, TrainedPipeline)
    assert knn_pipeline.method == ("pca", "knn")
    assert knn_pipeline.dr_dim == 5
    assert knn_pipeline.effective_dim == 5
    assert knn_pipeline.classes == ["A", "B"]
    assert 0.0 <= knn_pipeline.train_accuracy <= 1.0
    assert knn_pipeline.train_confusion.to_numpy().sum() == 40


def test_evaluate_separated_clusters(knn_pipeline, test_set):
    result = evaluate_model(knn_pipeline, test_set)

    assert isinstance(result, EvaluationResult)
    assert isinstance(result.train_conf_matrix, Figure)
    assert isinstance(result.test_conf_matrix, Figure)
    assert result.test_metric > 0.7
    assert 0.0 <= result.train_metric <= 1.0
    assert result.train_metric == knn_pipeline.train_accuracy
    assert list(result.test_confusion.index) == ["A", "B"]
    assert result.test_confusion.to_numpy().sum() == test_set.n_samples
    assert set(result.as_dict()) == {"train_conf_matrix", "train_metric", "test_conf_matrix", "test_metric"}


def test_evaluate_does_not_refit_reducer(knn_pipeline, test_set):
    center_before = knn_pipeline.reducer.center.copy()
    evaluate_model(knn_pipeline, test_set)
    np.testing.assert_array_equal(knn_pipeline.reducer.center, center_before)


def test_logistic_pipeline(train_set, test_set):
    trained = train_model(train_set, dr="pca", dr_k=3, model="logistic")
    assert trained.method == ("pca", "logistic")
    result = evaluate_model(trained, test_set)
    assert result.test_metric > 0.7


def test_training_is_reproducible(train_set, test_set):
    config = PipelineConfig(random_state=7)
    first = train_model(train_set, "pca", 4, "knn", config=config)
    second = train_model(train_set, "pca", 4, "knn", config=config)
    assert first.classifier.best_params == second.classifier.best_params
    np.testing.assert_array_equal(
        np.asarray(predict_labels(first, test_set)),
        np.asarray(predict_labels(second, test_set)),
    )


def test_clipped_dimension_still_evaluates():
    rng = np.random.default_rng(5)
    train = load_embeddings(rng.normal(size=(6, 10)) + np.repeat([[0.0], [4.0]], 3, axis=0), ["a"] * 3 + ["b"] * 3)
    test = load_embeddings(rng.normal(size=(4, 10)), ["a", "b", "a", "b"])

    trained = train_model(train, "pca", 8, "knn")
    assert trained.dr_dim == 8
    assert trained.effective_dim == 6

    result = evaluate_model(trained, test)
    assert 0.0 <= result.test_metric <= 1.0


def test_train_rejects_bad_inputs(train_set):
    with pytest.raises(InvalidInputTypeError):
        train_model(train_set.features)
    with pytest.raises(MissingRequiredLabelError):
        train_model(load_embeddings(train_set.features))
    with pytest.raises(UnsupportedMethodError):
        train_model(train_set, "pca", 5, "svm")
    with pytest.raises(UnsupportedMethodError):
        train_model(train_set, "umap", 5, "knn")
    with pytest.raises(InvalidDimensionError):
        train_model(train_set, "pca", 11, "knn")


def test_evaluate_rejects_bad_inputs(knn_pipeline, test_set):
    with pytest.raises(InvalidInputTypeError):
        evaluate_model(knn_pipeline, test_set.features)
    with pytest.raises(InvalidInputTypeError):
        evaluate_model({"model": "knn"}, test_set)
    with pytest.raises(MissingRequiredLabelError):
        evaluate_model(knn_pipeline, load_embeddings(test_set.features))


def test_evaluate_rejects_column_mismatch(knn_pipeline):
    narrow = load_embeddings(np.zeros((4, 6)), ["A", "B", "A", "B"])
    with pytest.raises(MalformedFeatureDataError):
        evaluate_model(knn_pipeline, narrow)


def test_unseen_test_label_appears_in_confusion(knn_pipeline, test_set):
    labels = list(test_set.labels)
    labels[0] = "C"
    relabelled = load_embeddings(test_set.features, labels)
    result = evaluate_model(knn_pipeline, relabelled)
    assert list(result.test_confusion.columns) == ["A", "B", "C"]
    assert result.test_confusion.loc["C"].sum() == 1
    assert result.test_confusion["C"].sum() == 0


def test_metadata_is_serialisable(knn_pipeline):
    metadata = prepare_metadata(knn_pipeline)
    assert metadata["method"] == ["pca", "knn"]
    assert metadata["dr_dim"] == 5
    assert metadata["classes"] == ["A", "B"]
    assert "n_neighbors" in metadata["classifier_params"]
    assert len(metadata["explained_variance_ratio"]) == 5


def test_two_group_scenario_end_to_end(train_set, test_set):
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    import seaborn as sns

    from plots import visualize_embeddings

    grid = visualize_embeddings(train_set, 3)
    assert isinstance(grid, sns.PairGrid)
    plt.close(grid.figure)
    assert isinstance(visualize_embeddings(train_set, 2), Figure)

    trained = train_model(train_set, dr_k=2, model="knn")
    result = evaluate_model(trained, test_set)
    assert result.test_metric > 0.7


def test_singleton_classes_fail_with_label_error():
    data = load_embeddings([[0.0, 1.0, 2.0], [3.0, 1.0, 0.5]], ["a", "b"])
    with pytest.raises(MalformedLabelDataError):
        train_model(data, "pca", 2, "knn")


def test_logistic_rejects_singleton_class_without_nan_score():
    rng = np.random.default_rng(8)
    data = load_embeddings(rng.normal(size=(31, 4)), ["a"] * 30 + ["b"])
    with pytest.raises(MalformedLabelDataError):
        train_model(data, "pca", 2, "logistic")
