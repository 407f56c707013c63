"""Validated pairing of embedding features and class labels.

Embeddings arrive from an external foundation model as a numeric table (rows are
image regions, columns are embedding dimensions) with an optional label per row.
``load_embeddings`` is the only way to build a :class:`FeatureLabelSet`; every
downstream stage (reduction, training, evaluation, plotting) checks for that
type once on entry and trusts the invariants afterwards.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Set
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype
from sklearn.model_selection import train_test_split

from error_handling import (
    InvalidInputTypeError,
    InvalidParameterError,
    MalformedFeatureDataError,
    MalformedLabelDataError,
    MissingRequiredLabelError,
)
from pipeline_config import DEFAULT_SPLIT_SEED, DEFAULT_TRAIN_FRACTION

LOGGER = logging.getLogger("histolearn.data")

MIN_SPLIT_SAMPLES = 5


@dataclass(frozen=True)
class FeatureLabelSet:
    """Immutable feature table with an optional categorical label per row."""

    features: pd.DataFrame
    labels: Optional[pd.Categorical] = None

    @property
    def n_samples(self) -> int:
        return int(self.features.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.features.shape[1])

    @property
    def has_labels(self) -> bool:
        return self.labels is not None

    @property
    def classes(self) -> List[object]:
        if self.labels is None:
            return []
        return list(self.labels.categories)

    def require_labels(self, stage: str) -> pd.Categorical:
        """Return the labels or fail for stages that cannot run without them."""

        if self.labels is None:
            raise MissingRequiredLabelError(
                f"Embedding labels are required for {stage}. Please provide 'label' when loading."
            )
        return self.labels

    def subset(self, positions: Sequence[int]) -> "FeatureLabelSet":
        """Return a new set restricted to the given row positions."""

        rows = list(positions)
        features = self.features.iloc[rows]
        labels = None if self.labels is None else self.labels[rows]
        return load_embeddings(features, labels)


def ensure_feature_set(value: object, name: str = "feature_embedding") -> FeatureLabelSet:
    if not isinstance(value, FeatureLabelSet):
        raise InvalidInputTypeError(
            f"`{name}` must be a FeatureLabelSet created by load_embeddings(), "
            f"got {type(value).__name__}."
        )
    return value


def _coerce_features(feature: object) -> pd.DataFrame:
    if isinstance(feature, pd.DataFrame):
        frame = feature.copy()
    else:
        array = np.asarray(feature)
        if array.ndim != 2:
            raise MalformedFeatureDataError(
                f"feature must be a 2-D table (rows = samples, columns = features), got {array.ndim}-D input."
            )
        frame = pd.DataFrame(array)

    if frame.shape[0] == 0 or frame.shape[1] == 0:
        raise MalformedFeatureDataError("feature must have at least one row and one column.")

    # By position, so repeated column names are checked one at a time.
    non_numeric = [
        str(column)
        for column, dtype in zip(frame.columns, frame.dtypes)
        if not is_numeric_dtype(dtype) or is_bool_dtype(dtype)
    ]
    if non_numeric:
        raise MalformedFeatureDataError(
            f"All columns in 'feature' must be numeric; offending columns: {', '.join(non_numeric)}."
        )
    if frame.isna().to_numpy().any():
        raise MalformedFeatureDataError("feature matrix contains NA values.")

    values = frame.to_numpy(dtype=float)
    if np.isinf(values).any():
        raise MalformedFeatureDataError("feature matrix contains Inf or -Inf values.")

    columns = [str(index) for index in range(1, values.shape[1] + 1)]
    return pd.DataFrame(values, columns=columns)


def _flatten_label(label: object) -> object:
    if isinstance(label, pd.DataFrame):
        if label.shape[1] != 1:
            raise MalformedLabelDataError(
                "If 'label' is a data frame, it must have exactly one column."
            )
        return label.iloc[:, 0]
    if isinstance(label, (pd.Series, pd.Categorical, pd.Index)):
        return label
    if isinstance(label, (str, bytes, Mapping, Set)) or np.isscalar(label):
        raise _unsupported_label(label)
    if isinstance(label, (np.ndarray, list, tuple)):
        array = label if isinstance(label, np.ndarray) else np.asarray(label, dtype=object)
        if array.ndim == 2:
            if array.shape[1] != 1:
                raise MalformedLabelDataError(
                    "If 'label' is a matrix, it must have exactly one column."
                )
            return array[:, 0]
        if array.ndim != 1:
            raise _unsupported_label(label)
        return array
    raise _unsupported_label(label)


def _unsupported_label(label: object) -> MalformedLabelDataError:
    return MalformedLabelDataError(
        "'label' must be a vector, categorical, 1-column matrix, or 1-column data frame; "
        f"got {type(label).__name__}."
    )


def _coerce_labels(label: object) -> pd.Categorical:
    # pd.Categorical keeps the categories of categorical input, otherwise sorts the distinct values.
    categorical = pd.Categorical(_flatten_label(label))
    if categorical.isna().any():
        raise MalformedLabelDataError("label contains missing values.")
    return categorical


def load_embeddings(
    feature: object,
    label: object = None,
    *,
    require_label: bool = False,
) -> FeatureLabelSet:
    """Validate embeddings and labels and pair them into a :class:`FeatureLabelSet`.

    Parameters
    ----------
    feature:
        Numeric table (``DataFrame``, 2-D array or nested sequences) with samples
        in rows and embedding dimensions in columns. Columns are renamed to
        ``"1"``, ``"2"``, ... so original feature identifiers are discarded.
    label:
        One label per row: a vector, categorical, 1-column matrix or 1-column
        data frame. Converted to a ``pandas.Categorical``.
    require_label:
        Fail with :class:`MissingRequiredLabelError` when ``label`` is ``None``.
    """

    features = _coerce_features(feature)

    if label is None:
        if require_label:
            raise MissingRequiredLabelError(
                "Embedding labels are not supplied. Please provide 'label' for the pipeline."
            )
        LOGGER.debug("Loaded %d x %d features without labels", *features.shape)
        return FeatureLabelSet(features=features, labels=None)

    labels = _coerce_labels(label)
    if len(labels) != features.shape[0]:
        raise MalformedLabelDataError(
            f"feature and label dimensions do not match: {features.shape[0]} rows vs {len(labels)} labels."
        )

    LOGGER.debug(
        "Loaded %d x %d features with %d classes", features.shape[0], features.shape[1], len(labels.categories)
    )
    return FeatureLabelSet(features=features, labels=labels)


def split_feature_set(
    feature_set: FeatureLabelSet,
    train_fraction: float = DEFAULT_TRAIN_FRACTION,
    *,
    random_state: int = DEFAULT_SPLIT_SEED,
) -> Tuple[FeatureLabelSet, FeatureLabelSet]:
    """Randomly split a labelled set into train and test parts.

    The train part holds ``floor(train_fraction * n)`` rows. The shuffle is
    driven only by ``random_state`` so repeated calls give the same split.
    """

    feature_set = ensure_feature_set(feature_set)
    feature_set.require_labels("a train/test split")

    n_samples = feature_set.n_samples
    if n_samples < MIN_SPLIT_SAMPLES:
        raise MalformedFeatureDataError(
            f"Need at least {MIN_SPLIT_SAMPLES} samples to train and test, got {n_samples}."
        )
    if not 0.0 < float(train_fraction) < 1.0:
        raise InvalidParameterError(f"train_fraction must lie strictly between 0 and 1, got {train_fraction}.")

    train_size = int(math.floor(float(train_fraction) * n_samples))
    if train_size < 1 or train_size >= n_samples:
        raise InvalidParameterError(
            f"train_fraction={train_fraction} leaves an empty train or test set for {n_samples} samples."
        )

    train_idx, test_idx = train_test_split(
        np.arange(n_samples),
        train_size=train_size,
        random_state=random_state,
        shuffle=True,
    )
    LOGGER.info("Split %d samples into %d train / %d test", n_samples, len(train_idx), len(test_idx))
    return feature_set.subset(train_idx), feature_set.subset(test_idx)


__all__ = [
    "FeatureLabelSet",
    "ensure_feature_set",
    "load_embeddings",
    "split_feature_set",
]
