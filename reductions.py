"""Dimensionality reduction helpers for embedding tables."""
from __future__ import annotations

import logging
import numbers
import time
from dataclasses import dataclass
from typing import Callable, Dict, List

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from error_handling import (
    InvalidDimensionError,
    MalformedFeatureDataError,
    UnsupportedMethodError,
)
from pipeline_config import DEFAULT_RANDOM_STATE

LOGGER = logging.getLogger("histolearn.reductions")


def component_columns(n_components: int) -> List[str]:
    return [f"dim{index}" for index in range(1, n_components + 1)]


def _as_matrix(features: object) -> np.ndarray:
    matrix = np.asarray(features, dtype=float)
    if matrix.ndim != 2:
        raise MalformedFeatureDataError(
            f"Expected a 2-D feature table for projection, got {matrix.ndim}-D input."
        )
    return matrix


@dataclass(frozen=True)
class FittedReducer:
    """PCA fitted on standardised training features.

    The scaler's centres and scales and the PCA loadings all come from a single
    fit; :meth:`transform` only ever reapplies them.
    """

    method: str
    scaler: StandardScaler
    pca: PCA
    requested_dim: int
    n_components: int
    n_features: int

    @property
    def center(self) -> np.ndarray:
        return self.scaler.mean_

    @property
    def scale(self) -> np.ndarray:
        return self.scaler.scale_

    @property
    def components(self) -> np.ndarray:
        return self.pca.components_

    @property
    def explained_variance_ratio(self) -> np.ndarray:
        return self.pca.explained_variance_ratio_

    @property
    def columns(self) -> List[str]:
        return component_columns(self.n_components)

    def transform(self, features: object) -> pd.DataFrame:
        """Project new rows into the fitted component space."""

        matrix = _as_matrix(features)
        if matrix.shape[1] != self.n_features:
            raise MalformedFeatureDataError(
                f"Reducer was fitted on {self.n_features} feature columns, got {matrix.shape[1]}."
            )
        projected = self.pca.transform(self.scaler.transform(matrix))
        return pd.DataFrame(projected, columns=self.columns)


@dataclass(frozen=True)
class ReductionResult:
    """Fitted reducer together with the projection of its training rows."""

    model: FittedReducer
    reduced: pd.DataFrame
    elapsed: float


def validate_dimension(k: object, n_features: int) -> int:
    """Check a requested component count against the raw column count."""

    if isinstance(k, bool) or not isinstance(k, numbers.Integral):
        raise InvalidDimensionError(f"Reduced dimension must be an integer, got {k!r}.")
    k = int(k)
    if k < 1:
        raise InvalidDimensionError(f"Reduced dimension must be at least 1, got {k}.")
    if k > n_features:
        raise InvalidDimensionError(
            f"invalid dimension: requested {k} components but the features only have {n_features} columns."
        )
    return k


def fit_pca(
    features: object,
    k: int,
    *,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> ReductionResult:
    """Centre, scale and decompose ``features``, keeping at most ``k`` components."""

    start = time.time()
    matrix = _as_matrix(features)
    n_samples, n_features = matrix.shape
    k = validate_dimension(k, n_features)

    available = min(n_samples, n_features)
    n_components = min(k, available)
    if n_components < k:
        LOGGER.warning(
            "Requested %d components but only %d are available for %d samples x %d features; using %d.",
            k,
            available,
            n_samples,
            n_features,
            n_components,
        )

    scaler = StandardScaler()
    scaled = scaler.fit_transform(matrix)
    pca = PCA(n_components=n_components, random_state=random_state)
    projected = pca.fit_transform(scaled)

    model = FittedReducer(
        method="pca",
        scaler=scaler,
        pca=pca,
        requested_dim=k,
        n_components=n_components,
        n_features=n_features,
    )
    reduced = pd.DataFrame(projected, columns=model.columns)
    elapsed = time.time() - start
    LOGGER.info(
        "PCA kept %d components (%.1f%% variance) in %.3fs",
        n_components,
        100.0 * float(np.sum(pca.explained_variance_ratio_)),
        elapsed,
    )
    return ReductionResult(model=model, reduced=reduced, elapsed=elapsed)


REDUCERS: Dict[str, Callable[..., ReductionResult]] = {
    "pca": fit_pca,
}


def available_reductions() -> List[str]:
    return sorted(REDUCERS.keys())


def normalise_reduction_name(method: object) -> str:
    key = str(method).strip().lower() if isinstance(method, str) else ""
    if key not in REDUCERS:
        raise UnsupportedMethodError(
            f"Unsupported dimension reduction method: {method!r}. Supported: {', '.join(available_reductions())}"
        )
    return key


def reduce_dimensions(
    features: object,
    method: str = "pca",
    k: int = 20,
    *,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> ReductionResult:
    """Fit the requested reduction on ``features`` and project them."""

    key = normalise_reduction_name(method)
    return REDUCERS[key](features, k, random_state=random_state)


__all__ = [
    "FittedReducer",
    "REDUCERS",
    "ReductionResult",
    "available_reductions",
    "component_columns",
    "fit_pca",
    "normalise_reduction_name",
    "reduce_dimensions",
    "validate_dimension",
]
