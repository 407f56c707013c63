"""Embedding scatter plots and confusion-matrix heat maps."""
from __future__ import annotations

import logging
import numbers
from pathlib import Path
from typing import Union

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from matplotlib.colors import LinearSegmentedColormap
from matplotlib.figure import Figure

from error_handling import InvalidDimensionError
from feature_sets import FeatureLabelSet, ensure_feature_set
from pipeline_config import DEFAULT_RANDOM_STATE
from reductions import normalise_reduction_name, reduce_dimensions

LOGGER = logging.getLogger("histolearn.plots")

MIN_VIS_DIMENSIONS = 2
MAX_VIS_DIMENSIONS = 10
LABEL_COLUMN = "label"
CONFUSION_CMAP = LinearSegmentedColormap.from_list("histolearn_confusion", ["skyblue", "darkblue"])

PlotArtifact = Union[Figure, sns.PairGrid]


def _validate_vis_dimensions(dimensions: object) -> int:
    if isinstance(dimensions, bool) or not isinstance(dimensions, numbers.Integral):
        raise InvalidDimensionError(f"dimensions must be an integer, got {dimensions!r}.")
    k = int(dimensions)
    if k < MIN_VIS_DIMENSIONS or k > MAX_VIS_DIMENSIONS:
        raise InvalidDimensionError(
            f"Not informative or invalid. Choose dimension within {MIN_VIS_DIMENSIONS} to {MAX_VIS_DIMENSIONS}, got {k}."
        )
    return k


def project_embeddings(
    input_data: FeatureLabelSet,
    dimensions: int = 2,
    method: str = "pca",
    *,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> pd.DataFrame:
    """Fit a throwaway reduction and return ``dim1..dimk`` plus the label column.

    ``dimensions`` is clipped to the number of available components; the
    returned frame has as many ``dim`` columns as were actually produced.
    """

    input_data = ensure_feature_set(input_data, "input_data")
    labels = input_data.require_labels("visualisation")
    k = _validate_vis_dimensions(dimensions)
    key = normalise_reduction_name(method)

    result = reduce_dimensions(
        input_data.features,
        key,
        min(k, input_data.n_features),
        random_state=random_state,
    )
    effective = result.model.n_components
    if effective < MIN_VIS_DIMENSIONS:
        raise InvalidDimensionError(
            f"Only {effective} component(s) available; at least {MIN_VIS_DIMENSIONS} are needed to plot."
        )
    if effective < k:
        LOGGER.info("Visualising %d of the %d requested dimensions", effective, k)

    frame = result.reduced.copy()
    frame[LABEL_COLUMN] = pd.Categorical(labels)
    frame.attrs["method"] = key
    frame.attrs["explained_variance_ratio"] = list(result.model.explained_variance_ratio)
    return frame


def _scatter_figure(frame: pd.DataFrame, method: str) -> Figure:
    fig = Figure(figsize=(7, 5.5), dpi=100)
    ax = fig.add_subplot(111)
    sns.scatterplot(
        data=frame,
        x="dim1",
        y="dim2",
        hue=LABEL_COLUMN,
        ax=ax,
        s=40,
        alpha=0.8,
    )
    ratios = frame.attrs.get("explained_variance_ratio") or []
    if len(ratios) >= 2:
        ax.set_xlabel(f"dim1 ({100 * ratios[0]:.1f}%)")
        ax.set_ylabel(f"dim2 ({100 * ratios[1]:.1f}%)")
    ax.set_title(f"{method.upper()} projection with dimension of 2")
    ax.legend(title="Label", bbox_to_anchor=(1.02, 1), loc="upper left", frameon=False)
    fig.tight_layout()
    return fig


def _pairwise_grid(frame: pd.DataFrame, method: str) -> sns.PairGrid:
    columns = [column for column in frame.columns if column != LABEL_COLUMN]
    grid = sns.pairplot(
        frame,
        vars=columns,
        hue=LABEL_COLUMN,
        diag_kind="hist",
        plot_kws={"alpha": 0.8, "s": 20},
    )
    grid.figure.suptitle(
        f"Paired {method.upper()} projection with dimension of {len(columns)}",
        y=1.02,
    )
    return grid


def visualize_embeddings(
    input_data: FeatureLabelSet,
    dimensions: int = 2,
    method: str = "pca",
    *,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> PlotArtifact:
    """Plot a labelled embedding set in a reduced space.

    Returns a single matplotlib ``Figure`` scatter when exactly two components
    are available after clipping, otherwise a seaborn ``PairGrid`` over all of
    them. Points are coloured by label.
    """

    frame = project_embeddings(input_data, dimensions, method, random_state=random_state)
    key = frame.attrs["method"]
    effective = frame.shape[1] - 1
    if effective > MIN_VIS_DIMENSIONS:
        return _pairwise_grid(frame, key)
    return _scatter_figure(frame, key)


def plot_confusion_matrix(table: pd.DataFrame, title: str = "Confusion Matrix") -> Figure:
    """Render a confusion table (rows = true label, columns = predicted) as a heat map."""

    size = max(4.5, 1.2 * len(table.columns) + 2.5)
    fig = Figure(figsize=(size, size * 0.85), dpi=100)
    ax = fig.add_subplot(111)
    sns.heatmap(
        table,
        ax=ax,
        annot=True,
        fmt="d",
        cmap=CONFUSION_CMAP,
        linewidths=0.5,
        linecolor="white",
        cbar_kws={"label": "Count"},
    )
    ax.set_title(title)
    ax.set_xlabel("Predicted Label")
    ax.set_ylabel("True Label")
    ax.tick_params(axis="x", rotation=45)
    fig.tight_layout()
    return fig


def save_figure(plot: PlotArtifact, path: Path) -> Path:
    """Write a figure or pair grid to ``path`` (parent directories are created)."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    plot.savefig(path, dpi=150, bbox_inches="tight")
    return path


def close_figure(plot: PlotArtifact) -> None:
    """Release a pair grid from pyplot; bare figures are not tracked there."""

    if isinstance(plot, sns.PairGrid):
        plt.close(plot.figure)


__all__ = [
    "CONFUSION_CMAP",
    "LABEL_COLUMN",
    "close_figure",
    "plot_confusion_matrix",
    "project_embeddings",
    "save_figure",
    "visualize_embeddings",
]
