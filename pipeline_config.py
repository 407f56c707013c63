"""Configuration for the reduction / classification pipeline."""
from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple


DEFAULT_RANDOM_STATE = 42
DEFAULT_CV_FOLDS = 10
DEFAULT_SPLIT_SEED = 123
DEFAULT_TRAIN_FRACTION = 0.7
# Ten odd neighbour counts starting at 5.
DEFAULT_KNN_CANDIDATES: Tuple[int, ...] = (5, 7, 9, 11, 13, 15, 17, 19, 21, 23)
DEFAULT_LOGISTIC_C_GRID: Tuple[float, ...] = (
    0.001,
    0.00464,
    0.0215,
    0.1,
    0.464,
    2.15,
    10.0,
    46.4,
    215.0,
    1000.0,
)


def _env_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _env_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class PipelineConfig:
    """Seeds and cross-validation settings shared by training and the CLI."""

    random_state: int = DEFAULT_RANDOM_STATE
    cv_folds: int = DEFAULT_CV_FOLDS
    knn_candidates: Tuple[int, ...] = DEFAULT_KNN_CANDIDATES
    logistic_c_grid: Tuple[float, ...] = DEFAULT_LOGISTIC_C_GRID
    logistic_max_iter: int = 1000
    n_jobs: int = 1
    train_fraction: float = DEFAULT_TRAIN_FRACTION
    split_seed: int = DEFAULT_SPLIT_SEED
    log_dir: Path = Path("logs")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Initialise configuration from ``HISTOLEARN_*`` environment variables."""

        defaults = cls()
        return cls(
            random_state=_env_int(os.environ.get("HISTOLEARN_RANDOM_STATE"), defaults.random_state),
            cv_folds=_env_int(os.environ.get("HISTOLEARN_CV_FOLDS"), defaults.cv_folds),
            n_jobs=_env_int(os.environ.get("HISTOLEARN_N_JOBS"), defaults.n_jobs),
            train_fraction=_env_float(
                os.environ.get("HISTOLEARN_TRAIN_FRACTION"), defaults.train_fraction
            ),
            split_seed=_env_int(os.environ.get("HISTOLEARN_SPLIT_SEED"), defaults.split_seed),
            log_dir=Path(os.environ.get("HISTOLEARN_LOG_DIR", str(defaults.log_dir))),
        )

    def with_overrides(self, **overrides: object) -> "PipelineConfig":
        """Return a copy with the non-``None`` overrides applied."""

        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "random_state": self.random_state,
            "cv_folds": self.cv_folds,
            "knn_candidates": list(self.knn_candidates),
            "logistic_c_grid": list(self.logistic_c_grid),
            "logistic_max_iter": self.logistic_max_iter,
            "n_jobs": self.n_jobs,
            "train_fraction": self.train_fraction,
            "split_seed": self.split_seed,
            "log_dir": str(self.log_dir),
        }
