from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import numpy as np
import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _run_cli(args: list[str], log_dir: Path, check: bool = True) -> subprocess.CompletedProcess:
    env = dict(os.environ, MPLBACKEND="Agg")
    return subprocess.run(
        [sys.executable, "-m", "histolearn_cli", "--log-dir", str(log_dir), *args],
        cwd=PROJECT_ROOT,
        check=check,
        capture_output=True,
        text=True,
        env=env,
    )


def _make_dataset(path: Path, seed: int = 0) -> tuple[Path, Path]:
    rng = np.random.default_rng(seed)
    features = pd.DataFrame(
        np.vstack([rng.normal(0, 1, (20, 6)), rng.normal(3, 1, (20, 6))]),
        columns=[f"emb_{i}" for i in range(6)],
    )
    labels = pd.DataFrame({"tissue": ["tumor"] * 20 + ["stroma"] * 20})
    feature_path = path / f"features_{seed}.csv"
    label_path = path / f"labels_{seed}.csv"
    features.to_csv(feature_path, index=False)
    labels.to_csv(label_path, index=False)
    return feature_path, label_path


def test_cli_train_then_evaluate(tmp_path: Path) -> None:
    train_features, train_labels = _make_dataset(tmp_path, seed=0)
    test_features, test_labels = _make_dataset(tmp_path, seed=1)
    output_dir = tmp_path / "run"

    train = json.loads(
        _run_cli(
            [
                "train",
                "--features",
                str(train_features),
                "--labels",
                str(train_labels),
                "--dr-k",
                "3",
                "--model",
                "knn",
                "--output-dir",
                str(output_dir),
            ],
            tmp_path / "logs",
        ).stdout
    )
    assert train["method"] == ["pca", "knn"]
    assert train["dr_dim"] == 3
    bundle_path = Path(train["bundle_path"])
    assert bundle_path.exists()
    metadata = json.loads(Path(train["metadata_path"]).read_text())
    assert metadata["classes"] == ["stroma", "tumor"]

    evaluation = json.loads(
        _run_cli(
            [
                "evaluate",
                "--features",
                str(test_features),
                "--labels",
                str(test_labels),
                "--model-path",
                str(bundle_path),
                "--output-dir",
                str(output_dir),
            ],
            tmp_path / "logs",
        ).stdout
    )
    assert evaluation["test_accuracy"] > 0.7
    assert Path(evaluation["test_plot"]).exists()
    assert Path(evaluation["train_plot"]).exists()
    assert (tmp_path / "logs" / "histolearn.log").exists()


def test_cli_run_splits_and_evaluates(tmp_path: Path) -> None:
    features, labels = _make_dataset(tmp_path)
    result = json.loads(
        _run_cli(
            [
                "run",
                "--features",
                str(features),
                "--labels",
                str(labels),
                "--dr-k",
                "2",
                "--model",
                "logistic",
                "--output-dir",
                str(tmp_path / "run"),
            ],
            tmp_path / "logs",
        ).stdout
    )
    assert result["train_rows"] == 28
    assert result["test_rows"] == 12
    assert 0.0 <= result["test_accuracy"] <= 1.0
    assert result["method"] == ["pca", "logistic"]


def test_cli_visualize(tmp_path: Path) -> None:
    features, labels = _make_dataset(tmp_path)
    output = tmp_path / "embeddings.png"
    result = json.loads(
        _run_cli(
            [
                "visualize",
                "--features",
                str(features),
                "--labels",
                str(labels),
                "--dimensions",
                "3",
                "--output",
                str(output),
            ],
            tmp_path / "logs",
        ).stdout
    )
    assert result["kind"] == "PairGrid"
    assert output.exists()


def test_cli_list_models(tmp_path: Path) -> None:
    result = json.loads(_run_cli(["list-models"], tmp_path / "logs").stdout)
    assert result == {"reductions": ["pca"], "models": ["knn", "logistic"]}


def test_cli_reports_unsupported_model(tmp_path: Path) -> None:
    features, labels = _make_dataset(tmp_path)
    completed = _run_cli(
        [
            "train",
            "--features",
            str(features),
            "--labels",
            str(labels),
            "--model",
            "svm",
            "--output-dir",
            str(tmp_path / "run"),
        ],
        tmp_path / "logs",
        check=False,
    )
    assert completed.returncode == 1
    assert completed.stdout == ""
    assert "Unsupported model type" in completed.stderr
    assert "Guidance" in completed.stderr


def test_cli_rejects_bad_train_fraction(tmp_path: Path) -> None:
    features, labels = _make_dataset(tmp_path)
    completed = _run_cli(
        [
            "run",
            "--features",
            str(features),
            "--labels",
            str(labels),
            "--train-fraction",
            "1.5",
            "--output-dir",
            str(tmp_path / "run"),
        ],
        tmp_path / "logs",
        check=False,
    )
    assert completed.returncode == 1
    assert "Traceback" not in completed.stderr
    assert "train_fraction" in completed.stderr
    assert "train fraction strictly between 0 and 1" in completed.stderr


def test_visualize_command_leaves_no_open_figures(tmp_path: Path) -> None:
    import argparse

    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from histolearn_cli import run_visualize

    features, labels = _make_dataset(tmp_path)
    before = set(plt.get_fignums())
    args = argparse.Namespace(
        features=str(features),
        labels=str(labels),
        sep=",",
        no_header=False,
        dimensions=3,
        method="pca",
        random_state=None,
        output=tmp_path / "grid.png",
    )
    result = run_visualize(args)

    assert result["kind"] == "PairGrid"
    assert (tmp_path / "grid.png").exists()
    assert set(plt.get_fignums()) == before
