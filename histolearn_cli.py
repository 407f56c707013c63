"""Command-line interface for embedding visualisation, training and evaluation."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import joblib
import pandas as pd

from error_handling import (
    ErrorManager,
    HistoLearnError,
    InvalidInputTypeError,
    MalformedLabelDataError,
)
from feature_sets import FeatureLabelSet, load_embeddings, split_feature_set
from logging_config import configure_logging
from model_wrappers import available_models
from pipeline_config import PipelineConfig
from plots import close_figure, plot_confusion_matrix, save_figure, visualize_embeddings
from reductions import available_reductions
from training_pipeline import (
    EvaluationResult,
    TrainedPipeline,
    evaluate_model,
    prepare_metadata,
    train_model,
)

LOGGER = logging.getLogger("histolearn.cli")

BUNDLE_NAME = "model.joblib"
METADATA_NAME = "metadata.json"


def _read_table(path: Path, sep: str, header: bool) -> pd.DataFrame:
    return pd.read_csv(path, sep=sep, header=0 if header else None)


def _load_feature_set(args: argparse.Namespace) -> FeatureLabelSet:
    features = _read_table(Path(args.features), args.sep, not args.no_header)
    labels = None
    if args.labels:
        label_table = _read_table(Path(args.labels), args.sep, not args.no_header)
        if label_table.shape[1] != 1:
            raise MalformedLabelDataError(
                f"Label file must have exactly one column, found {label_table.shape[1]}."
            )
        labels = label_table
    LOGGER.info("Loaded %d rows x %d columns from %s", features.shape[0], features.shape[1], args.features)
    return load_embeddings(features, labels, require_label=True)


def _config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig.from_env().with_overrides(
        random_state=getattr(args, "random_state", None),
        cv_folds=getattr(args, "cv_folds", None),
        n_jobs=getattr(args, "n_jobs", None),
        train_fraction=getattr(args, "train_fraction", None),
        split_seed=getattr(args, "seed", None),
    )


def _dump_bundle(result: TrainedPipeline, output_dir: Path, metadata: Dict[str, object]) -> Path:
    bundle = {
        "pipeline": result,
        "metadata": metadata,
        "timestamp": metadata.get("timestamp"),
    }
    bundle_path = output_dir / BUNDLE_NAME
    bundle_path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(bundle, bundle_path)
    return bundle_path


def _load_bundle(path: Path) -> TrainedPipeline:
    bundle = joblib.load(path)
    pipeline = bundle.get("pipeline") if isinstance(bundle, dict) else bundle
    if not isinstance(pipeline, TrainedPipeline):
        raise InvalidInputTypeError(f"{path} does not contain a trained HistoLearn pipeline.")
    return pipeline


def _write_metadata(path: Path, metadata: Dict[str, object]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(metadata, handle, indent=2, default=str)
    return path


def _evaluation_summary(evaluation: EvaluationResult, output_dir: Optional[Path]) -> Dict[str, object]:
    summary: Dict[str, object] = {
        "train_accuracy": evaluation.train_metric,
        "test_accuracy": evaluation.test_metric,
        "classes": [str(label) for label in evaluation.test_confusion.columns],
        "test_confusion": evaluation.test_confusion.to_numpy().tolist(),
    }
    if output_dir is not None:
        summary["train_plot"] = str(save_figure(evaluation.train_conf_matrix, output_dir / "train_confusion.png"))
        summary["test_plot"] = str(save_figure(evaluation.test_conf_matrix, output_dir / "test_confusion.png"))
    return summary


def _train_and_save(
    train_set: FeatureLabelSet,
    args: argparse.Namespace,
    config: PipelineConfig,
) -> Tuple[TrainedPipeline, Dict[str, object]]:
    LOGGER.info("Training model: %s + %s (dr_k=%d)", args.dr, args.model, args.dr_k)
    pipeline = train_model(train_set, dr=args.dr, dr_k=args.dr_k, model=args.model, config=config)
    metadata = prepare_metadata(pipeline)
    metadata["timestamp"] = datetime.now(timezone.utc).isoformat()
    metadata["train_rows"] = train_set.n_samples

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    bundle_path = _dump_bundle(pipeline, output_dir, metadata)
    metadata_path = _write_metadata(output_dir / METADATA_NAME, metadata)
    train_plot = save_figure(
        plot_confusion_matrix(pipeline.train_confusion, "Train Confusion Matrix"),
        output_dir / "train_confusion.png",
    )
    summary = {
        "method": list(pipeline.method),
        "dr_dim": pipeline.dr_dim,
        "effective_dim": pipeline.effective_dim,
        "classifier_params": metadata["classifier_params"],
        "train_accuracy": pipeline.train_accuracy,
        "output_dir": str(output_dir),
        "bundle_path": str(bundle_path),
        "metadata_path": str(metadata_path),
        "train_plot": str(train_plot),
    }
    return pipeline, summary


def run_visualize(args: argparse.Namespace) -> Dict[str, object]:
    config = _config_from_args(args)
    data = _load_feature_set(args)
    plot = visualize_embeddings(data, args.dimensions, args.method, random_state=config.random_state)
    try:
        output = save_figure(plot, Path(args.output))
    finally:
        close_figure(plot)
    return {"plot": str(output), "kind": type(plot).__name__, "samples": data.n_samples}


def run_train(args: argparse.Namespace) -> Dict[str, object]:
    config = _config_from_args(args)
    data = _load_feature_set(args)
    _, summary = _train_and_save(data, args, config)
    return summary


def run_evaluate(args: argparse.Namespace) -> Dict[str, object]:
    pipeline = _load_bundle(Path(args.model_path))
    data = _load_feature_set(args)
    evaluation = evaluate_model(pipeline, data)
    output_dir = Path(args.output_dir) if args.output_dir else None
    summary = _evaluation_summary(evaluation, output_dir)
    summary["method"] = list(pipeline.method)
    return summary


def run_pipeline(args: argparse.Namespace) -> Dict[str, object]:
    config = _config_from_args(args)
    data = _load_feature_set(args)
    train_set, test_set = split_feature_set(
        data,
        config.train_fraction,
        random_state=config.split_seed,
    )
    pipeline, summary = _train_and_save(train_set, args, config)
    evaluation = evaluate_model(pipeline, test_set)
    summary.update(_evaluation_summary(evaluation, Path(args.output_dir)))
    summary["train_rows"] = train_set.n_samples
    summary["test_rows"] = test_set.n_samples
    return summary


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--features", required=True, help="CSV/TSV file of embeddings (rows = samples).")
    parser.add_argument("--labels", required=True, help="CSV/TSV file with exactly one label column.")
    parser.add_argument("--sep", default=",", help="Field separator (default ',').")
    parser.add_argument("--no-header", action="store_true", help="Input files have no header row.")


def _add_training_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dr", default="pca", choices=available_reductions(), help="Reduction method.")
    parser.add_argument("--dr-k", type=int, default=20, dest="dr_k", help="Number of components to keep.")
    parser.add_argument("--model", default="knn", help=f"Classifier ({', '.join(available_models())}).")
    parser.add_argument("--cv-folds", type=int, dest="cv_folds", help="Cross-validation folds.")
    parser.add_argument("--n-jobs", type=int, dest="n_jobs", help="Parallel jobs for cross-validation.")
    parser.add_argument("--random-state", type=int, dest="random_state", help="Seed for PCA and CV folds.")
    parser.add_argument("--output-dir", type=Path, default=Path("histolearn_runs"))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HistoLearn embedding CLI")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--log-dir", type=Path, help="Directory for the rotating log file.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    viz_parser = subparsers.add_parser("visualize", help="Plot embeddings in a reduced space.")
    _add_input_arguments(viz_parser)
    viz_parser.add_argument("--dimensions", type=int, default=2, help="Dimensions to plot (2-10).")
    viz_parser.add_argument("--method", default="pca", help="Reduction method.")
    viz_parser.add_argument("--random-state", type=int, dest="random_state", help="Seed for PCA.")
    viz_parser.add_argument("--output", type=Path, default=Path("embeddings.png"), help="Output image path.")

    train_parser = subparsers.add_parser("train", help="Fit a reduction + classifier pipeline.")
    _add_input_arguments(train_parser)
    _add_training_arguments(train_parser)

    eval_parser = subparsers.add_parser("evaluate", help="Evaluate a saved pipeline on labelled data.")
    _add_input_arguments(eval_parser)
    eval_parser.add_argument("--model-path", required=True, help="Path to a joblib bundle.")
    eval_parser.add_argument("--output-dir", type=Path, help="Directory for confusion-matrix images.")

    run_parser = subparsers.add_parser("run", help="Split, train and evaluate in one go.")
    _add_input_arguments(run_parser)
    _add_training_arguments(run_parser)
    run_parser.add_argument("--train-fraction", type=float, dest="train_fraction", help="Train share (0-1).")
    run_parser.add_argument("--seed", type=int, help="Seed for the train/test split.")

    subparsers.add_parser("list-models", help="List supported reduction and classifier identifiers.")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = PipelineConfig.from_env()
    log_dir = args.log_dir or config.log_dir
    _, log_path = configure_logging(Path(log_dir), level=logging.DEBUG if args.verbose else logging.INFO)

    errors = ErrorManager()
    errors.set_log_path(log_path)

    try:
        if args.command == "visualize":
            result = run_visualize(args)
        elif args.command == "train":
            result = run_train(args)
        elif args.command == "evaluate":
            result = run_evaluate(args)
        elif args.command == "run":
            result = run_pipeline(args)
        elif args.command == "list-models":
            result = {"reductions": available_reductions(), "models": available_models()}
        else:  # pragma: no cover - argparse restricts the choices
            parser.error("Unknown command")
            return 2
    except (HistoLearnError, OSError, pd.errors.ParserError) as exc:
        record = errors.register_exception(f"{args.command} failed", exc)
        LOGGER.error("%s", record.formatted_message)
        if args.verbose:
            raise
        return 1

    json.dump(result, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
