"""Automation and orchestration entry point for the entry-timing workflow."""
from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from entry_timing.backtesting import run_backtest
from entry_timing.config import (
    DATA_DIR,
    DEFAULT_CONFIG_PATH,
    load_config,
    merge_configs,
    modeling_config_from_dict,
    walk_forward_config_from_dict,
)
from entry_timing.labeling import label_dataset, summarize_labels
from entry_timing.report_outputs import read_jsonl, save_report, write_jsonl
from entry_timing.rows import ModelingRow, prepare_modeling_rows
from entry_timing.segmented_model import load_model_artifact, save_model_artifact
from entry_timing.training_validation import train_robust_models
from entry_timing.walk_forward import run_walk_forward


LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOGGER = logging.getLogger("orchestrator")

DEFAULT_INPUT_PATH = DATA_DIR / "training_dataset.jsonl"
LABELED_FILENAME = "labeled_training_dataset.jsonl"
LABEL_SUMMARY_FILENAME = "label_summary.json"
MODEL_REPORT_FILENAME = "model_robust_report.json"
MODEL_ARTIFACTS_FILENAME = "model_robust_artifacts.json"
MODEL_JOBLIB_FILENAME = "model_robust_artifacts.joblib"
BACKTEST_REPORT_FILENAME = "model_robust_backtest_report.json"
WALK_FORWARD_REPORT_FILENAME = "walkforward_backtest_report.json"

DEFAULT_SEQUENCE = ["generate_labels", "train_models", "run_backtest", "run_walk_forward"]


@dataclass
class TaskContext:
    input_path: Path
    output_dir: Path
    config: Dict[str, Any]

    @property
    def labeled_path(self) -> Path:
        configured = self.config.get("labeled_dataset")
        return Path(configured) if configured else self.output_dir / LABELED_FILENAME


# ============================================================
# Orchestrator functions per step
# ============================================================


def _load_modeling_rows(context: TaskContext) -> List[ModelingRow]:
    rows = prepare_modeling_rows(read_jsonl(context.labeled_path))
    LOGGER.info("Prepared %d modeling rows from %s", len(rows), context.labeled_path)
    return rows


def run_generate_labels_task(context: TaskContext) -> Path:
    LOGGER.info("Generating labels from %s", context.input_path)
    raw_rows = read_jsonl(context.input_path)
    labeled, series_count = label_dataset(raw_rows)
    path = write_jsonl(context.labeled_path, labeled)
    LOGGER.info("Wrote labeled dataset: %s", path)
    save_report(
        context.output_dir,
        stage="labels",
        filename=LABEL_SUMMARY_FILENAME,
        payload={"inputPath": str(context.input_path), "outputPath": str(path), **summarize_labels(raw_rows, labeled, series_count)},
        metadata={"rows": len(labeled), "series": series_count},
    )
    return path


def run_train_models_task(context: TaskContext) -> Optional[Path]:
    modeling = modeling_config_from_dict(context.config.get("modeling"))
    result = train_robust_models(_load_modeling_rows(context), modeling)
    if result is None:
        # a later backtest must not pick up artifacts from an earlier run
        for filename in (MODEL_JOBLIB_FILENAME, MODEL_ARTIFACTS_FILENAME):
            stale = context.output_dir / filename
            if stale.exists():
                LOGGER.warning("Removing stale model artifact %s", stale)
                stale.unlink()
        return None
    save_report(
        context.output_dir,
        stage="training",
        filename=MODEL_REPORT_FILENAME,
        payload=result.report,
        metadata={"threshold": result.artifact.threshold},
    )
    save_report(
        context.output_dir,
        stage="artifacts",
        filename=MODEL_ARTIFACTS_FILENAME,
        payload=result.artifact.to_dict(),
    )
    return save_model_artifact(result.artifact, context.output_dir / MODEL_JOBLIB_FILENAME)


def run_backtest_task(context: TaskContext) -> Path:
    modeling = modeling_config_from_dict(context.config.get("modeling"))
    artifact = load_model_artifact(context.output_dir / MODEL_JOBLIB_FILENAME)
    LOGGER.info("Running backtest at tuned threshold %.2f", artifact.threshold)
    report = run_backtest(_load_modeling_rows(context), artifact, modeling)
    return save_report(
        context.output_dir,
        stage="backtest",
        filename=BACKTEST_REPORT_FILENAME,
        payload=report,
        metadata={"threshold": artifact.threshold},
    )


def run_walk_forward_task(context: TaskContext) -> Path:
    section = dict(context.config.get("walk_forward") or {})
    if context.config.get("n_jobs") is not None:
        section["n_jobs"] = context.config["n_jobs"]
    config = walk_forward_config_from_dict(section)
    report = run_walk_forward(_load_modeling_rows(context), config).to_dict()
    return save_report(
        context.output_dir,
        stage="walk_forward",
        filename=WALK_FORWARD_REPORT_FILENAME,
        payload=report,
        metadata={"windowCount": report["summary"]["windowCount"]},
    )


TASK_HANDLERS: Dict[str, Callable[[TaskContext], Any]] = {
    "generate_labels": run_generate_labels_task,
    "train_models": run_train_models_task,
    "run_backtest": run_backtest_task,
    "run_walk_forward": run_walk_forward_task,
}


def dispatch(task_name: str, context: TaskContext) -> Any:
    handler = TASK_HANDLERS.get(task_name)
    if handler is None:
        raise ValueError(f"Unknown task: {task_name}")
    return handler(context)


# ============================================================
# Full pipeline sequencing
# ============================================================


def run_full_sequence(context: TaskContext) -> None:
    sequence = context.config.get("full_run_sequence", DEFAULT_SEQUENCE)
    enabled_flags = context.config.get("full_run_flags", {})

    for task_name in sequence:
        if not enabled_flags.get(task_name, True):
            LOGGER.info("Skipping disabled task: %s", task_name)
            continue
        LOGGER.info("Starting task: %s", task_name)
        try:
            dispatch(task_name, context)
        except Exception as exc:
            LOGGER.exception("Task %s failed: %s", task_name, exc)
            if context.config.get("stop_on_failure", True):
                raise


# ============================================================
# CLI and dispatch
# ============================================================


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Entry-timing label and backtest orchestrator")
    parser.add_argument("--task", required=True, choices=list(TASK_HANDLERS) + ["full_run"])
    parser.add_argument("--input", type=Path)
    parser.add_argument("--output-dir", type=Path)
    parser.add_argument("--labeled-dataset", type=Path)
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--log-file", type=Path)
    parser.add_argument("--n-jobs", type=int)
    parser.add_argument("--continue-on-failure", dest="stop_on_failure", action="store_false", default=None)
    return parser.parse_args(argv)


def setup_logging(log_path: Optional[Path]) -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if log_path is None:
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_file)
    base_config = load_config(args.config)
    overrides = {
        "input": str(args.input) if args.input else None,
        "output_dir": str(args.output_dir) if args.output_dir else None,
        "labeled_dataset": str(args.labeled_dataset) if args.labeled_dataset else None,
        "n_jobs": args.n_jobs,
        "stop_on_failure": args.stop_on_failure,
    }
    config = merge_configs(base_config, overrides)
    context = TaskContext(
        input_path=Path(config.get("input", DEFAULT_INPUT_PATH)),
        output_dir=Path(config.get("output_dir", DATA_DIR)),
        config=config,
    )

    if args.task == "full_run":
        run_full_sequence(context)
    else:
        dispatch(args.task, context)


if __name__ == "__main__":
    main()
