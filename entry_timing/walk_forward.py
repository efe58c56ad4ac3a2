"""Rolling walk-forward backtest: refit, calibrate and tune from scratch in every window."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from entry_timing.backtesting import evaluate_rows
from entry_timing.config import WalkForwardConfig
from entry_timing.rows import ModelingRow, usable_rows
from entry_timing.segmented_model import fit_model_artifact
from entry_timing.time_splits import generate_walk_forward_offsets, slice_window


logger = logging.getLogger(__name__)


def iso_utc(ts_ms: int) -> str:
    """Millisecond-precision ISO-8601 UTC timestamp, e.g. ``2024-01-01T00:00:00.000Z``."""
    return pd.Timestamp(ts_ms, unit="ms", tz="UTC").strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass(frozen=True)
class WindowResult:
    """Out-of-sample outcome of one walk-forward window."""

    start_ts_ms: int
    end_ts_ms: int
    threshold: float
    train_rows: int
    valid_rows: int
    test_rows: int
    valid_best_mean_relative_pnl: Optional[float]
    mean_relative_pnl: Optional[float]
    total_relative_pnl: float
    buy_rate: Optional[float]
    wait_rate: Optional[float]
    mean_oracle_relative_pnl: Optional[float]
    total_oracle_relative_pnl: float

    def to_dict(self, window_index: int) -> Dict[str, Any]:
        return {
            "windowIndex": window_index,
            "startTs": iso_utc(self.start_ts_ms),
            "endTs": iso_utc(self.end_ts_ms),
            "threshold": self.threshold,
            "trainRows": self.train_rows,
            "validRows": self.valid_rows,
            "testRows": self.test_rows,
            "validBestMeanRelativePnl": self.valid_best_mean_relative_pnl,
            "meanRelativePnl": self.mean_relative_pnl,
            "totalRelativePnl": self.total_relative_pnl,
            "buyRate": self.buy_rate,
            "waitRate": self.wait_rate,
            "meanOracleRelativePnl": self.mean_oracle_relative_pnl,
            "totalOracleRelativePnl": self.total_oracle_relative_pnl,
        }


@dataclass(frozen=True)
class WalkForwardReport:
    config: WalkForwardConfig
    windows: List[WindowResult]

    def summary(self) -> Dict[str, Any]:
        totals = pd.Series([w.total_relative_pnl for w in self.windows], dtype=float)
        buy_rates = pd.Series([w.buy_rate for w in self.windows], dtype=float).dropna()
        if totals.empty:
            return {
                "windowCount": 0,
                "meanTotalRelativePnlPerWindow": None,
                "medianTotalRelativePnlPerWindow": None,
                "profitableWindowRate": None,
                "meanBuyRate": None,
            }
        return {
            "windowCount": int(totals.size),
            "meanTotalRelativePnlPerWindow": float(totals.mean()),
            "medianTotalRelativePnlPerWindow": float(np.quantile(totals.to_numpy(), 0.5)),
            "profitableWindowRate": float((totals > 0).mean()),
            "meanBuyRate": float(buy_rates.mean()) if not buy_rates.empty else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "summary": self.summary(),
            "windows": [window.to_dict(index) for index, window in enumerate(self.windows, start=1)],
        }


def run_window(rows: Sequence[ModelingRow], start: int, config: WalkForwardConfig) -> Optional[WindowResult]:
    """Fit and evaluate the window starting at ``start``; ``None`` when a slice is too thin."""
    window = slice_window(
        rows,
        start,
        train_window=config.train_count,
        val_window=config.valid_count,
        test_window=config.test_count,
    )
    train = usable_rows(window.train)
    valid = usable_rows(window.valid)
    test = usable_rows(window.test)
    if len(train) < config.min_train_rows or len(valid) < config.min_valid_rows or len(test) < config.min_test_rows:
        logger.debug(
            "Skipping window at offset %d: %d/%d/%d usable rows", start, len(train), len(valid), len(test)
        )
        return None

    fit = fit_model_artifact(train, valid, config.modeling)
    artifact = fit.artifact
    evaluation = evaluate_rows(artifact, test, artifact.threshold)
    return WindowResult(
        start_ts_ms=window.train[0].decision_ts_ms,
        end_ts_ms=window.test[-1].decision_ts_ms,
        threshold=artifact.threshold,
        train_rows=len(train),
        valid_rows=len(valid),
        test_rows=len(test),
        valid_best_mean_relative_pnl=fit.validation_sweep[0].mean_relative_pnl,
        mean_relative_pnl=evaluation.mean_relative_pnl,
        total_relative_pnl=evaluation.total_relative_pnl,
        buy_rate=evaluation.buy_rate,
        wait_rate=evaluation.wait_rate,
        mean_oracle_relative_pnl=evaluation.mean_oracle_relative_pnl,
        total_oracle_relative_pnl=evaluation.total_oracle_relative_pnl,
    )


def run_walk_forward(rows: Sequence[ModelingRow], config: WalkForwardConfig = WalkForwardConfig()) -> WalkForwardReport:
    """Evaluate every full window in offset order; windows may be fitted in parallel."""
    offsets = generate_walk_forward_offsets(
        len(rows),
        train_window=config.train_count,
        val_window=config.valid_count,
        test_window=config.test_count,
        step=config.stride,
    )
    logger.info("Running %d walk-forward windows over %d rows (n_jobs=%d)", len(offsets), len(rows), config.n_jobs)
    if config.n_jobs == 1:
        results = [run_window(rows, start, config) for start in offsets]
    else:
        results = Parallel(n_jobs=config.n_jobs)(delayed(run_window)(rows, start, config) for start in offsets)
    windows = [result for result in results if result is not None]
    logger.info("Evaluated %d of %d walk-forward windows", len(windows), len(offsets))
    return WalkForwardReport(config=config, windows=windows)
