"""Buy-now versus wait decision evaluation relative to an always-buy-now baseline."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from entry_timing.config import ModelingConfig
from entry_timing.regression_training import regression_metrics
from entry_timing.rows import ModelingRow, usable_rows
from entry_timing.time_splits import split_chronological

if TYPE_CHECKING:
    from entry_timing.segmented_model import ModelArtifact


logger = logging.getLogger(__name__)

BUY_NOW = "buy_now"
WAIT = "wait"


@dataclass(frozen=True)
class DecisionEvaluation:
    """Decisions, per-row rewards, and aggregate PnL at one threshold.

    Buying now is the baseline, so its reward is 0; waiting earns the realized
    policy-window uplift. Rows without a target stay in ``rows`` and the
    buy/wait rates but are left out of every PnL aggregate.
    """

    threshold: float
    decisions: Tuple[str, ...]
    rewards: Tuple[Optional[float], ...]
    rows: int
    buy_rate: Optional[float]
    wait_rate: Optional[float]
    mean_relative_pnl: Optional[float]
    total_relative_pnl: float
    mean_oracle_relative_pnl: Optional[float]
    total_oracle_relative_pnl: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "rows": self.rows,
            "buyRate": self.buy_rate,
            "waitRate": self.wait_rate,
            "meanRelativePnlVsAlwaysBuyNow": self.mean_relative_pnl,
            "totalRelativePnlVsAlwaysBuyNow": self.total_relative_pnl,
            "meanOracleRelativePnlVsAlwaysBuyNow": self.mean_oracle_relative_pnl,
            "totalOracleRelativePnlVsAlwaysBuyNow": self.total_oracle_relative_pnl,
        }


def _mean_or_none(values: np.ndarray) -> Optional[float]:
    return float(np.mean(values)) if values.size else None


def evaluate_decisions(
    probabilities: Sequence[float],
    targets: Sequence[Optional[float]],
    threshold: float,
) -> DecisionEvaluation:
    probabilities = np.asarray(probabilities, dtype=float)
    if probabilities.shape[0] != len(targets):
        raise ValueError("probabilities and targets must have the same length.")
    buy = probabilities >= threshold
    decisions = tuple(BUY_NOW if flag else WAIT for flag in buy)
    rewards = tuple(
        None if target is None else (0.0 if flag else float(target))
        for flag, target in zip(buy, targets)
    )
    observed = np.array([reward for reward in rewards if reward is not None], dtype=float)
    oracle = np.array([max(0.0, float(t)) for t in targets if t is not None], dtype=float)
    return DecisionEvaluation(
        threshold=float(threshold),
        decisions=decisions,
        rewards=rewards,
        rows=len(decisions),
        buy_rate=_mean_or_none(buy.astype(float)),
        wait_rate=_mean_or_none((~buy).astype(float)),
        mean_relative_pnl=_mean_or_none(observed),
        total_relative_pnl=float(observed.sum()),
        mean_oracle_relative_pnl=_mean_or_none(oracle),
        total_oracle_relative_pnl=float(oracle.sum()),
    )


def threshold_sweep(
    probabilities: Sequence[float],
    targets: Sequence[Optional[float]],
    grid: Sequence[float],
) -> List[DecisionEvaluation]:
    """Evaluate every grid threshold, best mean relative PnL first.

    The sort is stable, so equal rewards keep grid order and the lowest
    threshold wins a tie.
    """
    evaluations = [evaluate_decisions(probabilities, targets, t) for t in grid]
    return sorted(
        evaluations,
        key=lambda e: e.mean_relative_pnl if e.mean_relative_pnl is not None else -np.inf,
        reverse=True,
    )


def select_threshold(
    probabilities: Sequence[float],
    targets: Sequence[Optional[float]],
    grid: Sequence[float],
) -> Tuple[float, List[DecisionEvaluation]]:
    if not grid:
        raise ValueError("Threshold grid must not be empty.")
    sweep = threshold_sweep(probabilities, targets, grid)
    return sweep[0].threshold, sweep


def evaluate_rows(artifact: "ModelArtifact", rows: Sequence[ModelingRow], threshold: float) -> DecisionEvaluation:
    probabilities = artifact.predict_probability(rows)
    return evaluate_decisions(probabilities, [row.reg_target for row in rows], threshold)


def run_backtest(
    rows: Sequence[ModelingRow],
    artifact: "ModelArtifact",
    modeling: ModelingConfig,
) -> Dict[str, Any]:
    """Replay a fitted artifact over the validation and test slices of the chronological split."""
    split = split_chronological(rows, modeling.train_fraction, modeling.valid_fraction)
    valid_rows = usable_rows(split.valid)
    test_rows = usable_rows(split.test)

    valid_eval = evaluate_rows(artifact, valid_rows, artifact.threshold)
    test_eval = evaluate_rows(artifact, test_rows, artifact.threshold)
    test_probs = artifact.predict_probability(test_rows)
    test_targets = [row.reg_target for row in test_rows]
    sweep = [evaluate_decisions(test_probs, test_targets, t) for t in modeling.threshold_grid]
    regression = regression_metrics(test_targets, artifact.predict_regression(test_rows))

    logger.info(
        "Backtest at threshold %.2f: valid mean=%s test mean=%s",
        artifact.threshold,
        valid_eval.mean_relative_pnl,
        test_eval.mean_relative_pnl,
    )
    return {
        "splitSizes": {
            "allPreparedRows": len(rows),
            "validationRowsUsed": len(valid_rows),
            "testRowsUsed": len(test_rows),
        },
        "tunedThresholdFromValidation": artifact.threshold,
        "validationAtTunedThreshold": valid_eval.to_dict(),
        "testAtTunedThreshold": test_eval.to_dict(),
        "testThresholdSweep": [evaluation.to_dict() for evaluation in sweep],
        "regressionSanityOnTest": {"mae": regression["mae"], "rmse": regression["rmse"]},
    }
