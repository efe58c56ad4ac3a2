import pytest

from entry_timing.backtesting import (
    BUY_NOW,
    WAIT,
    evaluate_decisions,
    run_backtest,
    select_threshold,
    threshold_sweep,
)
from entry_timing.config import GradientDescentConfig, ModelingConfig
from entry_timing.segmented_model import fit_model_artifact
from entry_timing.rows import usable_rows
from entry_timing.time_splits import split_chronological


FAST_MODELING = ModelingConfig(
    ridge=GradientDescentConfig(0.01, 200, 0.2),
    logistic=GradientDescentConfig(0.02, 200, 0.1),
    platt=GradientDescentConfig(0.01, 100, 0.01),
    min_segment_rows=50,
)


def test_decisions_rewards_and_mean_against_buy_now_baseline():
    evaluation = evaluate_decisions([0.9, 0.3, 0.6], [10.0, -5.0, 20.0], 0.5)
    assert evaluation.decisions == (BUY_NOW, WAIT, BUY_NOW)
    assert evaluation.rewards == (0.0, -5.0, 0.0)
    assert evaluation.mean_relative_pnl == pytest.approx(-5.0 / 3.0)
    assert evaluation.total_relative_pnl == -5.0
    assert evaluation.buy_rate == pytest.approx(2.0 / 3.0)
    assert evaluation.wait_rate == pytest.approx(1.0 / 3.0)
    assert evaluation.mean_oracle_relative_pnl == pytest.approx(10.0)
    assert evaluation.total_oracle_relative_pnl == 30.0


def test_threshold_boundary_buys_now():
    assert evaluate_decisions([0.5], [3.0], 0.5).decisions == (BUY_NOW,)


def test_null_targets_are_counted_but_not_rewarded():
    evaluation = evaluate_decisions([0.1, 0.1, 0.9], [4.0, None, None], 0.5)
    assert evaluation.rows == 3
    assert evaluation.rewards == (4.0, None, None)
    assert evaluation.mean_relative_pnl == 4.0
    assert evaluation.wait_rate == pytest.approx(2.0 / 3.0)
    assert evaluation.mean_oracle_relative_pnl == 4.0


def test_empty_evaluation_has_no_means():
    evaluation = evaluate_decisions([], [], 0.5)
    assert evaluation.rows == 0
    assert evaluation.mean_relative_pnl is None
    assert evaluation.buy_rate is None
    assert evaluation.total_relative_pnl == 0.0


def test_sweep_orders_by_mean_and_keeps_grid_order_on_ties():
    probs = [0.4, 0.62]
    targets = [5.0, -1.0]
    sweep = threshold_sweep(probs, targets, [0.35, 0.45, 0.65])
    # 0.35 buys both (mean 0); 0.45 waits on the first (mean 2.5); 0.65 waits on both (mean 2).
    assert [e.threshold for e in sweep] == [0.45, 0.65, 0.35]

    threshold, _ = select_threshold([0.9, 0.9], [1.0, -1.0], [0.35, 0.4, 0.45])
    assert threshold == 0.35


def test_select_threshold_with_undefined_means_picks_first_grid_value():
    threshold, sweep = select_threshold([0.2], [None], [0.5, 0.6])
    assert threshold == 0.5
    assert sweep[0].mean_relative_pnl is None


def test_select_threshold_requires_grid():
    with pytest.raises(ValueError):
        select_threshold([0.2], [1.0], [])


def test_run_backtest_report_shape(modeling_rows):
    rows = modeling_rows(300)
    split = split_chronological(rows)
    artifact = fit_model_artifact(usable_rows(split.train), usable_rows(split.valid), FAST_MODELING).artifact
    report = run_backtest(rows, artifact, FAST_MODELING)

    assert report["splitSizes"] == {
        "allPreparedRows": 300,
        "validationRowsUsed": len(split.valid),
        "testRowsUsed": len(split.test),
    }
    assert report["tunedThresholdFromValidation"] == artifact.threshold
    assert [e["threshold"] for e in report["testThresholdSweep"]] == list(FAST_MODELING.threshold_grid)
    assert report["testAtTunedThreshold"]["rows"] == len(split.test)
    assert report["regressionSanityOnTest"]["mae"] is not None
