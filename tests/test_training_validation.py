import logging

from entry_timing.config import GradientDescentConfig, ModelingConfig
from entry_timing.taxonomy import DOMAIN_KEYS
from entry_timing.training_validation import train_robust_models


FAST_MODELING = ModelingConfig(
    ridge=GradientDescentConfig(0.01, 300, 0.2),
    logistic=GradientDescentConfig(0.02, 300, 0.1),
    platt=GradientDescentConfig(0.01, 200, 0.01),
    min_segment_rows=50,
)


def test_robust_training_report(modeling_rows):
    result = train_robust_models(modeling_rows(400), FAST_MODELING)
    assert result is not None
    report = result.report

    sample = report["sample"]
    assert sample["totalRows"] == 400
    assert sample["train"] + sample["valid"] + sample["test"] == 400
    assert sample["regressionRows"] == sample["classificationRows"]

    setup = report["setup"]
    assert setup["segmentation"]["regressionSegmentModels"] == 4
    assert setup["winsorization"]["lowValue"] < setup["winsorization"]["highValue"]
    assert setup["calibration"]["type"] == "platt"

    regression = report["models"]["regression"]
    classification = report["models"]["classification"]
    assert regression["target"] == "deltaNetPnlPolicyWindowAtNowSize"
    assert list(regression["byDomainOnTest"]) == DOMAIN_KEYS
    assert regression["byDomainOnTest"]["finance"]["count"] == 0
    assert regression["test"]["count"] == sample["regressionRows"]["test"]
    assert classification["tunedThreshold"] == result.artifact.threshold
    assert len(classification["thresholdTuningOnValidation"]) == len(FAST_MODELING.threshold_grid)
    assert classification["thresholdTuningOnValidation"][0]["threshold"] == result.artifact.threshold

    summary = report["policyBacktestSummary"]
    assert summary["testAtTunedThreshold"]["rows"] == sample["regressionRows"]["test"]
    assert summary["validationAtTunedThreshold"]["threshold"] == result.artifact.threshold


def test_censored_training_slice_skips_training(modeling_rows, caplog):
    with caplog.at_level(logging.WARNING):
        result = train_robust_models(modeling_rows(100, censored_until=100), FAST_MODELING)
    assert result is None
    assert "No usable training rows" in caplog.text
