import numpy as np
import pytest

from entry_timing.classification_pipeline import (
    PlattCalibration,
    classification_metrics,
    fit_platt,
    has_both_classes,
    logistic_train,
    positive_class_weight,
    sigmoid,
)
from entry_timing.config import GradientDescentConfig


def test_sigmoid_is_stable_at_extremes():
    values = sigmoid(np.array([-1000.0, 0.0, 1000.0]))
    assert np.all(np.isfinite(values))
    assert values[1] == pytest.approx(0.5)
    assert values[0] == pytest.approx(0.0)
    assert values[2] == pytest.approx(1.0)


def test_positive_class_weight_balances_classes():
    assert positive_class_weight([1, 0, 0, 0]) == 3.0
    assert positive_class_weight([0, 0]) == 1.0
    assert has_both_classes([0, 1])
    assert not has_both_classes([1, 1])


def test_logistic_ranks_positives_above_negatives():
    x = np.linspace(-2.0, 2.0, 40)
    X = np.column_stack([np.ones_like(x), x])
    y = (x > 0).astype(float)
    w = logistic_train(X, y, GradientDescentConfig(0.5, 500, 0.0), pos_weight=positive_class_weight(y))
    probs = sigmoid(X @ w)
    assert probs[y == 1].min() > probs[y == 0].max()


def test_logistic_is_deterministic():
    rng = np.random.RandomState(3)
    X = np.column_stack([np.ones(30), rng.normal(size=(30, 2))])
    y = (rng.uniform(size=30) > 0.5).astype(float)
    config = GradientDescentConfig(0.02, 100, 0.1)
    assert np.array_equal(logistic_train(X, y, config, pos_weight=2.0), logistic_train(X, y, config, pos_weight=2.0))


def test_platt_without_validation_is_identity():
    calibration = fit_platt([], [], GradientDescentConfig(0.01, 100, 0.01))
    assert calibration == PlattCalibration(1.0, 0.0)
    assert calibration.probability(0.0) == pytest.approx(0.5)


def test_platt_shifts_toward_observed_rate():
    calibration = fit_platt(np.zeros(20), np.ones(20), GradientDescentConfig(0.1, 500, 0.0))
    assert calibration.b > 0
    assert calibration.a == pytest.approx(1.0)
    assert calibration.to_dict()["type"] == "platt"


def test_classification_metrics_handle_single_class():
    metrics = classification_metrics([1, 1, 1], [0.9, 0.8, 0.2], threshold=0.5)
    assert metrics["count"] == 3
    assert isinstance(metrics["count"], int)
    assert metrics["accuracy"] == pytest.approx(2.0 / 3.0)
    assert metrics["auc"] is None


def test_classification_metrics_with_both_classes():
    metrics = classification_metrics([0, 1, 1, 0], [0.2, 0.9, 0.6, 0.7], threshold=0.5)
    assert metrics["precision"] == pytest.approx(2.0 / 3.0)
    assert metrics["recall"] == 1.0
    assert metrics["auc"] == pytest.approx(0.75)
    assert classification_metrics([], [])["count"] == 0
