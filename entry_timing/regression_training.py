"""Ridge regression by full-batch gradient descent with winsorized targets."""
from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from entry_timing.config import GradientDescentConfig


logger = logging.getLogger(__name__)


def quantile(values: Sequence[float], q: float) -> Optional[float]:
    """Linearly interpolated quantile, ``None`` for an empty sample."""
    if len(values) == 0:
        return None
    return float(np.quantile(np.asarray(values, dtype=float), q))


def winsor_bounds(values: Sequence[float], low_q: float, high_q: float) -> Tuple[Optional[float], Optional[float]]:
    return quantile(values, low_q), quantile(values, high_q)


def clip(values: np.ndarray | float, lo: Optional[float], hi: Optional[float]) -> np.ndarray | float:
    if lo is None or hi is None:
        return values
    return np.minimum(np.maximum(values, lo), hi)


def ridge_train(X: np.ndarray, y: np.ndarray, config: GradientDescentConfig) -> np.ndarray:
    """Fit ridge weights from zero; the bias (column 0) is not penalized.

    Loss is mean squared error plus ``l2 * ||w[1:]||^2``; the gradient is
    averaged over the batch.
    """
    n, d = X.shape
    if n == 0:
        raise ValueError("ridge_train needs at least one training row.")
    w = np.zeros(d)
    for _ in range(config.epochs):
        err = X @ w - y
        grad = (2.0 / n) * (X.T @ err)
        grad[1:] += 2.0 * config.l2 * w[1:]
        w -= config.learning_rate * grad
    return w


def regression_metrics(y_true: Sequence[float], y_pred: Sequence[float]) -> Dict[str, Optional[float]]:
    """MAE, RMSE, R^2 and sign agreement; R^2 is ``None`` for a constant target."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.size == 0 or y_true.shape != y_pred.shape:
        return {"count": 0, "mae": None, "rmse": None, "r2": None, "signAccuracy": None}
    r2 = None if np.var(y_true) == 0 else float(r2_score(y_true, y_pred))
    return {
        "count": int(y_true.size),
        "mae": float(mean_absolute_error(y_true, y_pred)),
        "rmse": float(mean_squared_error(y_true, y_pred) ** 0.5),
        "r2": r2,
        "signAccuracy": float(np.mean(np.sign(y_true) == np.sign(y_pred))),
    }
