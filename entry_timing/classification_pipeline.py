"""Class-weighted L2 logistic regression and Platt recalibration of its logits."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, f1_score, precision_score, recall_score, roc_auc_score

from entry_timing.config import GradientDescentConfig


logger = logging.getLogger(__name__)


def sigmoid(z: np.ndarray | float) -> np.ndarray | float:
    """Overflow-free logistic function."""
    return np.exp(-np.logaddexp(0.0, -np.asarray(z, dtype=float)))


def positive_class_weight(y: Sequence[int]) -> float:
    """``negatives / positives``; 1 when there are no positives."""
    y = np.asarray(y)
    positives = int(np.sum(y == 1))
    negatives = int(np.sum(y == 0))
    return negatives / positives if positives > 0 else 1.0


def has_both_classes(y: Sequence[int]) -> bool:
    y = np.asarray(y)
    return bool(np.any(y == 1) and np.any(y == 0))


def logistic_train(
    X: np.ndarray,
    y: np.ndarray,
    config: GradientDescentConfig,
    *,
    pos_weight: float = 1.0,
) -> np.ndarray:
    """Fit logistic weights from zero with per-example class weights.

    Positives carry ``pos_weight`` and negatives 1; the gradient is averaged
    over the batch and the L2 term skips the bias.
    """
    n, d = X.shape
    if n == 0:
        raise ValueError("logistic_train needs at least one training row.")
    y = np.asarray(y, dtype=float)
    sample_weight = np.where(y == 1, pos_weight, 1.0)
    w = np.zeros(d)
    for _ in range(config.epochs):
        p = sigmoid(X @ w)
        grad = X.T @ ((p - y) * sample_weight) / n
        grad[1:] += 2.0 * config.l2 * w[1:]
        w -= config.learning_rate * grad
    return w


@dataclass(frozen=True)
class PlattCalibration:
    a: float = 1.0
    b: float = 0.0

    def probability(self, logits: np.ndarray | float) -> np.ndarray | float:
        return sigmoid(self.a * np.asarray(logits, dtype=float) + self.b)

    def to_dict(self) -> Dict[str, float]:
        return {"type": "platt", "a": self.a, "b": self.b}


def fit_platt(logits: Sequence[float], labels: Sequence[int], config: GradientDescentConfig) -> PlattCalibration:
    """Fit ``sigmoid(a * logit + b)`` on held-out logits by L2-regularized log-loss descent."""
    logits = np.asarray(logits, dtype=float)
    labels = np.asarray(labels, dtype=float)
    a, b = 1.0, 0.0
    if logits.size == 0:
        return PlattCalibration(a, b)
    for _ in range(config.epochs):
        err = sigmoid(a * logits + b) - labels
        grad_a = float(np.mean(err * logits)) + 2.0 * config.l2 * a
        grad_b = float(np.mean(err)) + 2.0 * config.l2 * b
        a -= config.learning_rate * grad_a
        b -= config.learning_rate * grad_b
    return PlattCalibration(a, b)


def classification_metrics(
    y_true: Sequence[int],
    probs: Sequence[float],
    threshold: float = 0.5,
) -> Dict[str, Optional[float]]:
    """Threshold metrics plus ROC AUC; undefined ratios are reported as ``None``."""
    y_true = np.asarray(y_true, dtype=int)
    probs = np.asarray(probs, dtype=float)
    if y_true.size == 0:
        return {"count": 0, "accuracy": None, "precision": None, "recall": None, "f1": None, "auc": None}
    preds = (probs >= threshold).astype(int)
    metrics = {
        "accuracy": accuracy_score(y_true, preds),
        "precision": precision_score(y_true, preds, zero_division=np.nan),
        "recall": recall_score(y_true, preds, zero_division=np.nan),
        "f1": f1_score(y_true, preds, zero_division=np.nan),
        "auc": roc_auc_score(y_true, probs) if has_both_classes(y_true) else None,
    }
    return {"count": int(y_true.size), **{key: _finite_or_none(value) for key, value in metrics.items()}}


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if np.isfinite(value) else None
