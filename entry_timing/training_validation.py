"""Single chronological split training of the segmented models and their report."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np

from entry_timing.backtesting import evaluate_decisions
from entry_timing.classification_pipeline import classification_metrics
from entry_timing.config import ModelingConfig
from entry_timing.regression_training import regression_metrics
from entry_timing.rows import ModelingRow, usable_rows
from entry_timing.segmented_model import ModelArtifact, fit_model_artifact
from entry_timing.taxonomy import DOMAIN_KEYS
from entry_timing.time_splits import split_chronological


logger = logging.getLogger(__name__)

REGRESSION_TARGET = "deltaNetPnlPolicyWindowAtNowSize"
CLASSIFICATION_TARGET = "buyNowBeatsWaitWindow"


@dataclass(frozen=True, eq=False)
class TrainingResult:
    artifact: ModelArtifact
    report: Dict[str, Any]


def _regression_by_domain(rows: Sequence[ModelingRow], preds: np.ndarray) -> Dict[str, Any]:
    by_domain = {}
    for domain in DOMAIN_KEYS:
        idx = [i for i, row in enumerate(rows) if row.domain == domain]
        by_domain[domain] = regression_metrics([rows[i].reg_target for i in idx], preds[idx])
    return by_domain


def _classification_by_domain(rows: Sequence[ModelingRow], probs: np.ndarray, threshold: float) -> Dict[str, Any]:
    by_domain = {}
    for domain in DOMAIN_KEYS:
        idx = [i for i, row in enumerate(rows) if row.domain == domain]
        by_domain[domain] = classification_metrics([rows[i].cls_target for i in idx], probs[idx], threshold)
    return by_domain


def train_robust_models(
    rows: Sequence[ModelingRow],
    modeling: ModelingConfig = ModelingConfig(),
) -> Optional[TrainingResult]:
    """Fit on the oldest 70% of rows, calibrate and tune on the next 15%, report on the rest.

    Returns ``None`` when the training slice holds no usable rows.
    """
    split = split_chronological(rows, modeling.train_fraction, modeling.valid_fraction)
    train = usable_rows(split.train)
    valid = usable_rows(split.valid)
    test = usable_rows(split.test)
    if not train:
        logger.warning("No usable training rows in %d prepared rows; skipping model training", len(rows))
        return None

    logger.info("Training robust models on %d/%d/%d usable rows", len(train), len(valid), len(test))
    fit = fit_model_artifact(train, valid, modeling, schema_rows=split.train)
    artifact = fit.artifact
    models = artifact.models
    threshold = artifact.threshold

    predictions = {name: artifact.predict_regression(part) for name, part in (("train", train), ("valid", valid), ("test", test))}
    probabilities = {name: artifact.predict_probability(part) for name, part in (("train", train), ("valid", valid), ("test", test))}
    parts = {"train": train, "valid": valid, "test": test}

    regression = {
        "target": REGRESSION_TARGET,
        **{name: regression_metrics([r.reg_target for r in part], predictions[name]) for name, part in parts.items()},
        "byDomainOnTest": _regression_by_domain(test, predictions["test"]),
    }
    classification = {
        "target": CLASSIFICATION_TARGET,
        **{
            name: classification_metrics([r.cls_target for r in part], probabilities[name], threshold)
            for name, part in parts.items()
        },
        "tunedThreshold": threshold,
        "thresholdTuningOnValidation": [evaluation.to_dict() for evaluation in fit.validation_sweep],
        "byDomainOnTest": _classification_by_domain(test, probabilities["test"], threshold),
    }

    report = {
        "sample": {
            "totalRows": len(rows),
            **split.sizes(),
            "regressionRows": {name: len(part) for name, part in parts.items()},
            "classificationRows": {
                name: sum(1 for r in part if r.cls_target is not None) for name, part in parts.items()
            },
        },
        "setup": {
            "winsorization": {
                "lowQuantile": modeling.winsor_low_quantile,
                "highQuantile": modeling.winsor_high_quantile,
                "lowValue": models.winsor_low,
                "highValue": models.winsor_high,
            },
            "segmentation": {
                "minSegmentRows": modeling.min_segment_rows,
                "regressionSegmentModels": len(models.regression_segments),
                "classificationSegmentModels": len(models.classification_segments),
            },
            "calibration": artifact.calibration.to_dict(),
        },
        "models": {"regression": regression, "classification": classification},
        "policyBacktestSummary": {
            "validationAtTunedThreshold": evaluate_decisions(
                probabilities["valid"], [r.reg_target for r in valid], threshold
            ).to_dict(),
            "testAtTunedThreshold": evaluate_decisions(
                probabilities["test"], [r.reg_target for r in test], threshold
            ).to_dict(),
        },
    }
    logger.info(
        "Tuned threshold %.2f with %d regression and %d classification segments",
        threshold,
        len(models.regression_segments),
        len(models.classification_segments),
    )
    return TrainingResult(artifact=artifact, report=report)
