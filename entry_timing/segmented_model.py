"""Global and per-segment models with explicit fallback, calibrated into one artifact."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from joblib import dump, load

from entry_timing.backtesting import DecisionEvaluation, select_threshold
from entry_timing.classification_pipeline import (
    PlattCalibration,
    fit_platt,
    has_both_classes,
    logistic_train,
    positive_class_weight,
)
from entry_timing.config import ModelingConfig
from entry_timing.feature_engineering import (
    FeatureScaler,
    FeatureSchema,
    build_schema,
    fit_scaler,
    vectorize,
)
from entry_timing.regression_training import clip, ridge_train, winsor_bounds
from entry_timing.rows import ModelingRow


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class RegressionSegment:
    weights: np.ndarray
    lo: float
    hi: float
    rows: int

    def to_dict(self) -> Dict[str, Any]:
        return {"weights": self.weights.tolist(), "lo": self.lo, "hi": self.hi, "rows": self.rows}


@dataclass(frozen=True, eq=False)
class ClassificationSegment:
    weights: np.ndarray
    rows: int

    def to_dict(self) -> Dict[str, Any]:
        return {"weights": self.weights.tolist(), "rows": self.rows}


@dataclass(frozen=True, eq=False)
class SegmentedModels:
    """Global weights plus a segment-key lookup table of specialised weights."""

    schema: FeatureSchema
    scaler: FeatureScaler
    winsor_low: float
    winsor_high: float
    regression_weights: np.ndarray
    classification_weights: np.ndarray
    regression_segments: Mapping[str, RegressionSegment]
    classification_segments: Mapping[str, ClassificationSegment]

    def design_matrix(self, rows: Sequence[ModelingRow]) -> np.ndarray:
        return vectorize(rows, self.schema, self.scaler)

    def predict_regression(self, rows: Sequence[ModelingRow]) -> np.ndarray:
        """Predicted policy-window uplift, clipped to the bounds of whichever model scored the row."""
        X = self.design_matrix(rows)
        preds = np.empty(len(rows))
        for i, row in enumerate(rows):
            segment = self.regression_segments.get(row.segment_key)
            if segment is not None:
                preds[i] = clip(float(X[i] @ segment.weights), segment.lo, segment.hi)
            else:
                preds[i] = clip(float(X[i] @ self.regression_weights), self.winsor_low, self.winsor_high)
        return preds

    def predict_logit(self, rows: Sequence[ModelingRow]) -> np.ndarray:
        X = self.design_matrix(rows)
        logits = np.empty(len(rows))
        for i, row in enumerate(rows):
            segment = self.classification_segments.get(row.segment_key)
            weights = segment.weights if segment is not None else self.classification_weights
            logits[i] = float(X[i] @ weights)
        return logits


@dataclass(frozen=True, eq=False)
class ModelArtifact:
    """Everything needed to score a row: models, calibration, and the tuned threshold."""

    models: SegmentedModels
    calibration: PlattCalibration
    threshold: float

    @property
    def schema(self) -> FeatureSchema:
        return self.models.schema

    def predict_regression(self, rows: Sequence[ModelingRow]) -> np.ndarray:
        return self.models.predict_regression(rows)

    def predict_probability(self, rows: Sequence[ModelingRow]) -> np.ndarray:
        """Calibrated probability that buying now is at least as good as waiting."""
        return np.asarray(self.calibration.probability(self.models.predict_logit(rows)), dtype=float).reshape(-1)

    def to_dict(self) -> Dict[str, Any]:
        models = self.models
        return {
            "schema": models.schema.to_dict(),
            "featureNames": models.schema.feature_names(),
            "scaler": models.scaler.to_dict(),
            "winsorization": {"low": models.winsor_low, "high": models.winsor_high},
            "regression": {
                "globalWeights": models.regression_weights.tolist(),
                "segments": {key: seg.to_dict() for key, seg in models.regression_segments.items()},
            },
            "classification": {
                "globalWeights": models.classification_weights.tolist(),
                "segments": {key: seg.to_dict() for key, seg in models.classification_segments.items()},
                "platt": {"a": self.calibration.a, "b": self.calibration.b},
                "tunedThreshold": self.threshold,
            },
        }


@dataclass(frozen=True, eq=False)
class ModelFit:
    artifact: ModelArtifact
    validation_sweep: List[DecisionEvaluation]


def _group_by_segment(rows: Sequence[ModelingRow]) -> Dict[str, List[ModelingRow]]:
    groups: Dict[str, List[ModelingRow]] = {}
    for row in rows:
        groups.setdefault(row.segment_key, []).append(row)
    return groups


def _fit_regression_segment(
    rows: Sequence[ModelingRow], schema: FeatureSchema, scaler: FeatureScaler, modeling: ModelingConfig
) -> RegressionSegment:
    y_raw = np.array([row.reg_target for row in rows], dtype=float)
    lo, hi = winsor_bounds(y_raw, modeling.winsor_low_quantile, modeling.winsor_high_quantile)
    weights = ridge_train(vectorize(rows, schema, scaler), clip(y_raw, lo, hi), modeling.ridge)
    return RegressionSegment(weights=weights, lo=lo, hi=hi, rows=len(rows))


def fit_segmented_models(
    train_rows: Sequence[ModelingRow],
    modeling: ModelingConfig,
    *,
    schema_rows: Optional[Sequence[ModelingRow]] = None,
) -> SegmentedModels:
    """Fit global and per-segment ridge/logistic models on usable training rows.

    ``schema_rows`` (default ``train_rows``) supplies the vocabularies and
    scaler statistics; it must come from the same training slice.
    """
    if not train_rows:
        raise ValueError("Cannot fit models without training rows.")
    basis = train_rows if schema_rows is None else schema_rows
    schema = build_schema(basis)
    scaler = fit_scaler(basis, schema.numeric_keys)

    global_reg = _fit_regression_segment(train_rows, schema, scaler, modeling)

    cls_rows = [row for row in train_rows if row.cls_target is not None]
    if not cls_rows:
        raise ValueError("Cannot fit the classifier without labeled training rows.")
    y_cls = np.array([row.cls_target for row in cls_rows], dtype=float)
    cls_weights = logistic_train(
        vectorize(cls_rows, schema, scaler),
        y_cls,
        modeling.logistic,
        pos_weight=positive_class_weight(y_cls),
    )

    regression_segments: Dict[str, RegressionSegment] = {}
    for key, rows in _group_by_segment(train_rows).items():
        if len(rows) < modeling.min_segment_rows:
            continue
        regression_segments[key] = _fit_regression_segment(rows, schema, scaler, modeling)

    classification_segments: Dict[str, ClassificationSegment] = {}
    for key, rows in _group_by_segment(cls_rows).items():
        if len(rows) < modeling.min_segment_rows:
            continue
        y = np.array([row.cls_target for row in rows], dtype=float)
        if not has_both_classes(y):
            logger.debug("Skipping classifier segment %s: single class", key)
            continue
        weights = logistic_train(
            vectorize(rows, schema, scaler), y, modeling.logistic, pos_weight=positive_class_weight(y)
        )
        classification_segments[key] = ClassificationSegment(weights=weights, rows=len(rows))

    logger.debug(
        "Fitted %d regression and %d classification segment models",
        len(regression_segments),
        len(classification_segments),
    )
    return SegmentedModels(
        schema=schema,
        scaler=scaler,
        winsor_low=global_reg.lo,
        winsor_high=global_reg.hi,
        regression_weights=global_reg.weights,
        classification_weights=cls_weights,
        regression_segments=regression_segments,
        classification_segments=classification_segments,
    )


def fit_model_artifact(
    train_rows: Sequence[ModelingRow],
    valid_rows: Sequence[ModelingRow],
    modeling: ModelingConfig,
    *,
    schema_rows: Optional[Sequence[ModelingRow]] = None,
) -> ModelFit:
    """Fit models on train, calibrate and tune the threshold on validation only."""
    models = fit_segmented_models(train_rows, modeling, schema_rows=schema_rows)

    calib_rows = [row for row in valid_rows if row.cls_target is not None]
    calibration = fit_platt(
        models.predict_logit(calib_rows),
        [row.cls_target for row in calib_rows],
        modeling.platt,
    )
    probabilities = calibration.probability(models.predict_logit(valid_rows))
    threshold, sweep = select_threshold(
        np.asarray(probabilities, dtype=float).reshape(-1),
        [row.reg_target for row in valid_rows],
        modeling.threshold_grid,
    )
    return ModelFit(ModelArtifact(models, calibration, threshold), sweep)


def save_model_artifact(artifact: ModelArtifact, path: Path) -> Path:
    """Persist a fitted artifact to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    dump(artifact, path)
    return path


def load_model_artifact(path: Path) -> ModelArtifact:
    artifact = load(path)
    if not isinstance(artifact, ModelArtifact):
        raise TypeError(f"{path} does not contain a model artifact.")
    return artifact
