"""Feature schema, scaler, and design-matrix construction fitted on a training slice only."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from entry_timing.config import STD_EPSILON
from entry_timing.rows import UNKNOWN, ModelingRow


logger = logging.getLogger(__name__)

NUMERIC_KEYS: Tuple[str, ...] = (
    "expectedEdgeAtDecision",
    "targetContractsAtDecision",
    "minKernelContractsAtDecision",
    "avgLegPriceAtDecision",
    "budgetUsdAtDecision",
    "requestUsd",
    "availableUsd",
    "legCount",
    "ttrHours",
    "policyWindowHours",
)

# Categorical blocks in vector order, with the row attribute each one reads.
CATEGORICAL_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("phase", "phase"),
    ("domain", "domain"),
    ("leg1Venue", "leg1_venue"),
    ("leg2Venue", "leg2_venue"),
    ("leg1Intent", "leg1_intent"),
    ("leg2Intent", "leg2_intent"),
)


@dataclass(frozen=True)
class FeatureSchema:
    """Numeric keys plus the sorted categorical vocabularies seen in training."""

    numeric_keys: Tuple[str, ...]
    vocabularies: Mapping[str, Tuple[str, ...]]

    @property
    def width(self) -> int:
        return 1 + len(self.numeric_keys) + sum(len(v) for v in self.vocabularies.values())

    def feature_names(self) -> List[str]:
        names = ["bias", *self.numeric_keys]
        for name, _ in CATEGORICAL_FIELDS:
            names.extend(f"{name}={value}" for value in self.vocabularies[name])
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "numericKeys": list(self.numeric_keys),
            "vocabularies": {name: list(values) for name, values in self.vocabularies.items()},
        }


@dataclass(frozen=True)
class FeatureScaler:
    """Per-key mean and standard deviation over non-null training values."""

    means: Mapping[str, float]
    stds: Mapping[str, float]

    def transform(self, key: str, value: Optional[float]) -> float:
        # Missing values sit at the training mean, i.e. zero after centering.
        if value is None:
            return 0.0
        return (value - self.means[key]) / self.stds[key]

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {key: {"mean": self.means[key], "std": self.stds[key]} for key in self.means}


def build_schema(train_rows: Sequence[ModelingRow], numeric_keys: Sequence[str] = NUMERIC_KEYS) -> FeatureSchema:
    vocabularies = {
        name: tuple(sorted({getattr(row, attr) for row in train_rows}))
        for name, attr in CATEGORICAL_FIELDS
    }
    return FeatureSchema(numeric_keys=tuple(numeric_keys), vocabularies=vocabularies)


def fit_scaler(train_rows: Sequence[ModelingRow], numeric_keys: Sequence[str]) -> FeatureScaler:
    """Standardization statistics from training rows, ignoring missing values."""
    frame = pd.DataFrame(
        [[row.numeric.get(key) for key in numeric_keys] for row in train_rows],
        columns=list(numeric_keys),
        dtype=float,
    )
    means: Dict[str, float] = {}
    stds: Dict[str, float] = {}
    for key in numeric_keys:
        values = frame[key].dropna()
        if values.empty:
            means[key], stds[key] = 0.0, 1.0
            continue
        mu = float(values.mean())
        sigma = float(np.sqrt(((values - mu) ** 2).mean()))
        means[key] = mu
        stds[key] = sigma if sigma > STD_EPSILON else 1.0
    return FeatureScaler(means=means, stds=stds)


def one_hot(value: str, vocabulary: Sequence[str]) -> List[float]:
    """Indicator block for ``value``; values outside the vocabulary encode as all zeros."""
    return [1.0 if value == item else 0.0 for item in vocabulary]


def build_vector(row: ModelingRow, schema: FeatureSchema, scaler: FeatureScaler) -> List[float]:
    vector = [1.0]
    vector.extend(scaler.transform(key, row.numeric.get(key)) for key in schema.numeric_keys)
    for name, attr in CATEGORICAL_FIELDS:
        value = getattr(row, attr)
        if value is None:
            value = UNKNOWN
        vector.extend(one_hot(value, schema.vocabularies[name]))
    return vector


def vectorize(rows: Sequence[ModelingRow], schema: FeatureSchema, scaler: FeatureScaler) -> np.ndarray:
    """Design matrix with a leading bias column."""
    if not rows:
        return np.zeros((0, schema.width))
    return np.array([build_vector(row, schema, scaler) for row in rows], dtype=float)
