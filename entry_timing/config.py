"""Configuration for the labeling, modeling, and walk-forward workflow."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.json"

DEFAULT_THRESHOLD_GRID: Tuple[float, ...] = (0.35, 0.4, 0.45, 0.5, 0.55, 0.6, 0.65)
STD_EPSILON = 1e-8


@dataclass(frozen=True)
class GradientDescentConfig:
    """Fixed full-batch gradient descent hyperparameters."""

    learning_rate: float
    epochs: int
    l2: float


@dataclass(frozen=True)
class ModelingConfig:
    """Hyperparameters shared by the single-split and walk-forward fits."""

    ridge: GradientDescentConfig = GradientDescentConfig(learning_rate=0.01, epochs=1500, l2=0.2)
    logistic: GradientDescentConfig = GradientDescentConfig(learning_rate=0.02, epochs=1800, l2=0.1)
    platt: GradientDescentConfig = GradientDescentConfig(learning_rate=0.01, epochs=1200, l2=0.01)
    min_segment_rows: int = 120
    winsor_low_quantile: float = 0.05
    winsor_high_quantile: float = 0.95
    threshold_grid: Tuple[float, ...] = DEFAULT_THRESHOLD_GRID
    train_fraction: float = 0.7
    valid_fraction: float = 0.15

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain_dict(self)


WALK_FORWARD_MODELING = ModelingConfig(
    ridge=GradientDescentConfig(learning_rate=0.01, epochs=1200, l2=0.2),
    logistic=GradientDescentConfig(learning_rate=0.02, epochs=1500, l2=0.1),
    platt=GradientDescentConfig(learning_rate=0.01, epochs=800, l2=0.01),
    min_segment_rows=80,
)


@dataclass(frozen=True)
class WalkForwardConfig:
    """Rolling window geometry for the walk-forward backtest (sizes in rows)."""

    train_count: int = 1400
    valid_count: int = 300
    test_count: int = 250
    stride: int = 150
    min_train_rows: int = 200
    min_valid_rows: int = 50
    min_test_rows: int = 50
    n_jobs: int = 1
    modeling: ModelingConfig = field(default_factory=lambda: WALK_FORWARD_MODELING)

    @property
    def window_size(self) -> int:
        return self.train_count + self.valid_count + self.test_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trainCount": self.train_count,
            "validCount": self.valid_count,
            "testCount": self.test_count,
            "stride": self.stride,
            "minTrainRows": self.min_train_rows,
            "minValidRows": self.min_valid_rows,
            "minTestRows": self.min_test_rows,
            "minSegmentRows": self.modeling.min_segment_rows,
        }


def _to_plain_dict(value: Any) -> Any:
    if is_dataclass(value):
        return {f.name: _to_plain_dict(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, tuple):
        return [_to_plain_dict(item) for item in value]
    return value


# ============================================================
# JSON configuration file
# ============================================================


def load_config(path: Optional[Path]) -> Dict[str, Any]:
    """Load configuration from JSON if it exists."""
    if path and path.exists():
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    return {}


def merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge CLI overrides into base config."""
    merged = base.copy()
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def _gradient_descent_from_dict(base: GradientDescentConfig, data: Optional[Dict[str, Any]]) -> GradientDescentConfig:
    if not data:
        return base
    return GradientDescentConfig(
        learning_rate=float(data.get("learning_rate", base.learning_rate)),
        epochs=int(data.get("epochs", base.epochs)),
        l2=float(data.get("l2", base.l2)),
    )


def modeling_config_from_dict(data: Optional[Dict[str, Any]], base: ModelingConfig = ModelingConfig()) -> ModelingConfig:
    """Apply a JSON ``modeling`` section on top of ``base``."""
    if not data:
        return base
    grid = data.get("threshold_grid")
    return replace(
        base,
        ridge=_gradient_descent_from_dict(base.ridge, data.get("ridge")),
        logistic=_gradient_descent_from_dict(base.logistic, data.get("logistic")),
        platt=_gradient_descent_from_dict(base.platt, data.get("platt")),
        min_segment_rows=int(data.get("min_segment_rows", base.min_segment_rows)),
        winsor_low_quantile=float(data.get("winsor_low_quantile", base.winsor_low_quantile)),
        winsor_high_quantile=float(data.get("winsor_high_quantile", base.winsor_high_quantile)),
        threshold_grid=tuple(float(t) for t in grid) if grid else base.threshold_grid,
        train_fraction=float(data.get("train_fraction", base.train_fraction)),
        valid_fraction=float(data.get("valid_fraction", base.valid_fraction)),
    )


def walk_forward_config_from_dict(data: Optional[Dict[str, Any]]) -> WalkForwardConfig:
    """Build a walk-forward configuration from a JSON ``walk_forward`` section."""
    base = WalkForwardConfig()
    if not data:
        return base
    config = WalkForwardConfig(
        train_count=int(data.get("train_count", base.train_count)),
        valid_count=int(data.get("valid_count", base.valid_count)),
        test_count=int(data.get("test_count", base.test_count)),
        stride=int(data.get("stride", base.stride)),
        min_train_rows=int(data.get("min_train_rows", base.min_train_rows)),
        min_valid_rows=int(data.get("min_valid_rows", base.min_valid_rows)),
        min_test_rows=int(data.get("min_test_rows", base.min_test_rows)),
        n_jobs=int(data.get("n_jobs", base.n_jobs)),
        modeling=modeling_config_from_dict(data.get("modeling"), base.modeling),
    )
    if min(config.train_count, config.valid_count, config.test_count, config.stride) <= 0:
        raise ValueError("Walk-forward window sizes and stride must be positive integers.")
    return config
