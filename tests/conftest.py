"""Shared synthetic decision rows for the test suite."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import pytest

from entry_timing.feature_engineering import NUMERIC_KEYS
from entry_timing.rows import ModelingRow


BASE_TS = pd.Timestamp("2024-01-01T00:00:00Z")
BASE_MS = int(BASE_TS.value // 1_000_000)

TITLES = {
    "politics": "Will the president sign the bill?",
    "sports": "NBA Finals winner",
}


def iso_at(minutes: float) -> str:
    return (BASE_TS + pd.Timedelta(minutes=minutes)).isoformat()


def make_raw_row(
    minutes: float,
    edge: Any,
    *,
    key: str = "opp-1",
    capacity: Optional[float] = 100.0,
    expiry_hours: Optional[float] = 30.0,
    **extra: Any,
) -> Dict[str, Any]:
    """A raw decision snapshot ``minutes`` after the base time; expiry is also relative to the base."""
    row = {
        "dedupeKey": key,
        "decisionTs": iso_at(minutes),
        "expectedEdgeAtDecision": edge,
        "targetContractsAtDecision": capacity,
        "leg1ExpiresAt": None if expiry_hours is None else iso_at(expiry_hours * 60),
        "leg1Venue": "kalshi",
        "leg2Venue": "polymarket",
        "leg1OrderIntent": "buy_yes",
        "leg2OrderIntent": "buy_no",
        "leg1MarketTitle": TITLES["politics"],
    }
    row.update(extra)
    return row


def make_modeling_row(
    ts_ms: int,
    reg_target: Optional[float],
    *,
    censored: bool = False,
    phase: str = "T_3d_1d",
    domain: str = "politics",
    edge: Optional[float] = 0.02,
    venue: str = "kalshi",
) -> ModelingRow:
    numeric: Dict[str, Optional[float]] = {key: None for key in NUMERIC_KEYS}
    numeric.update(
        expectedEdgeAtDecision=edge,
        targetContractsAtDecision=100.0,
        ttrHours=30.0,
        policyWindowHours=12.0,
    )
    return ModelingRow(
        decision_ts_ms=ts_ms,
        reg_target=reg_target,
        cls_target=None if reg_target is None else int(reg_target <= 0),
        censored=censored,
        phase=phase,
        domain=domain,
        numeric=numeric,
        leg1_venue=venue,
        leg2_venue="polymarket",
        leg1_intent="buy_yes",
        leg2_intent="buy_no",
        raw={},
    )


def build_modeling_rows(n: int, *, seed: int = 7, censored_until: int = 0) -> List[ModelingRow]:
    """Rows one minute apart whose wait uplift rises with edge; the first ``censored_until`` are censored."""
    rng = np.random.RandomState(seed)
    rows = []
    for i in range(n):
        edge = float(rng.normal(0.03, 0.01))
        target = float(400.0 * (edge - 0.03) + rng.normal(0.0, 1.0))
        censored = i < censored_until
        rows.append(
            make_modeling_row(
                BASE_MS + i * 60_000,
                None if censored else target,
                censored=censored,
                phase=("T_3d_1d", "T_24h_6h")[(i // 2) % 2],
                domain=("politics", "sports")[i % 2],
                edge=edge,
            )
        )
    return rows


def build_raw_dataset(series_count: int = 60, snapshots: int = 8, *, seed: int = 11) -> List[Dict[str, Any]]:
    """Independent series of snapshots 20 minutes apart, each resolving about 30h after it starts."""
    rng = np.random.RandomState(seed)
    rows = []
    for s in range(series_count):
        start = s * 30
        domain = ("politics", "sports")[s % 2]
        for k in range(snapshots):
            rows.append(
                make_raw_row(
                    start + 20 * k,
                    round(float(rng.normal(0.03, 0.01)), 5),
                    key=f"opp-{s}",
                    capacity=float(rng.randint(20, 200)),
                    expiry_hours=start / 60.0 + 30.0,
                    leg1MarketTitle=TITLES[domain],
                    availableUsd=float(rng.uniform(100, 1000)),
                    legCount=2,
                )
            )
    return rows


@pytest.fixture
def raw_row():
    return make_raw_row


@pytest.fixture
def modeling_row():
    return make_modeling_row


@pytest.fixture
def modeling_rows():
    return build_modeling_rows


@pytest.fixture
def raw_dataset():
    return build_raw_dataset


@pytest.fixture
def base_ms():
    return BASE_MS


@pytest.fixture
def iso():
    return iso_at
