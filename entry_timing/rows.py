"""Normalization of raw decision rows into canonical records."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd


logger = logging.getLogger(__name__)

CAPACITY_FIELDS = ("targetContractsAtDecision", "minKernelContractsAtDecision")
EXPIRY_FIELDS = ("leg1ExpiresAt", "leg2ExpiresAt", "oppLeg1ExpiresAt", "oppLeg2ExpiresAt")
RAW_NUMERIC_KEYS = [
    "expectedEdgeAtDecision",
    "targetContractsAtDecision",
    "minKernelContractsAtDecision",
    "avgLegPriceAtDecision",
    "budgetUsdAtDecision",
    "requestUsd",
    "availableUsd",
    "legCount",
]
UNKNOWN = "unknown"
OTHER_DOMAIN = "other"


def safe_num(value: Any) -> Optional[float]:
    """Convert a loosely typed value into a finite float, or ``None`` when absent."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """Parse an ISO-8601 string or epoch-milliseconds number into epoch milliseconds."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value)
    if not isinstance(value, str):
        return None
    try:
        parsed = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if not isinstance(parsed, pd.Timestamp) or pd.isna(parsed):
        return None
    return int(parsed.value // 1_000_000)


def resolve_capacity(row: Mapping[str, Any]) -> Optional[float]:
    """Smallest positive capacity candidate, or ``None`` if neither is positive."""
    candidates = [safe_num(row.get(key)) for key in CAPACITY_FIELDS]
    positive = [value for value in candidates if value is not None and value > 0]
    if not positive:
        return None
    return min(positive)


def parse_resolution_ts(row: Mapping[str, Any]) -> Optional[int]:
    """Earliest parseable leg expiry in epoch milliseconds."""
    candidates = [parse_timestamp_ms(row.get(key)) for key in EXPIRY_FIELDS if row.get(key)]
    parsed = [ts for ts in candidates if ts is not None]
    if not parsed:
        return None
    return min(parsed)


@dataclass(frozen=True)
class DecisionRecord:
    """One decision snapshot with its parsed numeric and time fields."""

    decision_ts_ms: int
    dedupe_key: str
    expected_edge: Optional[float]
    resolved_capacity: Optional[float]
    resolution_ts_ms: Optional[int]
    raw: Mapping[str, Any] = field(repr=False, compare=False)


def to_decision_record(row: Mapping[str, Any]) -> Optional[DecisionRecord]:
    """Build a record for labeling, or ``None`` if the row cannot anchor a series."""
    if not row.get("dedupeKey") or not row.get("decisionTs"):
        return None
    if row.get("expectedEdgeAtDecision") is None:
        return None
    decision_ts = parse_timestamp_ms(row.get("decisionTs"))
    if decision_ts is None:
        return None
    return DecisionRecord(
        decision_ts_ms=decision_ts,
        dedupe_key=str(row["dedupeKey"]),
        expected_edge=safe_num(row.get("expectedEdgeAtDecision")),
        resolved_capacity=resolve_capacity(row),
        resolution_ts_ms=parse_resolution_ts(row),
        raw=row,
    )


def prepare_decision_records(rows: Iterable[Mapping[str, Any]]) -> List[DecisionRecord]:
    records: List[DecisionRecord] = []
    dropped = 0
    for row in rows:
        record = to_decision_record(row)
        if record is None:
            dropped += 1
            continue
        records.append(record)
    if dropped:
        logger.info("Dropped %d rows without a usable timestamp, dedupe key, or edge", dropped)
    return records


def group_series(records: Iterable[DecisionRecord]) -> Dict[str, List[DecisionRecord]]:
    """Group records by dedupe key, each series sorted ascending by decision time."""
    grouped: Dict[str, List[DecisionRecord]] = {}
    for record in records:
        grouped.setdefault(record.dedupe_key, []).append(record)
    for key, series in grouped.items():
        grouped[key] = sorted(series, key=lambda r: r.decision_ts_ms)
    return grouped


# ============================================================
# Post-labeling modeling rows
# ============================================================


@dataclass(frozen=True)
class ModelingRow:
    """A labeled decision reduced to the fields the models consume."""

    decision_ts_ms: int
    reg_target: Optional[float]
    cls_target: Optional[int]
    censored: bool
    phase: str
    domain: str
    numeric: Mapping[str, Optional[float]]
    leg1_venue: str
    leg2_venue: str
    leg1_intent: str
    leg2_intent: str
    raw: Mapping[str, Any] = field(repr=False, compare=False)

    @property
    def segment_key(self) -> str:
        return f"{self.domain}::{self.phase}"

    @property
    def usable(self) -> bool:
        """True when the policy-window outcome was observed."""
        return not self.censored and self.reg_target is not None


def _category(value: Any) -> str:
    return UNKNOWN if value is None else str(value)


def to_modeling_row(row: Mapping[str, Any]) -> Optional[ModelingRow]:
    labels = row.get("labels") or {}
    resolution = labels.get("resolutionAnchored")
    taxonomy = labels.get("taxonomy")
    if not resolution or not taxonomy:
        return None
    decision_ts = parse_timestamp_ms(row.get("decisionTs"))
    if decision_ts is None:
        return None

    beats = resolution.get("buyNowBeatsWaitWindow")
    phase = resolution.get("phaseNow") or UNKNOWN
    numeric = {key: safe_num(row.get(key)) for key in RAW_NUMERIC_KEYS}
    numeric["ttrHours"] = safe_num(resolution.get("timeToResolutionHoursNow"))
    numeric["policyWindowHours"] = safe_num(resolution.get("policyWindowHours"))
    return ModelingRow(
        decision_ts_ms=decision_ts,
        reg_target=safe_num(resolution.get("deltaNetPnlPolicyWindowAtNowSize")),
        cls_target=None if beats is None else int(bool(beats)),
        censored=bool(resolution.get("labelCensoredPolicyWindow")),
        phase=phase,
        domain=taxonomy.get("domain") or OTHER_DOMAIN,
        numeric=numeric,
        leg1_venue=_category(row.get("leg1Venue")),
        leg2_venue=_category(row.get("leg2Venue")),
        leg1_intent=_category(row.get("leg1OrderIntent")),
        leg2_intent=_category(row.get("leg2OrderIntent")),
        raw=row,
    )


def prepare_modeling_rows(rows: Iterable[Mapping[str, Any]]) -> List[ModelingRow]:
    """Keep rows carrying a resolution-anchored label and taxonomy, sorted by time."""
    prepared = [item for item in (to_modeling_row(row) for row in rows) if item is not None]
    prepared.sort(key=lambda r: r.decision_ts_ms)
    return prepared


def usable_rows(rows: Sequence[ModelingRow]) -> List[ModelingRow]:
    """Drop censored rows and rows without a regression target."""
    return [row for row in rows if row.usable]
