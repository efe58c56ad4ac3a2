"""Counterfactual buy-now-versus-wait labels computed from each decision's own series.

Every decision snapshot is compared against the later snapshots of the same
logical opportunity (same dedupe key). A candidate's capacity-adjusted uplift
is the profit of executing at the candidate, sized at the fillable minimum of
both capacities, minus the profit of executing now at full size:

    uplift = candidate_edge * min(now_cap, candidate_cap) - now_edge * now_cap

Scans over candidates are folds producing immutable best-so-far states; a
later candidate replaces the incumbent only when strictly better, so ties keep
the earliest snapshot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial, reduce
from itertools import islice, takewhile
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import pandas as pd

from entry_timing.report_outputs import to_camel_dict
from entry_timing.rows import DecisionRecord, group_series, prepare_decision_records
from entry_timing.targets import (
    FIXED_HORIZONS_MS,
    HOUR_MS,
    LATE_WINDOW_HOURS,
    MAX_LOOKAHEAD_MS,
    MINUTE_MS,
    NEAR_RESOLUTION_HOURS,
    PHASE_KEYS,
    ordered_horizon_names,
    policy_window_hours,
    resolve_phase,
)
from entry_timing.taxonomy import classify_taxonomy


logger = logging.getLogger(__name__)


# ============================================================
# Label records
# ============================================================


@dataclass(frozen=True)
class HorizonLabel:
    edge_uplift: float
    improves_edge: bool
    best_future_edge: float
    minutes_to_best_edge: Optional[float]
    now_capacity_contracts: Optional[float]
    best_future_capacity_contracts: Optional[float]
    capacity_change_contracts: Optional[float]
    capacity_adjusted_uplift: Optional[float]
    improves_capacity_adjusted: Optional[bool]
    best_fill_ratio_at_now_size: Optional[float]
    minutes_to_best_capacity_adjusted: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)


@dataclass(frozen=True)
class ResolutionAnchoredLabel:
    time_to_resolution_hours_now: Optional[float]
    phase_now: Optional[str]
    edge_uplift_7d: float
    improves_edge_7d: bool
    best_future_edge_7d: float
    minutes_to_best_edge_7d: Optional[float]
    now_capacity_contracts: Optional[float]
    best_future_capacity_contracts_7d: Optional[float]
    capacity_change_contracts_7d: Optional[float]
    capacity_adjusted_uplift_7d: Optional[float]
    improves_capacity_adjusted_7d: Optional[bool]
    minutes_to_best_capacity_adjusted_7d: Optional[float]
    best_fill_ratio_at_now_size_7d: Optional[float]
    best_late_window_capacity_adjusted_uplift: Optional[float]
    best_late_window_fill_ratio_at_now_size: Optional[float]
    enter_early_better_than_late: Optional[bool]
    near_resolution_capacity_adjusted_uplift: Optional[float]
    policy_window_hours: float
    delta_net_pnl_policy_window_at_now_size: Optional[float]
    # True when waiting inside the policy window does not beat buying now.
    buy_now_beats_wait_window: Optional[bool]
    best_wait_fill_ratio_policy_window_at_now_size: Optional[float]
    minutes_to_best_policy_window: Optional[float]
    label_censored_policy_window: bool

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)


# ============================================================
# Candidate folds
# ============================================================


class _Best(NamedTuple):
    value: Optional[float] = None
    ts_ms: Optional[int] = None
    fill_ratio: Optional[float] = None

    def offer(self, value: Optional[float], ts_ms: int, fill_ratio: Optional[float] = None) -> "_Best":
        if value is None:
            return self
        if self.value is None or value > self.value:
            return _Best(value, ts_ms, fill_ratio)
        return self


class _Candidate(NamedTuple):
    ts_ms: int
    edge: float
    capacity: Optional[float]
    uplift: Optional[float]
    fill_ratio: Optional[float]


class _ScanState(NamedTuple):
    edge: _Best = _Best()
    capacity: _Best = _Best()
    uplift: _Best = _Best()


class _WindowedScanState(NamedTuple):
    overall: _ScanState = _ScanState()
    late: _Best = _Best()
    near_resolution: _Best = _Best()
    policy: _Best = _Best()


def _evaluate_candidate(now: DecisionRecord, record: DecisionRecord) -> Optional[_Candidate]:
    if record.expected_edge is None:
        return None
    uplift = None
    fill_ratio = None
    now_capacity = now.resolved_capacity
    if now_capacity is not None and now_capacity > 0 and record.resolved_capacity is not None:
        fillable = min(now_capacity, record.resolved_capacity)
        fill_ratio = fillable / now_capacity
        uplift = record.expected_edge * fillable - now.expected_edge * now_capacity
    return _Candidate(record.decision_ts_ms, record.expected_edge, record.resolved_capacity, uplift, fill_ratio)


def _scan_step(state: _ScanState, candidate: _Candidate) -> _ScanState:
    return _ScanState(
        edge=state.edge.offer(candidate.edge, candidate.ts_ms),
        capacity=state.capacity.offer(candidate.capacity, candidate.ts_ms),
        uplift=state.uplift.offer(candidate.uplift, candidate.ts_ms, candidate.fill_ratio),
    )


def _windowed_step(
    state: _WindowedScanState,
    candidate: _Candidate,
    *,
    resolution_ts_ms: Optional[int],
    policy_end_ms: float,
) -> _WindowedScanState:
    ttr_hours = None if resolution_ts_ms is None else (resolution_ts_ms - candidate.ts_ms) / HOUR_MS
    late = state.late
    near_resolution = state.near_resolution
    policy = state.policy
    if candidate.uplift is not None:
        if ttr_hours is not None and ttr_hours <= LATE_WINDOW_HOURS:
            late = late.offer(candidate.uplift, candidate.ts_ms, candidate.fill_ratio)
        if ttr_hours is not None and ttr_hours <= NEAR_RESOLUTION_HOURS:
            near_resolution = near_resolution.offer(candidate.uplift, candidate.ts_ms)
        if candidate.ts_ms <= policy_end_ms:
            policy = policy.offer(candidate.uplift, candidate.ts_ms, candidate.fill_ratio)
    return _WindowedScanState(_scan_step(state.overall, candidate), late, near_resolution, policy)


def _future_records(series: Sequence[DecisionRecord], idx: int, end_ts_ms: float) -> List[DecisionRecord]:
    """Subsequent records up to ``end_ts_ms``; the series is time-ordered so the scan stops early."""
    return list(takewhile(lambda r: r.decision_ts_ms <= end_ts_ms, islice(series, idx + 1, None)))


def _candidates(now: DecisionRecord, records: Sequence[DecisionRecord]) -> List[_Candidate]:
    evaluated = map(partial(_evaluate_candidate, now), records)
    return [candidate for candidate in evaluated if candidate is not None]


def _minutes_since(now: DecisionRecord, ts_ms: Optional[int]) -> Optional[float]:
    if ts_ms is None:
        return None
    return (ts_ms - now.decision_ts_ms) / MINUTE_MS


def _capacity_change(now: DecisionRecord, best_capacity: Optional[float]) -> Optional[float]:
    if now.resolved_capacity is None or best_capacity is None:
        return None
    return best_capacity - now.resolved_capacity


# ============================================================
# Label builders
# ============================================================


def horizon_end_ms(now: DecisionRecord, horizon_ms: int) -> int:
    """Last timestamp eligible for a fixed-horizon comparison."""
    end = now.decision_ts_ms + min(horizon_ms, MAX_LOOKAHEAD_MS)
    if now.resolution_ts_ms is not None:
        end = min(end, now.resolution_ts_ms)
    return end


def build_horizon_label(series: Sequence[DecisionRecord], idx: int, horizon_ms: int) -> Optional[HorizonLabel]:
    now = series[idx]
    records = _future_records(series, idx, horizon_end_ms(now, horizon_ms))
    if not records or now.expected_edge is None:
        return None
    state = reduce(_scan_step, _candidates(now, records), _ScanState())
    if state.edge.value is None:
        return None

    edge_uplift = state.edge.value - now.expected_edge
    uplift = state.uplift.value
    return HorizonLabel(
        edge_uplift=edge_uplift,
        improves_edge=edge_uplift > 0,
        best_future_edge=state.edge.value,
        minutes_to_best_edge=_minutes_since(now, state.edge.ts_ms),
        now_capacity_contracts=now.resolved_capacity,
        best_future_capacity_contracts=state.capacity.value,
        capacity_change_contracts=_capacity_change(now, state.capacity.value),
        capacity_adjusted_uplift=uplift,
        improves_capacity_adjusted=None if uplift is None else uplift > 0,
        best_fill_ratio_at_now_size=state.uplift.fill_ratio,
        minutes_to_best_capacity_adjusted=_minutes_since(now, state.uplift.ts_ms),
    )


def build_resolution_anchored_label(series: Sequence[DecisionRecord], idx: int) -> Optional[ResolutionAnchoredLabel]:
    now = series[idx]
    window_end = now.decision_ts_ms + MAX_LOOKAHEAD_MS
    if now.resolution_ts_ms is not None:
        window_end = min(window_end, now.resolution_ts_ms)
    records = _future_records(series, idx, window_end)
    if not records or now.expected_edge is None:
        return None

    ttr_hours = None
    if now.resolution_ts_ms is not None:
        ttr_hours = (now.resolution_ts_ms - now.decision_ts_ms) / HOUR_MS
    phase = resolve_phase(ttr_hours)
    window_hours = policy_window_hours(phase, ttr_hours)
    policy_end = min(window_end, now.decision_ts_ms + window_hours * HOUR_MS)

    step = partial(_windowed_step, resolution_ts_ms=now.resolution_ts_ms, policy_end_ms=policy_end)
    state = reduce(step, _candidates(now, records), _WindowedScanState())
    overall = state.overall
    if overall.edge.value is None:
        return None

    edge_uplift = overall.edge.value - now.expected_edge
    uplift = overall.uplift.value
    late = state.late.value
    delta = state.policy.value
    return ResolutionAnchoredLabel(
        time_to_resolution_hours_now=ttr_hours,
        phase_now=phase,
        edge_uplift_7d=edge_uplift,
        improves_edge_7d=edge_uplift > 0,
        best_future_edge_7d=overall.edge.value,
        minutes_to_best_edge_7d=_minutes_since(now, overall.edge.ts_ms),
        now_capacity_contracts=now.resolved_capacity,
        best_future_capacity_contracts_7d=overall.capacity.value,
        capacity_change_contracts_7d=_capacity_change(now, overall.capacity.value),
        capacity_adjusted_uplift_7d=uplift,
        improves_capacity_adjusted_7d=None if uplift is None else uplift > 0,
        minutes_to_best_capacity_adjusted_7d=_minutes_since(now, overall.uplift.ts_ms),
        best_fill_ratio_at_now_size_7d=overall.uplift.fill_ratio,
        best_late_window_capacity_adjusted_uplift=late,
        best_late_window_fill_ratio_at_now_size=state.late.fill_ratio,
        enter_early_better_than_late=None if late is None else late <= 0,
        near_resolution_capacity_adjusted_uplift=state.near_resolution.value,
        policy_window_hours=window_hours,
        delta_net_pnl_policy_window_at_now_size=delta,
        buy_now_beats_wait_window=None if delta is None else delta <= 0,
        best_wait_fill_ratio_policy_window_at_now_size=state.policy.fill_ratio,
        minutes_to_best_policy_window=_minutes_since(now, state.policy.ts_ms),
        label_censored_policy_window=delta is None,
    )


def build_labels(series: Sequence[DecisionRecord], idx: int) -> Dict[str, Any]:
    """All labels for ``series[idx]`` in their serialized form."""
    labels: Dict[str, Any] = {}
    for key, horizon_ms in FIXED_HORIZONS_MS.items():
        label = build_horizon_label(series, idx, horizon_ms)
        labels[key] = None if label is None else label.to_dict()
    resolution = build_resolution_anchored_label(series, idx)
    labels["resolutionAnchored"] = None if resolution is None else resolution.to_dict()
    labels["taxonomy"] = classify_taxonomy(series[idx].raw).to_dict()
    return labels


def label_series(series: Sequence[DecisionRecord]) -> List[Dict[str, Any]]:
    return [{**record.raw, "labels": build_labels(series, idx)} for idx, record in enumerate(series)]


def label_dataset(rows: Sequence[Mapping[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """Label every usable row; returns the labeled rows and the number of series."""
    grouped = group_series(prepare_decision_records(rows))
    labeled: List[Dict[str, Any]] = []
    for series in grouped.values():
        labeled.extend(label_series(series))
    logger.info("Labeled %d rows across %d series", len(labeled), len(grouped))
    return labeled, len(grouped)


# ============================================================
# Summary statistics
# ============================================================


def _mean(values: Sequence[Any]) -> Optional[float]:
    series = pd.Series([v for v in values if v is not None], dtype=float).dropna()
    if series.empty:
        return None
    return float(series.mean())


def _rate(values: Sequence[Optional[bool]]) -> Optional[float]:
    return _mean([None if v is None else float(v) for v in values])


def _column(labels: Sequence[Mapping[str, Any]], key: str) -> List[Any]:
    return [label.get(key) for label in labels]


def summarize_labels(
    raw_rows: Sequence[Mapping[str, Any]],
    labeled_rows: Sequence[Mapping[str, Any]],
    series_count: int,
) -> Dict[str, Any]:
    """Label coverage and mean outcomes by horizon, resolution phase, and taxonomy domain."""
    horizons: Dict[str, Any] = {}
    for key in ordered_horizon_names():
        labels = [row["labels"][key] for row in labeled_rows if row["labels"].get(key) is not None]
        horizons[key] = {
            "labelCount": len(labels),
            "meanEdgeUplift": _mean(_column(labels, "edgeUplift")),
            "meanCapacityAdjustedUplift": _mean(_column(labels, "capacityAdjustedUplift")),
            "probImprovesEdge": _rate(_column(labels, "improvesEdge")),
            "probImprovesCapacityAdjusted": _rate(_column(labels, "improvesCapacityAdjusted")),
            "meanBestFillRatioAtNowSize": _mean(_column(labels, "bestFillRatioAtNowSize")),
        }

    frame = pd.DataFrame(
        {
            "domain": [row["labels"]["taxonomy"].get("domain") for row in labeled_rows],
            "resolution": [row["labels"].get("resolutionAnchored") for row in labeled_rows],
        }
    )
    anchored = [label for label in frame["resolution"] if label is not None] if not frame.empty else []

    phases: Dict[str, Any] = {}
    for phase in PHASE_KEYS:
        in_phase = [label for label in anchored if label.get("phaseNow") == phase]
        covered = [label for label in in_phase if label.get("deltaNetPnlPolicyWindowAtNowSize") is not None]
        phases[phase] = {
            "rowCount": len(in_phase),
            "meanCapacityAdjustedUplift7d": _mean(_column(in_phase, "capacityAdjustedUplift7d")),
            "probEnterEarlyBetterThanLate": _rate(_column(in_phase, "enterEarlyBetterThanLate")),
            "policyWindowLabelCoverage": len(covered) / len(in_phase) if in_phase else None,
            "censoringRatePolicyWindow": _rate(_column(in_phase, "labelCensoredPolicyWindow")),
            "meanDeltaNetPnlPolicyWindowAtNowSize": _mean(_column(in_phase, "deltaNetPnlPolicyWindowAtNowSize")),
            "probBuyNowBeatsWaitWindow": _rate(_column(in_phase, "buyNowBeatsWaitWindow")),
        }

    taxonomy: Dict[str, Any] = {}
    if not frame.empty:
        for domain, group in frame.dropna(subset=["domain"]).groupby("domain", sort=False):
            resolved = [label for label in group["resolution"] if label is not None]
            taxonomy[str(domain)] = {
                "rowCount": int(len(group)),
                "resolutionLabelCount": len(resolved),
                "meanDeltaNetPnlPolicyWindowAtNowSize": _mean(_column(resolved, "deltaNetPnlPolicyWindowAtNowSize")),
                "probBuyNowBeatsWaitWindow": _rate(_column(resolved, "buyNowBeatsWaitWindow")),
            }

    return {
        "totalInputRows": len(raw_rows),
        "totalGroupedRows": len(labeled_rows),
        "dedupeSeries": series_count,
        "resolutionAnchoredCount": len(anchored),
        "horizons": horizons,
        "phases": phases,
        "taxonomy": taxonomy,
    }
