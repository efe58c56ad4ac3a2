import math

import pytest

from entry_timing.rows import (
    group_series,
    parse_resolution_ts,
    parse_timestamp_ms,
    prepare_decision_records,
    prepare_modeling_rows,
    resolve_capacity,
    safe_num,
    to_modeling_row,
    usable_rows,
)


@pytest.mark.parametrize("value", [None, "", "abc", "nan", float("inf"), [1]])
def test_safe_num_treats_absent_and_non_finite_as_none(value):
    assert safe_num(value) is None


def test_safe_num_keeps_zero_distinct_from_missing():
    assert safe_num(0) == 0.0
    assert safe_num("1.5") == 1.5


def test_parse_timestamp_accepts_iso_and_epoch_ms():
    assert parse_timestamp_ms("2024-01-01T00:00:00Z") == 1704067200000
    assert parse_timestamp_ms(1704067200000) == 1704067200000
    assert parse_timestamp_ms("not a time") is None
    assert parse_timestamp_ms(None) is None
    assert parse_timestamp_ms(math.nan) is None


@pytest.mark.parametrize(
    "value", [["2024-01-01T00:00:00Z"], ["2024-01-01", "2024-01-02"], {"ts": "2024-01-01T00:00:00Z"}]
)
def test_parse_timestamp_rejects_containers(value):
    assert parse_timestamp_ms(value) is None
    assert parse_resolution_ts({"leg1ExpiresAt": value}) is None


def test_resolve_capacity_takes_smallest_positive_candidate():
    assert resolve_capacity({"targetContractsAtDecision": 50, "minKernelContractsAtDecision": 20}) == 20
    assert resolve_capacity({"targetContractsAtDecision": "abc", "minKernelContractsAtDecision": 30}) == 30
    assert resolve_capacity({"targetContractsAtDecision": 0, "minKernelContractsAtDecision": -1}) is None
    assert resolve_capacity({}) is None


def test_parse_resolution_ts_takes_earliest_parseable_expiry():
    row = {
        "leg1ExpiresAt": "2024-01-03T00:00:00Z",
        "leg2ExpiresAt": "garbage",
        "oppLeg1ExpiresAt": "2024-01-02T00:00:00Z",
    }
    assert parse_resolution_ts(row) == parse_timestamp_ms("2024-01-02T00:00:00Z")
    assert parse_resolution_ts({"leg1ExpiresAt": "garbage"}) is None


def test_prepare_decision_records_drops_rows_that_cannot_anchor_a_series(raw_row):
    rows = [
        raw_row(0, 0.02),
        raw_row(10, 0.03, dedupeKey=None),
        raw_row(20, None),
        raw_row(30, 0.01, decisionTs="garbage"),
    ]
    records = prepare_decision_records(rows)
    assert [r.expected_edge for r in records] == [0.02]


def test_group_series_orders_keys_by_first_appearance_and_sorts_each_series(raw_row):
    rows = [raw_row(30, 0.01, key="b"), raw_row(20, 0.02, key="a"), raw_row(10, 0.03, key="b")]
    grouped = group_series(prepare_decision_records(rows))
    assert list(grouped) == ["b", "a"]
    assert [r.expected_edge for r in grouped["b"]] == [0.03, 0.01]


def _labeled(raw_row, minutes, *, phase="T_3d_1d", domain="sports", delta=1.5, censored=False):
    row = raw_row(minutes, 0.02)
    row["labels"] = {
        "resolutionAnchored": {
            "phaseNow": phase,
            "timeToResolutionHoursNow": 30.0,
            "policyWindowHours": 12.0,
            "deltaNetPnlPolicyWindowAtNowSize": delta,
            "buyNowBeatsWaitWindow": None if delta is None else delta <= 0,
            "labelCensoredPolicyWindow": censored,
        },
        "taxonomy": {"domain": domain},
    }
    return row


def test_to_modeling_row_derives_targets_and_segment_key(raw_row):
    row = to_modeling_row(_labeled(raw_row, 0, delta=-2.0))
    assert row.reg_target == -2.0
    assert row.cls_target == 1
    assert row.segment_key == "sports::T_3d_1d"
    assert row.numeric["ttrHours"] == 30.0
    assert row.numeric["requestUsd"] is None
    assert row.leg1_venue == "kalshi"


def test_to_modeling_row_fills_missing_phase_and_domain(raw_row):
    row = to_modeling_row(_labeled(raw_row, 0, phase=None, domain=None))
    assert row.segment_key == "other::unknown"


def test_to_modeling_row_requires_resolution_label_and_taxonomy(raw_row):
    unlabeled = raw_row(0, 0.02)
    unlabeled["labels"] = {"resolutionAnchored": None, "taxonomy": {"domain": "sports"}}
    assert to_modeling_row(unlabeled) is None
    assert to_modeling_row(raw_row(0, 0.02)) is None


def test_prepare_modeling_rows_sorts_by_time_and_usable_rows_drop_censored(raw_row):
    rows = prepare_modeling_rows(
        [
            _labeled(raw_row, 40),
            _labeled(raw_row, 10, delta=None, censored=True),
            _labeled(raw_row, 20),
        ]
    )
    assert [r.decision_ts_ms for r in rows] == sorted(r.decision_ts_ms for r in rows)
    assert rows[0].censored and rows[0].cls_target is None
    assert len(usable_rows(rows)) == 2
