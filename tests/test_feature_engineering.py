import numpy as np
import pytest

from entry_timing.feature_engineering import NUMERIC_KEYS, build_schema, build_vector, fit_scaler, vectorize


def test_vocabularies_are_sorted_and_come_from_training_rows_only(modeling_row):
    train = [
        modeling_row(0, 1.0, domain="sports", venue="polymarket"),
        modeling_row(1, 1.0, domain="politics", venue="kalshi"),
    ]
    schema = build_schema(train)
    assert schema.vocabularies["domain"] == ("politics", "sports")
    assert schema.vocabularies["leg1Venue"] == ("kalshi", "polymarket")
    assert schema.width == 1 + len(NUMERIC_KEYS) + sum(len(v) for v in schema.vocabularies.values())
    assert schema.feature_names()[:2] == ["bias", "expectedEdgeAtDecision"]


def test_unseen_category_encodes_as_all_zeros(modeling_row):
    train = [modeling_row(0, 1.0, domain="sports"), modeling_row(1, 1.0, domain="politics")]
    schema = build_schema(train)
    scaler = fit_scaler(train, schema.numeric_keys)
    vector = build_vector(modeling_row(2, 1.0, domain="finance"), schema, scaler)

    domain_start = 1 + len(NUMERIC_KEYS) + len(schema.vocabularies["phase"])
    assert vector[domain_start:domain_start + 2] == [0.0, 0.0]
    assert vector[0] == 1.0


def test_scaler_ignores_missing_values_and_guards_constant_columns(modeling_row):
    rows = [modeling_row(0, 1.0, edge=0.01), modeling_row(1, 1.0, edge=0.03), modeling_row(2, 1.0, edge=None)]
    scaler = fit_scaler(rows, NUMERIC_KEYS)

    assert scaler.means["expectedEdgeAtDecision"] == pytest.approx(0.02)
    assert scaler.stds["expectedEdgeAtDecision"] == pytest.approx(0.01)
    # Every row has 100 contracts, so the spread collapses to the unit fallback.
    assert scaler.stds["targetContractsAtDecision"] == 1.0
    # No values at all.
    assert scaler.means["requestUsd"] == 0.0
    assert scaler.stds["requestUsd"] == 1.0


def test_missing_numeric_maps_to_zero_after_scaling(modeling_row):
    rows = [modeling_row(0, 1.0, edge=0.01), modeling_row(1, 1.0, edge=0.03)]
    schema = build_schema(rows)
    scaler = fit_scaler(rows, schema.numeric_keys)
    vector = build_vector(modeling_row(2, 1.0, edge=None), schema, scaler)
    assert vector[1] == 0.0
    assert build_vector(rows[1], schema, scaler)[1] == pytest.approx(1.0)


def test_vectorize_empty_keeps_width(modeling_row):
    rows = [modeling_row(0, 1.0)]
    schema = build_schema(rows)
    matrix = vectorize([], schema, fit_scaler(rows, schema.numeric_keys))
    assert matrix.shape == (0, schema.width)
    assert isinstance(vectorize(rows, schema, fit_scaler(rows, schema.numeric_keys)), np.ndarray)
