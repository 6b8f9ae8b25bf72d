from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal

import polars as pl
import pytest

from recon.comparator import compare, detect_mismatches, mismatch_expr
from recon.models import AttributeComparison, ComparisonOutcome, ComparisonRule

EQUAL = ComparisonOutcome.EQUAL
MISMATCH = ComparisonOutcome.MISMATCH


@pytest.mark.parametrize("rule", list(ComparisonRule))
def test_null_semantics_hold_for_every_rule(rule: ComparisonRule) -> None:
    assert compare(None, None, rule) is EQUAL
    assert compare(None, "x", rule) is MISMATCH
    assert compare("x", None, rule) is MISMATCH
    assert compare(math.nan, None, rule) is EQUAL


@pytest.mark.parametrize(
    ("a", "b", "rule", "expected"),
    [
        (Decimal("100.00"), Decimal("100.00"), ComparisonRule.EXACT, EQUAL),
        (Decimal("200.50"), Decimal("210.00"), ComparisonRule.EXACT, MISMATCH),
        ("Alice", "alice", ComparisonRule.EXACT, MISMATCH),
        ("Alice", "  alice ", ComparisonRule.NORMALIZED, EQUAL),
        ("Alice", "Alicia", ComparisonRule.NORMALIZED, MISMATCH),
        (datetime(2025, 12, 1, 10, 0), date(2025, 12, 1), ComparisonRule.DATE_ONLY, EQUAL),
        ("2025-12-01T23:59:59", "2025-12-01", ComparisonRule.DATE_ONLY, EQUAL),
        ("2025-12-01", "2025-12-02", ComparisonRule.DATE_ONLY, MISMATCH),
        ("not a date", "2025-12-01", ComparisonRule.DATE_ONLY, MISMATCH),
        (100.00, 100.005, ComparisonRule.NUMERIC_TOLERANCE, EQUAL),
        (100.00, 100.02, ComparisonRule.NUMERIC_TOLERANCE, MISMATCH),
        ("100.00", Decimal("100"), ComparisonRule.NUMERIC_TOLERANCE, EQUAL),
    ],
)
def test_rule_examples(a, b, rule: ComparisonRule, expected: ComparisonOutcome) -> None:
    assert compare(a, b, rule) is expected


def test_explicit_tolerance_overrides_default() -> None:
    assert compare(100.0, 100.4, ComparisonRule.NUMERIC_TOLERANCE, tolerance=0.5) is EQUAL
    assert compare(100.0, 100.4, ComparisonRule.NUMERIC_TOLERANCE, tolerance=0.1) is MISMATCH


def test_exact_compares_mixed_types_by_text() -> None:
    assert compare(Decimal("200.50"), "200.5", ComparisonRule.EXACT) is EQUAL
    assert compare(5, "5", ComparisonRule.EXACT) is EQUAL


def test_detect_mismatches_is_ordered_and_deduplicated() -> None:
    comparisons = [
        AttributeComparison("amount", "amount", ComparisonRule.EXACT),
        AttributeComparison("name", "full_name", ComparisonRule.NORMALIZED),
        AttributeComparison("amount", "amount_net", ComparisonRule.EXACT),
        AttributeComparison("booked", "booked_on", ComparisonRule.DATE_ONLY),
    ]
    record_a = {"amount": Decimal("200.50"), "name": "Bob", "booked": "2025-12-02"}
    record_b = {"amount": Decimal("210.00"), "amount_net": Decimal("1"), "full_name": "BOB",
                "booked_on": date(2025, 12, 3)}

    assert detect_mismatches(comparisons, record_a, record_b) == ["amount", "booked"]


def test_detect_mismatches_empty_when_equal() -> None:
    comparisons = [AttributeComparison("amount", "amount", ComparisonRule.EXACT)]

    assert detect_mismatches(comparisons, {"amount": 1}, {"amount": 1}) == []


def _flags(df: pl.DataFrame, comparison: AttributeComparison) -> list[bool]:
    expr = mismatch_expr(comparison, "a", "b", df.schema["a"], df.schema["b"])
    return df.select(expr.alias("flag"))["flag"].to_list()


def test_vectorized_null_semantics() -> None:
    df = pl.DataFrame({"a": [None, None, 1.0, 2.0, float("nan")], "b": [None, 1.0, None, 2.0, None]})

    assert _flags(df, AttributeComparison("a", "b", ComparisonRule.EXACT)) == [False, True, True, False, False]


def test_vectorized_normalized() -> None:
    df = pl.DataFrame({"a": ["Alice", " BOB", "Carl"], "b": ["alice ", "bob", "Karl"]})

    assert _flags(df, AttributeComparison("a", "b", ComparisonRule.NORMALIZED)) == [False, False, True]


def test_vectorized_date_only_across_dtypes() -> None:
    df = pl.DataFrame({
        "a": ["2025-12-01", "2025-12-02 10:00:00", "garbage"],
        "b": [datetime(2025, 12, 1, 23, 0), datetime(2025, 12, 3), datetime(2025, 12, 1)],
    })

    assert _flags(df, AttributeComparison("a", "b", ComparisonRule.DATE_ONLY)) == [False, True, True]


def test_vectorized_numeric_tolerance() -> None:
    df = pl.DataFrame({"a": [100.0, 100.0, 5.0], "b": ["100.005", "100.5", "x"]})
    comparison = AttributeComparison("a", "b", ComparisonRule.NUMERIC_TOLERANCE, tolerance=0.01)

    assert _flags(df, comparison) == [False, True, True]


def test_vectorized_exact_mixed_numeric_dtypes() -> None:
    df = pl.DataFrame(
        {"a": [1, 2], "b": [1.0, 2.5]},
        schema={"a": pl.Int32, "b": pl.Float64},
    )

    assert _flags(df, AttributeComparison("a", "b", ComparisonRule.EXACT)) == [False, True]


def test_normalized_casefolds_beyond_lowercase() -> None:
    df = pl.DataFrame({"a": ["Straße", "Straße"], "b": ["STRASSE", "STRASE"]})
    comparison = AttributeComparison("a", "b", ComparisonRule.NORMALIZED)

    assert compare("Straße", "STRASSE", ComparisonRule.NORMALIZED) is EQUAL
    assert _flags(df, comparison) == [False, True]


def test_tolerance_examples_around_four_hundredths() -> None:
    assert compare(100.0, 100.04, ComparisonRule.NUMERIC_TOLERANCE, tolerance=0.1) is EQUAL
    assert compare(100.0, 100.04, ComparisonRule.NUMERIC_TOLERANCE, tolerance=0.01) is MISMATCH


def test_date_only_ignores_time_of_day_in_iso_datetimes() -> None:
    assert compare("2026-02-18T10:00:00", "2026-02-18T23:00:00", ComparisonRule.DATE_ONLY) is EQUAL
