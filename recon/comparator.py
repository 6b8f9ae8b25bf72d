"""Attribute comparison and mismatch detection for correlated record pairs.

Null handling is three-valued and identical for every rule:
  - both null          -> equal
  - exactly one null   -> mismatch
  - both non-null      -> rule-specific equality

Two renditions of the same semantics:
  - compare() / detect_mismatches(): scalar, one record pair at a time.
  - mismatch_expr(): a Polars boolean expression used by the executor to
    evaluate a whole joined relation at once.

Values are read only to decide equality. Nothing here logs, returns, or
stores an attribute value; only attribute names leave this module.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import polars as pl

import config
from recon.models import AttributeComparison, ComparisonOutcome, ComparisonRule

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scalar equality per rule (both values already known to be non-null)
# ---------------------------------------------------------------------------

def _exact_equal(a: object, b: object, tolerance: float) -> bool:
    if a == b:
        return True
    # Mixed types from the two systems (e.g. Decimal vs str) compare by text.
    if type(a) is not type(b):
        return _as_text(a) == _as_text(b)
    return False


def _normalized_equal(a: object, b: object, tolerance: float) -> bool:
    return _as_text(a).strip().casefold() == _as_text(b).strip().casefold()


def _date_only_equal(a: object, b: object, tolerance: float) -> bool:
    da, db = _as_date(a), _as_date(b)
    if da is None or db is None:
        # Unparseable on either side cannot be proven equal.
        return False
    return da == db


def _numeric_tolerance_equal(a: object, b: object, tolerance: float) -> bool:
    na, nb = _as_float(a), _as_float(b)
    if na is None or nb is None:
        return False
    return abs(na - nb) <= tolerance


_EQUALITY: dict[ComparisonRule, Callable[[object, object, float], bool]] = {
    ComparisonRule.EXACT: _exact_equal,
    ComparisonRule.NORMALIZED: _normalized_equal,
    ComparisonRule.DATE_ONLY: _date_only_equal,
    ComparisonRule.NUMERIC_TOLERANCE: _numeric_tolerance_equal,
}


def _as_text(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


def _as_date(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _as_text(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
    else:
        try:
            result = float(Decimal(_as_text(value).strip()))
        except (InvalidOperation, ValueError):
            return None
    return None if math.isnan(result) else result


def _is_null(value: object) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _effective_tolerance(tolerance: float | None) -> float:
    return config.NUMERIC_TOLERANCE_EPSILON if tolerance is None else tolerance


def compare(
    value_a: object,
    value_b: object,
    rule: ComparisonRule,
    tolerance: float | None = None,
) -> ComparisonOutcome:
    """Compare two attribute values under a comparison rule.

    Args:
        value_a: System A value (None for SQL NULL).
        value_b: System B value (None for SQL NULL).
        rule: Comparison rule governing the attribute.
        tolerance: Epsilon for NUMERIC_TOLERANCE. Defaults to
            config.NUMERIC_TOLERANCE_EPSILON.

    Returns:
        ComparisonOutcome.EQUAL or ComparisonOutcome.MISMATCH.
    """
    null_a, null_b = _is_null(value_a), _is_null(value_b)
    if null_a and null_b:
        return ComparisonOutcome.EQUAL
    if null_a or null_b:
        return ComparisonOutcome.MISMATCH
    equal = _EQUALITY[rule](value_a, value_b, _effective_tolerance(tolerance))
    return ComparisonOutcome.EQUAL if equal else ComparisonOutcome.MISMATCH


def detect_mismatches(
    comparisons: Iterable[AttributeComparison],
    record_a: Mapping[str, object],
    record_b: Mapping[str, object],
) -> list[str]:
    """Return the ordered attribute names (A-side) whose values disagree.

    Order follows the comparisons' iteration order; a name appears once even
    if it is compared more than once.
    """
    mismatched: dict[str, None] = {}
    for comparison in comparisons:
        outcome = compare(
            record_a.get(comparison.attribute_a),
            record_b.get(comparison.attribute_b),
            comparison.rule,
            comparison.tolerance,
        )
        if outcome is ComparisonOutcome.MISMATCH:
            mismatched.setdefault(comparison.attribute_a, None)
    return list(mismatched)


# ---------------------------------------------------------------------------
# Vectorized rendition
# ---------------------------------------------------------------------------

_TEXT_TYPES = (pl.Utf8, pl.String, pl.Categorical)


def _is_text(dtype: pl.DataType) -> bool:
    return dtype in _TEXT_TYPES


def _normalize_side(expr: pl.Expr, dtype: pl.DataType, rule: ComparisonRule) -> pl.Expr:
    if rule is ComparisonRule.NORMALIZED:
        # Full Unicode casefold, same as the scalar compare().
        return expr.cast(pl.Utf8).str.strip_chars().map_elements(str.casefold, return_dtype=pl.Utf8)
    if rule is ComparisonRule.DATE_ONLY:
        if dtype == pl.Date:
            return expr
        if isinstance(dtype, pl.Datetime):
            return expr.dt.date()
        return expr.cast(pl.Utf8).str.strip_chars().str.slice(0, 10).str.to_date("%Y-%m-%d", strict=False)
    if rule is ComparisonRule.NUMERIC_TOLERANCE:
        if _is_text(dtype):
            return expr.str.strip_chars().cast(pl.Float64, strict=False)
        return expr.cast(pl.Float64, strict=False)
    return expr


def mismatch_expr(
    comparison: AttributeComparison,
    col_a: str,
    col_b: str,
    dtype_a: pl.DataType,
    dtype_b: pl.DataType,
) -> pl.Expr:
    """Boolean expression: True where the two columns disagree.

    Args:
        comparison: The attribute comparison (rule and tolerance).
        col_a: Column holding the System A value in the joined frame.
        col_b: Column holding the System B value in the joined frame.
        dtype_a: Polars dtype of col_a.
        dtype_b: Polars dtype of col_b.
    """
    rule = comparison.rule
    raw_a, raw_b = pl.col(col_a), pl.col(col_b)

    # NaN is treated as null, matching the scalar compare().
    if dtype_a.is_float():
        raw_a = raw_a.fill_nan(None)
    if dtype_b.is_float():
        raw_b = raw_b.fill_nan(None)

    a = _normalize_side(raw_a, dtype_a, rule)
    b = _normalize_side(raw_b, dtype_b, rule)

    if rule is ComparisonRule.EXACT and dtype_a != dtype_b:
        # Mixed dtypes from the two systems: numbers compare as numbers,
        # anything else as text.
        if dtype_a.is_numeric() and dtype_b.is_numeric():
            a, b = a.cast(pl.Float64), b.cast(pl.Float64)
        else:
            a, b = a.cast(pl.Utf8), b.cast(pl.Utf8)

    if rule is ComparisonRule.NUMERIC_TOLERANCE:
        values_differ = (a - b).abs() > _effective_tolerance(comparison.tolerance)
    else:
        values_differ = a != b

    a_null, b_null = raw_a.is_null(), raw_b.is_null()
    return (
        pl.when(a_null & b_null).then(pl.lit(False))
        .when(a_null | b_null).then(pl.lit(True))
        # Both raw values present but one failed to parse: not provably equal.
        .when(a.is_null() | b.is_null()).then(pl.lit(True))
        .otherwise(values_differ)
    )
