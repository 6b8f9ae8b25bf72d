"""Dtype alignment for join keys across the two staged relations."""

from __future__ import annotations

import logging

import polars as pl

logger = logging.getLogger(__name__)

_NUMERIC_RANK: dict[pl.DataType, int] = {
    pl.Int8: 1, pl.Int16: 2, pl.Int32: 3, pl.Int64: 4,
    pl.UInt8: 1, pl.UInt16: 2, pl.UInt32: 3, pl.UInt64: 4,
    pl.Float32: 5, pl.Float64: 6,
}

_FLOAT_TYPES = (pl.Float32, pl.Float64)


def _wider_dtype(a: pl.DataType, b: pl.DataType) -> pl.DataType:
    """Return the wider of two Polars dtypes for safe casting.

    Rules:
      - Both numeric, one floating: Float64. Float32 holds integers exactly
        only up to 2**24, so Int64 and Float32 meet at Float64.
      - Both integer: return the wider type (by rank).
      - One or both string: return Utf8 (safest common type).
      - Unknown combo: return Utf8.
    """
    rank_a = _NUMERIC_RANK.get(a)
    rank_b = _NUMERIC_RANK.get(b)

    if rank_a is not None and rank_b is not None:
        if a in _FLOAT_TYPES or b in _FLOAT_TYPES:
            return pl.Float64
        return a if rank_a >= rank_b else b

    # One or both non-numeric: Utf8 is the safe fallback
    return pl.Utf8


def align_key_dtypes(
    df_a: pl.DataFrame,
    df_b: pl.DataFrame,
    left_on: list[str],
    right_on: list[str],
    context: str = "",
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """Cast each (left, right) key pair to a common dtype before joining.

    System A and System B are maintained independently, so the same logical
    key often arrives typed differently (Int32 vs Int64, or a numeric id on
    one side and a string id on the other). A string/numeric mismatch joined
    as-is matches nothing and every record would show up as missing.

    Args:
        df_a: System A frame.
        df_b: System B frame.
        left_on: Key columns in df_a, positionally paired with right_on.
        right_on: Key columns in df_b.
        context: Description for log messages (e.g. "sales.orders").

    Returns:
        Tuple of (df_a, df_b) with key columns cast to matching dtypes.
    """
    suffix = f" ({context})" if context else ""
    for col_a, col_b in zip(left_on, right_on):
        dtype_a = df_a.schema[col_a]
        dtype_b = df_b.schema[col_b]

        if dtype_a == dtype_b:
            continue

        target = _wider_dtype(dtype_a, dtype_b)

        a_is_string = dtype_a in (pl.Utf8, pl.String)
        b_is_string = dtype_b in (pl.Utf8, pl.String)
        if a_is_string != b_is_string:
            logger.warning(
                "Key pair [%s]/[%s] has string/numeric dtype mismatch: %s vs %s, "
                "casting both to %s%s",
                col_a, col_b, dtype_a, dtype_b, target, suffix,
            )
        else:
            logger.info(
                "Key pair [%s]/[%s] dtype mismatch: %s vs %s, casting both to %s%s",
                col_a, col_b, dtype_a, dtype_b, target, suffix,
            )

        df_a = df_a.with_columns(pl.col(col_a).cast(target))
        df_b = df_b.with_columns(pl.col(col_b).cast(target))

    return df_a, df_b
