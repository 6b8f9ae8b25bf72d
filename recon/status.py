"""Match-status classification.

Presence is decided before mismatches: a record missing on one side is never
also a mismatch.
"""

from __future__ import annotations

from collections.abc import Sequence

import polars as pl

from recon.models import MatchStatus


def classify_match_status(
    key_a_present: bool,
    key_b_present: bool,
    mismatch_columns: Sequence[str] = (),
) -> MatchStatus:
    """Classify one correlated or uncorrelated record.

    Raises:
        ValueError: If neither side is present (not a reconcilable record).
    """
    if key_a_present and not key_b_present:
        return MatchStatus.MISSING_IN_B
    if key_b_present and not key_a_present:
        return MatchStatus.MISSING_IN_A
    if not key_a_present:
        raise ValueError("Cannot classify a record absent from both System A and System B")
    return MatchStatus.MISMATCH if mismatch_columns else MatchStatus.MATCHED


def match_status_expr(present_a: pl.Expr, present_b: pl.Expr, mismatch_count: pl.Expr) -> pl.Expr:
    """Vectorized classify_match_status over a joined frame."""
    return (
        pl.when(present_a & ~present_b).then(pl.lit(MatchStatus.MISSING_IN_B.value))
        .when(present_b & ~present_a).then(pl.lit(MatchStatus.MISSING_IN_A.value))
        .when(mismatch_count > 0).then(pl.lit(MatchStatus.MISMATCH.value))
        .otherwise(pl.lit(MatchStatus.MATCHED.value))
    )
