from __future__ import annotations

import polars as pl
import pytest

from recon.models import MatchStatus
from recon.status import classify_match_status, match_status_expr


@pytest.mark.parametrize(
    ("present_a", "present_b", "mismatches", "expected"),
    [
        (True, True, (), MatchStatus.MATCHED),
        (True, True, ("amount",), MatchStatus.MISMATCH),
        (True, False, (), MatchStatus.MISSING_IN_B),
        (False, True, (), MatchStatus.MISSING_IN_A),
        # Presence wins over mismatches.
        (True, False, ("amount",), MatchStatus.MISSING_IN_B),
    ],
)
def test_classify_match_status(present_a, present_b, mismatches, expected) -> None:
    assert classify_match_status(present_a, present_b, mismatches) is expected


def test_absent_from_both_sides_is_an_error() -> None:
    with pytest.raises(ValueError):
        classify_match_status(False, False)


def test_vectorized_status_matches_scalar() -> None:
    df = pl.DataFrame({
        "pa": [True, True, True, False],
        "pb": [True, True, False, True],
        "n": [0, 2, 0, 0],
    })

    statuses = df.select(
        match_status_expr(pl.col("pa"), pl.col("pb"), pl.col("n")).alias("s")
    )["s"].to_list()

    assert statuses == [
        classify_match_status(pa, pb, ["x"] * n).value
        for pa, pb, n in df.iter_rows()
    ]
