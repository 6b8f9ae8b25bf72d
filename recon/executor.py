"""Execution phase: run a ReconciliationPlan against the two staged relations.

Data flow per (domain, entity):
  System A relation + System B relation (read-only)
  -> prefix columns (a__ / b__) and add presence markers
  -> align key dtypes
  -> FULL OUTER (or LEFT) join on the plan's AND-ed predicates
  -> per-attribute mismatch flags -> ordered mismatch_columns list
  -> match_status, key_a / key_b, source/target system labels
  -> ledger-shaped frame stamped with one run_id + load_timestamp

Only key identifiers and attribute names survive into the output frame; the
compared value columns are dropped before anything is returned or logged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import polars as pl

import config
from recon.comparator import mismatch_expr
from recon.models import Direction, JoinType, MatchStatus, System
from recon.schema_utils import align_key_dtypes
from recon.status import match_status_expr

if TYPE_CHECKING:
    from extract.staged_reader import StagedRelationSource
    from recon.planner import ReconciliationPlan

logger = logging.getLogger(__name__)

_A_PREFIX = "a__"
_B_PREFIX = "b__"
_PRESENT_A = "__present_a"
_PRESENT_B = "__present_b"

LEDGER_SCHEMA: dict[str, pl.DataType] = {
    "domain": pl.Utf8,
    "entity": pl.Utf8,
    "source_system": pl.Utf8,
    "target_system": pl.Utf8,
    "key_a": pl.Utf8,
    "key_b": pl.Utf8,
    "match_status": pl.Utf8,
    "mismatch_columns": pl.List(pl.Utf8),
    "mismatch_count": pl.Int64,
    "reconciliation_type": pl.Utf8,
    "run_id": pl.Utf8,
    "load_timestamp": pl.Datetime("us", "UTC"),
}


def empty_ledger() -> pl.DataFrame:
    return pl.DataFrame(schema=LEDGER_SCHEMA)


def execute_plan(
    plan: ReconciliationPlan,
    source: StagedRelationSource,
    run_id: str,
    load_timestamp: datetime,
) -> pl.DataFrame:
    """Read both staged relations for the plan and reconcile them.

    Raises:
        DataAccessFault: A staged relation or mapped column is unavailable.
    """
    df_a = source.read(plan.domain, plan.entity, System.A, plan.a_columns)
    df_b = source.read(plan.domain, plan.entity, System.B, plan.b_columns)
    return reconcile_frames(plan, df_a, df_b, run_id, load_timestamp)


def reconcile_frames(
    plan: ReconciliationPlan,
    df_a: pl.DataFrame,
    df_b: pl.DataFrame,
    run_id: str,
    load_timestamp: datetime,
) -> pl.DataFrame:
    """Reconcile two in-memory relations according to a plan.

    Args:
        plan: Reconciliation plan for one (domain, entity).
        df_a: System A relation containing at least plan.a_columns.
        df_b: System B relation containing at least plan.b_columns.
        run_id: Run identifier stamped on every row.
        load_timestamp: Run instant stamped on every row (naive = UTC).

    Returns:
        Ledger-shaped DataFrame (LEDGER_SCHEMA column order).
    """
    if load_timestamp.tzinfo is None:
        load_timestamp = load_timestamp.replace(tzinfo=timezone.utc)

    a = df_a.select(
        [pl.col(c).alias(_A_PREFIX + c) for c in plan.a_columns]
    ).with_columns(pl.lit(True).alias(_PRESENT_A))
    b = df_b.select(
        [pl.col(c).alias(_B_PREFIX + c) for c in plan.b_columns]
    ).with_columns(pl.lit(True).alias(_PRESENT_B))

    left_on = [_A_PREFIX + c for c in plan.join.a_columns]
    right_on = [_B_PREFIX + c for c in plan.join.b_columns]
    a, b = align_key_dtypes(a, b, left_on, right_on, context=plan.label)

    _warn_duplicate_keys(a, left_on, plan.label, System.A)
    _warn_duplicate_keys(b, right_on, plan.label, System.B)

    how = "full" if plan.rule.join_type is JoinType.FULL_OUTER else "left"
    joined = a.join(b, left_on=left_on, right_on=right_on, how=how, coalesce=False)
    # Two OWNER keys can target the same B column; sort on each column once.
    sort_on = list(dict.fromkeys(left_on + right_on))
    joined = joined.sort(sort_on, nulls_last=True, maintain_order=True)

    present_a = pl.col(_PRESENT_A).is_not_null()
    present_b = pl.col(_PRESENT_B).is_not_null()
    both_present = present_a & present_b

    mismatch_columns = _mismatch_columns_expr(plan, joined.schema, both_present)
    if mismatch_columns is None:
        mismatch_columns = pl.Series("mismatch_columns", [[]] * joined.height, dtype=pl.List(pl.Utf8))

    joined = joined.with_columns(mismatch_columns).with_columns(
        pl.col("mismatch_columns").list.len().cast(pl.Int64).alias("mismatch_count"),
    ).with_columns(
        match_status_expr(present_a, present_b, pl.col("mismatch_count")).alias("match_status"),
        pl.when(present_a).then(_key_string(left_on)).otherwise(pl.lit(None, dtype=pl.Utf8)).alias("key_a"),
        pl.when(present_b).then(_key_string(right_on)).otherwise(pl.lit(None, dtype=pl.Utf8)).alias("key_b"),
    )

    missing_in_a = pl.col("match_status") == MatchStatus.MISSING_IN_A.value
    if plan.rule.direction is Direction.BOTH_WAYS:
        source_system = pl.when(missing_in_a).then(pl.lit(System.B.value)).otherwise(pl.lit(System.A.value))
        target_system = pl.when(missing_in_a).then(pl.lit(System.A.value)).otherwise(pl.lit(System.B.value))
    else:
        source_system = pl.lit(System.A.value)
        target_system = pl.lit(System.B.value)

    excluded = []
    if not plan.rule.include_missing_in_a:
        excluded.append(MatchStatus.MISSING_IN_A.value)
    if not plan.rule.include_missing_in_b:
        excluded.append(MatchStatus.MISSING_IN_B.value)
    if excluded:
        joined = joined.filter(~pl.col("match_status").is_in(excluded))

    ledger = joined.select(
        pl.lit(plan.domain).alias("domain"),
        pl.lit(plan.entity).alias("entity"),
        source_system.alias("source_system"),
        target_system.alias("target_system"),
        pl.col("key_a"),
        pl.col("key_b"),
        pl.col("match_status"),
        pl.col("mismatch_columns"),
        pl.col("mismatch_count"),
        pl.lit(plan.rule.reconciliation_type).alias("reconciliation_type"),
        pl.lit(run_id).alias("run_id"),
        pl.lit(load_timestamp).alias("load_timestamp"),
    ).cast(LEDGER_SCHEMA)

    _log_status_counts(ledger, plan.label)
    return ledger


def _mismatch_columns_expr(
    plan: ReconciliationPlan,
    schema: pl.Schema,
    both_present: pl.Expr,
) -> pl.Expr | None:
    """List of differing A-side attribute names, in comparison order.

    None when the plan compares no attributes (keys-only entity).
    """
    by_name: dict[str, pl.Expr] = {}
    for comparison in plan.comparisons:
        col_a = _A_PREFIX + comparison.attribute_a
        col_b = _B_PREFIX + comparison.attribute_b
        differs = mismatch_expr(comparison, col_a, col_b, schema[col_a], schema[col_b])
        name = comparison.attribute_a
        by_name[name] = by_name[name] | differs if name in by_name else differs

    if not by_name:
        return None

    flags = [
        pl.when(both_present & differs).then(pl.lit(name)).otherwise(pl.lit(None, dtype=pl.Utf8))
        for name, differs in by_name.items()
    ]
    return pl.concat_list(flags).list.drop_nulls().alias("mismatch_columns")


def _key_string(columns: list[str]) -> pl.Expr:
    """Composite key rendered as text, predicate order, KEY_SEPARATOR-joined."""
    return pl.concat_str(
        [pl.col(c).cast(pl.Utf8).fill_null("") for c in columns],
        separator=config.KEY_SEPARATOR,
    )


def _warn_duplicate_keys(df: pl.DataFrame, key_columns: list[str], label: str, system: System) -> None:
    key_columns = list(dict.fromkeys(key_columns))
    dup_keys = (
        df.drop_nulls(key_columns)
        .group_by(key_columns)
        .len()
        .filter(pl.col("len") > 1)
    )
    if len(dup_keys) > 0:
        logger.warning(
            "%s: %d key(s) appear more than once in System %s; each pairing is reported separately",
            label, len(dup_keys), system.value,
        )


def _log_status_counts(ledger: pl.DataFrame, label: str) -> None:
    counts = {
        row["match_status"]: row["len"]
        for row in ledger.group_by("match_status").len().iter_rows(named=True)
    }
    logger.info(
        "Reconciled %s: rows=%d matched=%d mismatch=%d missing_in_a=%d missing_in_b=%d",
        label, len(ledger),
        counts.get(MatchStatus.MATCHED.value, 0),
        counts.get(MatchStatus.MISMATCH.value, 0),
        counts.get(MatchStatus.MISSING_IN_A.value, 0),
        counts.get(MatchStatus.MISSING_IN_B.value, 0),
    )
