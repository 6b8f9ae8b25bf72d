"""Unified ledger: aggregation of per-entity frames and persistence.

The ledger is append-only and historized by run_id + load_timestamp. This
module never transforms rows; it concatenates, converts, and writes them.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator

import polars as pl

import config
import connections
from connections import quote_identifier
from recon.executor import LEDGER_SCHEMA, empty_ledger
from recon.models import LEDGER_COLUMNS, MatchStatus, ReconciliationRecord

logger = logging.getLogger(__name__)

# executemany batch size for ledger inserts.
_INSERT_BATCH_SIZE = 5000


def build_unified_ledger(frames: Iterable[pl.DataFrame]) -> pl.DataFrame:
    """Concatenate per-entity ledger frames into one relation.

    Order across entities carries no meaning; within an entity it is the
    executor's stable key order.
    """
    frames = [f.select(list(LEDGER_COLUMNS)).cast(LEDGER_SCHEMA) for f in frames]
    if not frames:
        return empty_ledger()
    return pl.concat(frames, how="vertical")


def records_from_ledger(ledger: pl.DataFrame) -> Iterator[ReconciliationRecord]:
    """Yield ReconciliationRecord objects (invariants validated on construction)."""
    for row in ledger.iter_rows(named=True):
        columns = tuple(row["mismatch_columns"] or ())
        yield ReconciliationRecord(
            domain=row["domain"],
            entity=row["entity"],
            source_system=row["source_system"],
            target_system=row["target_system"],
            key_a=row["key_a"],
            key_b=row["key_b"],
            match_status=MatchStatus(row["match_status"]),
            mismatch_columns=columns,
            mismatch_count=int(row["mismatch_count"]),
            reconciliation_type=row["reconciliation_type"],
            run_id=row["run_id"],
            load_timestamp=row["load_timestamp"],
        )


def _ledger_table_parts() -> tuple[str, str]:
    schema, _, table = config.LEDGER_TABLE.partition(".")
    if not table:
        schema, table = "dbo", schema
    return schema, table


def ensure_ledger_table() -> None:
    """Create the ledger table in GENERAL_DB if it doesn't exist.

    Call once before the first persisted run. Idempotent.
    Column order mirrors LEDGER_COLUMNS.
    """
    schema, table = _ledger_table_parts()
    qualified = f"{quote_identifier(schema)}.{quote_identifier(table)}"
    ddl = f"""
    IF NOT EXISTS (
        SELECT 1 FROM INFORMATION_SCHEMA.TABLES
        WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ?
    )
    CREATE TABLE {qualified} (
        Id                  BIGINT IDENTITY(1,1) PRIMARY KEY,
        domain              NVARCHAR(128)  NOT NULL,
        entity              NVARCHAR(128)  NOT NULL,
        source_system       NVARCHAR(8)    NOT NULL,
        target_system       NVARCHAR(8)    NOT NULL,
        key_a               NVARCHAR(900)  NULL,
        key_b               NVARCHAR(900)  NULL,
        match_status        NVARCHAR(16)   NOT NULL,
        mismatch_columns    NVARCHAR(MAX)  NOT NULL,
        mismatch_count      INT            NOT NULL,
        reconciliation_type NVARCHAR(64)   NOT NULL,
        run_id              NVARCHAR(64)   NOT NULL,
        load_timestamp      DATETIME2      NOT NULL
    )
    """
    with connections.cursor_for(config.GENERAL_DB) as cur:
        cur.execute(ddl, schema, table)
    logger.info("Ledger table %s.%s ensured", schema, table)


def persist_ledger(ledger: pl.DataFrame) -> int:
    """Append ledger rows to GENERAL_DB.LEDGER_TABLE.

    mismatch_columns is stored as a JSON array of attribute names. All batches
    are written in a single transaction: either every row lands or none does.

    Returns:
        Number of rows written.
    """
    if ledger.is_empty():
        logger.info("Ledger is empty, nothing to persist")
        return 0

    schema, table = _ledger_table_parts()
    qualified = f"{quote_identifier(schema)}.{quote_identifier(table)}"
    col_list = ", ".join(quote_identifier(c) for c in LEDGER_COLUMNS)
    placeholders = ", ".join("?" for _ in LEDGER_COLUMNS)
    sql = f"INSERT INTO {qualified} ({col_list}) VALUES ({placeholders})"

    rows = [
        (
            r["domain"], r["entity"], r["source_system"], r["target_system"],
            r["key_a"], r["key_b"], r["match_status"],
            json.dumps(list(r["mismatch_columns"] or [])),
            int(r["mismatch_count"]), r["reconciliation_type"], r["run_id"],
            r["load_timestamp"],
        )
        for r in ledger.iter_rows(named=True)
    ]

    written = 0
    with connections.cursor_for(config.GENERAL_DB) as cur:
        # Single transaction across all batches.
        conn = cur.connection
        conn.autocommit = False
        try:
            cur.fast_executemany = True
            for start in range(0, len(rows), _INSERT_BATCH_SIZE):
                batch = rows[start:start + _INSERT_BATCH_SIZE]
                cur.executemany(sql, batch)
                written += len(batch)
            conn.commit()
        except Exception:
            conn.rollback()
            logger.error("Ledger insert failed after %d staged rows, rolled back", written)
            raise
        finally:
            conn.autocommit = True
    logger.info("Persisted %d ledger rows to %s.%s", written, schema, table)
    return written
