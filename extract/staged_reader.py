"""Staged relation sources: one typed relation per (domain, entity, system).

The staging layer is an external collaborator. This module only defines the
read contract the executor depends on and two implementations:

  - SqlServerRelationSource: ConnectorX reads from the Stage database.
  - DataFrameRelationSource: in-memory Polars frames (tests, ad hoc runs,
    frames produced by another process).

Both are read-only. A missing relation or a missing column raises
DataAccessFault for the entity being reconciled.
"""

from __future__ import annotations

import logging
from typing import Protocol

import polars as pl

import config
import connections
from connections import quote_identifier, quote_table
from extract import cx_read_sql_safe
from recon.errors import DataAccessFault
from recon.models import System
from recon.normalize import canonical_name

logger = logging.getLogger(__name__)


class StagedRelationSource(Protocol):
    def read(self, domain: str, entity: str, system: System, columns: list[str]) -> pl.DataFrame:
        """Return the staged relation restricted to ``columns`` (in that order)."""
        ...


def staged_table_name(domain: str, entity: str, system: System) -> str:
    """Fully qualified staged table name from config.STAGED_TABLE_PATTERN."""
    return config.STAGED_TABLE_PATTERN.format(
        database=config.STAGE_DB,
        domain=domain,
        entity=entity,
        system=system.value.lower(),
    )


class SqlServerRelationSource:
    """Reads staged relations from SQL Server through ConnectorX.

    Column presence is checked against INFORMATION_SCHEMA before the read so
    a metadata/staging drift is reported by name instead of as a driver error.
    """

    def __init__(self) -> None:
        self._uri = connections.stage_connectorx_uri()

    def _existing_columns(self, full_table_name: str) -> list[str] | None:
        database, schema, table = full_table_name.split(".")
        with connections.cursor_for(database) as cur:
            cur.execute(
                f"SELECT COLUMN_NAME FROM {quote_identifier(database)}.INFORMATION_SCHEMA.COLUMNS "
                "WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ? ORDER BY ORDINAL_POSITION",
                schema, table,
            )
            rows = cur.fetchall()
        if not rows:
            return None
        return [r[0] for r in rows]

    def read(self, domain: str, entity: str, system: System, columns: list[str]) -> pl.DataFrame:
        full_name = staged_table_name(domain, entity, system)
        try:
            quoted_table = quote_table(full_name)
            existing = self._existing_columns(full_name)
        except ValueError as e:
            raise DataAccessFault(domain, entity, f"invalid staged relation name {full_name}: {e}") from e
        except Exception as e:
            raise DataAccessFault(
                domain, entity, f"could not inspect staged relation {full_name} ({type(e).__name__})",
            ) from e

        if existing is None:
            raise DataAccessFault(domain, entity, f"staged relation {full_name} does not exist")

        # SQL Server column names are case-insensitive; keep the mapped casing.
        existing_lower = {c.lower() for c in existing}
        missing = [c for c in columns if c.lower() not in existing_lower]
        if missing:
            raise DataAccessFault(
                domain, entity,
                f"staged relation {full_name} lacks mapped column(s): {', '.join(missing)}",
            )

        col_list = ", ".join(f"{quote_identifier(c)} AS {quote_identifier(c)}" for c in columns)
        query = f"SELECT {col_list} FROM {quoted_table}"

        logger.info("Reading staged relation %s (System %s, %d columns)", full_name, system.value, len(columns))
        try:
            df = cx_read_sql_safe(conn=self._uri, query=query, context=f"staged read {full_name}")
        except (KeyboardInterrupt, SystemExit):
            raise
        except BaseException as e:
            raise DataAccessFault(
                domain, entity, f"read of staged relation {full_name} failed ({type(e).__name__})",
            ) from e
        logger.info("Read %d rows from %s", len(df), full_name)
        return df


class DataFrameRelationSource:
    """Serves staged relations from in-memory Polars frames."""

    def __init__(self, frames: dict[tuple[str, str, System], pl.DataFrame] | None = None) -> None:
        self._frames: dict[tuple[str, str, System], pl.DataFrame] = {}
        for (domain, entity, system), df in (frames or {}).items():
            self.register(domain, entity, system, df)

    def register(self, domain: str, entity: str, system: System, df: pl.DataFrame) -> None:
        self._frames[(canonical_name(domain), canonical_name(entity), system)] = df

    def read(self, domain: str, entity: str, system: System, columns: list[str]) -> pl.DataFrame:
        df = self._frames.get((domain, entity, system))
        if df is None:
            raise DataAccessFault(domain, entity, f"no staged System {system.value} relation registered")
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise DataAccessFault(
                domain, entity,
                f"staged System {system.value} relation lacks mapped column(s): {', '.join(missing)}",
            )
        return df.select(columns)
