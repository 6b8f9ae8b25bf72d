"""SQL Server connections for the staged relations and the General metadata DB.

Provides both pyodbc connections (for DDL/DML) and ConnectorX URIs (for reads).
Also provides identifier quoting helpers for safe dynamic SQL construction.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING
from urllib.parse import quote_plus

import config

if TYPE_CHECKING:
    import pyodbc

logger = logging.getLogger(__name__)

# Connection pool keyed by (thread id, database). pyodbc connections are not
# shared between the entity worker threads; each thread holds its own.
_connection_pool: dict[tuple[int, str], pyodbc.Connection] = {}
_pool_lock = threading.Lock()

# ---------------------------------------------------------------------------
# SQL identifier escaping: bracket-escape with ]] doubling
# ---------------------------------------------------------------------------

_MAX_IDENTIFIER_LENGTH = 128  # SQL Server sysname limit (matches QUOTENAME())


def quote_identifier(name: str) -> str:
    """Bracket-escape a SQL Server identifier (column, schema, table name).

    Equivalent to T-SQL QUOTENAME(): wraps in brackets and doubles any embedded
    closing brackets. Rejects identifiers longer than 128 characters to match
    the sysname limit that QUOTENAME() enforces server-side.

    Args:
        name: Raw identifier (e.g. an attribute name from mapping metadata).

    Returns:
        Bracket-escaped identifier (e.g. ``[my_column]``, ``[tricky]]name]``).

    Raises:
        ValueError: If name exceeds 128 characters or is empty.
    """
    if not name:
        raise ValueError("Identifier cannot be empty")
    if len(name) > _MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Identifier exceeds {_MAX_IDENTIFIER_LENGTH} characters "
            f"(len={len(name)}): {name[:50]}..."
        )
    return f"[{name.replace(']', ']]')}]"


def quote_table(full_table_name: str) -> str:
    """Bracket-escape a fully qualified table name (db.schema.table).

    Splits on '.' and bracket-escapes each part individually.

    Args:
        full_table_name: e.g. ``Recon_Stage.sales.orders_a``

    Returns:
        e.g. ``[Recon_Stage].[sales].[orders_a]``

    Raises:
        ValueError: If not exactly 3 parts, or any part exceeds 128 chars.
    """
    parts = full_table_name.split(".")
    if len(parts) != 3:
        raise ValueError(
            f"Expected 3-part table name (db.schema.table), "
            f"got {len(parts)} parts: {full_table_name}"
        )
    return ".".join(quote_identifier(p) for p in parts)


def _pyodbc_connection_string(database: str) -> str:
    return (
        f"DRIVER={{{config.ODBC_DRIVER}}};"
        f"SERVER={config.SQL_SERVER_HOST},{config.SQL_SERVER_PORT};"
        f"DATABASE={database};"
        f"UID={config.SQL_SERVER_USER};"
        f"PWD={config.SQL_SERVER_PASSWORD};"
        "TrustServerCertificate=yes;"
    )


def _connectorx_uri(database: str) -> str:
    usr = quote_plus(config.SQL_SERVER_USER)
    pwd = quote_plus(config.SQL_SERVER_PASSWORD)
    return (
        f"mssql://{usr}:{pwd}@{config.SQL_SERVER_HOST}:{config.SQL_SERVER_PORT}"
        f"/{database}?TrustServerCertificate=true"
    )


# --- pyodbc Connections ---

def get_stage_connection() -> pyodbc.Connection:
    return get_connection(config.STAGE_DB)


def get_general_connection() -> pyodbc.Connection:
    return get_connection(config.GENERAL_DB)


def get_connection(database: str) -> pyodbc.Connection:
    """Create a fresh pyodbc connection (not pooled).

    pyodbc is imported here rather than at module level so that identifier
    quoting and planning stay importable on hosts without an ODBC driver.
    """
    import pyodbc

    return pyodbc.connect(_pyodbc_connection_string(database), autocommit=True)


# --- ConnectorX URIs ---

def stage_connectorx_uri() -> str:
    return _connectorx_uri(config.STAGE_DB)


def general_connectorx_uri() -> str:
    return _connectorx_uri(config.GENERAL_DB)


# --- Context Managers ---

@contextmanager
def cursor_for(database: str):
    """Context manager yielding a cursor for the given database.

    Uses a per-thread, per-database connection pool to avoid repeated
    TCP/TLS/ODBC handshake overhead. The connection stays in the pool after
    the cursor is closed and is only ever used by the thread that opened it.
    On pyodbc.OperationalError (connection dropped, server restart), the stale
    connection is evicted and the error propagates to the caller.

    Usage::

        with cursor_for("General") as cur:
            cur.execute("SELECT 1")
            row = cur.fetchone()
    """
    import pyodbc

    pool_key = (threading.get_ident(), database)
    with _pool_lock:
        conn = _connection_pool.get(pool_key)
    if conn is None:
        conn = get_connection(database)
        with _pool_lock:
            _connection_pool[pool_key] = conn

    cursor = conn.cursor()
    try:
        yield cursor
    except pyodbc.OperationalError:
        # Connection-level failure: evict stale connection from pool.
        with _pool_lock:
            _connection_pool.pop(pool_key, None)
        try:
            conn.close()
        except pyodbc.Error:
            logger.debug("Closing evicted connection to %s failed", database, exc_info=True)
        raise
    finally:
        try:
            cursor.close()
        except pyodbc.Error:
            logger.debug("Closing cursor on %s failed", database, exc_info=True)


def close_connection_pool() -> None:
    """Close all pooled connections. Call at run shutdown."""
    import pyodbc

    with _pool_lock:
        count = len(_connection_pool)
        for (_, db), conn in _connection_pool.items():
            try:
                conn.close()
            except pyodbc.Error:
                logger.debug("Closing pooled connection to %s failed", db, exc_info=True)
        _connection_pool.clear()
    if count > 0:
        logger.debug("Connection pool closed (%d connections)", count)
