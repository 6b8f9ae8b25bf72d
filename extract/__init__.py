"""Extract package: read access to staged System A / System B relations.

ConnectorX reads are wrapped with Rust panic recovery and retry. The
reconciliation core itself never retries; a failed read surfaces as a
DataAccessFault for the entity (see extract.staged_reader).
"""

from __future__ import annotations

import logging
import time

import connectorx as cx
import polars as pl

logger = logging.getLogger(__name__)

# Default retry configuration for ConnectorX calls.
_CX_MAX_RETRIES = 3
_CX_RETRY_BASE_DELAY = 2.0  # seconds, doubles each retry (exponential backoff)


def cx_read_sql_safe(
    *,
    conn: str,
    query: str,
    context: str = "",
    max_retries: int = _CX_MAX_RETRIES,
) -> pl.DataFrame:
    """Wrapper around cx.read_sql with Rust panic recovery and retry.

    ConnectorX errors manifest as Rust thread panics (PanicException) rather
    than standard Python exceptions. These may not inherit from Exception;
    they can inherit directly from BaseException. This wrapper catches
    BaseException to handle both regular errors and Rust panics.

    Retries with exponential backoff for transient failures (connection
    timeouts, SQL Server busy). Non-retryable errors (syntax errors,
    permission denied, missing objects) fail immediately.

    Args:
        conn: ConnectorX connection URI.
        query: SQL query to execute.
        context: Description for log messages (e.g. "staged read sales.orders A").
        max_retries: Maximum attempts (default 3).

    Returns:
        Polars DataFrame with the query result.

    Raises:
        BaseException: After all retries exhausted, re-raises the last error.
    """
    last_error: BaseException | None = None

    for attempt in range(1, max_retries + 1):
        try:
            return cx.read_sql(conn=conn, query=query, return_type="polars")
        except (KeyboardInterrupt, SystemExit):
            raise
        except BaseException as e:
            last_error = e
            error_type = type(e).__name__
            non_retryable = _is_non_retryable_error(str(e).lower())

            if non_retryable or attempt == max_retries:
                logger.error(
                    "ConnectorX %s failed after %d attempt(s) (%s)%s",
                    context, attempt, error_type,
                    " [non-retryable]" if non_retryable else "",
                )
                raise

            delay = _CX_RETRY_BASE_DELAY * (2 ** (attempt - 1))
            logger.warning(
                "ConnectorX %s attempt %d/%d failed (%s). Retrying in %.1fs...",
                context, attempt, max_retries, error_type, delay,
            )
            time.sleep(delay)

    # Should not reach here, but satisfy type checker
    raise last_error  # type: ignore[misc]


# SQL syntax, permissions, and object-not-found errors are permanent:
# retrying only wastes time and obscures the root cause.
_NON_RETRYABLE_PATTERNS = (
    "syntax",
    "permission",
    "does not exist",
    "invalid column",
    "invalid object",
    "login failed",
    "access denied",
)

# Transient patterns win over non-retryable ones when both match.
_TRANSIENT_PATTERNS = (
    "connection reset",
    "connection refused",
    "timeout",
    "timed out",
    "broken pipe",
    "network",
    "server is not available",
    "deadlock",
)


def _is_non_retryable_error(error_str: str) -> bool:
    """Return True if the error should NOT be retried."""
    if any(pattern in error_str for pattern in _TRANSIENT_PATTERNS):
        return False
    return any(pattern in error_str for pattern in _NON_RETRYABLE_PATTERNS)
