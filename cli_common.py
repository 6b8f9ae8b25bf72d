"""CLI common boilerplate: shared setup for the reconciliation entry points.

Centralizes environment setup, logging, worker warnings and CLI filter
validation for main_reconcile.py.

Import this module BEFORE any other project imports in main_*.py files.
Module-level code records whether MALLOC_ARENA_MAX was set and extends sys.path.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

# glibc reads MALLOC_ARENA_MAX once at process start, so it must come from the
# launching environment. Polars + many glibc arenas causes RSS to balloon across
# large joins (Polars #23128).
MALLOC_ARENA_EXTERNALLY_SET = "MALLOC_ARENA_MAX" in os.environ

# Ensure project root is on sys.path for imports
sys.path.insert(0, str(Path(__file__).parent))

import config
from observability.log_handler import SqlServerLogHandler

logger = logging.getLogger(__name__)


def setup_logging(run_id: str | None = None, to_sql: bool = True) -> SqlServerLogHandler | None:
    """Configure logging: StreamHandler + SqlServerLogHandler.

    Args:
        run_id: Reconciliation run ID for log context.
        to_sql: Also install the SqlServerLogHandler (off for dry runs).

    Returns:
        The SqlServerLogHandler instance (for flush/context updates), or None.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

    # Console handler
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
    )
    root.addHandler(console)

    if not to_sql:
        return None

    # SQL Server log handler
    sql_handler = SqlServerLogHandler(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
    if run_id is not None:
        sql_handler.set_run_id(run_id)
    root.addHandler(sql_handler)

    return sql_handler


def warn_malloc_arena() -> None:
    """Warn if MALLOC_ARENA_MAX was not set in the external environment.

    The variable must be set before the Python interpreter starts (systemd
    unit file, shell wrapper, .bashrc) to affect this process.
    """
    if not MALLOC_ARENA_EXTERNALLY_SET:
        logger.warning(
            "MALLOC_ARENA_MAX was not set in the external environment. glibc "
            "arena configuration is locked at process start. Set "
            "MALLOC_ARENA_MAX=2 in the systemd unit file or shell wrapper to "
            "limit RSS growth across large joins (Polars issue #23128).",
        )


def warn_workers(workers: int) -> None:
    """Warn if workers exceed the configured default."""
    if workers > config.RECON_WORKERS:
        logger.warning(
            "Running with %d workers (RECON_WORKERS=%d). Each worker holds both "
            "staged relations and their join in memory (peak ~3x the larger "
            "relation).",
            workers, config.RECON_WORKERS,
        )


def validate_cli_filters(
    domain: str | None,
    entity: str | None,
    known_entities: list[tuple[str, str]],
) -> None:
    """Validate --domain and --entity CLI arguments against registered entities.

    Catches typos early instead of producing an empty run.

    Raises:
        SystemExit: If the value is not registered in the mapping metadata.
    """
    if domain is None and entity is None:
        return

    from recon.normalize import canonical_name

    if domain:
        known_domains = sorted({d for d, _ in known_entities})
        if canonical_name(domain) not in known_domains:
            logger.error(
                "--domain '%s' not found in mapping metadata. Known domains: %s",
                domain, known_domains,
            )
            sys.exit(2)

    if entity:
        known = sorted({e for _, e in known_entities})
        if canonical_name(entity) not in known:
            logger.error(
                "--entity '%s' not found in mapping metadata. "
                "Known entities (first 20): %s",
                entity, known[:20],
            )
            sys.exit(2)


def shutdown_connections() -> None:
    """Close pooled connections at shutdown."""
    from connections import close_connection_pool
    close_connection_pool()
