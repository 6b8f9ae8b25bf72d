"""SqlServerLogHandler: custom logging.Handler -> General.ops.ReconLog.

Every module uses standard logger = logging.getLogger(__name__) calls.
The handler holds RunId and Domain/Entity in thread-local context, so each
worker thread of a run tags its own entity's log lines.
"""

from __future__ import annotations

import logging
import sys
import threading
import traceback
from datetime import datetime, timezone

import connections


class SqlServerLogHandler(logging.Handler):
    """Custom logging handler that writes log records to General.ops.ReconLog.

    Usage:
        handler = SqlServerLogHandler()
        handler.set_context(run_id="20260101T000000Z-ab12", domain="sales", entity="orders")
        logging.getLogger().addHandler(handler)
    """

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._context = threading.local()
        self._run_id: str | None = None
        self._buffer: list[tuple] = []
        self._buffer_lock = threading.Lock()
        # Small buffer: on a hard kill at most 9 entries are lost.
        self._buffer_size = 10

    def set_run_id(self, run_id: str) -> None:
        """Run id is shared by every thread of the run."""
        self._run_id = run_id

    def set_context(self, domain: str | None = None, entity: str | None = None) -> None:
        """Per-thread entity context. Call with no arguments to clear it."""
        self._context.domain = domain
        self._context.entity = entity

    def _get_context(self) -> tuple[str | None, str | None, str | None]:
        return (
            self._run_id,
            getattr(self._context, "domain", None),
            getattr(self._context, "entity", None),
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            run_id, domain, entity = self._get_context()
            if run_id is None:
                return

            error_type = None
            stack_trace = None
            if record.exc_info and record.exc_info[1]:
                error_type = type(record.exc_info[1]).__name__
                stack_trace = "".join(
                    traceback.format_exception(*record.exc_info)
                )[:4000]

            row = (
                run_id,
                domain,
                entity,
                record.levelname,
                record.name,
                record.funcName,
                self.format(record)[:4000],
                error_type,
                stack_trace,
                datetime.now(timezone.utc),
            )

            with self._buffer_lock:
                self._buffer.append(row)
                # Flush immediately on WARNING+; these entries are the
                # most diagnostically valuable and most likely to be lost on crash.
                if len(self._buffer) >= self._buffer_size or record.levelno >= logging.WARNING:
                    self._flush_buffer()
        except Exception:
            self.handleError(record)

    def _flush_buffer(self) -> None:
        if not self._buffer:
            return
        rows = self._buffer[:]
        self._buffer.clear()

        try:
            conn = connections.get_general_connection()
            try:
                cursor = conn.cursor()
                cursor.executemany(
                    """
                    INSERT INTO ops.ReconLog (
                        RunId, Domain, Entity, LogLevel, Module,
                        FunctionName, Message, ErrorType, StackTrace, CreatedAt
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                cursor.close()
                conn.commit()
            finally:
                conn.close()
        except Exception as flush_err:
            # Logging through the logging system here would recurse into emit().
            print(
                f"[SqlServerLogHandler] FLUSH FAILED ({len(rows)} entries lost): "
                f"{flush_err}",
                file=sys.stderr,
            )

    def flush(self) -> None:
        with self._buffer_lock:
            self._flush_buffer()

    def close(self) -> None:
        self.flush()
        super().close()
