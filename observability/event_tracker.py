"""ReconEventTracker context manager -> General.ops.ReconEventLog.

Writes exactly one row per (domain, entity) per run. All entities in a run
share one RunId.

Usage:
    tracker = ReconEventTracker(run_id)
    with tracker.track("sales", "orders") as event:
        ledger = execute_plan(plan, source, run_id, load_timestamp)
        event.rows_emitted = len(ledger)

The tracker is optional: the run coordinator works without one (tests, ad
hoc runs). Write failures are logged and never fail the entity.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

import connections
from recon.errors import ReconciliationFault

logger = logging.getLogger(__name__)


@dataclass
class ReconEvent:
    """Mutable event object. Reconciliation code sets counts inside the with block."""

    domain: str
    entity: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float = 0.0
    status: str = "SUCCESS"
    fault_kind: str | None = None
    error_message: str | None = None
    rows_emitted: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)


class ReconEventTracker:
    """Tracks per-entity reconciliation events for one run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id

    @contextmanager
    def track(self, domain: str, entity: str):
        """Context manager that yields a ReconEvent for the caller to populate."""
        event = ReconEvent(domain=domain, entity=entity)
        event.started_at = datetime.now(timezone.utc)
        try:
            yield event
        except ReconciliationFault as e:
            event.status = "FAILED"
            event.fault_kind = e.kind
            event.error_message = e.cause[:4000]
            raise
        except Exception as e:
            event.status = "FAILED"
            event.fault_kind = type(e).__name__
            event.error_message = str(e)[:4000]
            raise
        finally:
            event.completed_at = datetime.now(timezone.utc)
            event.duration_ms = (
                (event.completed_at - event.started_at).total_seconds() * 1000
            )
            self._write_event(event)

    def _write_event(self, event: ReconEvent) -> None:
        try:
            conn = connections.get_general_connection()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO ops.ReconEventLog (
                        RunId, Domain, Entity, StartedAt, CompletedAt, DurationMs,
                        Status, FaultKind, ErrorMessage, RowsEmitted, StatusCounts
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self.run_id,
                    event.domain,
                    event.entity,
                    event.started_at,
                    event.completed_at,
                    int(event.duration_ms),
                    event.status,
                    event.fault_kind,
                    event.error_message,
                    event.rows_emitted,
                    json.dumps(event.status_counts) if event.status_counts else None,
                )
                cursor.close()
                conn.commit()
            finally:
                conn.close()
        except Exception:
            logger.exception("Failed to write event to ReconEventLog")
