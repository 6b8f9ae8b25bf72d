"""Run coordinator: normalize -> plan -> execute every entity -> unified ledger.

One task per (domain, entity). Tasks share nothing but the read-only
metadata and the staged-relation source, so they run on a thread pool
(polars and connectorx do their heavy work outside the GIL). as_completed()
is the barrier: the unified ledger is built only after every task has
finished, and only from the entities that succeeded.

A failure in one entity never aborts the others. ConfigurationFault and
DataAccessFault are expected and recorded with their cause; anything else is
logged with a traceback and recorded the same way.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import polars as pl

import config
from recon.errors import ReconciliationFault
from recon.executor import execute_plan
from recon.ledger import build_unified_ledger
from recon.models import (
    AttributeMapping,
    EntityOutcome,
    NormalizedMapping,
    ReconciliationTypeRule,
    RunStatus,
)
from recon.normalize import EntityKey, NormalizationResult, normalize_mappings
from recon.planner import ReconciliationPlan, RunPlan, plan_entity, plan_run

if TYPE_CHECKING:
    from extract.staged_reader import StagedRelationSource
    from observability.event_tracker import ReconEventTracker
    from observability.log_handler import SqlServerLogHandler

logger = logging.getLogger(__name__)


def new_run_id(load_timestamp: datetime | None = None) -> str:
    """Run identifier: UTC timestamp plus a short random suffix."""
    ts = load_timestamp or datetime.now(timezone.utc)
    return f"{ts:%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


@dataclass
class RunSummary:
    run_id: str
    load_timestamp: datetime
    outcomes: list[EntityOutcome] = field(default_factory=list)
    ledger: pl.DataFrame = field(default_factory=pl.DataFrame)

    @property
    def succeeded(self) -> list[EntityOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[EntityOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def warned(self) -> list[EntityOutcome]:
        return [o for o in self.outcomes if o.warnings]

    @property
    def status(self) -> RunStatus:
        """SUCCESS if every entity succeeded, PARTIAL if some did, FAILED if none.

        A run with no entities at all is FAILED: nothing was reconciled.
        """
        if not self.outcomes or not self.succeeded:
            return RunStatus.FAILED
        if self.failed:
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS

    def format_report(self) -> str:
        lines = [
            f"Reconciliation run {self.run_id} "
            f"({self.load_timestamp.isoformat()}): {self.status.value}",
            f"  entities={len(self.outcomes)} succeeded={len(self.succeeded)} "
            f"failed={len(self.failed)} ledger_rows={len(self.ledger)}",
        ]
        if self.succeeded:
            lines.append("Succeeded:")
            for o in self.succeeded:
                counts = ", ".join(f"{k}={v}" for k, v in sorted(o.status_counts.items()))
                lines.append(f"  {o.label}: rows={o.row_count}" + (f" ({counts})" if counts else ""))
        if self.failed:
            lines.append("Failed:")
            for o in self.failed:
                lines.append(f"  {o.label}: {o.fault}")
        if self.warned:
            lines.append("Warnings:")
            for o in self.warned:
                for w in o.warnings:
                    lines.append(f"  {o.label}: {w}")
        return "\n".join(lines)


def reconcile_entity(
    domain: str,
    entity: str,
    rows: Iterable[NormalizedMapping],
    source: StagedRelationSource,
    run_id: str,
    load_timestamp: datetime,
    rules: Iterable[ReconciliationTypeRule] | None = None,
) -> pl.DataFrame:
    """Plan and execute one (domain, entity).

    Raises:
        ConfigurationFault: The entity's mappings cannot produce a plan.
        DataAccessFault: A staged relation or mapped column is unavailable.
    """
    plan = plan_entity(domain, entity, rows, rules)
    return execute_plan(plan, source, run_id, load_timestamp)


def _status_counts(ledger: pl.DataFrame) -> dict[str, int]:
    return {
        row["match_status"]: row["len"]
        for row in ledger.group_by("match_status").len().iter_rows(named=True)
    }


def _run_one(
    plan: ReconciliationPlan,
    source: StagedRelationSource,
    run_id: str,
    load_timestamp: datetime,
    outcome: EntityOutcome,
    tracker: ReconEventTracker | None,
    log_handler: SqlServerLogHandler | None,
) -> pl.DataFrame | None:
    """Execute one plan, recording the result on outcome. Never raises."""
    if log_handler is not None:
        log_handler.set_context(domain=plan.domain, entity=plan.entity)
    try:
        if tracker is None:
            ledger = execute_plan(plan, source, run_id, load_timestamp)
        else:
            with tracker.track(plan.domain, plan.entity) as event:
                ledger = execute_plan(plan, source, run_id, load_timestamp)
                event.rows_emitted = len(ledger)
                event.status_counts = _status_counts(ledger)
        outcome.succeeded = True
        outcome.row_count = len(ledger)
        outcome.status_counts = _status_counts(ledger)
        return ledger
    except ReconciliationFault as fault:
        logger.error("%s", fault)
        outcome.fault = str(fault)
        return None
    except Exception as e:
        logger.exception("Unexpected error reconciling %s", plan.label)
        outcome.fault = f"{type(e).__name__}: {e}"
        return None
    finally:
        if log_handler is not None:
            log_handler.set_context()


def run_reconciliation(
    mappings: Iterable[AttributeMapping] | NormalizationResult | RunPlan,
    source: StagedRelationSource,
    *,
    rules: Iterable[ReconciliationTypeRule] | None = None,
    domain: str | None = None,
    entity: str | None = None,
    workers: int | None = None,
    run_id: str | None = None,
    load_timestamp: datetime | None = None,
    tracker: ReconEventTracker | None = None,
    log_handler: SqlServerLogHandler | None = None,
) -> RunSummary:
    """Reconcile every registered (domain, entity) and build the unified ledger.

    Args:
        mappings: Raw mapping metadata, an already normalized result, or an
            already planned run.
        source: Reader for the staged System A / System B relations.
        rules: Reconciliation-type reference data (defaults to built-ins).
        domain: Optional domain filter.
        entity: Optional entity filter.
        workers: Thread pool size; <= 1 runs sequentially.
            Defaults to config.RECON_WORKERS.
        run_id: Identifier stamped on every ledger row (generated if omitted).
        load_timestamp: Instant stamped on every ledger row (now if omitted).
        tracker: Optional per-entity event tracker.
        log_handler: Optional SqlServerLogHandler whose thread context is
            set to the entity being reconciled.

    Returns:
        RunSummary holding per-entity outcomes and the unified ledger.

    Raises:
        ValueError: If domain or entity filters are passed with a RunPlan.
    """
    rules = list(rules) if rules is not None else None
    load_timestamp = load_timestamp or datetime.now(timezone.utc)
    if load_timestamp.tzinfo is None:
        load_timestamp = load_timestamp.replace(tzinfo=timezone.utc)
    run_id = run_id or new_run_id(load_timestamp)
    workers = config.RECON_WORKERS if workers is None else workers

    if isinstance(mappings, RunPlan):
        if domain or entity:
            raise ValueError("domain/entity filters apply at planning time; filter before plan_run()")
        run_plan = mappings
    else:
        normalized = mappings if isinstance(mappings, NormalizationResult) else normalize_mappings(mappings, rules)
        run_plan = plan_run(normalized, rules, domain=domain, entity=entity)

    outcomes: dict[EntityKey, EntityOutcome] = {
        key: EntityOutcome(domain=key[0], entity=key[1]) for key in run_plan.entities
    }
    for warning in run_plan.warnings:
        key = (warning.domain, warning.entity)
        if key in outcomes:
            outcomes[key].warnings.append(warning.describe())
    for key, fault in run_plan.faults.items():
        outcomes[key].fault = str(fault)

    logger.info(
        "Starting reconciliation run: run_id=%s, entities=%d, planned=%d, workers=%d",
        run_id, len(outcomes), len(run_plan.plans), workers,
    )

    ledgers: dict[EntityKey, pl.DataFrame] = {}
    plans = sorted(run_plan.plans.items())

    if workers <= 1:
        for key, plan in plans:
            ledger = _run_one(plan, source, run_id, load_timestamp, outcomes[key], tracker, log_handler)
            if ledger is not None:
                ledgers[key] = ledger
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recon") as executor:
            futures = {
                executor.submit(
                    _run_one, plan, source, run_id, load_timestamp, outcomes[key], tracker, log_handler,
                ): key
                for key, plan in plans
            }
            for future in as_completed(futures):
                key = futures[future]
                ledger = future.result()
                if ledger is not None:
                    ledgers[key] = ledger
                    logger.info("Completed: %s.%s", *key)
                else:
                    logger.error("Failed: %s.%s", *key)

    # Entity order in the unified ledger is stable regardless of completion order.
    summary = RunSummary(
        run_id=run_id,
        load_timestamp=load_timestamp,
        outcomes=[outcomes[key] for key in sorted(outcomes)],
        ledger=build_unified_ledger(ledgers[key] for key in sorted(ledgers)),
    )
    logger.info(
        "Reconciliation run complete: run_id=%s, status=%s, succeeded=%d, failed=%d, rows=%d",
        run_id, summary.status.value, len(summary.succeeded), len(summary.failed), len(summary.ledger),
    )
    return summary
