"""CLI entry point for the cross-system reconciliation run.

Usage:
    python3 main_reconcile.py --workers 4
    python3 main_reconcile.py --domain sales --entity orders
    python3 main_reconcile.py --list-entities
    python3 main_reconcile.py --normalize-only --domain sales
    python3 main_reconcile.py --no-persist --run-id adhoc-001

Exit codes: 0 = every entity reconciled, 1 = some entities failed,
2 = no entity reconciled (or nothing matched the filters).
"""

from __future__ import annotations

# cli_common checks MALLOC_ARENA_MAX and sets sys.path; import it before
# any other project modules.
import cli_common  # noqa: F401

import argparse
import logging
import sys

import config
from extract.staged_reader import SqlServerRelationSource
from observability.event_tracker import ReconEventTracker
from recon.ledger import ensure_ledger_table, persist_ledger
from recon.metadata import MetadataLoader
from recon.normalize import canonical_name, normalize_mappings, normalized_mapping_frame
from recon.runner import new_run_id, run_reconciliation


def _print_entities(entities: list[tuple[str, str]], faulted: set[tuple[str, str]]) -> None:
    print(f"\n{'Domain':<24} {'Entity':<40} {'Status':<10}")
    print("-" * 76)
    for domain, entity in entities:
        status = "FAULT" if (domain, entity) in faulted else "OK"
        print(f"{domain:<24} {entity:<40} {status:<10}")
    print(f"\nTotal: {len(entities)} entities")


def main() -> None:
    parser = argparse.ArgumentParser(description="Cross-System Reconciliation")
    parser.add_argument("--workers", type=int, default=config.RECON_WORKERS,
                        help=f"Number of parallel entity workers (default: {config.RECON_WORKERS})")
    parser.add_argument("--domain", type=str, help="Reconcile a single domain")
    parser.add_argument("--entity", type=str, help="Reconcile a single entity")
    parser.add_argument("--list-entities", action="store_true", help="List registered entities and exit")
    parser.add_argument("--normalize-only", action="store_true",
                        help="Print the normalized mapping relation and exit (no staged reads)")
    parser.add_argument("--no-persist", action="store_true", help="Do not write the ledger to GENERAL_DB")
    parser.add_argument("--run-id", type=str, help="Explicit run identifier (default: generated)")
    args = parser.parse_args()

    logger = logging.getLogger(__name__)

    run_id = args.run_id or new_run_id()
    sql_handler = cli_common.setup_logging(run_id)

    loader = MetadataLoader()
    rules = loader.load_rules()
    normalized = normalize_mappings(loader.load_mappings(), rules)
    entities = normalized.entities()

    cli_common.validate_cli_filters(args.domain, args.entity, entities)

    domain = canonical_name(args.domain) if args.domain else None
    entity = canonical_name(args.entity) if args.entity else None
    selected = [
        (d, e) for d, e in entities
        if (domain is None or d == domain) and (entity is None or e == entity)
    ]

    if args.list_entities:
        _print_entities(selected, set(normalized.faults))
        return

    if not selected:
        print("No entities found matching the specified filters.")
        sys.exit(2)

    if args.normalize_only:
        wanted = set(selected)
        print(normalized_mapping_frame(r for r in normalized.rows if (r.domain, r.entity) in wanted))
        for w in normalized.warnings:
            if (w.domain, w.entity) in wanted:
                print(w.describe())
        for key in selected:
            if key in normalized.faults:
                print(normalized.faults[key])
        sys.exit(2 if any(key in normalized.faults for key in selected) else 0)

    cli_common.warn_malloc_arena()
    cli_common.warn_workers(args.workers)

    tracker = ReconEventTracker(run_id)
    summary = run_reconciliation(
        normalized,
        SqlServerRelationSource(),
        rules=rules,
        domain=domain,
        entity=entity,
        workers=args.workers,
        run_id=run_id,
        tracker=tracker,
        log_handler=sql_handler,
    )

    if args.no_persist:
        logger.info("--no-persist: ledger with %d rows not written", len(summary.ledger))
    elif not summary.ledger.is_empty():
        ensure_ledger_table()
        persist_ledger(summary.ledger)

    print(summary.format_report())

    # Close pooled connections at shutdown.
    cli_common.shutdown_connections()

    # Flush logs
    if sql_handler is not None:
        sql_handler.flush()

    sys.exit(summary.status.exit_code)


if __name__ == "__main__":
    main()
