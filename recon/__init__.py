"""Metadata-driven reconciliation of two systems' staged relations.

Attribute mappings registered per (domain, entity) drive everything: they are
normalized into one row per logical attribute, key attributes become AND-ed
join predicates, non-key attributes become comparisons, and every joined row
is classified as MATCHED / MISMATCH / MISSING_IN_A / MISSING_IN_B into a
single unified ledger.

Usage:
    python3 -c "
    from recon import normalize_mappings, run_reconciliation
    from recon.metadata import MetadataLoader
    from extract.staged_reader import SqlServerRelationSource
    loader = MetadataLoader()
    summary = run_reconciliation(loader.load_mappings(), SqlServerRelationSource(),
                                 rules=loader.load_rules(), domain='sales')
    print(summary.format_report())
    "
"""

# --- Models ---
from recon.models import (
    AttributeComparison,
    AttributeMapping,
    ComparisonOutcome,
    ComparisonRule,
    Direction,
    EntityOutcome,
    JoinPredicate,
    JoinType,
    KeyType,
    LEDGER_COLUMNS,
    MatchStatus,
    NormalizedMapping,
    ReconciliationRecord,
    ReconciliationTypeRule,
    RunStatus,
    System,
)

# --- Faults and warnings ---
from recon.errors import (
    ConfigurationFault,
    DataAccessFault,
    KeyDeclarationWarning,
    MappingDropWarning,
    ReconciliationFault,
)

# --- Normalization and planning ---
from recon.key_types import classify_key_type
from recon.normalize import NormalizationResult, normalize_mappings
from recon.join_builder import JoinCondition, build_join_condition
from recon.planner import ReconciliationPlan, RunPlan, plan_entity, plan_run

# --- Comparison and classification ---
from recon.comparator import compare, detect_mismatches
from recon.status import classify_match_status

# --- Execution and ledger ---
from recon.executor import execute_plan, reconcile_frames
from recon.ledger import build_unified_ledger, persist_ledger, records_from_ledger
from recon.runner import RunSummary, reconcile_entity, run_reconciliation
