"""Reconciliation enums, metadata rows, plan IR, and ledger record dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class System(Enum):
    A = "A"
    B = "B"

    @classmethod
    def parse(cls, value: str) -> System:
        key = str(value).strip().upper()
        if key not in cls.__members__:
            raise ValueError(f"Unknown system code: {value!r}. Expected one of {list(cls.__members__)}")
        return cls[key]


class KeyType(Enum):
    """Relational shape of a key attribute.

    OWNER, ADDRESS and OPAQUE_ID always join to a fixed System B reference
    column. GENERIC joins to the mapped System B attribute itself.
    """

    OWNER = "OWNER"
    ADDRESS = "ADDRESS"
    OPAQUE_ID = "OPAQUE_ID"
    GENERIC = "GENERIC"

    @property
    def target_column(self) -> str | None:
        return _KEY_TYPE_TARGET_COLUMNS[self]


# Every KeyType member must appear here; a missing member is a KeyError at
# first use rather than a silent passthrough.
_KEY_TYPE_TARGET_COLUMNS: dict[KeyType, str | None] = {
    KeyType.OWNER: "owner_id",
    KeyType.ADDRESS: "address_id",
    KeyType.OPAQUE_ID: "did",
    KeyType.GENERIC: None,
}


class ComparisonRule(Enum):
    EXACT = "EXACT"
    NORMALIZED = "NORMALIZED"
    DATE_ONLY = "DATE_ONLY"
    NUMERIC_TOLERANCE = "NUMERIC_TOLERANCE"


class ComparisonOutcome(Enum):
    EQUAL = "EQUAL"
    MISMATCH = "MISMATCH"


class JoinType(Enum):
    LEFT = "LEFT"
    FULL_OUTER = "FULL_OUTER"


class Direction(Enum):
    ONE_WAY = "ONE_WAY"
    BOTH_WAYS = "BOTH_WAYS"


class MatchStatus(Enum):
    MATCHED = "MATCHED"
    MISMATCH = "MISMATCH"
    MISSING_IN_A = "MISSING_IN_A"
    MISSING_IN_B = "MISSING_IN_B"


class RunStatus(Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

    @property
    def exit_code(self) -> int:
        return {RunStatus.SUCCESS: 0, RunStatus.PARTIAL: 1, RunStatus.FAILED: 2}[self]


# Column order is a compatibility contract for downstream dashboards.
LEDGER_COLUMNS: tuple[str, ...] = (
    "domain",
    "entity",
    "source_system",
    "target_system",
    "key_a",
    "key_b",
    "match_status",
    "mismatch_columns",
    "mismatch_count",
    "reconciliation_type",
    "run_id",
    "load_timestamp",
)


# ---------------------------------------------------------------------------
# Metadata rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AttributeMapping:
    """One row of attribute-mapping metadata for a single system."""

    domain: str
    entity: str
    system: System
    attribute_name: str
    is_key: bool = False
    is_active: bool = True
    logical_attribute: str | None = None
    reconciliation_type: str | None = None

    @property
    def logical_identity(self) -> str:
        if self.logical_attribute:
            return self.logical_attribute.strip().lower()
        return self.attribute_name.strip().lower()


@dataclass(frozen=True)
class NormalizedMapping:
    """One logical attribute of a (domain, entity) with both sides resolved."""

    domain: str
    entity: str
    logical_attribute: str
    attribute_a: str
    attribute_b: str
    is_key: bool
    key_type: KeyType
    reconciliation_type: str


@dataclass(frozen=True)
class ReconciliationTypeRule:
    """Reference data describing how one reconciliation type behaves."""

    reconciliation_type: str
    comparison_rule: ComparisonRule = ComparisonRule.EXACT
    join_type: JoinType = JoinType.FULL_OUTER
    direction: Direction = Direction.BOTH_WAYS
    include_missing_in_a: bool = True
    include_missing_in_b: bool = True
    match_priority: int = 100
    tolerance: float | None = None


DEFAULT_RECONCILIATION_TYPES: tuple[ReconciliationTypeRule, ...] = (
    ReconciliationTypeRule("EXACT", ComparisonRule.EXACT, match_priority=10),
    ReconciliationTypeRule("NORMALIZED", ComparisonRule.NORMALIZED, match_priority=20),
    ReconciliationTypeRule("DATE_ONLY", ComparisonRule.DATE_ONLY, match_priority=30),
    ReconciliationTypeRule("NUMERIC_TOLERANCE", ComparisonRule.NUMERIC_TOLERANCE, match_priority=40),
)


# ---------------------------------------------------------------------------
# Plan IR
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JoinPredicate:
    """Equality between a System A attribute and a System B column."""

    attribute_a: str
    attribute_b: str
    key_type: KeyType


@dataclass(frozen=True)
class AttributeComparison:
    """Comparison rule for one non-key attribute pair."""

    attribute_a: str
    attribute_b: str
    rule: ComparisonRule
    tolerance: float | None = None
    reconciliation_type: str = "EXACT"


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconciliationRecord:
    """One ledger row. Carries attribute names and keys, never attribute values."""

    domain: str
    entity: str
    source_system: str
    target_system: str
    key_a: str | None
    key_b: str | None
    match_status: MatchStatus
    mismatch_columns: tuple[str, ...]
    mismatch_count: int
    reconciliation_type: str
    run_id: str
    load_timestamp: datetime

    def __post_init__(self) -> None:
        if self.mismatch_count != len(self.mismatch_columns):
            raise ValueError(
                f"mismatch_count={self.mismatch_count} does not match "
                f"{len(self.mismatch_columns)} mismatch columns"
            )
        if bool(self.mismatch_columns) != (self.match_status is MatchStatus.MISMATCH):
            raise ValueError(
                f"mismatch_columns must be non-empty iff status is MISMATCH "
                f"(status={self.match_status.value})"
            )
        if (self.key_a is None) != (self.match_status is MatchStatus.MISSING_IN_A):
            raise ValueError(f"key_a nullability inconsistent with {self.match_status.value}")
        if (self.key_b is None) != (self.match_status is MatchStatus.MISSING_IN_B):
            raise ValueError(f"key_b nullability inconsistent with {self.match_status.value}")


@dataclass
class EntityOutcome:
    """Result of one (domain, entity) reconciliation inside a run."""

    domain: str
    entity: str
    succeeded: bool = False
    row_count: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)
    fault: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.domain}.{self.entity}"
