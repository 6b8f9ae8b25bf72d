"""Planning phase: normalized mappings -> per-entity ReconciliationPlan.

Planning is pure. It performs no I/O and touches no attribute values. The
resulting plans are handed to recon.executor, which does the reads and the
join. Callers never need a flag to tell the two phases apart.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from recon.errors import ConfigurationFault, KeyDeclarationWarning, MappingDropWarning
from recon.join_builder import JoinCondition, build_join_condition
from recon.models import AttributeComparison, NormalizedMapping, ReconciliationTypeRule
from recon.normalize import EntityKey, NormalizationResult, canonical_name, require_entity, rule_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationPlan:
    """Everything needed to reconcile one (domain, entity), minus the data."""

    domain: str
    entity: str
    join: JoinCondition
    comparisons: tuple[AttributeComparison, ...]
    rule: ReconciliationTypeRule

    @property
    def a_columns(self) -> list[str]:
        """System A columns to read: keys first, then compared attributes."""
        return list(dict.fromkeys(self.join.a_columns + [c.attribute_a for c in self.comparisons]))

    @property
    def b_columns(self) -> list[str]:
        """System B columns to read: join targets first, then compared attributes."""
        return list(dict.fromkeys(self.join.b_columns + [c.attribute_b for c in self.comparisons]))

    @property
    def label(self) -> str:
        return f"{self.domain}.{self.entity}"


@dataclass
class RunPlan:
    plans: dict[EntityKey, ReconciliationPlan] = field(default_factory=dict)
    faults: dict[EntityKey, ConfigurationFault] = field(default_factory=dict)
    warnings: list[MappingDropWarning | KeyDeclarationWarning] = field(default_factory=list)

    @property
    def entities(self) -> list[EntityKey]:
        return sorted(set(self.plans) | set(self.faults))


def plan_entity(
    domain: str,
    entity: str,
    rows: Iterable[NormalizedMapping],
    rules: Iterable[ReconciliationTypeRule] | None = None,
) -> ReconciliationPlan:
    """Build the reconciliation plan for one (domain, entity).

    The entity-level rule (join type, direction, missing-record inclusion) is
    the lowest match_priority rule among the entity's key attributes.

    Raises:
        ConfigurationFault: No key rows, or a row references an unknown
            reconciliation type.
    """
    rows = list(rows)
    rules_by_name = rule_index(rules)

    def lookup(row: NormalizedMapping) -> ReconciliationTypeRule:
        rule = rules_by_name.get(row.reconciliation_type.strip().upper())
        if rule is None:
            raise ConfigurationFault(
                domain, entity,
                f"attribute '{row.logical_attribute}' references unknown reconciliation type "
                f"'{row.reconciliation_type}'",
            )
        return rule

    join = build_join_condition(domain, entity, rows)

    key_rules = [lookup(r) for r in rows if r.is_key]
    entity_rule = min(key_rules, key=lambda r: (r.match_priority, r.reconciliation_type))

    comparisons = []
    for row in rows:
        if row.is_key:
            continue
        rule = lookup(row)
        comparisons.append(
            AttributeComparison(
                attribute_a=row.attribute_a,
                attribute_b=row.attribute_b,
                rule=rule.comparison_rule,
                tolerance=rule.tolerance,
                reconciliation_type=rule.reconciliation_type,
            )
        )

    return ReconciliationPlan(
        domain=domain,
        entity=entity,
        join=join,
        comparisons=tuple(comparisons),
        rule=entity_rule,
    )


def plan_run(
    normalized: NormalizationResult,
    rules: Iterable[ReconciliationTypeRule] | None = None,
    domain: str | None = None,
    entity: str | None = None,
) -> RunPlan:
    """Plan every registered entity, isolating per-entity configuration faults.

    Args:
        normalized: Output of normalize_mappings().
        rules: Reconciliation-type reference data (defaults to built-ins).
        domain: Optional filter on canonical domain.
        entity: Optional filter on canonical entity.
    """
    rules = list(rules) if rules is not None else None
    domain = canonical_name(domain) if domain else None
    entity = canonical_name(entity) if entity else None

    run_plan = RunPlan()
    for d, e in normalized.entities():
        if (domain and d != domain) or (entity and e != entity):
            continue
        run_plan.warnings.extend(normalized.warnings_for(d, e))
        try:
            rows = require_entity(normalized, d, e)
            run_plan.plans[(d, e)] = plan_entity(d, e, rows, rules)
        except ConfigurationFault as fault:
            run_plan.faults[(d, e)] = fault

    logger.info(
        "Planned %d entities (%d with configuration faults)",
        len(run_plan.plans), len(run_plan.faults),
    )
    return run_plan
