"""Mapping normalization: raw per-system attribute rows -> NormalizedMapping.

Pivots the System A and System B rows that share a (domain, entity, logical
attribute) group into one row, classifies its key type from the B-side name,
and resolves which reconciliation type governs it.

Rebuilt wholesale on every run. The output is deterministic: the same
metadata always yields the same rows in the same order.

Entity-level problems do not raise here. They are collected in
NormalizationResult.faults so that one broken entity never prevents the
others from being planned; require_entity() raises the stored fault when
the broken entity is actually requested.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

import polars as pl

import config
from recon.errors import ConfigurationFault, KeyDeclarationWarning, MappingDropWarning
from recon.key_types import classify_key_type
from recon.models import (
    DEFAULT_RECONCILIATION_TYPES,
    AttributeMapping,
    NormalizedMapping,
    ReconciliationTypeRule,
    System,
)

logger = logging.getLogger(__name__)

EntityKey = tuple[str, str]


@dataclass
class NormalizationResult:
    rows: list[NormalizedMapping] = field(default_factory=list)
    warnings: list[MappingDropWarning | KeyDeclarationWarning] = field(default_factory=list)
    faults: dict[EntityKey, ConfigurationFault] = field(default_factory=dict)

    def entities(self) -> list[EntityKey]:
        """All (domain, entity) pairs seen in active metadata, faulted ones included."""
        keys = {(r.domain, r.entity) for r in self.rows} | set(self.faults)
        return sorted(keys)

    def rows_for(self, domain: str, entity: str) -> list[NormalizedMapping]:
        return [r for r in self.rows if r.domain == domain and r.entity == entity]

    def warnings_for(self, domain: str, entity: str) -> list[MappingDropWarning | KeyDeclarationWarning]:
        return [w for w in self.warnings if w.domain == domain and w.entity == entity]


def canonical_name(value: str) -> str:
    """Canonicalize a domain or entity name per config.CANONICAL_CASE."""
    value = str(value).strip()
    return value.upper() if config.CANONICAL_CASE == "upper" else value.lower()


def rule_index(rules: Iterable[ReconciliationTypeRule] | None) -> dict[str, ReconciliationTypeRule]:
    """Index reconciliation-type rules by upper-cased name."""
    if rules is None:
        rules = DEFAULT_RECONCILIATION_TYPES
    return {r.reconciliation_type.strip().upper(): r for r in rules}


def normalize_mappings(
    mappings: Iterable[AttributeMapping],
    rules: Iterable[ReconciliationTypeRule] | None = None,
) -> NormalizationResult:
    """Normalize raw attribute mappings for every (domain, entity) in one pass.

    Args:
        mappings: Raw AttributeMapping rows for the run (active and inactive).
        rules: Reconciliation-type reference data. Defaults to the built-in
            EXACT / NORMALIZED / DATE_ONLY / NUMERIC_TOLERANCE rules.

    Returns:
        NormalizationResult with sorted rows, warnings, and per-entity faults.
    """
    rules_by_name = rule_index(rules)
    result = NormalizationResult()

    groups: dict[tuple[str, str, str], dict[System, list[AttributeMapping]]] = {}
    for mapping in mappings:
        if not mapping.is_active:
            continue
        key = (canonical_name(mapping.domain), canonical_name(mapping.entity), mapping.logical_identity)
        groups.setdefault(key, {System.A: [], System.B: []})[mapping.system].append(mapping)

    entities_with_keys: set[EntityKey] = set()
    all_entities: set[EntityKey] = set()

    for (domain, entity, logical), sides in sorted(groups.items()):
        entity_key = (domain, entity)
        all_entities.add(entity_key)

        side_a = _single_side(domain, entity, logical, System.A, sides[System.A], result)
        side_b = _single_side(domain, entity, logical, System.B, sides[System.B], result)
        if side_a is False or side_b is False:
            continue

        key_a = side_a is not None and side_a.is_key
        key_b = side_b is not None and side_b.is_key
        is_key = key_a or key_b

        if side_a is None or side_b is None:
            missing = System.A if side_a is None else System.B
            if is_key:
                _record_fault(
                    result, domain, entity,
                    f"key attribute '{logical}' has no active System {missing.value} counterpart",
                )
                continue
            warning = MappingDropWarning(domain, entity, logical, missing.value)
            result.warnings.append(warning)
            logger.warning(warning.describe())
            continue

        if key_a != key_b:
            warning = KeyDeclarationWarning(domain, entity, logical, System.A.value if key_a else System.B.value)
            result.warnings.append(warning)
            logger.warning(warning.describe())

        recon_type = _resolve_reconciliation_type(
            domain, entity, logical, side_a, side_b, rules_by_name, result,
        )
        if recon_type is None:
            continue

        result.rows.append(
            NormalizedMapping(
                domain=domain,
                entity=entity,
                logical_attribute=logical,
                attribute_a=side_a.attribute_name.strip(),
                attribute_b=side_b.attribute_name.strip(),
                is_key=is_key,
                key_type=classify_key_type(side_b.attribute_name),
                reconciliation_type=recon_type,
            )
        )
        if is_key:
            entities_with_keys.add(entity_key)

    for domain, entity in sorted(all_entities - entities_with_keys):
        _record_fault(result, domain, entity, "no active key mappings, records cannot be correlated")

    result.rows.sort(key=lambda r: (r.domain, r.entity, r.attribute_a, r.logical_attribute))

    logger.info(
        "Normalized %d mapping rows across %d entities (%d warnings, %d faulted entities)",
        len(result.rows), len(all_entities), len(result.warnings), len(result.faults),
    )
    return result


def require_entity(result: NormalizationResult, domain: str, entity: str) -> list[NormalizedMapping]:
    """Return the normalized rows for one entity, or raise its ConfigurationFault."""
    domain, entity = canonical_name(domain), canonical_name(entity)
    fault = result.faults.get((domain, entity))
    if fault is not None:
        raise fault
    rows = result.rows_for(domain, entity)
    if not rows:
        raise ConfigurationFault(domain, entity, "no active attribute mappings registered")
    return rows


def normalized_mapping_frame(rows: Iterable[NormalizedMapping]) -> pl.DataFrame:
    """Tabular view of the normalized mapping (for listing and export)."""
    schema = {
        "domain": pl.Utf8,
        "entity": pl.Utf8,
        "logical_attribute": pl.Utf8,
        "attribute_a": pl.Utf8,
        "attribute_b": pl.Utf8,
        "is_key": pl.Boolean,
        "key_type": pl.Utf8,
        "reconciliation_type": pl.Utf8,
    }
    return pl.DataFrame(
        [
            {
                "domain": r.domain,
                "entity": r.entity,
                "logical_attribute": r.logical_attribute,
                "attribute_a": r.attribute_a,
                "attribute_b": r.attribute_b,
                "is_key": r.is_key,
                "key_type": r.key_type.value,
                "reconciliation_type": r.reconciliation_type,
            }
            for r in rows
        ],
        schema=schema,
    )


def _single_side(
    domain: str,
    entity: str,
    logical: str,
    system: System,
    candidates: list[AttributeMapping],
    result: NormalizationResult,
) -> AttributeMapping | None | bool:
    """Pick the one mapping for a side. None if absent, False if ambiguous."""
    distinct = {m.attribute_name.strip(): m for m in candidates}
    if len(distinct) > 1:
        _record_fault(
            result, domain, entity,
            f"logical attribute '{logical}' maps to {len(distinct)} System {system.value} "
            f"attributes ({', '.join(sorted(distinct))})",
        )
        return False
    if not distinct:
        return None
    # Duplicate rows naming the same attribute: any row declaring a key wins.
    rows = list(candidates)
    keyed = [m for m in rows if m.is_key]
    return keyed[0] if keyed else rows[0]


def _resolve_reconciliation_type(
    domain: str,
    entity: str,
    logical: str,
    side_a: AttributeMapping,
    side_b: AttributeMapping,
    rules_by_name: dict[str, ReconciliationTypeRule],
    result: NormalizationResult,
) -> str | None:
    declared = {
        t.strip().upper()
        for t in (side_a.reconciliation_type, side_b.reconciliation_type)
        if t and t.strip()
    }
    if not declared:
        declared = {config.DEFAULT_RECONCILIATION_TYPE.strip().upper()}

    unknown = sorted(t for t in declared if t not in rules_by_name)
    if unknown:
        _record_fault(
            result, domain, entity,
            f"attribute '{logical}' references unknown reconciliation type(s): {', '.join(unknown)}",
        )
        return None

    # Lower match_priority wins; name breaks ties so the choice is stable.
    return min(declared, key=lambda t: (rules_by_name[t].match_priority, t))


def _record_fault(result: NormalizationResult, domain: str, entity: str, cause: str) -> None:
    fault = ConfigurationFault(domain, entity, cause)
    logger.error(str(fault))
    # First fault per entity is the one reported; later ones are still logged.
    result.faults.setdefault((domain, entity), fault)
