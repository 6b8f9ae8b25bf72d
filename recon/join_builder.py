"""Join condition builder: normalized key rows -> AND-ed equality predicates.

OWNER, ADDRESS and OPAQUE_ID keys always target a fixed System B column
(owner_id, address_id, did) regardless of the mapped B attribute name. The
mapped name is only the classification signal. GENERIC keys join to the
mapped B attribute directly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from connections import quote_identifier
from recon.errors import ConfigurationFault
from recon.models import JoinPredicate, NormalizedMapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinCondition:
    """Ordered predicates for one (domain, entity), combined with AND."""

    domain: str
    entity: str
    predicates: tuple[JoinPredicate, ...]

    @property
    def a_columns(self) -> list[str]:
        return [p.attribute_a for p in self.predicates]

    @property
    def b_columns(self) -> list[str]:
        return [p.attribute_b for p in self.predicates]

    def to_sql(self, alias_a: str = "a", alias_b: str = "b") -> str:
        """Render as a SQL Server ON clause with bracket-quoted identifiers."""
        qa, qb = quote_identifier(alias_a), quote_identifier(alias_b)
        return " AND ".join(
            f"{qa}.{quote_identifier(p.attribute_a)} = {qb}.{quote_identifier(p.attribute_b)}"
            for p in self.predicates
        )


def join_target_column(row: NormalizedMapping) -> str:
    """Physical System B column a key row joins to."""
    target = row.key_type.target_column
    return row.attribute_b if target is None else target


def build_join_condition(
    domain: str,
    entity: str,
    rows: Iterable[NormalizedMapping],
) -> JoinCondition:
    """Build the correlation predicate for one (domain, entity).

    Args:
        domain: Canonical domain name.
        entity: Canonical entity name.
        rows: Normalized rows for the entity. Non-key rows are ignored.

    Returns:
        JoinCondition with predicates ordered by attribute_a.

    Raises:
        ConfigurationFault: If there are no key rows.
    """
    key_rows = sorted(
        (r for r in rows if r.is_key),
        key=lambda r: (r.attribute_a, r.logical_attribute),
    )
    if not key_rows:
        raise ConfigurationFault(domain, entity, "no key predicates, cannot correlate System A and System B")

    predicates = []
    seen: set[tuple[str, str]] = set()
    for row in key_rows:
        predicate = JoinPredicate(
            attribute_a=row.attribute_a,
            attribute_b=join_target_column(row),
            key_type=row.key_type,
        )
        # owner_id and owner_type_id both classify as OWNER and collapse onto
        # the same physical predicate when bound to the same A attribute.
        if (predicate.attribute_a, predicate.attribute_b) in seen:
            continue
        seen.add((predicate.attribute_a, predicate.attribute_b))
        predicates.append(predicate)

    logger.debug(
        "Join condition for %s.%s: %s",
        domain, entity,
        ", ".join(f"{p.attribute_a}={p.attribute_b} ({p.key_type.value})" for p in predicates),
    )
    return JoinCondition(domain=domain, entity=entity, predicates=tuple(predicates))
