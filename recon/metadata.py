"""Mapping and reconciliation-type metadata from GENERAL_DB.

Drives normalization, planning, and the set of registered (domain, entity)
pairs. Reads go through ConnectorX; filtering by domain/entity happens after
normalization so that the mapping relation is always rebuilt from the full,
current metadata.
"""

from __future__ import annotations

import logging

import polars as pl

import config
import connections
from connections import quote_table
from extract import cx_read_sql_safe
from recon.models import (
    DEFAULT_RECONCILIATION_TYPES,
    AttributeMapping,
    ComparisonRule,
    Direction,
    JoinType,
    ReconciliationTypeRule,
    System,
)

logger = logging.getLogger(__name__)

_MAPPING_COLUMNS = (
    "Domain", "Entity", "SystemCode", "AttributeName", "LogicalAttribute",
    "IsKey", "IsActive", "ReconciliationType",
)
_RECON_TYPE_COLUMNS = (
    "ReconciliationType", "ComparisonRule", "JoinType", "Direction",
    "IncludeMissingInA", "IncludeMissingInB", "MatchPriority", "Tolerance",
)


def _flag(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().upper() in ("1", "Y", "YES", "TRUE", "T")
    return bool(value)


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def mappings_from_frame(df: pl.DataFrame) -> list[AttributeMapping]:
    """Build AttributeMapping rows from a frame with the metadata table's columns.

    LogicalAttribute and ReconciliationType are optional columns.

    Raises:
        ValueError: A required column is missing or a SystemCode is not A/B.
    """
    required = ("Domain", "Entity", "SystemCode", "AttributeName", "IsKey", "IsActive")
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Mapping metadata lacks column(s): {', '.join(missing)}")

    mappings = []
    for row in df.iter_rows(named=True):
        mappings.append(
            AttributeMapping(
                domain=str(row["Domain"]),
                entity=str(row["Entity"]),
                system=System.parse(row["SystemCode"]),
                attribute_name=str(row["AttributeName"]).strip(),
                is_key=_flag(row["IsKey"]),
                is_active=_flag(row["IsActive"], default=True),
                logical_attribute=_text(row.get("LogicalAttribute")),
                reconciliation_type=_text(row.get("ReconciliationType")),
            )
        )
    return mappings


def rules_from_frame(df: pl.DataFrame) -> list[ReconciliationTypeRule]:
    """Build ReconciliationTypeRule rows from a frame with the reference table's columns.

    Raises:
        ValueError: Missing ReconciliationType column or an unknown enum value.
    """
    if "ReconciliationType" not in df.columns:
        raise ValueError("Reconciliation-type metadata lacks column ReconciliationType")

    rules = []
    for row in df.iter_rows(named=True):
        name = _text(row["ReconciliationType"])
        if name is None:
            continue
        comparison = _text(row.get("ComparisonRule")) or name
        tolerance = row.get("Tolerance")
        priority = row.get("MatchPriority")
        rules.append(
            ReconciliationTypeRule(
                reconciliation_type=name.upper(),
                comparison_rule=ComparisonRule(comparison.upper()),
                join_type=JoinType((_text(row.get("JoinType")) or JoinType.FULL_OUTER.value).upper()),
                direction=Direction((_text(row.get("Direction")) or Direction.BOTH_WAYS.value).upper()),
                include_missing_in_a=_flag(row.get("IncludeMissingInA"), default=True),
                include_missing_in_b=_flag(row.get("IncludeMissingInB"), default=True),
                match_priority=int(priority) if priority is not None else 100,
                tolerance=float(tolerance) if tolerance is not None else None,
            )
        )
    return rules


class MetadataLoader:
    """Loads attribute mappings and reconciliation types from GENERAL_DB."""

    def __init__(self) -> None:
        self._uri = connections.general_connectorx_uri()

    def _read(self, table: str, columns: tuple[str, ...]) -> pl.DataFrame:
        full_name = f"{config.GENERAL_DB}.{table}"
        col_list = ", ".join(f"[{c}]" for c in columns)
        query = f"SELECT {col_list} FROM {quote_table(full_name)}"
        return cx_read_sql_safe(conn=self._uri, query=query, context=f"metadata read {full_name}")

    def load_mappings(self) -> list[AttributeMapping]:
        mappings = mappings_from_frame(self._read(config.MAPPING_TABLE, _MAPPING_COLUMNS))
        logger.info("Loaded %d attribute mapping rows", len(mappings))
        return mappings

    def load_rules(self) -> list[ReconciliationTypeRule]:
        """Reconciliation types; an empty table falls back to the built-in rules."""
        rules = rules_from_frame(self._read(config.RECONCILIATION_TYPE_TABLE, _RECON_TYPE_COLUMNS))
        if not rules:
            logger.warning("No reconciliation types in %s, using built-in defaults",
                           config.RECONCILIATION_TYPE_TABLE)
            return list(DEFAULT_RECONCILIATION_TYPES)
        logger.info("Loaded %d reconciliation types", len(rules))
        return rules
