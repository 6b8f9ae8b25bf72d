from __future__ import annotations

import polars as pl
import pytest

from recon import metadata
from recon.metadata import MetadataLoader, mappings_from_frame, rules_from_frame
from recon.models import DEFAULT_RECONCILIATION_TYPES, ComparisonRule, Direction, JoinType, System


def test_mappings_from_frame() -> None:
    df = pl.DataFrame({
        "Domain": ["Sales", "Sales"],
        "Entity": ["Transactions", "Transactions"],
        "SystemCode": ["a", " B "],
        "AttributeName": [" id ", "id"],
        "LogicalAttribute": [None, ""],
        "IsKey": [1, 1],
        "IsActive": ["Y", None],
        "ReconciliationType": [None, "exact"],
    })

    first, second = mappings_from_frame(df)

    assert first.system is System.A
    assert second.system is System.B
    assert first.attribute_name == "id"
    assert first.is_key and second.is_key
    assert first.is_active and second.is_active
    assert second.logical_attribute is None
    assert second.reconciliation_type == "exact"


def test_mappings_from_frame_optional_columns_absent() -> None:
    df = pl.DataFrame({
        "Domain": ["d"], "Entity": ["e"], "SystemCode": ["A"],
        "AttributeName": ["k"], "IsKey": [True], "IsActive": [False],
    })

    (row,) = mappings_from_frame(df)

    assert not row.is_active
    assert row.logical_attribute is None


def test_mappings_from_frame_requires_columns() -> None:
    with pytest.raises(ValueError, match="IsKey"):
        mappings_from_frame(pl.DataFrame({"Domain": [], "Entity": [], "SystemCode": [],
                                          "AttributeName": [], "IsActive": []}))


def test_unknown_system_code_is_rejected() -> None:
    df = pl.DataFrame({
        "Domain": ["d"], "Entity": ["e"], "SystemCode": ["C"],
        "AttributeName": ["k"], "IsKey": [1], "IsActive": [1],
    })

    with pytest.raises(ValueError, match="Unknown system code"):
        mappings_from_frame(df)


def test_rules_from_frame() -> None:
    df = pl.DataFrame({
        "ReconciliationType": ["amount_tol", "loose"],
        "ComparisonRule": ["numeric_tolerance", None],
        "JoinType": ["LEFT", None],
        "Direction": ["one_way", None],
        "IncludeMissingInA": [0, None],
        "IncludeMissingInB": [1, None],
        "MatchPriority": [5, None],
        "Tolerance": [0.5, None],
    }, schema_overrides={"ComparisonRule": pl.Utf8})

    with pytest.raises(ValueError):
        # "LOOSE" is not a comparison rule and no ComparisonRule was given.
        rules_from_frame(df)

    tol, = rules_from_frame(df.head(1))
    assert tol.reconciliation_type == "AMOUNT_TOL"
    assert tol.comparison_rule is ComparisonRule.NUMERIC_TOLERANCE
    assert tol.join_type is JoinType.LEFT
    assert tol.direction is Direction.ONE_WAY
    assert not tol.include_missing_in_a
    assert tol.include_missing_in_b
    assert tol.match_priority == 5
    assert tol.tolerance == 0.5


def test_rule_defaults_when_columns_empty() -> None:
    (rule,) = rules_from_frame(pl.DataFrame({"ReconciliationType": ["NORMALIZED"]}))

    assert rule.comparison_rule is ComparisonRule.NORMALIZED
    assert rule.join_type is JoinType.FULL_OUTER
    assert rule.direction is Direction.BOTH_WAYS
    assert rule.match_priority == 100


def test_loader_falls_back_to_builtin_rules(monkeypatch) -> None:
    queries = []

    def fake_read(*, conn, query, context=""):
        queries.append(query)
        return pl.DataFrame(schema={"ReconciliationType": pl.Utf8})

    monkeypatch.setattr(metadata.connections, "general_connectorx_uri", lambda: "mssql://test")
    monkeypatch.setattr(metadata, "cx_read_sql_safe", fake_read)

    rules = MetadataLoader().load_rules()

    assert rules == list(DEFAULT_RECONCILIATION_TYPES)
    assert "FROM [General].[dbo].[ReconReconciliationType]" in queries[0]
