from __future__ import annotations

import polars as pl
import pytest

from conftest import mapping
from recon.errors import ConfigurationFault, KeyDeclarationWarning, MappingDropWarning
from recon.models import KeyType, ReconciliationTypeRule, ComparisonRule, System
from recon.normalize import normalize_mappings, normalized_mapping_frame, require_entity


def test_sample_mappings_normalize(sample_mappings) -> None:
    result = normalize_mappings(sample_mappings)

    assert result.entities() == [("sales", "transactions")]
    assert not result.faults
    rows = {r.logical_attribute: r for r in result.rows}
    assert set(rows) == {"id", "amount", "txn_date"}

    assert rows["id"].is_key
    assert rows["id"].key_type is KeyType.GENERIC
    assert rows["txn_date"].attribute_a == "transaction_date"
    assert rows["txn_date"].attribute_b == "expected_date"
    assert rows["txn_date"].reconciliation_type == "DATE_ONLY"
    assert rows["amount"].reconciliation_type == "EXACT"


def test_one_sided_non_key_is_dropped_with_warning(sample_mappings) -> None:
    result = normalize_mappings(sample_mappings)

    assert result.warnings == [
        MappingDropWarning("sales", "transactions", "customer_name", "B"),
    ]
    assert all(r.logical_attribute != "customer_name" for r in result.rows)


def test_normalization_is_idempotent(sample_mappings) -> None:
    first = normalize_mappings(sample_mappings)
    second = normalize_mappings(list(reversed(sample_mappings)))

    assert first.rows == second.rows
    assert normalized_mapping_frame(first.rows).equals(normalized_mapping_frame(second.rows))


def test_inactive_rows_are_ignored(sample_mappings) -> None:
    extra = [
        mapping("sales", "transactions", System.A, "status", is_active=False),
        mapping("sales", "transactions", System.B, "status"),
    ]
    result = normalize_mappings(sample_mappings + extra)

    assert all(r.logical_attribute != "status" for r in result.rows)
    assert MappingDropWarning("sales", "transactions", "status", "A") in result.warnings


def test_domain_and_entity_are_canonicalized() -> None:
    result = normalize_mappings([
        mapping("SALES", "Orders", System.A, "order_id", is_key=True),
        mapping(" sales ", "ORDERS", System.B, "order_id", is_key=True),
    ])

    assert result.entities() == [("sales", "orders")]
    assert len(result.rows) == 1


def test_key_type_comes_from_system_b_name() -> None:
    result = normalize_mappings([
        mapping("crm", "accounts", System.A, "account_owner", is_key=True, logical_attribute="owner"),
        mapping("crm", "accounts", System.B, "OWNER_TYPE_ID", is_key=True, logical_attribute="owner"),
    ])

    (row,) = result.rows
    assert row.key_type is KeyType.OWNER


def test_key_missing_a_side_faults_the_entity() -> None:
    result = normalize_mappings([
        mapping("crm", "accounts", System.A, "account_id", is_key=True),
        mapping("crm", "accounts", System.A, "name"),
        mapping("crm", "accounts", System.B, "name"),
    ])

    assert ("crm", "accounts") in result.faults
    with pytest.raises(ConfigurationFault, match="account_id"):
        require_entity(result, "crm", "accounts")


def test_entity_without_keys_faults() -> None:
    result = normalize_mappings([
        mapping("crm", "contacts", System.A, "email"),
        mapping("crm", "contacts", System.B, "email"),
    ])

    fault = result.faults[("crm", "contacts")]
    assert isinstance(fault, ConfigurationFault)
    assert "key" in fault.cause


def test_asymmetric_key_flag_warns_and_treats_as_key() -> None:
    result = normalize_mappings([
        mapping("crm", "accounts", System.A, "account_id", is_key=True),
        mapping("crm", "accounts", System.B, "account_id", is_key=False),
    ])

    (row,) = result.rows
    assert row.is_key
    assert result.warnings == [KeyDeclarationWarning("crm", "accounts", "account_id", "A")]


def test_ambiguous_side_faults_the_entity() -> None:
    result = normalize_mappings([
        mapping("crm", "accounts", System.A, "account_id", is_key=True),
        mapping("crm", "accounts", System.B, "account_id", is_key=True),
        mapping("crm", "accounts", System.A, "name_1", logical_attribute="name"),
        mapping("crm", "accounts", System.A, "name_2", logical_attribute="name"),
        mapping("crm", "accounts", System.B, "name"),
    ])

    assert "name_1" in result.faults[("crm", "accounts")].cause


def test_unknown_reconciliation_type_faults_the_entity() -> None:
    result = normalize_mappings([
        mapping("crm", "accounts", System.A, "account_id", is_key=True, reconciliation_type="FUZZY"),
        mapping("crm", "accounts", System.B, "account_id", is_key=True),
    ])

    assert "FUZZY" in result.faults[("crm", "accounts")].cause


def test_conflicting_types_resolve_by_match_priority() -> None:
    rules = [
        ReconciliationTypeRule("LOOSE", ComparisonRule.NORMALIZED, match_priority=50),
        ReconciliationTypeRule("STRICT", ComparisonRule.EXACT, match_priority=5),
    ]
    result = normalize_mappings(
        [
            mapping("crm", "accounts", System.A, "account_id", is_key=True, reconciliation_type="loose"),
            mapping("crm", "accounts", System.B, "account_id", is_key=True, reconciliation_type="STRICT"),
        ],
        rules,
    )

    (row,) = result.rows
    assert row.reconciliation_type == "STRICT"


def test_one_broken_entity_does_not_affect_another(sample_mappings) -> None:
    broken = [mapping("crm", "contacts", System.A, "email")]
    result = normalize_mappings(sample_mappings + broken)

    assert result.entities() == [("crm", "contacts"), ("sales", "transactions")]
    assert len(require_entity(result, "Sales", "Transactions")) == 3


def test_normalized_mapping_frame_schema(sample_mappings) -> None:
    df = normalized_mapping_frame(normalize_mappings(sample_mappings).rows)

    assert df.schema["is_key"] == pl.Boolean
    assert df.columns[:3] == ["domain", "entity", "logical_attribute"]
    assert normalized_mapping_frame([]).height == 0
