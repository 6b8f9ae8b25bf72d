from __future__ import annotations

import pytest

from conftest import mapping
from recon.errors import ConfigurationFault
from recon.join_builder import build_join_condition, join_target_column
from recon.models import KeyType, NormalizedMapping, System
from recon.normalize import normalize_mappings


def _owner_scenario_rows() -> list[NormalizedMapping]:
    return normalize_mappings([
        mapping("crm", "policies", System.A, "customer_id", is_key=True, logical_attribute="customer"),
        mapping("crm", "policies", System.B, "cust_id", is_key=True, logical_attribute="customer"),
        mapping("crm", "policies", System.A, "policy_owner", is_key=True, logical_attribute="owner"),
        mapping("crm", "policies", System.B, "owner_type_id", is_key=True, logical_attribute="owner"),
        mapping("crm", "policies", System.A, "premium"),
        mapping("crm", "policies", System.B, "premium"),
    ]).rows


def test_generic_and_owner_keys_make_two_predicates() -> None:
    join = build_join_condition("crm", "policies", _owner_scenario_rows())

    assert [(p.attribute_a, p.attribute_b, p.key_type) for p in join.predicates] == [
        ("customer_id", "cust_id", KeyType.GENERIC),
        ("policy_owner", "owner_id", KeyType.OWNER),
    ]


def test_owner_predicate_targets_owner_id_regardless_of_b_name() -> None:
    join = build_join_condition("crm", "policies", _owner_scenario_rows())

    owner = [p for p in join.predicates if p.key_type is KeyType.OWNER]
    assert [p.attribute_b for p in owner] == ["owner_id"]
    assert "owner_type_id" not in join.b_columns


def test_to_sql_renders_quoted_and_predicates() -> None:
    join = build_join_condition("crm", "policies", _owner_scenario_rows())

    assert join.to_sql() == "[a].[customer_id] = [b].[cust_id] AND [a].[policy_owner] = [b].[owner_id]"


@pytest.mark.parametrize(
    ("b_name", "target"),
    [("address_id", "address_id"), ("DID", "did"), ("Owner_ID", "owner_id"), ("acct_no", "acct_no")],
)
def test_join_target_column(b_name: str, target: str) -> None:
    (row,) = normalize_mappings([
        mapping("d", "e", System.A, "k", is_key=True, logical_attribute="k"),
        mapping("d", "e", System.B, b_name, is_key=True, logical_attribute="k"),
    ]).rows

    assert join_target_column(row) == target


def test_non_key_rows_do_not_join() -> None:
    join = build_join_condition("crm", "policies", _owner_scenario_rows())

    assert "premium" not in join.a_columns


def test_no_key_rows_is_a_configuration_fault() -> None:
    rows = [r for r in _owner_scenario_rows() if not r.is_key]

    with pytest.raises(ConfigurationFault, match="no key predicates"):
        build_join_condition("crm", "policies", rows)


def test_predicate_order_is_deterministic() -> None:
    rows = _owner_scenario_rows()
    forward = build_join_condition("crm", "policies", rows)
    backward = build_join_condition("crm", "policies", list(reversed(rows)))

    assert forward == backward
