"""Shared fixtures: the sample source/expected scenario and helpers.

Everything is in memory; no database is required. Staged relations are served
through DataFrameRelationSource.
"""

from __future__ import annotations

import sys
from datetime import date, datetime, timezone
from pathlib import Path

import polars as pl
import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from extract.staged_reader import DataFrameRelationSource
from recon.models import AttributeMapping, System

LOAD_TS = datetime(2025, 12, 6, 8, 30, tzinfo=timezone.utc)
RUN_ID = "test-run-001"


def mapping(
    domain: str,
    entity: str,
    system: System,
    attribute_name: str,
    is_key: bool = False,
    is_active: bool = True,
    logical_attribute: str | None = None,
    reconciliation_type: str | None = None,
) -> AttributeMapping:
    return AttributeMapping(
        domain=domain,
        entity=entity,
        system=system,
        attribute_name=attribute_name,
        is_key=is_key,
        is_active=is_active,
        logical_attribute=logical_attribute,
        reconciliation_type=reconciliation_type,
    )


@pytest.fixture
def load_ts() -> datetime:
    return LOAD_TS


@pytest.fixture
def sample_mappings() -> list[AttributeMapping]:
    """sales.transactions: id key, amount compared, date compared across names.

    customer_name exists only in System A and is dropped with a warning.
    """
    return [
        mapping("Sales", "Transactions", System.A, "id", is_key=True),
        mapping("Sales", "Transactions", System.B, "id", is_key=True),
        mapping("Sales", "Transactions", System.A, "amount"),
        mapping("Sales", "Transactions", System.B, "amount"),
        mapping("Sales", "Transactions", System.A, "transaction_date",
                logical_attribute="txn_date", reconciliation_type="DATE_ONLY"),
        mapping("Sales", "Transactions", System.B, "expected_date",
                logical_attribute="txn_date", reconciliation_type="DATE_ONLY"),
        mapping("Sales", "Transactions", System.A, "customer_name"),
    ]


@pytest.fixture
def source_frame() -> pl.DataFrame:
    return pl.DataFrame({
        "id": [1, 2, 3, 4],
        "amount": [100.00, 200.50, 150.75, 300.00],
        "transaction_date": ["2025-12-01", "2025-12-02", "2025-12-03", "2025-12-04"],
        "customer_name": ["Alice", "Bob", "Charlie", "Diana"],
    })


@pytest.fixture
def expected_frame() -> pl.DataFrame:
    return pl.DataFrame({
        "id": [1, 2, 3, 5],
        "amount": [100.00, 210.00, 150.75, 400.00],
        "expected_date": [date(2025, 12, 1), date(2025, 12, 2), date(2025, 12, 3), date(2025, 12, 5)],
    })


@pytest.fixture
def sample_source(source_frame: pl.DataFrame, expected_frame: pl.DataFrame) -> DataFrameRelationSource:
    return DataFrameRelationSource({
        ("sales", "transactions", System.A): source_frame,
        ("sales", "transactions", System.B): expected_frame,
    })
