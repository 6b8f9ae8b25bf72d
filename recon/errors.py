"""Fault and warning taxonomy for entity-level reconciliation.

Faults are exceptions: raising one fails a single (domain, entity) and the
run coordinator excludes that entity from the ledger. Warnings are plain
records: they are logged when produced and surfaced in the run summary, and
never stop processing.
"""

from __future__ import annotations

from dataclasses import dataclass


class ReconciliationFault(Exception):
    """Base class for per-entity faults."""

    kind = "FAULT"

    def __init__(self, domain: str, entity: str, cause: str) -> None:
        self.domain = domain
        self.entity = entity
        self.cause = cause
        super().__init__(f"{self.kind} for {domain}.{entity}: {cause}")


class ConfigurationFault(ReconciliationFault):
    """Metadata cannot support reconciliation. Not retried; requires a metadata fix."""

    kind = "ConfigurationFault"


class DataAccessFault(ReconciliationFault):
    """A staged relation is missing or unreadable. Retries belong to the caller."""

    kind = "DataAccessFault"


@dataclass(frozen=True)
class MappingDropWarning:
    """A non-key mapping group was missing one side and was dropped."""

    domain: str
    entity: str
    logical_attribute: str
    missing_system: str

    def describe(self) -> str:
        return (
            f"MappingDropWarning {self.domain}.{self.entity}.{self.logical_attribute}: "
            f"no active System {self.missing_system} attribute, dropped from comparison"
        )


@dataclass(frozen=True)
class KeyDeclarationWarning:
    """Only one side flagged the attribute as a key; treated as a key."""

    domain: str
    entity: str
    logical_attribute: str
    key_on_system: str

    def describe(self) -> str:
        return (
            f"KeyDeclarationWarning {self.domain}.{self.entity}.{self.logical_attribute}: "
            f"is_key set only on System {self.key_on_system}, treated as key"
        )
