"""
Result objects returned by orderflow services.

Services never throw for expected outcomes.  A ``ReconciliationResult``
carries either the produced value or the typed error that stopped the
operation, plus any non-fatal ``IntegrityWarning`` collected on the way.
``ReferentialConflict`` records are part of the value (see ``SaveReport``),
not errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from orderflow_kernel.exceptions import (
    PersistenceFailureError,
    ReconciliationError,
    ValidationError,
)

T = TypeVar("T")


class ReconciliationStatus(str, Enum):
    """Outcome of a reconciliation operation."""

    SUCCEEDED = "succeeded"
    VALIDATION_FAILED = "validation_failed"
    PERSISTENCE_FAILED = "persistence_failed"


class WarningCode(str, Enum):
    """Machine-readable integrity warning codes."""

    ORPHANED_RECEIPT = "orphaned_receipt"
    ORPHANED_INVOICE_LINE = "orphaned_invoice_line"
    RECEIPT_QUANTITY_CLAMPED = "receipt_quantity_clamped"
    OVER_FULFILLED_LINE = "over_fulfilled_line"
    INVENTORY_RECORD_MISSING = "inventory_record_missing"
    INVENTORY_CLAMPED_AT_ZERO = "inventory_clamped_at_zero"
    DANGLING_REFERENCE_CLEARED = "dangling_reference_cleared"
    LEGACY_REFERENCE_UNRESOLVED = "legacy_reference_unresolved"
    LEGACY_REFERENCE_BACKFILLED = "legacy_reference_backfilled"


@dataclass(frozen=True)
class IntegrityWarning:
    """A non-fatal data-integrity condition; the operation proceeded."""

    code: WarningCode
    message: str
    entity_id: str | None = None


@dataclass(frozen=True)
class ReferentialConflict:
    """A line change refused because a downstream document depends on it."""

    line_id: str
    line_number: int
    reason: str
    referenced_by: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReconciliationResult(Generic[T]):
    """Result of a reconciliation operation."""

    status: ReconciliationStatus
    value: T | None = None
    error: ReconciliationError | None = None
    warnings: tuple[IntegrityWarning, ...] = field(default_factory=tuple)

    @property
    def is_success(self) -> bool:
        return self.status == ReconciliationStatus.SUCCEEDED

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(
        cls, value: T, warnings: tuple[IntegrityWarning, ...] | list[IntegrityWarning] = ()
    ) -> ReconciliationResult[T]:
        return cls(
            status=ReconciliationStatus.SUCCEEDED,
            value=value,
            warnings=tuple(warnings),
        )

    @classmethod
    def failure(
        cls,
        error: ReconciliationError,
        warnings: tuple[IntegrityWarning, ...] | list[IntegrityWarning] = (),
    ) -> ReconciliationResult[T]:
        if isinstance(error, ValidationError):
            status = ReconciliationStatus.VALIDATION_FAILED
        elif isinstance(error, PersistenceFailureError):
            status = ReconciliationStatus.PERSISTENCE_FAILED
        else:
            raise TypeError(f"Unsupported error type: {type(error).__name__}")
        return cls(status=status, error=error, warnings=tuple(warnings))
