"""
Shared plumbing for orderflow services: transaction ownership and
integrity-warning reporting.

Each public service method is one transaction.  ``run_transaction`` commits
when the unit of work returns, rolls back and converts the error into a
failed ``ReconciliationResult`` when it raises a ``ValidationError`` or a
storage error, and re-raises anything else after rolling back.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderflow_kernel.domain.results import (
    IntegrityWarning,
    ReconciliationResult,
    WarningCode,
)
from orderflow_kernel.exceptions import PersistenceFailureError, ValidationError
from orderflow_kernel.logging_config import get_logger

logger = get_logger("services.transaction")

T = TypeVar("T")


class WarningCollector:
    """Accumulates and logs ``IntegrityWarning`` records for one operation."""

    def __init__(self) -> None:
        self._warnings: list[IntegrityWarning] = []

    def add(
        self, code: WarningCode, message: str, entity_id: object | None = None
    ) -> IntegrityWarning:
        warning = IntegrityWarning(
            code=code,
            message=message,
            entity_id=str(entity_id) if entity_id is not None else None,
        )
        self._warnings.append(warning)
        logger.warning(
            "integrity_warning",
            extra={
                "warning_code": code.value,
                "warning_message": message,
                "entity_id": warning.entity_id,
            },
        )
        return warning

    def extend(self, warnings: tuple[IntegrityWarning, ...] | list[IntegrityWarning]) -> None:
        self._warnings.extend(warnings)

    @property
    def warnings(self) -> tuple[IntegrityWarning, ...]:
        return tuple(self._warnings)

    def __len__(self) -> int:
        return len(self._warnings)


def run_transaction(
    session: Session,
    operation: str,
    work: Callable[[WarningCollector], T],
) -> ReconciliationResult[T]:
    """
    Run ``work`` as a single transaction and wrap the outcome.

    Validation errors are raised by ``work`` before it writes anything, so
    the rollback only discards reads and row locks.
    """
    collector = WarningCollector()
    try:
        value = work(collector)
        session.commit()
    except ValidationError as exc:
        session.rollback()
        logger.info(
            "operation_rejected",
            extra={"operation": operation, "error_code": exc.code, "reason": str(exc)},
        )
        return ReconciliationResult.failure(exc, collector.warnings)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(
            "transaction_rolled_back",
            extra={"operation": operation, "error_type": type(exc).__name__},
            exc_info=True,
        )
        return ReconciliationResult.failure(
            PersistenceFailureError(operation, str(exc)), collector.warnings
        )
    except Exception:
        session.rollback()
        logger.error(
            "transaction_rolled_back",
            extra={"operation": operation},
            exc_info=True,
        )
        raise

    logger.info(
        "operation_committed",
        extra={"operation": operation, "warning_count": len(collector)},
    )
    return ReconciliationResult.success(value, collector.warnings)
