"""
orderflow_services.line_reconciliation_service -- Saving edited order lines.

Responsibility:
    Merge an edited line list into the persisted lines of a purchase order
    or sales order, keeping the identity of every line a downstream
    document (receipt, invoice line) depends on.  Reprices the order and
    recomputes its status in the same transaction.

Architecture position:
    Services -- owns the transaction boundary for ``save_order_lines``.

Algorithm:
    1. Blank input lines are dropped; a negative quantity is rejected.
    2. No downstream references: delete every persisted line, insert the
       input lines.
    3. References exist: positional merge.  Persisted line i is updated in
       place from input line i; extra input lines are inserted; extra
       persisted lines are deleted unless referenced, in which case they
       are kept and reported.
    4. Renumber 1..n, reprice, recompute status.

Invariants enforced:
    - A referenced line is never deleted, never changes product, and never
      drops below its consumed quantity.  Refused edits are reported as
      ``ReferentialConflict`` records, not raised.
    - Referenced lines cannot move: an input line carrying a persisted
      line's id at a different position fails with ``LineReorderError``
      before anything is written.

Failure modes:
    - InvalidQuantityError, LineReorderError, OrderNotFoundError.
    - PersistenceFailureError: storage failure, rolled back.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from orderflow_config import OrderflowConfig
from orderflow_engines import (
    DocumentKind,
    DocumentTotals,
    document_totals,
    is_blank_line,
    price_line,
)
from orderflow_kernel.domain.results import ReconciliationResult, ReferentialConflict
from orderflow_kernel.exceptions import (
    InvalidQuantityError,
    LineReorderError,
    OrderNotFoundError,
)
from orderflow_kernel.logging_config import LogContext, get_logger
from orderflow_modules.procurement.orm import PurchaseOrderLineModel
from orderflow_modules.sales.models import InvoiceStatus
from orderflow_modules.sales.orm import SalesOrderLineModel
from orderflow_services._support import WarningCollector, run_transaction
from orderflow_services.status_service import OrderStatusReconciler, StatusRecomputation
from orderflow_services.storage import (
    OrderLineModel,
    OrderModel,
    SqlAlchemyFulfillmentStore,
)

logger = get_logger("services.line_reconciliation")

ZERO = Decimal("0")


class ConflictReason(str, Enum):
    DELETE_BLOCKED = "delete_blocked"
    QUANTITY_BELOW_CONSUMED = "quantity_below_consumed"
    PRODUCT_CHANGE_BLOCKED = "product_change_blocked"


@dataclass(frozen=True)
class LineInput:
    """One edited line as submitted by the caller."""

    description: str = ""
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO
    product_id: UUID | None = None
    item_code: str = ""
    is_taxable: bool = False
    line_id: UUID | None = None

    @property
    def is_blank(self) -> bool:
        return is_blank_line(self.description, self.product_id)


@dataclass(frozen=True)
class SaveReport:
    order_id: UUID
    kind: DocumentKind
    lines_updated: int
    lines_inserted: int
    lines_deleted: int
    positional: bool
    totals: DocumentTotals
    order_status: StatusRecomputation
    conflicts: tuple[ReferentialConflict, ...] = ()

    @property
    def unresolved_deletions(self) -> tuple[ReferentialConflict, ...]:
        """Lines the caller removed that had to be kept."""
        return tuple(
            c for c in self.conflicts if c.reason == ConflictReason.DELETE_BLOCKED.value
        )

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass
class _Consumption:
    quantity: Decimal = ZERO
    referenced_by: list[str] = field(default_factory=list)


class LineReconciliationService:
    """Persists edited order lines without breaking downstream references."""

    def __init__(
        self,
        session: Session,
        config: OrderflowConfig,
        actor_id: UUID,
        store: SqlAlchemyFulfillmentStore | None = None,
    ):
        self._session = session
        self._config = config
        self._actor_id = actor_id
        self._store = store or SqlAlchemyFulfillmentStore(session, actor_id)
        self._reconciler = OrderStatusReconciler(self._store)

    def save_order_lines(
        self,
        order_id: UUID,
        new_lines: Sequence[LineInput],
        kind: DocumentKind | None = None,
    ) -> ReconciliationResult[SaveReport]:
        """Replace the lines of one order with ``new_lines``."""

        def work(warnings: WarningCollector) -> SaveReport:
            incoming = [line for line in new_lines if not line.is_blank]
            for line in incoming:
                if line.quantity < ZERO:
                    raise InvalidQuantityError(line.quantity, "must not be negative")

            found = self._store.find_order(order_id, kind, lock=True)
            if found is None:
                raise OrderNotFoundError(str(order_id))
            order, order_kind = found

            persisted = self._store.find_lines_by_order(order.id, order_kind)
            consumption = self._consumption(persisted, order_kind)

            if not consumption:
                report = self._replace_all(order, order_kind, persisted, incoming)
            else:
                self._check_reorder(order.id, persisted, incoming)
                report = self._merge(order, order_kind, persisted, incoming, consumption)

            self._session.expire(order, ["lines"])
            lines = self._store.find_lines_by_order(order.id, order_kind)
            totals = self._reprice(order, lines)

            status = self._reconciler.reconcile(order, warnings)

            updated, inserted, deleted, conflicts = report
            logger.info(
                "order_lines_saved",
                extra={
                    "kind": order_kind.value,
                    "lines_updated": updated,
                    "lines_inserted": inserted,
                    "lines_deleted": deleted,
                    "conflict_count": len(conflicts),
                    "positional": bool(consumption),
                },
            )
            return SaveReport(
                order_id=order.id,
                kind=order_kind,
                lines_updated=updated,
                lines_inserted=inserted,
                lines_deleted=deleted,
                positional=bool(consumption),
                totals=totals,
                order_status=status,
                conflicts=tuple(conflicts),
            )

        with LogContext.bind(actor_id=self._actor_id, order_id=order_id):
            return run_transaction(self._session, "save_order_lines", work)

    # =========================================================================
    # Strategies
    # =========================================================================

    def _replace_all(
        self,
        order: OrderModel,
        kind: DocumentKind,
        persisted: list[OrderLineModel],
        incoming: list[LineInput],
    ) -> tuple[int, int, int, list[ReferentialConflict]]:
        for line in persisted:
            self._store.delete_line(line)
        for position, line_input in enumerate(incoming, start=1):
            self._insert(order, kind, position, line_input)
        return 0, len(incoming), len(persisted), []

    def _merge(
        self,
        order: OrderModel,
        kind: DocumentKind,
        persisted: list[OrderLineModel],
        incoming: list[LineInput],
        consumption: dict[UUID, _Consumption],
    ) -> tuple[int, int, int, list[ReferentialConflict]]:
        conflicts: list[ReferentialConflict] = []
        updated = inserted = deleted = 0

        for index in range(max(len(persisted), len(incoming))):
            old = persisted[index] if index < len(persisted) else None
            new = incoming[index] if index < len(incoming) else None

            if old is not None and new is not None:
                old.line_number = index + 1
                conflicts.extend(self._update_in_place(old, new, consumption.get(old.id)))
                updated += 1
            elif new is not None:
                self._insert(order, kind, index + 1, new)
                inserted += 1
            elif old is not None:
                used = consumption.get(old.id)
                if used is None and self._store.delete_line_if_unreferenced(old):
                    deleted += 1
                    continue
                old.line_number = index + 1
                conflicts.append(
                    ReferentialConflict(
                        line_id=str(old.id),
                        line_number=old.line_number,
                        reason=ConflictReason.DELETE_BLOCKED.value,
                        referenced_by=tuple(used.referenced_by) if used else (),
                    )
                )
                logger.warning(
                    "line_delete_refused",
                    extra={"line_id": str(old.id), "line_number": old.line_number},
                )

        return updated, inserted, deleted, conflicts

    def _update_in_place(
        self,
        line: OrderLineModel,
        line_input: LineInput,
        used: _Consumption | None,
    ) -> list[ReferentialConflict]:
        conflicts: list[ReferentialConflict] = []
        referenced_by = tuple(used.referenced_by) if used else ()

        line.description = line_input.description
        line.item_code = line_input.item_code
        line.unit_price = line_input.unit_price
        line.is_taxable = line_input.is_taxable
        line.updated_by_id = self._actor_id

        if used is None:
            line.product_id = line_input.product_id
            line.quantity_ordered = line_input.quantity
            return conflicts

        if line_input.product_id != line.product_id:
            conflicts.append(
                ReferentialConflict(
                    line_id=str(line.id),
                    line_number=line.line_number,
                    reason=ConflictReason.PRODUCT_CHANGE_BLOCKED.value,
                    referenced_by=referenced_by,
                )
            )
        if line_input.quantity < used.quantity:
            conflicts.append(
                ReferentialConflict(
                    line_id=str(line.id),
                    line_number=line.line_number,
                    reason=ConflictReason.QUANTITY_BELOW_CONSUMED.value,
                    referenced_by=referenced_by,
                )
            )
        else:
            line.quantity_ordered = line_input.quantity
        return conflicts

    def _insert(
        self,
        order: OrderModel,
        kind: DocumentKind,
        line_number: int,
        line_input: LineInput,
    ) -> OrderLineModel:
        fields = dict(
            line_number=line_number,
            product_id=line_input.product_id,
            item_code=line_input.item_code,
            description=line_input.description,
            quantity_ordered=line_input.quantity,
            unit_price=line_input.unit_price,
            is_taxable=line_input.is_taxable,
        )
        if kind == DocumentKind.PURCHASE_ORDER:
            line: OrderLineModel = PurchaseOrderLineModel(purchase_order_id=order.id, **fields)
        else:
            line = SalesOrderLineModel(
                sales_order_id=order.id,
                quantity_remaining=line_input.quantity,
                **fields,
            )
        return self._store.add_line(line)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _consumption(
        self, persisted: list[OrderLineModel], kind: DocumentKind
    ) -> dict[UUID, _Consumption]:
        """Consumed quantity and referencing record ids per referenced line."""
        ids = [line.id for line in persisted]
        used: dict[UUID, _Consumption] = defaultdict(_Consumption)
        if kind == DocumentKind.PURCHASE_ORDER:
            for receipt in self._store.find_receipts_by_lines(ids):
                entry = used[receipt.po_line_id]
                entry.quantity += receipt.quantity_received
                entry.referenced_by.append(str(receipt.id))
        else:
            for invoice_line in self._store.find_invoice_lines_by_order_lines(ids):
                entry = used[invoice_line.sales_order_line_id]
                # A VOID invoice still blocks deletion but consumes nothing.
                if invoice_line.invoice.status != InvoiceStatus.VOID.value:
                    entry.quantity += invoice_line.quantity
                entry.referenced_by.append(str(invoice_line.invoice_id))
        return dict(used)

    def _check_reorder(
        self,
        order_id: UUID,
        persisted: list[OrderLineModel],
        incoming: list[LineInput],
    ) -> None:
        positions = {line.id: index for index, line in enumerate(persisted)}
        for index, line_input in enumerate(incoming):
            if line_input.line_id is None:
                continue
            previous = positions.get(line_input.line_id)
            if previous is not None and previous != index:
                raise LineReorderError(
                    str(order_id), str(line_input.line_id), previous + 1, index + 1
                )

    def _reprice(self, order: OrderModel, lines: list[OrderLineModel]) -> DocumentTotals:
        rate = self._config.tax.default_rate
        pricings = []
        for line_number, line in enumerate(lines, start=1):
            pricing = price_line(
                line.quantity_ordered, line.unit_price, line.is_taxable, rate
            )
            line.line_number = line_number
            line.line_total = pricing.line_total
            line.tax_rate = pricing.tax_rate
            line.tax_amount = pricing.tax_amount
            pricings.append(pricing)

        totals = document_totals(lines=pricings)
        order.subtotal = totals.subtotal
        order.tax_amount = totals.tax_amount
        order.total_amount = totals.total_amount
        order.updated_by_id = self._actor_id
        self._session.flush()
        return totals

