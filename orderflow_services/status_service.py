"""
orderflow_services.status_service -- Order status recompute.

Responsibility:
    Rebuild the quantity ledger of one purchase order or sales order from
    its source records (receipts, invoice lines), write the materialized
    per-line quantities, derive the order status (and, for sales orders,
    the fulfillment percentage) and persist it.

Architecture position:
    Services -- composes the pure ledger and status engines with the
    storage collaborator.  ``OrderStatusReconciler`` runs inside a caller's
    transaction (receiving, line save, invoicing); ``StatusService`` is the
    public, transaction-owning entry point.

Invariants enforced:
    - After reconcile, every line's ``quantity_received`` /
      ``quantity_invoiced`` equals the ledger's clamped fulfilled quantity.
    - After reconcile, ``order.status`` equals ``derive_status`` of the
      ledger snapshot; running it again changes nothing.
    - VOID invoices consume nothing and count toward no percentage.

Failure modes:
    - ``OrderNotFoundError`` when the order does not exist.
    - Storage errors -> ``PersistenceFailureError`` result; rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from orderflow_engines import (
    Allocation,
    DocumentKind,
    LedgerLine,
    OrderStatus,
    StatusDecision,
    compute_ledger,
    derive_status,
    fulfillment_percentage,
    is_blank_line,
    line_balance,
)
from orderflow_kernel.domain.results import ReconciliationResult, WarningCode
from orderflow_kernel.exceptions import OrderNotFoundError
from orderflow_kernel.logging_config import LogContext, get_logger
from orderflow_modules.procurement.orm import PurchaseOrderModel
from orderflow_modules.sales.models import InvoiceStatus
from orderflow_modules.sales.orm import SalesOrderModel
from orderflow_services._support import WarningCollector, run_transaction
from orderflow_services.storage import OrderModel, SqlAlchemyFulfillmentStore

logger = get_logger("services.status")

ZERO = Decimal("0")


@dataclass(frozen=True)
class StatusRecomputation:
    """Outcome of recomputing one order's status."""

    order_id: UUID
    kind: DocumentKind
    status: OrderStatus
    previous_status: OrderStatus
    total_ordered: Decimal
    total_fulfilled: Decimal
    fulfillment_percentage: int | None = None

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status


class OrderStatusReconciler:
    """
    Materializes ledger quantities and derived status inside an open
    transaction.  Never commits.
    """

    def __init__(self, store: SqlAlchemyFulfillmentStore):
        self._store = store

    def reconcile(
        self, order: OrderModel, warnings: WarningCollector
    ) -> StatusRecomputation:
        if isinstance(order, PurchaseOrderModel):
            return self.reconcile_purchase_order(order, warnings)
        return self.reconcile_sales_order(order, warnings)

    def reconcile_purchase_order(
        self, order: PurchaseOrderModel, warnings: WarningCollector
    ) -> StatusRecomputation:
        lines = self._store.find_lines_by_order(order.id, DocumentKind.PURCHASE_ORDER)
        receipts = self._store.find_receipts_by_order(order.id)

        ledger_lines = [
            LedgerLine(
                line_id=line.id,
                quantity_ordered=line.quantity_ordered,
                is_blank=is_blank_line(line.description, line.product_id),
            )
            for line in lines
        ]
        allocations = [
            Allocation(line_id=r.po_line_id, quantity=r.quantity_received, source_id=r.id)
            for r in receipts
        ]
        snapshot = compute_ledger(lines=ledger_lines, allocations=allocations)

        for orphan in snapshot.orphans:
            warnings.add(
                WarningCode.ORPHANED_RECEIPT,
                f"Receipt {orphan.source_id} references no line of order {order.po_number}",
                orphan.source_id,
            )

        for line, ledger_line in zip(lines, ledger_lines):
            balance = line_balance(ledger_line, allocations)
            if balance.overflow > ZERO:
                warnings.add(
                    WarningCode.OVER_FULFILLED_LINE,
                    f"Line {line.line_number} of {order.po_number} received "
                    f"{balance.overflow} above the ordered quantity",
                    line.id,
                )
            line.quantity_received = balance.fulfilled

        decision = derive_status(
            kind=DocumentKind.PURCHASE_ORDER,
            current_status=OrderStatus(order.status),
            snapshot=snapshot,
        )
        self._store.update_order_status(
            order.id, DocumentKind.PURCHASE_ORDER, decision.status
        )
        return self._finish(order.id, DocumentKind.PURCHASE_ORDER, decision, None)

    def reconcile_sales_order(
        self, order: SalesOrderModel, warnings: WarningCollector
    ) -> StatusRecomputation:
        lines = self._store.find_lines_by_order(order.id, DocumentKind.SALES_ORDER)
        line_ids = {line.id for line in lines}

        invoices = [
            inv
            for inv in self._store.find_invoices_by_order(order.id)
            if inv.status != InvoiceStatus.VOID.value
        ]

        # Lines consumed by any invoice, plus every line of the linked
        # invoices so that references to unknown lines surface as orphans.
        invoice_lines = {
            il.id: il
            for il in self._store.find_invoice_lines_by_order_lines(line_ids)
            if il.invoice.status != InvoiceStatus.VOID.value
        }
        for invoice in invoices:
            for il in invoice.lines:
                if il.sales_order_line_id is not None:
                    invoice_lines.setdefault(il.id, il)

        ledger_lines = [
            LedgerLine(
                line_id=line.id,
                quantity_ordered=line.quantity_ordered,
                is_blank=is_blank_line(line.description, line.product_id),
            )
            for line in lines
        ]
        allocations = [
            Allocation(line_id=il.sales_order_line_id, quantity=il.quantity, source_id=il.id)
            for il in invoice_lines.values()
        ]
        snapshot = compute_ledger(lines=ledger_lines, allocations=allocations)

        for orphan in snapshot.orphans:
            warnings.add(
                WarningCode.ORPHANED_INVOICE_LINE,
                f"Invoice line {orphan.source_id} references no line of order {order.so_number}",
                orphan.source_id,
            )

        for line, ledger_line in zip(lines, ledger_lines):
            balance = line_balance(ledger_line, allocations)
            if balance.overflow > ZERO:
                warnings.add(
                    WarningCode.OVER_FULFILLED_LINE,
                    f"Line {line.line_number} of {order.so_number} invoiced "
                    f"{balance.overflow} above the ordered quantity",
                    line.id,
                )
            line.quantity_invoiced = balance.fulfilled
            line.quantity_remaining = balance.remaining
            line.fulfillment_status = balance.state.value

        invoiced_total = sum((inv.total_amount for inv in invoices), ZERO)
        pct = fulfillment_percentage(invoiced_total, order.total_amount)

        decision = derive_status(
            kind=DocumentKind.SALES_ORDER,
            current_status=OrderStatus(order.status),
            snapshot=snapshot,
        )
        self._store.update_order_status(
            order.id, DocumentKind.SALES_ORDER, decision.status, pct
        )
        return self._finish(order.id, DocumentKind.SALES_ORDER, decision, pct)

    def _finish(
        self,
        order_id: UUID,
        kind: DocumentKind,
        decision: StatusDecision,
        pct: int | None,
    ) -> StatusRecomputation:
        logger.info(
            "status_recomputed",
            extra={
                "order_id": str(order_id),
                "kind": kind.value,
                "previous_status": decision.previous_status.value,
                "status": decision.status.value,
                "total_ordered": str(decision.total_ordered),
                "total_fulfilled": str(decision.total_fulfilled),
                "fulfillment_percentage": pct,
            },
        )
        return StatusRecomputation(
            order_id=order_id,
            kind=kind,
            status=decision.status,
            previous_status=decision.previous_status,
            total_ordered=decision.total_ordered,
            total_fulfilled=decision.total_fulfilled,
            fulfillment_percentage=pct,
        )



class StatusService:
    """Public entry point for ``recompute_status``."""

    def __init__(
        self,
        session: Session,
        actor_id: UUID,
        store: SqlAlchemyFulfillmentStore | None = None,
    ):
        self._session = session
        self._actor_id = actor_id
        self._store = store or SqlAlchemyFulfillmentStore(session, actor_id)
        self._reconciler = OrderStatusReconciler(self._store)

    def recompute_status(
        self, order_id: UUID, kind: DocumentKind | None = None
    ) -> ReconciliationResult[StatusRecomputation]:
        """
        Recompute and persist the status of one order.

        Idempotent and safe to call at any time.  When ``kind`` is omitted
        the id is looked up as a purchase order first, then a sales order.
        """

        def work(warnings: WarningCollector) -> StatusRecomputation:
            order = self._load_order(order_id, kind)
            return self._reconciler.reconcile(order, warnings)

        with LogContext.bind(actor_id=self._actor_id, order_id=order_id):
            return run_transaction(self._session, "recompute_status", work)

    def _load_order(self, order_id: UUID, kind: DocumentKind | None) -> OrderModel:
        found = self._store.find_order(order_id, kind, lock=True)
        if found is None:
            raise OrderNotFoundError(str(order_id))
        return found[0]
