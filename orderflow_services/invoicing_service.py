"""
orderflow_services.invoicing_service -- Invoices raised from sales orders.

Responsibility:
    Create a (partial or final) invoice that consumes quantity from the
    lines of one sales order, then rematerialize the sales order's line
    quantities, status and fulfillment percentage in the same transaction.

Invariants enforced:
    - Invoiced quantity per line never exceeds the line's remaining
      quantity (VOID invoices consume nothing).
    - ``invoice_sequence`` is one above the highest sequence already issued
      against the order.
    - ``is_final_invoice`` iff nothing remains on any line afterwards;
      ``is_partial_invoice`` iff something remains or the invoice is not
      the first.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from orderflow_config import OrderflowConfig
from orderflow_engines import (
    DocumentKind,
    document_totals,
    is_blank_line,
    price_line,
    remaining_quantity,
)
from orderflow_kernel.domain.clock import Clock, SystemClock
from orderflow_kernel.domain.results import ReconciliationResult
from orderflow_kernel.exceptions import (
    InvalidQuantityError,
    OrderLineNotFoundError,
    OrderNotFoundError,
    QuantityExceedsRemainingError,
)
from orderflow_kernel.logging_config import LogContext, get_logger
from orderflow_modules.sales.models import Invoice, InvoiceStatus
from orderflow_modules.sales.orm import InvoiceLineModel, InvoiceModel, SalesOrderLineModel
from orderflow_services._support import WarningCollector, run_transaction
from orderflow_services.status_service import OrderStatusReconciler, StatusRecomputation
from orderflow_services.storage import SqlAlchemyFulfillmentStore

logger = get_logger("services.invoicing")

ZERO = Decimal("0")


@dataclass(frozen=True)
class InvoiceLineRequest:
    sales_order_line_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class InvoiceCreation:
    invoice: Invoice
    order_status: StatusRecomputation


class InvoicingService:
    """Raises invoices against sales orders."""

    def __init__(
        self,
        session: Session,
        config: OrderflowConfig,
        actor_id: UUID,
        clock: Clock | None = None,
        store: SqlAlchemyFulfillmentStore | None = None,
    ):
        self._session = session
        self._config = config
        self._actor_id = actor_id
        self._clock = clock or SystemClock()
        self._store = store or SqlAlchemyFulfillmentStore(session, actor_id)
        self._reconciler = OrderStatusReconciler(self._store)

    def create_invoice_from_sales_order(
        self,
        sales_order_id: UUID,
        lines: Sequence[InvoiceLineRequest] | None = None,
        invoice_number: str | None = None,
        invoice_date: date | None = None,
    ) -> ReconciliationResult[InvoiceCreation]:
        """
        Invoice ``lines`` of a sales order, or everything still open when
        ``lines`` is omitted.
        """

        def work(warnings: WarningCollector) -> InvoiceCreation:
            so = self._store.get_sales_order(sales_order_id, lock=True)
            if so is None:
                raise OrderNotFoundError(str(sales_order_id))

            so_lines = [
                line
                for line in self._store.find_lines_by_order(so.id, DocumentKind.SALES_ORDER)
                if not is_blank_line(line.description, line.product_id)
            ]
            remaining = self._remaining_by_line(so_lines)
            by_id = {line.id: line for line in so_lines}

            if lines is None:
                plan = [
                    (line, remaining[line.id])
                    for line in so_lines
                    if remaining[line.id] > ZERO
                ]
                if not plan:
                    raise InvalidQuantityError(ZERO, "nothing left to invoice")
                for line, quantity in plan:
                    remaining[line.id] -= quantity
            else:
                plan = []
                for request in lines:
                    if request.quantity <= ZERO:
                        raise InvalidQuantityError(request.quantity)
                    line = by_id.get(request.sales_order_line_id)
                    if line is None:
                        raise OrderLineNotFoundError(str(request.sales_order_line_id))
                    if request.quantity > remaining[line.id]:
                        raise QuantityExceedsRemainingError(
                            str(line.id), request.quantity, remaining[line.id]
                        )
                    remaining[line.id] -= request.quantity
                    plan.append((line, request.quantity))
                if not plan:
                    raise InvalidQuantityError(ZERO, "nothing to invoice")

            existing = self._store.find_invoices_by_order(so.id)
            sequence = max(
                (inv.invoice_sequence or position for position, inv in enumerate(existing, start=1)),
                default=0,
            ) + 1
            still_open = any(qty > ZERO for qty in remaining.values())

            rate = self._config.tax.default_rate
            invoice_lines = []
            pricings = []
            for line_number, (line, quantity) in enumerate(plan, start=1):
                pricing = price_line(quantity, line.unit_price, line.is_taxable, rate)
                pricings.append(pricing)
                invoice_lines.append(
                    InvoiceLineModel(
                        line_number=line_number,
                        sales_order_line_id=line.id,
                        product_id=line.product_id,
                        description=line.description,
                        quantity=quantity,
                        unit_price=line.unit_price,
                        line_total=pricing.line_total,
                    )
                )
            totals = document_totals(lines=pricings)

            invoice = self._store.add_invoice(
                InvoiceModel(
                    invoice_number=invoice_number or f"INV-{so.so_number}-{sequence}",
                    customer_id=so.customer_id,
                    sales_order_id=so.id,
                    invoice_date=invoice_date or self._clock.today(),
                    subtotal=totals.subtotal,
                    tax_amount=totals.tax_amount,
                    total_amount=totals.total_amount,
                    status=InvoiceStatus.DRAFT.value,
                    invoice_sequence=sequence,
                    is_partial_invoice=still_open or sequence > 1,
                    is_final_invoice=not still_open,
                    lines=invoice_lines,
                )
            )
            logger.info(
                "invoice_created",
                extra={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "so_number": so.so_number,
                    "invoice_sequence": sequence,
                    "total_amount": str(totals.total_amount),
                    "is_final_invoice": invoice.is_final_invoice,
                },
            )

            status = self._reconciler.reconcile_sales_order(so, warnings)
            return InvoiceCreation(invoice=invoice.to_dto(), order_status=status)

        with LogContext.bind(actor_id=self._actor_id, order_id=sales_order_id):
            return run_transaction(self._session, "create_invoice_from_sales_order", work)

    def _remaining_by_line(
        self, so_lines: list[SalesOrderLineModel]
    ) -> dict[UUID, Decimal]:
        invoiced: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for il in self._store.find_invoice_lines_by_order_lines(line.id for line in so_lines):
            if il.invoice.status != InvoiceStatus.VOID.value:
                invoiced[il.sales_order_line_id] += il.quantity
        return {
            line.id: remaining_quantity(line.quantity_ordered, invoiced[line.id])
            for line in so_lines
        }
