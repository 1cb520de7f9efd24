"""
orderflow_services.receiving_service -- Receiving reconciliation.

Responsibility:
    Create, edit and delete inventory receipts against purchase-order
    lines, keep the product's on-hand quantity in step with every change,
    and recompute the owning purchase order's status in the same
    transaction.  This is the only service that mutates physical stock.

Architecture position:
    Services -- owns the transaction boundary for each public method
    (commit on success, rollback on any failure).

Invariants enforced:
    - Sum of receipts on a line never exceeds the line's ordered quantity:
      an over-receipt is clamped (policy ``clamp``) or rejected (``reject``).
    - Every receipt write is paired with an atomic inventory adjustment
      floored at zero.
    - Receipt, inventory and order status commit together or not at all.
    - The purchase-order row is locked (SELECT ... FOR UPDATE) before the
      line's receipts are summed, so concurrent receipts serialize.

Failure modes:
    - InvalidQuantityError: quantity <= 0.
    - LineFullyReceivedError: nothing left to receive on the line.
    - QuantityExceedsRemainingError: over-receipt under the reject policy.
    - OrderNotReceivableError: order is not CONFIRMED / PARTIAL (RECEIVED also
      allowed for edit_receipt).
    - MissingReferenceError: the line has no product.
    - OrderNotFoundError / OrderLineNotFoundError / ReceiptNotFoundError.
    - PersistenceFailureError: storage rejected a read or write.

Usage:
    service = ReceivingService(session, config, actor_id=user_id, clock=clock)
    result = service.receive_inventory(line_id, Decimal("4"))
    if result.is_success:
        result.value.order_status.status   # OrderStatus.PARTIAL
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from orderflow_config import OrderflowConfig, OverReceiptPolicy
from orderflow_engines import OrderStatus, remaining_quantity
from orderflow_kernel.domain.clock import Clock, SystemClock
from orderflow_kernel.domain.results import ReconciliationResult, WarningCode
from orderflow_kernel.exceptions import (
    InvalidQuantityError,
    LineFullyReceivedError,
    MissingReferenceError,
    OrderLineNotFoundError,
    OrderNotFoundError,
    OrderNotReceivableError,
    QuantityExceedsRemainingError,
    ReceiptNotFoundError,
)
from orderflow_kernel.logging_config import LogContext, get_logger
from orderflow_modules.inventory.models import InventoryAdjustment
from orderflow_modules.procurement.models import Receipt
from orderflow_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    ReceiptModel,
)
from orderflow_services._support import WarningCollector, run_transaction
from orderflow_services.status_service import OrderStatusReconciler, StatusRecomputation
from orderflow_services.storage import SqlAlchemyFulfillmentStore

logger = get_logger("services.receiving")

ZERO = Decimal("0")

# New receipts only against confirmed, not yet complete orders; existing
# receipts of a completed order can still be corrected.
RECEIVABLE_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.PARTIAL})
EDITABLE_STATUSES = RECEIVABLE_STATUSES | {OrderStatus.RECEIVED}


@dataclass(frozen=True)
class ReceiptReference:
    """Caller-supplied details recorded on a receipt."""

    receive_date: date | None = None
    reference_number: str | None = None
    notes: str | None = None
    received_by: UUID | None = None


@dataclass(frozen=True)
class ReceiptOutcome:
    """A created or edited receipt with its side effects."""

    receipt: Receipt
    quantity_requested: Decimal
    inventory: InventoryAdjustment | None
    order_status: StatusRecomputation

    @property
    def was_clamped(self) -> bool:
        return self.receipt.quantity_received != self.quantity_requested


@dataclass(frozen=True)
class ReceiptDeletion:
    receipt_id: UUID
    po_line_id: UUID
    quantity_removed: Decimal
    inventory: InventoryAdjustment | None
    order_status: StatusRecomputation


@dataclass(frozen=True)
class PurchaseOrderReceipt:
    """Outcome of receiving several lines of one purchase order."""

    order_id: UUID
    receipts: tuple[Receipt, ...]
    order_status: StatusRecomputation


class ReceivingService:
    """
    Receipt create / edit / delete with inventory and status reconciliation.

    Contract:
        Every public method returns a ``ReconciliationResult``.  Validation
        failures are reported before anything is written; storage failures
        roll the whole operation back.

    Non-goals:
        - Does NOT ship or allocate stock (``quantity_allocated`` is
          untouched).
    """

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

    # =========================================================================
    # Create
    # =========================================================================

    def receive_inventory(
        self,
        line_id: UUID,
        quantity: Decimal,
        reference: ReceiptReference | None = None,
    ) -> ReconciliationResult[ReceiptOutcome]:
        """Receive ``quantity`` against one purchase-order line."""
        reference = reference or ReceiptReference()

        def work(warnings: WarningCollector) -> ReceiptOutcome:
            _require_positive(quantity)
            line = self._get_line(line_id)
            order = self._lock_order(line.purchase_order_id)

            receipt, adjustment = self._receive_line(
                order, line, quantity, reference, warnings
            )
            status = self._reconciler.reconcile_purchase_order(order, warnings)
            return ReceiptOutcome(
                receipt=receipt.to_dto(),
                quantity_requested=quantity,
                inventory=adjustment,
                order_status=status,
            )

        with LogContext.bind(actor_id=self._actor_id, document_id=line_id):
            return run_transaction(self._session, "receive_inventory", work)

    def receive_purchase_order(
        self,
        order_id: UUID,
        quantities: Mapping[UUID, Decimal] | None = None,
        reference: ReceiptReference | None = None,
    ) -> ReconciliationResult[PurchaseOrderReceipt]:
        """
        Receive several lines of one purchase order in one transaction.

        ``quantities`` maps line id to quantity.  When omitted, every stock
        line is received in full (its remaining quantity); fully received
        and non-stock lines are skipped.
        """
        reference = reference or ReceiptReference()

        def work(warnings: WarningCollector) -> PurchaseOrderReceipt:
            order = self._lock_order(order_id)
            lines_by_id = {line.id: line for line in order.lines}

            if quantities is None:
                plan = []
                for line in order.lines:
                    if line.product_id is None:
                        continue
                    remaining = self._remaining(line)
                    if remaining > ZERO:
                        plan.append((line, remaining))
            else:
                plan = []
                for line_id, quantity in quantities.items():
                    _require_positive(quantity)
                    line = lines_by_id.get(line_id)
                    if line is None:
                        raise OrderLineNotFoundError(str(line_id))
                    plan.append((line, quantity))

            receipts = []
            for line, quantity in plan:
                receipt, _ = self._receive_line(order, line, quantity, reference, warnings)
                receipts.append(receipt.to_dto())

            status = self._reconciler.reconcile_purchase_order(order, warnings)
            return PurchaseOrderReceipt(
                order_id=order.id,
                receipts=tuple(receipts),
                order_status=status,
            )

        with LogContext.bind(actor_id=self._actor_id, order_id=order_id):
            return run_transaction(self._session, "receive_purchase_order", work)

    # =========================================================================
    # Edit
    # =========================================================================

    def edit_receipt(
        self, receipt_id: UUID, new_quantity: Decimal
    ) -> ReconciliationResult[ReceiptOutcome]:
        """Change a receipt's quantity and move on-hand stock by the difference."""

        def work(warnings: WarningCollector) -> ReceiptOutcome:
            _require_positive(new_quantity)
            receipt = self._get_receipt(receipt_id)
            line = self._get_line(receipt.po_line_id)
            order = self._lock_order(line.purchase_order_id)
            _require_receivable(order, EDITABLE_STATUSES)
            product_id = self._receipt_product(receipt, line)

            received_elsewhere = sum(
                (
                    r.quantity_received
                    for r in self._store.find_receipts_by_line(line.id)
                    if r.id != receipt.id
                ),
                ZERO,
            )
            allowed = remaining_quantity(line.quantity_ordered, received_elsewhere)
            quantity = new_quantity
            if quantity > allowed:
                if (
                    self._config.receiving.over_receipt_policy == OverReceiptPolicy.REJECT
                    or allowed == ZERO
                ):
                    raise QuantityExceedsRemainingError(str(line.id), quantity, allowed)
                warnings.add(
                    WarningCode.RECEIPT_QUANTITY_CLAMPED,
                    f"Receipt edit of {quantity} clamped to {allowed} on line {line.line_number}",
                    receipt.id,
                )
                quantity = allowed

            old_quantity = receipt.quantity_received
            delta = quantity - old_quantity
            adjustment = None
            if delta != ZERO:
                adjustment = self._adjust_inventory(product_id, delta, warnings)

            receipt.quantity_received = quantity
            receipt.updated_by_id = self._actor_id
            self._session.flush()

            logger.info(
                "receipt_updated",
                extra={
                    "receipt_id": str(receipt.id),
                    "po_line_id": str(line.id),
                    "old_quantity": str(old_quantity),
                    "new_quantity": str(quantity),
                    "delta": str(delta),
                },
            )

            status = self._reconciler.reconcile_purchase_order(order, warnings)
            return ReceiptOutcome(
                receipt=receipt.to_dto(),
                quantity_requested=new_quantity,
                inventory=adjustment,
                order_status=status,
            )

        with LogContext.bind(actor_id=self._actor_id, document_id=receipt_id):
            return run_transaction(self._session, "edit_receipt", work)

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_receipt(self, receipt_id: UUID) -> ReconciliationResult[ReceiptDeletion]:
        """Delete a receipt and take its quantity back out of stock."""

        def work(warnings: WarningCollector) -> ReceiptDeletion:
            receipt = self._get_receipt(receipt_id)
            line = self._get_line(receipt.po_line_id)
            order = self._lock_order(line.purchase_order_id)
            product_id = receipt.product_id or line.product_id
            quantity = receipt.quantity_received

            adjustment = None
            if product_id is None:
                warnings.add(
                    WarningCode.INVENTORY_RECORD_MISSING,
                    f"Receipt {receipt.id} has no product; stock not adjusted",
                    receipt.id,
                )
            elif self._store.get_inventory(product_id, lock=True) is None:
                warnings.add(
                    WarningCode.INVENTORY_RECORD_MISSING,
                    f"No inventory record for product {product_id}; stock not adjusted",
                    product_id,
                )
            else:
                adjustment = self._adjust_inventory(product_id, -quantity, warnings)

            self._store.delete_receipt(receipt)
            logger.info(
                "receipt_deleted",
                extra={
                    "receipt_id": str(receipt_id),
                    "po_line_id": str(line.id),
                    "quantity": str(quantity),
                },
            )

            status = self._reconciler.reconcile_purchase_order(order, warnings)
            return ReceiptDeletion(
                receipt_id=receipt_id,
                po_line_id=line.id,
                quantity_removed=quantity,
                inventory=adjustment,
                order_status=status,
            )

        with LogContext.bind(actor_id=self._actor_id, document_id=receipt_id):
            return run_transaction(self._session, "delete_receipt", work)

    # =========================================================================
    # Status
    # =========================================================================

    def recompute_status(self, order_id: UUID) -> ReconciliationResult[StatusRecomputation]:
        """Recompute a purchase order's status from its receipts."""

        def work(warnings: WarningCollector) -> StatusRecomputation:
            order = self._lock_order(order_id)
            return self._reconciler.reconcile_purchase_order(order, warnings)

        with LogContext.bind(actor_id=self._actor_id, order_id=order_id):
            return run_transaction(self._session, "recompute_status", work)

    # =========================================================================
    # Internals
    # =========================================================================

    def _receive_line(
        self,
        order: PurchaseOrderModel,
        line: PurchaseOrderLineModel,
        quantity: Decimal,
        reference: ReceiptReference,
        warnings: WarningCollector,
    ) -> tuple[ReceiptModel, InventoryAdjustment]:
        _require_receivable(order)
        if line.product_id is None:
            raise MissingReferenceError(
                "purchase_order_line",
                "product_id",
                str(line.id),
                f"Line {line.line_number} of {order.po_number} has no product to receive",
            )

        remaining = self._remaining(line)
        if remaining == ZERO:
            raise LineFullyReceivedError(str(line.id))

        to_receive = quantity
        if quantity > remaining:
            if self._config.receiving.over_receipt_policy == OverReceiptPolicy.REJECT:
                raise QuantityExceedsRemainingError(str(line.id), quantity, remaining)
            warnings.add(
                WarningCode.RECEIPT_QUANTITY_CLAMPED,
                f"Receipt of {quantity} clamped to remaining {remaining} "
                f"on line {line.line_number} of {order.po_number}",
                line.id,
            )
            to_receive = remaining

        receipt = self._store.add_receipt(
            ReceiptModel(
                po_line_id=line.id,
                product_id=line.product_id,
                quantity_received=to_receive,
                receive_date=reference.receive_date or self._clock.today(),
                reference_number=reference.reference_number,
                notes=reference.notes,
                received_by=reference.received_by or self._actor_id,
            )
        )
        adjustment = self._adjust_inventory(line.product_id, to_receive, warnings)

        logger.info(
            "receipt_created",
            extra={
                "receipt_id": str(receipt.id),
                "po_number": order.po_number,
                "po_line_id": str(line.id),
                "product_id": str(line.product_id),
                "quantity_requested": str(quantity),
                "quantity_received": str(to_receive),
                "quantity_on_hand": str(adjustment.quantity_after),
            },
        )
        return receipt, adjustment

    def _adjust_inventory(
        self, product_id: UUID, delta: Decimal, warnings: WarningCollector
    ) -> InventoryAdjustment:
        adjustment = self._store.upsert_inventory(product_id, delta)
        if adjustment.record_created:
            warnings.add(
                WarningCode.INVENTORY_RECORD_MISSING,
                f"No inventory record for product {product_id}; created one",
                product_id,
            )
        if adjustment.clamped:
            warnings.add(
                WarningCode.INVENTORY_CLAMPED_AT_ZERO,
                f"On-hand for product {product_id} would go to "
                f"{adjustment.quantity_before + delta}; clamped at zero",
                product_id,
            )
        return adjustment

    def _remaining(self, line: PurchaseOrderLineModel) -> Decimal:
        received = sum(
            (r.quantity_received for r in self._store.find_receipts_by_line(line.id)),
            ZERO,
        )
        return remaining_quantity(line.quantity_ordered, received)

    def _receipt_product(self, receipt: ReceiptModel, line: PurchaseOrderLineModel) -> UUID:
        product_id = receipt.product_id or line.product_id
        if product_id is None:
            raise MissingReferenceError("receipt", "product_id", str(receipt.id))
        return product_id

    def _get_line(self, line_id: UUID) -> PurchaseOrderLineModel:
        line = self._store.get_po_line(line_id)
        if line is None:
            raise OrderLineNotFoundError(str(line_id))
        return line

    def _get_receipt(self, receipt_id: UUID) -> ReceiptModel:
        receipt = self._store.get_receipt(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(str(receipt_id))
        return receipt

    def _lock_order(self, order_id: UUID) -> PurchaseOrderModel:
        order = self._store.get_purchase_order(order_id, lock=True)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order


def _require_positive(quantity: Decimal) -> None:
    if quantity <= ZERO:
        raise InvalidQuantityError(quantity)


def _require_receivable(
    order: PurchaseOrderModel, allowed: frozenset[OrderStatus] = RECEIVABLE_STATUSES
) -> None:
    status = OrderStatus(order.status)
    if status not in allowed:
        raise OrderNotReceivableError(str(order.id), status.value)
