"""
orderflow_services.storage -- Storage collaborator for the reconciliation core.

Responsibility:
    The only place that issues queries against the order, receipt, invoice
    and inventory tables.  Services talk to a ``FulfillmentStore``; the
    SQLAlchemy implementation below is the production one, and tests can
    substitute a subclass that fails on demand.

Architecture position:
    Services -- I/O boundary.  Returns ORM instances; services convert them
    to DTOs at their public boundary.

Invariants enforced:
    - Lookups never raise for "not found"; they return ``None`` or ``[]``.
    - ``quantity_on_hand`` is changed only by a single atomic UPDATE that
      clamps at zero, taken after locking the inventory row.
    - A missing inventory record is created inside a SAVEPOINT so a
      concurrent insert of the same product does not abort the caller's
      transaction.

Failure modes:
    - ``sqlalchemy.exc.SQLAlchemyError`` propagates.  Services translate it
      into ``PersistenceFailureError`` and roll back.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow_engines import DocumentKind, OrderStatus
from orderflow_kernel.logging_config import get_logger
from orderflow_modules.inventory.models import InventoryAdjustment
from orderflow_modules.inventory.orm import InventoryRecordModel
from orderflow_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    ReceiptModel,
)
from orderflow_modules.sales.orm import (
    EstimateModel,
    InvoiceLineModel,
    InvoiceModel,
    SalesOrderLineModel,
    SalesOrderModel,
)

logger = get_logger("services.storage")

ZERO = Decimal("0")

OrderModel = PurchaseOrderModel | SalesOrderModel
OrderLineModel = PurchaseOrderLineModel | SalesOrderLineModel


@runtime_checkable
class FulfillmentStore(Protocol):
    """Storage operations the reconciliation core depends on."""

    def find_lines_by_order(
        self, order_id: UUID, kind: DocumentKind
    ) -> list[OrderLineModel]:
        ...

    def find_receipts_by_line(self, line_id: UUID) -> list[ReceiptModel]:
        ...

    def find_invoices_by_order(self, sales_order_id: UUID) -> list[InvoiceModel]:
        ...

    def find_purchase_orders_by_source_order(
        self, sales_order_id: UUID
    ) -> list[PurchaseOrderModel]:
        ...

    def upsert_inventory(self, product_id: UUID, delta: Decimal) -> InventoryAdjustment:
        ...

    def update_order_status(
        self,
        order_id: UUID,
        kind: DocumentKind,
        status: OrderStatus,
        fulfillment_percentage: int | None = None,
    ) -> None:
        ...


class SqlAlchemyFulfillmentStore:
    """``FulfillmentStore`` backed by a SQLAlchemy session."""

    def __init__(self, session: Session, actor_id: UUID):
        self._session = session
        self._actor_id = actor_id

    @property
    def session(self) -> Session:
        return self._session

    # =========================================================================
    # Orders
    # =========================================================================

    def get_purchase_order(
        self, order_id: UUID, *, lock: bool = False
    ) -> PurchaseOrderModel | None:
        stmt = select(PurchaseOrderModel).where(PurchaseOrderModel.id == order_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_sales_order(
        self, order_id: UUID, *, lock: bool = False
    ) -> SalesOrderModel | None:
        stmt = select(SalesOrderModel).where(SalesOrderModel.id == order_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_order(
        self, order_id: UUID, kind: DocumentKind, *, lock: bool = False
    ) -> OrderModel | None:
        if kind == DocumentKind.PURCHASE_ORDER:
            return self.get_purchase_order(order_id, lock=lock)
        return self.get_sales_order(order_id, lock=lock)

    def find_order(
        self, order_id: UUID, kind: DocumentKind | None = None, *, lock: bool = False
    ) -> tuple[OrderModel, DocumentKind] | None:
        """Look ``order_id`` up as ``kind``, or as a purchase order then a sales order."""
        kinds = (
            (kind,)
            if kind is not None
            else (DocumentKind.PURCHASE_ORDER, DocumentKind.SALES_ORDER)
        )
        for candidate in kinds:
            order = self.get_order(order_id, candidate, lock=lock)
            if order is not None:
                return order, candidate
        return None

    def find_lines_by_order(
        self, order_id: UUID, kind: DocumentKind
    ) -> list[OrderLineModel]:
        if kind == DocumentKind.PURCHASE_ORDER:
            stmt = (
                select(PurchaseOrderLineModel)
                .where(PurchaseOrderLineModel.purchase_order_id == order_id)
                .order_by(PurchaseOrderLineModel.line_number)
            )
        else:
            stmt = (
                select(SalesOrderLineModel)
                .where(SalesOrderLineModel.sales_order_id == order_id)
                .order_by(SalesOrderLineModel.line_number)
            )
        return list(self._session.execute(stmt).scalars())

    def get_po_line(self, line_id: UUID) -> PurchaseOrderLineModel | None:
        return self._session.get(PurchaseOrderLineModel, line_id)

    def get_so_line(self, line_id: UUID) -> SalesOrderLineModel | None:
        return self._session.get(SalesOrderLineModel, line_id)

    def update_order_status(
        self,
        order_id: UUID,
        kind: DocumentKind,
        status: OrderStatus,
        fulfillment_percentage: int | None = None,
    ) -> None:
        order = self.get_order(order_id, kind)
        if order is None:
            return
        order.status = status.value
        order.updated_by_id = self._actor_id
        if fulfillment_percentage is not None and isinstance(order, SalesOrderModel):
            order.fulfillment_percentage = fulfillment_percentage
        self._session.flush()

    # =========================================================================
    # Receipts
    # =========================================================================

    def get_receipt(self, receipt_id: UUID) -> ReceiptModel | None:
        return self._session.get(ReceiptModel, receipt_id)

    def find_receipts_by_line(self, line_id: UUID) -> list[ReceiptModel]:
        stmt = (
            select(ReceiptModel)
            .where(ReceiptModel.po_line_id == line_id)
            .order_by(ReceiptModel.receive_date, ReceiptModel.created_at)
        )
        return list(self._session.execute(stmt).scalars())

    def find_receipts_by_lines(self, line_ids: Iterable[UUID]) -> list[ReceiptModel]:
        ids = list(line_ids)
        if not ids:
            return []
        stmt = select(ReceiptModel).where(ReceiptModel.po_line_id.in_(ids))
        return list(self._session.execute(stmt).scalars())

    def find_receipts_by_order(self, order_id: UUID) -> list[ReceiptModel]:
        stmt = (
            select(ReceiptModel)
            .join(
                PurchaseOrderLineModel,
                PurchaseOrderLineModel.id == ReceiptModel.po_line_id,
            )
            .where(PurchaseOrderLineModel.purchase_order_id == order_id)
        )
        return list(self._session.execute(stmt).scalars())

    def add_receipt(self, receipt: ReceiptModel) -> ReceiptModel:
        receipt.created_by_id = self._actor_id
        self._session.add(receipt)
        self._session.flush()
        return receipt

    def delete_receipt(self, receipt: ReceiptModel) -> None:
        self._session.delete(receipt)
        self._session.flush()

    # =========================================================================
    # Sales documents
    # =========================================================================

    def get_estimate(self, estimate_id: UUID) -> EstimateModel | None:
        return self._session.get(EstimateModel, estimate_id)

    def find_estimate_by_number(self, estimate_number: str) -> EstimateModel | None:
        stmt = select(EstimateModel).where(
            EstimateModel.estimate_number == estimate_number
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def find_sales_order_by_estimate(self, estimate_id: UUID) -> SalesOrderModel | None:
        stmt = (
            select(SalesOrderModel)
            .where(SalesOrderModel.estimate_id == estimate_id)
            .order_by(SalesOrderModel.created_at, SalesOrderModel.so_number)
        )
        return self._session.execute(stmt).scalars().first()

    def find_sales_order_by_estimate_number(
        self, estimate_number: str
    ) -> SalesOrderModel | None:
        stmt = (
            select(SalesOrderModel)
            .where(SalesOrderModel.estimate_number == estimate_number)
            .order_by(SalesOrderModel.created_at, SalesOrderModel.so_number)
        )
        return self._session.execute(stmt).scalars().first()

    def get_invoice(self, invoice_id: UUID) -> InvoiceModel | None:
        return self._session.get(InvoiceModel, invoice_id)

    def find_invoices_by_order(self, sales_order_id: UUID) -> list[InvoiceModel]:
        """Invoices of a sales order in issuance order; unsequenced last."""
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.sales_order_id == sales_order_id)
            .order_by(
                InvoiceModel.invoice_sequence.is_(None),
                InvoiceModel.invoice_sequence,
                InvoiceModel.invoice_date,
                InvoiceModel.invoice_number,
            )
        )
        return list(self._session.execute(stmt).scalars())

    def find_invoice_lines_by_order_lines(
        self, line_ids: Iterable[UUID]
    ) -> list[InvoiceLineModel]:
        ids = list(line_ids)
        if not ids:
            return []
        stmt = select(InvoiceLineModel).where(
            InvoiceLineModel.sales_order_line_id.in_(ids)
        )
        return list(self._session.execute(stmt).scalars())

    def add_invoice(self, invoice: InvoiceModel) -> InvoiceModel:
        invoice.created_by_id = self._actor_id
        for line in invoice.lines:
            line.created_by_id = self._actor_id
        self._session.add(invoice)
        self._session.flush()
        return invoice

    def find_purchase_orders_by_source_order(
        self, sales_order_id: UUID
    ) -> list[PurchaseOrderModel]:
        stmt = (
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.source_sales_order_id == sales_order_id)
            .order_by(PurchaseOrderModel.created_at, PurchaseOrderModel.po_number)
        )
        return list(self._session.execute(stmt).scalars())

    def clear_reference(self, entity: object, field_name: str) -> None:
        setattr(entity, field_name, None)
        entity.updated_by_id = self._actor_id  # type: ignore[attr-defined]
        self._session.flush()

    def set_reference(self, entity: object, field_name: str, value: UUID) -> None:
        setattr(entity, field_name, value)
        entity.updated_by_id = self._actor_id  # type: ignore[attr-defined]
        self._session.flush()

    # =========================================================================
    # Order lines
    # =========================================================================

    def add_line(self, line: OrderLineModel) -> OrderLineModel:
        line.created_by_id = self._actor_id
        self._session.add(line)
        self._session.flush()
        return line

    def delete_line(self, line: OrderLineModel) -> None:
        self._session.delete(line)
        self._session.flush()

    def delete_line_if_unreferenced(self, line: OrderLineModel) -> bool:
        """
        Delete ``line`` inside a SAVEPOINT.

        Returns False, leaving the line in place, when the database rejects
        the delete because a downstream row still references it.
        """
        savepoint = self._session.begin_nested()
        try:
            self._session.delete(line)
            self._session.flush()
            savepoint.commit()
            return True
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                "line_delete_blocked",
                extra={"line_id": str(line.id)},
            )
            return False

    # =========================================================================
    # Inventory
    # =========================================================================

    def get_inventory(
        self, product_id: UUID, *, lock: bool = False
    ) -> InventoryRecordModel | None:
        stmt = select(InventoryRecordModel).where(
            InventoryRecordModel.product_id == product_id
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def upsert_inventory(self, product_id: UUID, delta: Decimal) -> InventoryAdjustment:
        """
        Add ``delta`` to the product's on-hand quantity, floored at zero.

        Creates the record (at ``max(0, delta)``) when the product has none.
        """
        record = self.get_inventory(product_id, lock=True)

        if record is None:
            savepoint = self._session.begin_nested()
            try:
                record = InventoryRecordModel(
                    product_id=product_id,
                    quantity_on_hand=max(ZERO, delta),
                    created_by_id=self._actor_id,
                )
                self._session.add(record)
                self._session.flush()
                savepoint.commit()
                return InventoryAdjustment(
                    product_id=product_id,
                    delta=delta,
                    quantity_before=ZERO,
                    quantity_after=record.quantity_on_hand,
                    record_created=True,
                )
            except IntegrityError:
                # Created concurrently; fall through to the atomic update.
                savepoint.rollback()
                logger.debug(
                    "inventory_insert_race_retry",
                    extra={"product_id": str(product_id)},
                )
                record = self.get_inventory(product_id, lock=True)
                if record is None:
                    raise

        before = record.quantity_on_hand
        new_quantity = InventoryRecordModel.quantity_on_hand + delta
        self._session.execute(
            update(InventoryRecordModel)
            .where(InventoryRecordModel.product_id == product_id)
            .values(
                quantity_on_hand=case((new_quantity < ZERO, ZERO), else_=new_quantity),
                updated_by_id=self._actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(record)
        return InventoryAdjustment(
            product_id=product_id,
            delta=delta,
            quantity_before=before,
            quantity_after=record.quantity_on_hand,
        )
