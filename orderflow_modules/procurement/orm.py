"""
SQLAlchemy ORM persistence models for the Procurement module.

Responsibility
--------------
Provide database-backed persistence for purchase orders, purchase-order
lines, and inventory receipts.

Invariants enforced
-------------------
* All quantity and monetary fields use ``Decimal`` (Numeric(38,9)).
* Status stored as String(50) for readability and portability.
* ``PurchaseOrderLineModel`` belongs to exactly one ``PurchaseOrderModel``.
* ``ReceiptModel.po_line_id`` is a real foreign key: a received line cannot
  be deleted while its receipts exist.
* ``source_sales_order_id`` is a document reference with NO foreign key;
  it may dangle and is self-healed by the document graph resolver.
* ``PurchaseOrderLineModel.quantity_received`` is a materialized copy of
  the quantity ledger and is rewritten after every receipt mutation.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow_kernel.db.base import TrackedBase

# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order header.

    Maps to the ``PurchaseOrder`` DTO in ``orderflow_modules.procurement.models``.

    Guarantees:
        - ``po_number`` is unique.
        - ``status`` always equals the derived status after any reconciliation.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_po_number"),
        Index("idx_po_vendor", "vendor_id"),
        Index("idx_po_status", "status"),
        Index("idx_po_source_so", "source_sales_order_id"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_id: Mapped[UUID]
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="PENDING")
    source_sales_order_id: Mapped[UUID | None]

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLineModel.line_number",
        lazy="selectin",
    )

    def to_dto(self):
        from orderflow_modules.procurement.models import POStatus, PurchaseOrder

        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            vendor_id=self.vendor_id,
            order_date=self.order_date,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            status=POStatus(self.status),
            source_sales_order_id=self.source_sales_order_id,
            created_at=self.created_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}]>"


# ---------------------------------------------------------------------------
# PurchaseOrderLineModel
# ---------------------------------------------------------------------------


class PurchaseOrderLineModel(TrackedBase):
    """
    A line item on a purchase order.

    Guarantees:
        - Belongs to exactly one ``PurchaseOrderModel``.
        - ``0 <= quantity_received <= quantity_ordered``.
    """

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        Index("idx_po_line_order", "purchase_order_id"),
        Index("idx_po_line_product", "product_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int]
    product_id: Mapped[UUID | None]
    item_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    quantity_ordered: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    quantity_received: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    is_taxable: Mapped[bool] = mapped_column(default=False)
    tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from orderflow_modules.procurement.models import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            product_id=self.product_id,
            item_code=self.item_code,
            description=self.description,
            quantity_ordered=self.quantity_ordered,
            quantity_received=self.quantity_received,
            unit_price=self.unit_price,
            line_total=self.line_total,
            is_taxable=self.is_taxable,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
        )

    def __repr__(self) -> str:
        return (
            f"<PurchaseOrderLineModel #{self.line_number} "
            f"qty={self.quantity_ordered} recv={self.quantity_received}>"
        )


# ---------------------------------------------------------------------------
# ReceiptModel
# ---------------------------------------------------------------------------


class ReceiptModel(TrackedBase):
    """
    An inventory receipt against one purchase-order line.

    ``product_id`` is the product whose on-hand quantity this receipt
    increased; edits and deletes adjust that same product even if the
    line's product changes later.
    """

    __tablename__ = "inventory_receipts"

    __table_args__ = (
        Index("idx_receipt_po_line", "po_line_id"),
        Index("idx_receipt_product", "product_id"),
        Index("idx_receipt_date", "receive_date"),
    )

    po_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_order_lines.id"), nullable=False,
    )
    product_id: Mapped[UUID | None]
    quantity_received: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    receive_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    received_by: Mapped[UUID | None]

    def to_dto(self):
        from orderflow_modules.procurement.models import Receipt

        return Receipt(
            id=self.id,
            po_line_id=self.po_line_id,
            quantity_received=self.quantity_received,
            receive_date=self.receive_date,
            product_id=self.product_id,
            reference_number=self.reference_number,
            notes=self.notes,
            received_by=self.received_by,
        )

    def __repr__(self) -> str:
        return f"<ReceiptModel line={self.po_line_id} qty={self.quantity_received}>"
