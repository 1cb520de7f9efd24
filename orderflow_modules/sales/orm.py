"""
SQLAlchemy ORM persistence models for the Sales module.

Responsibility
--------------
Provide database-backed persistence for estimates, sales orders, sales
order lines, invoices and invoice lines.

Invariants enforced
-------------------
* All quantity and monetary fields use ``Decimal`` (Numeric(38,9)).
* ``InvoiceLineModel.sales_order_line_id`` is a real foreign key: a sales
  order line consumed by an invoice cannot be deleted.
* Document references (``estimate_id``, ``converted_to_sales_order_id``,
  ``InvoiceModel.sales_order_id``) carry NO foreign key; they may dangle
  and are self-healed by the document graph resolver.
* ``estimate_number`` on a sales order is the legacy human-readable
  reference kept for records written before ``estimate_id`` existed.
* ``quantity_invoiced`` / ``quantity_remaining`` / ``fulfillment_status``
  on a line and ``status`` / ``fulfillment_percentage`` on the order are
  materialized from the quantity ledger after every mutation.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow_kernel.db.base import TrackedBase

# ---------------------------------------------------------------------------
# EstimateModel
# ---------------------------------------------------------------------------


class EstimateModel(TrackedBase):
    """A customer estimate."""

    __tablename__ = "estimates"

    __table_args__ = (
        UniqueConstraint("estimate_number", name="uq_estimate_number"),
        Index("idx_estimate_customer", "customer_id"),
    )

    estimate_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[UUID]
    estimate_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="DRAFT")
    converted_to_sales_order_id: Mapped[UUID | None]

    def to_dto(self):
        from orderflow_modules.sales.models import Estimate, EstimateStatus

        return Estimate(
            id=self.id,
            estimate_number=self.estimate_number,
            customer_id=self.customer_id,
            estimate_date=self.estimate_date,
            total_amount=self.total_amount,
            status=EstimateStatus(self.status),
            converted_to_sales_order_id=self.converted_to_sales_order_id,
        )

    def __repr__(self) -> str:
        return f"<EstimateModel {self.estimate_number} [{self.status}]>"


# ---------------------------------------------------------------------------
# SalesOrderModel
# ---------------------------------------------------------------------------


class SalesOrderModel(TrackedBase):
    """
    A sales order header.

    Guarantees:
        - ``so_number`` is unique.
        - ``0 <= fulfillment_percentage <= 100``.
    """

    __tablename__ = "sales_orders"

    __table_args__ = (
        UniqueConstraint("so_number", name="uq_so_number"),
        Index("idx_so_customer", "customer_id"),
        Index("idx_so_status", "status"),
        Index("idx_so_estimate", "estimate_id"),
        Index("idx_so_estimate_number", "estimate_number"),
    )

    so_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[UUID]
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="PENDING")
    fulfillment_percentage: Mapped[int] = mapped_column(Integer, default=0)
    estimate_id: Mapped[UUID | None]
    estimate_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    lines: Mapped[list["SalesOrderLineModel"]] = relationship(
        "SalesOrderLineModel",
        back_populates="sales_order",
        cascade="all, delete-orphan",
        order_by="SalesOrderLineModel.line_number",
        lazy="selectin",
    )

    def to_dto(self):
        from orderflow_modules.sales.models import SalesOrder, SOStatus

        return SalesOrder(
            id=self.id,
            so_number=self.so_number,
            customer_id=self.customer_id,
            order_date=self.order_date,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            status=SOStatus(self.status),
            fulfillment_percentage=self.fulfillment_percentage,
            estimate_id=self.estimate_id,
            estimate_number=self.estimate_number,
            created_at=self.created_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<SalesOrderModel {self.so_number} [{self.status}]>"


# ---------------------------------------------------------------------------
# SalesOrderLineModel
# ---------------------------------------------------------------------------


class SalesOrderLineModel(TrackedBase):
    """A line item on a sales order."""

    __tablename__ = "sales_order_lines"

    __table_args__ = (
        Index("idx_so_line_order", "sales_order_id"),
    )

    sales_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("sales_orders.id"), nullable=False,
    )
    line_number: Mapped[int]
    product_id: Mapped[UUID | None]
    item_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    quantity_ordered: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    is_taxable: Mapped[bool] = mapped_column(default=False)
    tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    quantity_invoiced: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    quantity_remaining: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    fulfillment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )

    sales_order: Mapped["SalesOrderModel"] = relationship(
        "SalesOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from orderflow_modules.sales.models import LineFulfillmentStatus, SalesOrderLine

        return SalesOrderLine(
            id=self.id,
            sales_order_id=self.sales_order_id,
            line_number=self.line_number,
            product_id=self.product_id,
            item_code=self.item_code,
            description=self.description,
            quantity_ordered=self.quantity_ordered,
            unit_price=self.unit_price,
            line_total=self.line_total,
            is_taxable=self.is_taxable,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            quantity_invoiced=self.quantity_invoiced,
            quantity_remaining=self.quantity_remaining,
            fulfillment_status=LineFulfillmentStatus(self.fulfillment_status),
        )

    def __repr__(self) -> str:
        return (
            f"<SalesOrderLineModel #{self.line_number} "
            f"qty={self.quantity_ordered} inv={self.quantity_invoiced}>"
        )


# ---------------------------------------------------------------------------
# InvoiceModel
# ---------------------------------------------------------------------------


class InvoiceModel(TrackedBase):
    """
    A customer invoice, optionally issued against a sales order.

    ``invoice_sequence`` orders partial and final invoices of one sales
    order in issuance order.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_customer", "customer_id"),
        Index("idx_invoice_sales_order", "sales_order_id"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[UUID]
    sales_order_id: Mapped[UUID | None]
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="DRAFT")
    invoice_sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_partial_invoice: Mapped[bool] = mapped_column(default=False)
    is_final_invoice: Mapped[bool] = mapped_column(default=False)

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        "InvoiceLineModel",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineModel.line_number",
        lazy="selectin",
    )

    def to_dto(self):
        from orderflow_modules.sales.models import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            customer_id=self.customer_id,
            invoice_date=self.invoice_date,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            status=InvoiceStatus(self.status),
            sales_order_id=self.sales_order_id,
            invoice_sequence=self.invoice_sequence,
            is_partial_invoice=self.is_partial_invoice,
            is_final_invoice=self.is_final_invoice,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} seq={self.invoice_sequence} [{self.status}]>"


# ---------------------------------------------------------------------------
# InvoiceLineModel
# ---------------------------------------------------------------------------


class InvoiceLineModel(TrackedBase):
    """An invoice line; ``sales_order_line_id`` is the downstream reference."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        Index("idx_invoice_line_invoice", "invoice_id"),
        Index("idx_invoice_line_so_line", "sales_order_line_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"), nullable=False,
    )
    line_number: Mapped[int]
    sales_order_line_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("sales_order_lines.id"), nullable=True,
    )
    product_id: Mapped[UUID | None]
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    invoice: Mapped["InvoiceModel"] = relationship(
        "InvoiceModel",
        back_populates="lines",
    )

    def to_dto(self):
        from orderflow_modules.sales.models import InvoiceLine

        return InvoiceLine(
            id=self.id,
            invoice_id=self.invoice_id,
            line_number=self.line_number,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_total=self.line_total,
            sales_order_line_id=self.sales_order_line_id,
            product_id=self.product_id,
        )

    def __repr__(self) -> str:
        return f"<InvoiceLineModel #{self.line_number} qty={self.quantity}>"
