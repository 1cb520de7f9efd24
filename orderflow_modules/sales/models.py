"""
Sales Domain Models.

Estimates, sales orders and their lines, invoices and invoice lines.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from orderflow_kernel.logging_config import get_logger

logger = get_logger("modules.sales.models")


class EstimateStatus(Enum):
    """Estimate lifecycle states."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"


class SOStatus(Enum):
    """Sales order lifecycle states."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    PARTIAL = "PARTIAL"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    INVOICED = "INVOICED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"


class LineFulfillmentStatus(Enum):
    """Per-line invoicing progress on a sales order."""
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"


class InvoiceStatus(Enum):
    """Invoice lifecycle states."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    VOID = "VOID"


@dataclass(frozen=True)
class Estimate:
    """A customer estimate (quote)."""
    id: UUID
    estimate_number: str
    customer_id: UUID
    estimate_date: date
    total_amount: Decimal = Decimal("0")
    status: EstimateStatus = EstimateStatus.DRAFT
    converted_to_sales_order_id: UUID | None = None


@dataclass(frozen=True)
class SalesOrderLine:
    """A line item on a sales order."""
    id: UUID
    sales_order_id: UUID
    line_number: int
    product_id: UUID | None = None
    item_code: str = ""
    description: str = ""
    quantity_ordered: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    line_total: Decimal = Decimal("0")
    is_taxable: bool = False
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    quantity_invoiced: Decimal = Decimal("0")
    quantity_remaining: Decimal = Decimal("0")
    fulfillment_status: LineFulfillmentStatus = LineFulfillmentStatus.PENDING

    def __post_init__(self):
        if self.quantity_invoiced > self.quantity_ordered:
            logger.warning(
                "so_line_over_invoice",
                extra={
                    "so_line_id": str(self.id),
                    "quantity_ordered": str(self.quantity_ordered),
                    "quantity_invoiced": str(self.quantity_invoiced),
                },
            )
            raise ValueError(
                f"quantity_invoiced ({self.quantity_invoiced}) "
                f"cannot exceed quantity_ordered ({self.quantity_ordered})"
            )
        if self.quantity_remaining < 0:
            raise ValueError(
                f"quantity_remaining cannot be negative ({self.quantity_remaining})"
            )


@dataclass(frozen=True)
class SalesOrder:
    """A sales order."""
    id: UUID
    so_number: str
    customer_id: UUID
    order_date: date
    subtotal: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    status: SOStatus = SOStatus.PENDING
    fulfillment_percentage: int = 0
    estimate_id: UUID | None = None
    estimate_number: str | None = None
    created_at: datetime | None = None
    lines: tuple[SalesOrderLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InvoiceLine:
    """A line item on an invoice, optionally consuming a sales-order line."""
    id: UUID
    invoice_id: UUID
    line_number: int
    description: str = ""
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    line_total: Decimal = Decimal("0")
    sales_order_line_id: UUID | None = None
    product_id: UUID | None = None


@dataclass(frozen=True)
class Invoice:
    """A customer invoice."""
    id: UUID
    invoice_number: str
    customer_id: UUID
    invoice_date: date
    subtotal: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    status: InvoiceStatus = InvoiceStatus.DRAFT
    sales_order_id: UUID | None = None
    invoice_sequence: int | None = None
    is_partial_invoice: bool = False
    is_final_invoice: bool = False
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)
