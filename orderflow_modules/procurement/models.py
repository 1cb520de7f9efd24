"""
Procurement Domain Models.

The nouns of procurement: purchase orders, their lines, and receipts.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from orderflow_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.models")


class POStatus(Enum):
    """Purchase order lifecycle states."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A line item on a purchase order."""
    id: UUID
    purchase_order_id: UUID
    line_number: int
    product_id: UUID | None = None
    item_code: str = ""
    description: str = ""
    quantity_ordered: Decimal = Decimal("0")
    quantity_received: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    line_total: Decimal = Decimal("0")
    is_taxable: bool = False
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")

    def __post_init__(self):
        if self.quantity_received > self.quantity_ordered:
            logger.warning(
                "po_line_over_receipt",
                extra={
                    "po_line_id": str(self.id),
                    "quantity_ordered": str(self.quantity_ordered),
                    "quantity_received": str(self.quantity_received),
                },
            )
            raise ValueError(
                f"quantity_received ({self.quantity_received}) "
                f"cannot exceed quantity_ordered ({self.quantity_ordered})"
            )

    @property
    def quantity_remaining(self) -> Decimal:
        return max(Decimal("0"), self.quantity_ordered - self.quantity_received)


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order."""
    id: UUID
    po_number: str
    vendor_id: UUID
    order_date: date
    subtotal: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    status: POStatus = POStatus.PENDING
    source_sales_order_id: UUID | None = None
    created_at: datetime | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Receipt:
    """A quantity physically received against one purchase-order line."""
    id: UUID
    po_line_id: UUID
    quantity_received: Decimal
    receive_date: date
    product_id: UUID | None = None
    reference_number: str | None = None
    notes: str | None = None
    received_by: UUID | None = None
