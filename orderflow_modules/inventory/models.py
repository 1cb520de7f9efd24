"""
Inventory Domain Models.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class InventoryRecord:
    """On-hand stock for one product."""
    id: UUID
    product_id: UUID
    quantity_on_hand: Decimal = Decimal("0")
    quantity_allocated: Decimal = Decimal("0")
    reorder_point: Decimal = Decimal("0")
    reorder_quantity: Decimal = Decimal("0")

    @property
    def quantity_available(self) -> Decimal:
        return self.quantity_on_hand - self.quantity_allocated


@dataclass(frozen=True)
class InventoryAdjustment:
    """Outcome of one additive change to ``quantity_on_hand``."""
    product_id: UUID
    delta: Decimal
    quantity_before: Decimal
    quantity_after: Decimal
    record_created: bool = False

    @property
    def clamped(self) -> bool:
        """True when the change would have driven stock below zero."""
        return self.quantity_before + self.delta < Decimal("0")
