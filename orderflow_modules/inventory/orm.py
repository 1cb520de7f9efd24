"""
SQLAlchemy ORM persistence models for the Inventory module.

Invariants enforced
-------------------
* One ``InventoryRecordModel`` per product (unique ``product_id``).
* ``quantity_on_hand`` is never negative; it is only changed by an atomic
  additive UPDATE clamped at zero (see ``orderflow_services.storage``).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from orderflow_kernel.db.base import TrackedBase


class InventoryRecordModel(TrackedBase):
    """On-hand stock for one product."""

    __tablename__ = "inventory"

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_inventory_product"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_non_negative"),
    )

    product_id: Mapped[UUID]
    quantity_on_hand: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    quantity_allocated: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    reorder_point: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    reorder_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    def to_dto(self):
        from orderflow_modules.inventory.models import InventoryRecord

        return InventoryRecord(
            id=self.id,
            product_id=self.product_id,
            quantity_on_hand=self.quantity_on_hand,
            quantity_allocated=self.quantity_allocated,
            reorder_point=self.reorder_point,
            reorder_quantity=self.reorder_quantity,
        )

    def __repr__(self) -> str:
        return f"<InventoryRecordModel product={self.product_id} on_hand={self.quantity_on_hand}>"
