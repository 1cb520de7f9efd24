"""
Inventory Module (``orderflow_modules.inventory``).

Per-product on-hand stock.  Only the receiving service mutates it.
"""

from orderflow_modules.inventory.models import InventoryAdjustment, InventoryRecord

__all__ = ["InventoryAdjustment", "InventoryRecord"]
