"""
Procurement Module (``orderflow_modules.procurement``).

Purchase orders, their lines, and the receipts recorded against those
lines.  Receiving itself (inventory adjustment and status reconciliation)
lives in ``orderflow_services.receiving_service``.
"""

from orderflow_modules.procurement.models import (
    POStatus,
    PurchaseOrder,
    PurchaseOrderLine,
    Receipt,
)

__all__ = [
    "POStatus",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "Receipt",
]
