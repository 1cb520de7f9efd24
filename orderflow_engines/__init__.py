"""
Orderflow Engines -- pure calculation layer.

No I/O, no clock, no session.  Services load records, hand them to these
functions, and persist what comes back.

- quantity_ledger: ordered / fulfilled / remaining per line
- status_derivation: document status and fulfillment percentage
- line_pricing: line totals, tax and document totals
"""

from orderflow_engines.line_pricing import (
    DocumentTotals,
    LinePricing,
    document_totals,
    price_line,
)
from orderflow_engines.quantity_ledger import (
    Allocation,
    FulfillmentState,
    LedgerLine,
    LedgerSnapshot,
    LineBalance,
    compute_ledger,
    find_orphans,
    is_blank_line,
    line_balance,
    line_fulfillment_state,
    remaining_quantity,
    total_fulfilled,
)
from orderflow_engines.status_derivation import (
    DocumentKind,
    OrderStatus,
    StatusDecision,
    derive_status,
    fulfillment_percentage,
)

__all__ = [
    "Allocation",
    "DocumentKind",
    "DocumentTotals",
    "FulfillmentState",
    "LedgerLine",
    "LedgerSnapshot",
    "LineBalance",
    "LinePricing",
    "OrderStatus",
    "StatusDecision",
    "compute_ledger",
    "derive_status",
    "document_totals",
    "find_orphans",
    "fulfillment_percentage",
    "is_blank_line",
    "line_balance",
    "line_fulfillment_state",
    "price_line",
    "remaining_quantity",
    "total_fulfilled",
]
