"""
orderflow_engines.status_derivation -- Document-level status from line balances.

Responsibility:
    Derive the lifecycle status of a purchase order or sales order from its
    ledger snapshot, and the sales order's fulfillment percentage from its
    invoice totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Deterministic: identical inputs always produce the same decision, so
      the engine is safe to call after every mutation.
    - Idempotent: feeding a decision's status back in as ``current_status``
      yields the same status.
    - Manual statuses (CANCELLED, ON_HOLD) are never changed.

Decision table (first match wins):

    current is CANCELLED / ON_HOLD            -> unchanged
    fulfilled == 0, current is PARTIAL /
        RECEIVED / INVOICED                   -> CONFIRMED
    fulfilled == 0                            -> unchanged
    0 < fulfilled < ordered                   -> PARTIAL
    fulfilled >= ordered > 0, purchase order  -> RECEIVED
    fulfilled >= ordered > 0, sales order     -> INVOICED if every line is
                                                 complete, else PARTIAL
    otherwise                                 -> unchanged
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from orderflow_engines.quantity_ledger import ZERO, LedgerSnapshot
from orderflow_engines.tracer import traced_engine


class DocumentKind(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"


class OrderStatus(str, Enum):
    """Every status value either order type can hold."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    PARTIAL = "PARTIAL"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RECEIVED = "RECEIVED"
    INVOICED = "INVOICED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"


MANUAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.ON_HOLD})

FULFILLMENT_STATUSES = frozenset(
    {OrderStatus.PARTIAL, OrderStatus.RECEIVED, OrderStatus.INVOICED}
)


@dataclass(frozen=True)
class StatusDecision:
    """Output of ``derive_status``."""

    status: OrderStatus
    previous_status: OrderStatus
    total_ordered: Decimal
    total_fulfilled: Decimal

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status


def _completed_status(kind: DocumentKind, snapshot: LedgerSnapshot) -> OrderStatus:
    if kind == DocumentKind.PURCHASE_ORDER:
        return OrderStatus.RECEIVED
    if snapshot.all_lines_complete:
        return OrderStatus.INVOICED
    return OrderStatus.PARTIAL


@traced_engine(
    "status_derivation", "1.0", fingerprint_fields=("kind", "current_status", "snapshot")
)
def derive_status(
    *,
    kind: DocumentKind,
    current_status: OrderStatus,
    snapshot: LedgerSnapshot,
) -> StatusDecision:
    """Apply the decision table to one order's ledger snapshot."""
    ordered = snapshot.total_ordered
    fulfilled = snapshot.total_fulfilled

    if current_status in MANUAL_STATUSES:
        status = current_status
    elif fulfilled == ZERO:
        if current_status in FULFILLMENT_STATUSES:
            status = OrderStatus.CONFIRMED
        else:
            status = current_status
    elif fulfilled < ordered:
        status = OrderStatus.PARTIAL
    elif ordered > ZERO:
        status = _completed_status(kind, snapshot)
    else:
        status = current_status

    return StatusDecision(
        status=status,
        previous_status=current_status,
        total_ordered=ordered,
        total_fulfilled=fulfilled,
    )


def fulfillment_percentage(invoiced_total: Decimal, order_total: Decimal) -> int:
    """
    ``round(100 * invoiced_total / order_total)`` clamped to [0, 100].

    Rounds half up.  Returns 0 when the order total is not positive.
    """
    if order_total <= ZERO:
        return 0
    pct = (Decimal(100) * invoiced_total / order_total).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(min(Decimal(100), max(ZERO, pct)))
