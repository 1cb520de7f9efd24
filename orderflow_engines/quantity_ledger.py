"""
orderflow_engines.quantity_ledger -- Ordered / fulfilled / remaining quantities.

Responsibility:
    Compute, per order line, how much has been fulfilled (received for
    purchase-order lines, invoiced for sales-order lines), how much remains,
    and the line-level fulfillment state.  Every figure is recomputed from
    the source allocations (receipts or invoice lines); stored columns such
    as ``quantity_received`` are materialized copies of these results.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``0 <= remaining <= ordered`` for every line.
    - ``fulfilled`` reported on a balance never exceeds ``ordered``; the
      excess is exposed as ``overflow`` for the caller to report.
    - Allocations that point at no known line are orphans: they are
      excluded from every total and returned separately.
    - Blank lines (no description and no product) are not counted.

Failure modes:
    - None.  A negative remainder is clamped to zero, not raised.

Usage:
    from orderflow_engines.quantity_ledger import Allocation, LedgerLine, compute_ledger

    snapshot = compute_ledger(
        lines=[LedgerLine(line_id=line.id, quantity_ordered=Decimal("10"))],
        allocations=[Allocation(line_id=line.id, quantity=Decimal("4"))],
    )
    snapshot.balance_for(line.id).remaining  # Decimal("6")
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from orderflow_engines.tracer import traced_engine

ZERO = Decimal("0")


class FulfillmentState(str, Enum):
    """Line-level fulfillment state."""

    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"


@dataclass(frozen=True)
class LedgerLine:
    """An order line as seen by the ledger."""

    line_id: UUID
    quantity_ordered: Decimal
    is_blank: bool = False


@dataclass(frozen=True)
class Allocation:
    """
    Quantity consumed from a line by a downstream record.

    ``source_id`` is the receipt id (purchase orders) or the invoice line
    id (sales orders).
    """

    line_id: UUID | None
    quantity: Decimal
    source_id: UUID | None = None


@dataclass(frozen=True)
class LineBalance:
    """Derived quantities for one line."""

    line_id: UUID
    ordered: Decimal
    fulfilled: Decimal
    remaining: Decimal
    state: FulfillmentState
    overflow: Decimal = ZERO

    @property
    def is_complete(self) -> bool:
        return self.state == FulfillmentState.COMPLETE


@dataclass(frozen=True)
class LedgerSnapshot:
    """Balances for every non-blank line of one order, plus orphans."""

    balances: tuple[LineBalance, ...]
    orphans: tuple[Allocation, ...] = ()

    @property
    def total_ordered(self) -> Decimal:
        return sum((b.ordered for b in self.balances), ZERO)

    @property
    def total_fulfilled(self) -> Decimal:
        return sum((b.fulfilled for b in self.balances), ZERO)

    @property
    def total_remaining(self) -> Decimal:
        return sum((b.remaining for b in self.balances), ZERO)

    @property
    def all_lines_complete(self) -> bool:
        return bool(self.balances) and all(
            b.is_complete or b.ordered == ZERO for b in self.balances
        )

    def balance_for(self, line_id: UUID) -> LineBalance | None:
        for balance in self.balances:
            if balance.line_id == line_id:
                return balance
        return None


def is_blank_line(description: str | None, product_id: UUID | None) -> bool:
    """A line with no product and an empty or whitespace-only description."""
    return product_id is None and not (description or "").strip()


def total_fulfilled(line_id: UUID, allocations: Iterable[Allocation]) -> Decimal:
    """Sum of allocation quantities that reference ``line_id``."""
    return sum((a.quantity for a in allocations if a.line_id == line_id), ZERO)


def remaining_quantity(ordered: Decimal, fulfilled: Decimal) -> Decimal:
    """``max(0, ordered - fulfilled)``."""
    return max(ZERO, ordered - fulfilled)


def line_fulfillment_state(ordered: Decimal, fulfilled: Decimal) -> FulfillmentState:
    if fulfilled <= ZERO:
        return FulfillmentState.PENDING
    if ordered > ZERO and fulfilled >= ordered:
        return FulfillmentState.COMPLETE
    return FulfillmentState.PARTIAL


def line_balance(line: LedgerLine, allocations: Iterable[Allocation]) -> LineBalance:
    """Derive the balance of a single line from its allocations."""
    raw = total_fulfilled(line.line_id, allocations)
    ordered = max(ZERO, line.quantity_ordered)
    fulfilled = min(max(ZERO, raw), ordered)
    return LineBalance(
        line_id=line.line_id,
        ordered=ordered,
        fulfilled=fulfilled,
        remaining=remaining_quantity(ordered, fulfilled),
        state=line_fulfillment_state(ordered, fulfilled),
        overflow=max(ZERO, raw - ordered),
    )


def find_orphans(
    lines: Sequence[LedgerLine], allocations: Iterable[Allocation]
) -> tuple[Allocation, ...]:
    """Allocations whose line is not among ``lines``."""
    known = {line.line_id for line in lines}
    return tuple(a for a in allocations if a.line_id not in known)


@traced_engine("quantity_ledger", "1.0", fingerprint_fields=("lines", "allocations"))
def compute_ledger(
    *,
    lines: Sequence[LedgerLine],
    allocations: Sequence[Allocation],
) -> LedgerSnapshot:
    """Balances for every non-blank line; orphaned allocations split out."""
    counted = [line for line in lines if not line.is_blank]
    return LedgerSnapshot(
        balances=tuple(line_balance(line, allocations) for line in counted),
        orphans=find_orphans(lines, allocations),
    )
