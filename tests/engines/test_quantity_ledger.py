"""
Tests for the quantity ledger engine.

Covers:
- Remaining quantity clamping
- Line fulfillment state
- Overflow reporting
- Orphaned allocations
- Blank lines
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from orderflow_engines.quantity_ledger import (
    Allocation,
    FulfillmentState,
    LedgerLine,
    compute_ledger,
    find_orphans,
    is_blank_line,
    line_balance,
    line_fulfillment_state,
    remaining_quantity,
    total_fulfilled,
)


class TestRemainingQuantity:
    def test_ordered_minus_fulfilled(self):
        assert remaining_quantity(Decimal("10"), Decimal("4")) == Decimal("6")

    def test_never_negative(self):
        """Over-fulfilled lines report zero remaining, not a negative number."""
        assert remaining_quantity(Decimal("10"), Decimal("12")) == Decimal("0")

    def test_fractional(self):
        assert remaining_quantity(Decimal("2.5"), Decimal("1.25")) == Decimal("1.25")


class TestLineFulfillmentState:
    @pytest.mark.parametrize(
        "ordered,fulfilled,expected",
        [
            ("10", "0", FulfillmentState.PENDING),
            ("10", "4", FulfillmentState.PARTIAL),
            ("10", "10", FulfillmentState.COMPLETE),
            ("10", "11", FulfillmentState.COMPLETE),
            ("0", "0", FulfillmentState.PENDING),
        ],
    )
    def test_state_table(self, ordered, fulfilled, expected):
        assert line_fulfillment_state(Decimal(ordered), Decimal(fulfilled)) == expected


class TestLineBalance:
    def setup_method(self):
        self.line = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("10"))

    def test_sums_only_own_allocations(self):
        allocations = [
            Allocation(line_id=self.line.line_id, quantity=Decimal("3")),
            Allocation(line_id=self.line.line_id, quantity=Decimal("1")),
            Allocation(line_id=uuid4(), quantity=Decimal("50")),
        ]

        assert total_fulfilled(self.line.line_id, allocations) == Decimal("4")
        balance = line_balance(self.line, allocations)
        assert balance.fulfilled == Decimal("4")
        assert balance.remaining == Decimal("6")
        assert balance.state == FulfillmentState.PARTIAL
        assert balance.overflow == Decimal("0")

    def test_overflow_is_split_out(self):
        """Fulfilled is capped at ordered; the excess is reported separately."""
        allocations = [Allocation(line_id=self.line.line_id, quantity=Decimal("13"))]

        balance = line_balance(self.line, allocations)

        assert balance.fulfilled == Decimal("10")
        assert balance.remaining == Decimal("0")
        assert balance.overflow == Decimal("3")
        assert balance.is_complete

    def test_no_allocations(self):
        balance = line_balance(self.line, [])
        assert balance.fulfilled == Decimal("0")
        assert balance.remaining == Decimal("10")
        assert balance.state == FulfillmentState.PENDING


class TestBlankLines:
    def test_no_product_no_description_is_blank(self):
        assert is_blank_line("", None)
        assert is_blank_line("   ", None)
        assert is_blank_line(None, None)

    def test_description_or_product_is_not_blank(self):
        assert not is_blank_line("Freight", None)
        assert not is_blank_line("", uuid4())


class TestComputeLedger:
    def test_totals_across_lines(self):
        a = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("10"))
        b = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("5"))
        snapshot = compute_ledger(
            lines=[a, b],
            allocations=[
                Allocation(line_id=a.line_id, quantity=Decimal("10")),
                Allocation(line_id=b.line_id, quantity=Decimal("2")),
            ],
        )

        assert snapshot.total_ordered == Decimal("15")
        assert snapshot.total_fulfilled == Decimal("12")
        assert snapshot.total_remaining == Decimal("3")
        assert not snapshot.all_lines_complete
        assert snapshot.balance_for(a.line_id).is_complete

    def test_blank_lines_are_not_counted(self):
        real = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("4"))
        blank = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("99"), is_blank=True)

        snapshot = compute_ledger(
            lines=[real, blank],
            allocations=[Allocation(line_id=real.line_id, quantity=Decimal("4"))],
        )

        assert snapshot.total_ordered == Decimal("4")
        assert snapshot.balance_for(blank.line_id) is None
        assert snapshot.all_lines_complete

    def test_orphans_excluded_from_totals(self):
        line = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("10"))
        stray = Allocation(line_id=uuid4(), quantity=Decimal("7"), source_id=uuid4())
        unlinked = Allocation(line_id=None, quantity=Decimal("1"), source_id=uuid4())

        snapshot = compute_ledger(lines=[line], allocations=[stray, unlinked])

        assert snapshot.total_fulfilled == Decimal("0")
        assert snapshot.orphans == (stray, unlinked)
        assert find_orphans([line], [stray]) == (stray,)

    def test_empty_order_is_not_complete(self):
        snapshot = compute_ledger(lines=[], allocations=[])
        assert snapshot.total_ordered == Decimal("0")
        assert not snapshot.all_lines_complete
