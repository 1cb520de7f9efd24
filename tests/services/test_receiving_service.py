"""
Tests for ReceivingService.

Covers:
- Partial / full receipt and the purchase-order status that follows
- Receipt deletion walking status and stock back
- Over-receipt under the clamp and reject policies
- Receipt edits
- Inventory record creation and clamping at zero
- Validation failures leave nothing behind
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import delete, update

from orderflow_engines import OrderStatus
from orderflow_kernel.domain.results import ReconciliationStatus, WarningCode
from orderflow_kernel.exceptions import (
    InvalidQuantityError,
    LineFullyReceivedError,
    MissingReferenceError,
    OrderLineNotFoundError,
    OrderNotReceivableError,
    QuantityExceedsRemainingError,
    ReceiptNotFoundError,
)
from orderflow_modules.inventory.orm import InventoryRecordModel
from orderflow_services.receiving_service import ReceiptReference, ReceivingService


@pytest.fixture
def receiving(session, config, actor_id, clock):
    return ReceivingService(session, config, actor_id=actor_id, clock=clock)


@pytest.fixture
def rejecting(session, reject_config, actor_id, clock):
    return ReceivingService(session, reject_config, actor_id=actor_id, clock=clock)


@pytest.fixture
def stocked_po(purchase_order_factory, inventory_factory):
    """A confirmed PO with one 10-unit line whose product has a zero stock record."""
    po = purchase_order_factory(lines=[Decimal("10")])
    inventory_factory(po.lines[0].product_id, "0")
    return po


def _codes(result):
    return [w.code for w in result.warnings]


class TestReceiveInventory:
    """Receive, receive again, delete: status and stock follow."""

    def test_partial_then_full_then_delete(self, receiving, stocked_po, on_hand):
        line = stocked_po.lines[0]

        first = receiving.receive_inventory(line.id, Decimal("4"))
        assert first.is_success
        assert first.value.order_status.status == OrderStatus.PARTIAL
        assert line.quantity_received == Decimal("4")
        assert on_hand(line.product_id) == Decimal("4")
        assert first.warnings == ()

        second = receiving.receive_inventory(line.id, Decimal("6"))
        assert second.is_success
        assert second.value.order_status.status == OrderStatus.RECEIVED
        assert stocked_po.status == OrderStatus.RECEIVED.value
        assert on_hand(line.product_id) == Decimal("10")

        deletion = receiving.delete_receipt(second.value.receipt.id)
        assert deletion.is_success
        assert deletion.value.quantity_removed == Decimal("6")
        assert deletion.value.order_status.status == OrderStatus.PARTIAL
        assert line.quantity_received == Decimal("4")
        assert on_hand(line.product_id) == Decimal("4")

    def test_deleting_every_receipt_returns_to_confirmed(self, receiving, stocked_po):
        line = stocked_po.lines[0]
        receipt = receiving.receive_inventory(line.id, Decimal("4")).unwrap().receipt

        result = receiving.delete_receipt(receipt.id)

        assert result.value.order_status.status == OrderStatus.CONFIRMED
        assert stocked_po.status == OrderStatus.CONFIRMED.value

    def test_reference_details_are_recorded(self, receiving, stocked_po, receipts_for, actor_id):
        line = stocked_po.lines[0]
        receiver = uuid4()

        receiving.receive_inventory(
            line.id,
            Decimal("2"),
            ReceiptReference(reference_number="PACK-77", notes="dock 3", received_by=receiver),
        )

        [receipt] = receipts_for(line.id)
        assert receipt.reference_number == "PACK-77"
        assert receipt.notes == "dock 3"
        assert receipt.received_by == receiver
        assert receipt.product_id == line.product_id
        assert receipt.created_by_id == actor_id

    def test_receive_date_defaults_to_clock(self, receiving, stocked_po, clock):
        result = receiving.receive_inventory(stocked_po.lines[0].id, Decimal("1"))
        assert result.value.receipt.receive_date == clock.today()

    def test_receipt_is_logged(self, receiving, stocked_po, captured_logs, actor_id):
        receiving.receive_inventory(stocked_po.lines[0].id, Decimal("4"))

        records = [r for r in captured_logs() if r["message"] == "receipt_created"]
        assert len(records) == 1
        assert records[0]["quantity_received"] == "4"
        assert records[0]["actor_id"] == str(actor_id)


class TestOverReceipt:
    def test_clamp_policy_receives_remaining(self, receiving, stocked_po, on_hand):
        line = stocked_po.lines[0]

        result = receiving.receive_inventory(line.id, Decimal("15"))

        assert result.is_success
        assert result.value.receipt.quantity_received == Decimal("10")
        assert result.value.was_clamped
        assert WarningCode.RECEIPT_QUANTITY_CLAMPED in _codes(result)
        assert result.value.order_status.status == OrderStatus.RECEIVED
        assert on_hand(line.product_id) == Decimal("10")

    def test_reject_policy_writes_nothing(self, rejecting, stocked_po, on_hand, receipts_for):
        line = stocked_po.lines[0]

        result = rejecting.receive_inventory(line.id, Decimal("15"))

        assert result.status == ReconciliationStatus.VALIDATION_FAILED
        assert isinstance(result.error, QuantityExceedsRemainingError)
        assert result.error.remaining == Decimal("10")
        assert receipts_for(line.id) == []
        assert on_hand(line.product_id) == Decimal("0")
        assert stocked_po.status == OrderStatus.CONFIRMED.value

    def test_fully_received_line(self, receiving, purchase_order_factory):
        po = purchase_order_factory(lines=[Decimal("10"), Decimal("5")])
        line = po.lines[0]
        receiving.receive_inventory(line.id, Decimal("10"))

        result = receiving.receive_inventory(line.id, Decimal("1"))

        assert not result.is_success
        assert isinstance(result.error, LineFullyReceivedError)
        with pytest.raises(LineFullyReceivedError):
            result.unwrap()


class TestValidation:
    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_non_positive_quantity(self, receiving, stocked_po, receipts_for, quantity):
        line = stocked_po.lines[0]

        result = receiving.receive_inventory(line.id, Decimal(quantity))

        assert isinstance(result.error, InvalidQuantityError)
        assert result.error.code == "INVALID_QUANTITY"
        assert receipts_for(line.id) == []

    @pytest.mark.parametrize("status", ["CANCELLED", "ON_HOLD"])
    def test_held_order_is_not_receivable(self, receiving, purchase_order_factory, status):
        po = purchase_order_factory(status=status)

        result = receiving.receive_inventory(po.lines[0].id, Decimal("1"))

        assert isinstance(result.error, OrderNotReceivableError)
        assert po.status == status

    @pytest.mark.parametrize("status", ["PENDING", "RECEIVED"])
    def test_only_confirmed_or_partial_orders_take_receipts(
        self, receiving, purchase_order_factory, receipts_for, status
    ):
        po = purchase_order_factory(status=status)

        result = receiving.receive_inventory(po.lines[0].id, Decimal("4"))

        assert isinstance(result.error, OrderNotReceivableError)
        assert result.error.status == status
        assert receipts_for(po.lines[0].id) == []
        assert po.status == status

    def test_unconfirmed_order_is_not_received_in_bulk(self, receiving, purchase_order_factory):
        po = purchase_order_factory(status="PENDING")

        result = receiving.receive_purchase_order(po.id)

        assert isinstance(result.error, OrderNotReceivableError)
        assert po.lines[0].quantity_received == Decimal("0")
        assert po.status == "PENDING"

    def test_receipts_of_a_pending_order_cannot_be_edited(
        self, receiving, session, stocked_po, on_hand
    ):
        line = stocked_po.lines[0]
        receipt = receiving.receive_inventory(line.id, Decimal("4")).unwrap().receipt
        stocked_po.status = "PENDING"
        session.commit()

        result = receiving.edit_receipt(receipt.id, Decimal("6"))

        assert isinstance(result.error, OrderNotReceivableError)
        assert on_hand(line.product_id) == Decimal("4")
        assert stocked_po.status == "PENDING"

    def test_line_without_product(self, receiving, purchase_order_factory):
        po = purchase_order_factory(
            lines=[{"quantity": "1", "product_id": None, "description": "Freight"}]
        )

        result = receiving.receive_inventory(po.lines[0].id, Decimal("1"))

        assert isinstance(result.error, MissingReferenceError)

    def test_unknown_line(self, receiving):
        result = receiving.receive_inventory(uuid4(), Decimal("1"))
        assert isinstance(result.error, OrderLineNotFoundError)

    def test_unknown_receipt(self, receiving):
        assert isinstance(receiving.delete_receipt(uuid4()).error, ReceiptNotFoundError)
        assert isinstance(
            receiving.edit_receipt(uuid4(), Decimal("1")).error, ReceiptNotFoundError
        )

    def test_rejection_is_logged(self, receiving, stocked_po, captured_logs):
        receiving.receive_inventory(stocked_po.lines[0].id, Decimal("0"))

        rejected = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert rejected[0]["error_code"] == "INVALID_QUANTITY"
        assert rejected[0]["operation"] == "receive_inventory"


class TestEditReceipt:
    def test_increase_moves_stock_by_difference(self, receiving, stocked_po, on_hand):
        line = stocked_po.lines[0]
        receipt = receiving.receive_inventory(line.id, Decimal("4")).unwrap().receipt

        result = receiving.edit_receipt(receipt.id, Decimal("7"))

        assert result.is_success
        assert result.value.receipt.quantity_received == Decimal("7")
        assert result.value.inventory.delta == Decimal("3")
        assert line.quantity_received == Decimal("7")
        assert on_hand(line.product_id) == Decimal("7")

    def test_decrease(self, receiving, stocked_po, on_hand):
        line = stocked_po.lines[0]
        receipt = receiving.receive_inventory(line.id, Decimal("10")).unwrap().receipt

        result = receiving.edit_receipt(receipt.id, Decimal("2"))

        assert result.value.order_status.status == OrderStatus.PARTIAL
        assert on_hand(line.product_id) == Decimal("2")

    def test_edit_is_limited_by_other_receipts(self, receiving, stocked_po):
        line = stocked_po.lines[0]
        first = receiving.receive_inventory(line.id, Decimal("2")).unwrap().receipt
        receiving.receive_inventory(line.id, Decimal("7"))

        result = receiving.edit_receipt(first.id, Decimal("5"))

        assert result.value.receipt.quantity_received == Decimal("3")
        assert WarningCode.RECEIPT_QUANTITY_CLAMPED in _codes(result)
        assert result.value.order_status.status == OrderStatus.RECEIVED

    def test_edit_rejected_under_reject_policy(self, rejecting, stocked_po, on_hand):
        line = stocked_po.lines[0]
        receipt = rejecting.receive_inventory(line.id, Decimal("4")).unwrap().receipt

        result = rejecting.edit_receipt(receipt.id, Decimal("11"))

        assert isinstance(result.error, QuantityExceedsRemainingError)
        assert on_hand(line.product_id) == Decimal("4")

    def test_zero_is_not_an_edit(self, receiving, stocked_po):
        receipt = receiving.receive_inventory(stocked_po.lines[0].id, Decimal("4")).unwrap().receipt
        assert isinstance(receiving.edit_receipt(receipt.id, Decimal("0")).error, InvalidQuantityError)


class TestInventoryAdjustment:
    def test_missing_record_is_created(self, receiving, purchase_order_factory, on_hand):
        po = purchase_order_factory(lines=[Decimal("10")])
        line = po.lines[0]

        result = receiving.receive_inventory(line.id, Decimal("4"))

        assert result.is_success
        assert result.value.inventory.record_created
        assert WarningCode.INVENTORY_RECORD_MISSING in _codes(result)
        assert on_hand(line.product_id) == Decimal("4")

    def test_stock_clamps_at_zero_on_delete(self, receiving, session, stocked_po, on_hand):
        line = stocked_po.lines[0]
        receipt = receiving.receive_inventory(line.id, Decimal("4")).unwrap().receipt
        # Three units shipped out since the receipt.
        session.execute(
            update(InventoryRecordModel)
            .where(InventoryRecordModel.product_id == line.product_id)
            .values(quantity_on_hand=Decimal("1"))
        )
        session.commit()

        result = receiving.delete_receipt(receipt.id)

        assert result.is_success
        assert result.value.inventory.clamped
        assert WarningCode.INVENTORY_CLAMPED_AT_ZERO in _codes(result)
        assert on_hand(line.product_id) == Decimal("0")

    def test_delete_without_record_skips_stock(self, receiving, session, stocked_po, on_hand):
        line = stocked_po.lines[0]
        receipt = receiving.receive_inventory(line.id, Decimal("4")).unwrap().receipt
        session.execute(
            delete(InventoryRecordModel).where(
                InventoryRecordModel.product_id == line.product_id
            )
        )
        session.commit()

        result = receiving.delete_receipt(receipt.id)

        assert result.is_success
        assert result.value.inventory is None
        assert WarningCode.INVENTORY_RECORD_MISSING in _codes(result)
        assert on_hand(line.product_id) is None
        assert result.value.order_status.status == OrderStatus.CONFIRMED

    def test_same_product_on_two_lines_accumulates(
        self, receiving, purchase_order_factory, inventory_factory, on_hand
    ):
        product = uuid4()
        inventory_factory(product, "5")
        po = purchase_order_factory(
            lines=[{"quantity": "3", "product_id": product}, {"quantity": "2", "product_id": product}]
        )

        result = receiving.receive_purchase_order(po.id)

        assert result.is_success
        assert len(result.value.receipts) == 2
        assert on_hand(product) == Decimal("10")


class TestReceivePurchaseOrder:
    def test_receive_everything_open(self, receiving, purchase_order_factory):
        po = purchase_order_factory(lines=[Decimal("10"), Decimal("5")])
        receiving.receive_inventory(po.lines[0].id, Decimal("4"))

        result = receiving.receive_purchase_order(po.id)

        assert result.is_success
        assert [r.quantity_received for r in result.value.receipts] == [
            Decimal("6"),
            Decimal("5"),
        ]
        assert result.value.order_status.status == OrderStatus.RECEIVED

    def test_explicit_quantities(self, receiving, purchase_order_factory):
        po = purchase_order_factory(lines=[Decimal("10"), Decimal("5")])

        result = receiving.receive_purchase_order(
            po.id, {po.lines[1].id: Decimal("5")}
        )

        assert result.value.order_status.status == OrderStatus.PARTIAL
        assert po.lines[0].quantity_received == Decimal("0")
        assert po.lines[1].quantity_received == Decimal("5")

    def test_failure_rolls_back_earlier_lines(
        self, rejecting, purchase_order_factory, receipts_for
    ):
        po = purchase_order_factory(lines=[Decimal("10"), Decimal("5")])

        result = rejecting.receive_purchase_order(
            po.id, {po.lines[0].id: Decimal("4"), po.lines[1].id: Decimal("9")}
        )

        assert isinstance(result.error, QuantityExceedsRemainingError)
        assert receipts_for(po.lines[0].id) == []

    def test_line_of_another_order(self, receiving, purchase_order_factory):
        po = purchase_order_factory()
        other = purchase_order_factory()

        result = receiving.receive_purchase_order(po.id, {other.lines[0].id: Decimal("1")})

        assert isinstance(result.error, OrderLineNotFoundError)


class TestRecomputeStatus:
    def test_repairs_drifted_status(self, receiving, session, stocked_po):
        line = stocked_po.lines[0]
        receiving.receive_inventory(line.id, Decimal("10"))
        stocked_po.status = OrderStatus.CONFIRMED.value
        line.quantity_received = Decimal("0")
        session.commit()

        result = receiving.recompute_status(stocked_po.id)

        assert result.value.status == OrderStatus.RECEIVED
        assert result.value.changed
        assert line.quantity_received == Decimal("10")
