"""
Storage failures roll the whole operation back.

A store raises ``OperationalError`` from one chosen method; every
service must report PERSISTENCE_FAILED (or raise PersistenceFailureError
for the graph resolver) and leave the database exactly as it was.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from orderflow_kernel.domain.results import ReconciliationStatus
from orderflow_kernel.exceptions import PersistenceFailureError
from orderflow_services import (
    DocumentGraphService,
    DocumentType,
    InvoicingService,
    LineInput,
    LineReconciliationService,
    ReceivingService,
    SqlAlchemyFulfillmentStore,
    StatusService,
)


@pytest.fixture
def failing_store(session, actor_id, monkeypatch):
    """A real store whose method ``fail_on`` raises a driver-level error."""

    def _make(fail_on, error=None):
        store = SqlAlchemyFulfillmentStore(session, actor_id)

        def _fail(*args, **kwargs):
            raise error or OperationalError("simulated", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store, fail_on, _fail)
        return store

    return _make


class TestReceivingRollback:
    def test_inventory_failure_discards_receipt(
        self, session, config, actor_id, clock, failing_store, purchase_order_factory, receipts_for
    ):
        po = purchase_order_factory()
        service = ReceivingService(
            session, config, actor_id, clock=clock, store=failing_store("upsert_inventory")
        )

        result = service.receive_inventory(po.lines[0].id, Decimal("4"))

        assert result.status == ReconciliationStatus.PERSISTENCE_FAILED
        assert isinstance(result.error, PersistenceFailureError)
        assert result.error.operation == "receive_inventory"
        assert receipts_for(po.lines[0].id) == []
        assert po.status == "CONFIRMED"

    def test_status_write_failure_keeps_stock(
        self, session, config, actor_id, clock, failing_store, purchase_order_factory,
        inventory_factory, on_hand,
    ):
        po = purchase_order_factory()
        inventory_factory(po.lines[0].product_id, "2")
        service = ReceivingService(
            session, config, actor_id, clock=clock, store=failing_store("update_order_status")
        )

        result = service.receive_inventory(po.lines[0].id, Decimal("4"))

        assert result.status == ReconciliationStatus.PERSISTENCE_FAILED
        assert on_hand(po.lines[0].product_id) == Decimal("2")

    def test_failure_is_logged(
        self, session, config, actor_id, clock, failing_store, purchase_order_factory, captured_logs
    ):
        po = purchase_order_factory()
        service = ReceivingService(
            session, config, actor_id, clock=clock, store=failing_store("add_receipt")
        )

        service.receive_inventory(po.lines[0].id, Decimal("1"))

        [record] = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert record["level"] == "ERROR"
        assert record["error_type"] == "OperationalError"

    def test_unexpected_errors_propagate(
        self, session, config, actor_id, clock, failing_store, purchase_order_factory, receipts_for
    ):
        po = purchase_order_factory()
        service = ReceivingService(
            session, config, actor_id, clock=clock,
            store=failing_store("upsert_inventory", RuntimeError("boom")),
        )

        with pytest.raises(RuntimeError):
            service.receive_inventory(po.lines[0].id, Decimal("1"))
        assert receipts_for(po.lines[0].id) == []


class TestOtherServices:
    def test_line_save_failure_restores_lines(
        self, session, config, actor_id, failing_store, purchase_order_factory
    ):
        po = purchase_order_factory(lines=[Decimal("1"), Decimal("2")])
        original = [line.id for line in po.lines]
        service = LineReconciliationService(
            session, config, actor_id, store=failing_store("add_line")
        )

        result = service.save_order_lines(
            po.id, [LineInput(description="New", quantity=Decimal("1"), product_id=uuid4())]
        )

        assert result.status == ReconciliationStatus.PERSISTENCE_FAILED
        assert [line.id for line in po.lines] == original

    def test_invoice_failure(
        self, session, config, actor_id, clock, failing_store, sales_order_factory
    ):
        so = sales_order_factory()
        service = InvoicingService(
            session, config, actor_id, clock=clock, store=failing_store("add_invoice")
        )

        result = service.create_invoice_from_sales_order(so.id)

        assert result.status == ReconciliationStatus.PERSISTENCE_FAILED
        assert so.fulfillment_percentage == 0

    def test_status_recompute_failure(
        self, session, actor_id, failing_store, purchase_order_factory
    ):
        po = purchase_order_factory()
        service = StatusService(session, actor_id, store=failing_store("find_receipts_by_order"))

        result = service.recompute_status(po.id)

        assert result.status == ReconciliationStatus.PERSISTENCE_FAILED

    def test_graph_failure_rolls_back_self_heal(
        self, session, config, actor_id, failing_store, sales_order_factory
    ):
        dangling = uuid4()
        so = sales_order_factory(estimate_id=dangling)
        service = DocumentGraphService(
            session, config, actor_id,
            store=failing_store("find_purchase_orders_by_source_order"),
        )

        with pytest.raises(PersistenceFailureError):
            service.resolve_document_graph(so.id, DocumentType.SALES_ORDER)

        assert so.estimate_id == dangling
