"""
Pytest fixtures for the orderflow test suite.

Provides:
- An in-memory SQLite database per test (StaticPool, foreign keys on)
- Sessions, a deterministic clock, the acting user id and configuration
- Factories for estimates, sales orders, purchase orders and invoices
- Structured log capture
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from orderflow_config import OrderflowConfig, OverReceiptPolicy, ReceivingConfig, TaxConfig
from orderflow_kernel.db.engine import build_engine, create_tables
from orderflow_kernel.domain.clock import DeterministicClock
from orderflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from orderflow_modules.inventory.orm import InventoryRecordModel
from orderflow_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    ReceiptModel,
)
from orderflow_modules.sales.orm import (
    EstimateModel,
    InvoiceLineModel,
    InvoiceModel,
    SalesOrderLineModel,
    SalesOrderModel,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture orderflow logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, receiving):
            receiving.receive_inventory(...)
            logs = captured_logs()
            assert any(r["message"] == "receipt_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("orderflow")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """A fresh in-memory database with every table created."""
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def config():
    return OrderflowConfig()


@pytest.fixture
def reject_config():
    return OrderflowConfig(
        receiving=ReceivingConfig(over_receipt_policy=OverReceiptPolicy.REJECT)
    )


@pytest.fixture
def taxed_config():
    return OrderflowConfig(tax=TaxConfig(default_rate=Decimal("8.25")))


# =============================================================================
# Factories
# =============================================================================


def _line_spec(spec) -> dict:
    if isinstance(spec, dict):
        return dict(spec)
    return {"quantity": Decimal(spec)}


@pytest.fixture
def purchase_order_factory(session, clock):
    """
    Create and commit a purchase order.

    ``lines`` is a list of quantities or dicts with quantity / unit_price /
    product_id / description.  Each line gets its own product unless one is
    given.  Successive orders are created one second apart.
    """
    counter = iter(range(1, 10_000))

    def _create(
        lines=(Decimal("10"),),
        status="CONFIRMED",
        source_sales_order_id=None,
        po_number=None,
    ) -> PurchaseOrderModel:
        n = next(counter)
        clock.advance(1)
        po = PurchaseOrderModel(
            po_number=po_number or f"PO-{n:04d}",
            vendor_id=uuid4(),
            order_date=date(2024, 1, 1),
            status=status,
            source_sales_order_id=source_sales_order_id,
            created_at=clock.now(),
            created_by_id=TEST_ACTOR_ID,
        )
        total = Decimal("0")
        for number, raw in enumerate(lines, start=1):
            spec = _line_spec(raw)
            quantity = Decimal(spec["quantity"])
            unit_price = Decimal(spec.get("unit_price", "1"))
            po.lines.append(
                PurchaseOrderLineModel(
                    line_number=number,
                    product_id=spec.get("product_id", uuid4()),
                    description=spec.get("description", f"Item {number}"),
                    quantity_ordered=quantity,
                    unit_price=unit_price,
                    line_total=quantity * unit_price,
                    created_by_id=TEST_ACTOR_ID,
                )
            )
            total += quantity * unit_price
        po.subtotal = total
        po.total_amount = total
        session.add(po)
        session.commit()
        return po

    return _create


@pytest.fixture
def sales_order_factory(session, clock):
    """
    Create and commit a sales order.

    ``total_amount`` defaults to the sum of the line totals.
    """
    counter = iter(range(1, 10_000))

    def _create(
        lines=({"quantity": "10", "unit_price": "100"},),
        status="CONFIRMED",
        total_amount=None,
        estimate_id=None,
        estimate_number=None,
        so_number=None,
    ) -> SalesOrderModel:
        n = next(counter)
        clock.advance(1)
        so = SalesOrderModel(
            so_number=so_number or f"SO-{n:04d}",
            customer_id=uuid4(),
            order_date=date(2024, 1, 1),
            status=status,
            estimate_id=estimate_id,
            estimate_number=estimate_number,
            created_at=clock.now(),
            created_by_id=TEST_ACTOR_ID,
        )
        subtotal = Decimal("0")
        for number, raw in enumerate(lines, start=1):
            spec = _line_spec(raw)
            quantity = Decimal(spec["quantity"])
            unit_price = Decimal(spec.get("unit_price", "1"))
            so.lines.append(
                SalesOrderLineModel(
                    line_number=number,
                    product_id=spec.get("product_id", uuid4()),
                    description=spec.get("description", f"Item {number}"),
                    quantity_ordered=quantity,
                    unit_price=unit_price,
                    line_total=quantity * unit_price,
                    quantity_remaining=quantity,
                    created_by_id=TEST_ACTOR_ID,
                )
            )
            subtotal += quantity * unit_price
        so.subtotal = subtotal
        so.total_amount = subtotal if total_amount is None else Decimal(total_amount)
        session.add(so)
        session.commit()
        return so

    return _create


@pytest.fixture
def estimate_factory(session):
    counter = iter(range(1, 10_000))

    def _create(estimate_number=None, converted_to_sales_order_id=None) -> EstimateModel:
        n = next(counter)
        estimate = EstimateModel(
            estimate_number=estimate_number or f"EST-{n:04d}",
            customer_id=uuid4(),
            estimate_date=date(2023, 12, 1),
            total_amount=Decimal("1000"),
            status="ACCEPTED",
            converted_to_sales_order_id=converted_to_sales_order_id,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(estimate)
        session.commit()
        return estimate

    return _create


@pytest.fixture
def invoice_factory(session):
    """
    Insert an invoice directly (bypassing the invoicing service).

    ``lines`` is a list of ``(sales_order_line, quantity)`` pairs.
    """
    counter = iter(range(1, 10_000))

    def _create(
        sales_order=None,
        total_amount="0",
        lines=(),
        sequence=None,
        status="DRAFT",
        invoice_number=None,
        sales_order_id=None,
    ) -> InvoiceModel:
        n = next(counter)
        invoice = InvoiceModel(
            invoice_number=invoice_number or f"INV-{n:04d}",
            customer_id=sales_order.customer_id if sales_order is not None else uuid4(),
            sales_order_id=sales_order.id if sales_order is not None else sales_order_id,
            invoice_date=date(2024, 2, n % 28 + 1),
            subtotal=Decimal(total_amount),
            total_amount=Decimal(total_amount),
            status=status,
            invoice_sequence=sequence,
            created_by_id=TEST_ACTOR_ID,
        )
        for number, (so_line, quantity) in enumerate(lines, start=1):
            invoice.lines.append(
                InvoiceLineModel(
                    line_number=number,
                    sales_order_line_id=so_line.id,
                    product_id=so_line.product_id,
                    description=so_line.description,
                    quantity=Decimal(quantity),
                    unit_price=so_line.unit_price,
                    line_total=Decimal(quantity) * so_line.unit_price,
                    created_by_id=TEST_ACTOR_ID,
                )
            )
        session.add(invoice)
        session.commit()
        return invoice

    return _create


@pytest.fixture
def inventory_factory(session):
    def _create(product_id, quantity_on_hand) -> InventoryRecordModel:
        record = InventoryRecordModel(
            product_id=product_id,
            quantity_on_hand=Decimal(quantity_on_hand),
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(record)
        session.commit()
        return record

    return _create


@pytest.fixture
def on_hand(session):
    """Read a product's current on-hand quantity (None when no record)."""
    from sqlalchemy import select

    def _read(product_id):
        session.expire_all()
        record = session.execute(
            select(InventoryRecordModel).where(InventoryRecordModel.product_id == product_id)
        ).scalar_one_or_none()
        return None if record is None else record.quantity_on_hand

    return _read


@pytest.fixture
def receipts_for(session):
    from sqlalchemy import select

    def _read(line_id) -> list[ReceiptModel]:
        return list(
            session.execute(
                select(ReceiptModel).where(ReceiptModel.po_line_id == line_id)
            ).scalars()
        )

    return _read
