"""
Sales Module (``orderflow_modules.sales``).

Estimates, sales orders, and the invoices that consume sales-order lines.
Invoicing and status reconciliation live in ``orderflow_services``.
"""

from orderflow_modules.sales.models import (
    Estimate,
    EstimateStatus,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    LineFulfillmentStatus,
    SalesOrder,
    SalesOrderLine,
    SOStatus,
)

__all__ = [
    "Estimate",
    "EstimateStatus",
    "Invoice",
    "InvoiceLine",
    "InvoiceStatus",
    "LineFulfillmentStatus",
    "SOStatus",
    "SalesOrder",
    "SalesOrderLine",
]
