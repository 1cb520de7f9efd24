"""
Orderflow Services -- stateful orchestration over engines, modules and storage.

Each service takes a SQLAlchemy session, an ``OrderflowConfig`` (where it
needs one), the acting user's id and optionally a ``Clock`` and a storage
collaborator.  Public methods own their transaction.

- receiving_service: receipt create / edit / delete, inventory, PO status
- status_service: idempotent status recompute for any order
- line_reconciliation_service: saving edited order lines
- document_graph_service: estimate / sales order / PO / invoice linkage
- invoicing_service: invoices raised from sales orders
- storage: the storage collaborator
"""

from orderflow_services.document_graph_service import (
    DocumentGraphService,
    DocumentRef,
    DocumentRelationshipSnapshot,
    DocumentType,
    InvoiceRef,
    ReferenceResolver,
)
from orderflow_services.invoicing_service import (
    InvoiceCreation,
    InvoiceLineRequest,
    InvoicingService,
)
from orderflow_services.line_reconciliation_service import (
    ConflictReason,
    LineInput,
    LineReconciliationService,
    SaveReport,
)
from orderflow_services.receiving_service import (
    PurchaseOrderReceipt,
    ReceiptDeletion,
    ReceiptOutcome,
    ReceiptReference,
    ReceivingService,
)
from orderflow_services.status_service import StatusRecomputation, StatusService
from orderflow_services.storage import FulfillmentStore, SqlAlchemyFulfillmentStore

__all__ = [
    "ConflictReason",
    "DocumentGraphService",
    "DocumentRef",
    "DocumentRelationshipSnapshot",
    "DocumentType",
    "FulfillmentStore",
    "InvoiceCreation",
    "InvoiceLineRequest",
    "InvoiceRef",
    "InvoicingService",
    "LineInput",
    "LineReconciliationService",
    "PurchaseOrderReceipt",
    "ReceiptDeletion",
    "ReceiptOutcome",
    "ReceiptReference",
    "ReceivingService",
    "ReferenceResolver",
    "SaveReport",
    "SqlAlchemyFulfillmentStore",
    "StatusRecomputation",
    "StatusService",
]
