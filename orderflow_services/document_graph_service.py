"""
orderflow_services.document_graph_service -- Document relationship resolver.

Responsibility:
    Given any document (estimate, sales order, purchase order, invoice),
    assemble the linked set {estimate, sales order, purchase orders[],
    invoices[]} by following reference fields, and compute the sales
    order's fulfillment percentage from the linked invoice totals.

Architecture position:
    Services -- read path.  The only writes are reference self-heals:
    clearing an id that points at nothing, and backfilling an id found
    through a legacy number lookup.

Invariants enforced:
    - Upstream references resolve id-first, then by legacy key
      (``ReferenceResolver``).
    - Purchase orders are listed by creation time; invoices by
      ``invoice_sequence`` (position + 1 when unset).
    - Self-heal is idempotent: a second resolve makes no further changes
      and reports no further DANGLING_REFERENCE_CLEARED warnings.

Failure modes:
    - DocumentNotFoundError: the focus document does not exist.
    - PersistenceFailureError: a read or self-heal write failed; the
      self-heal is rolled back.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderflow_config import OrderflowConfig
from orderflow_engines import fulfillment_percentage
from orderflow_kernel.domain.results import IntegrityWarning, WarningCode
from orderflow_kernel.exceptions import DocumentNotFoundError, PersistenceFailureError
from orderflow_kernel.logging_config import LogContext, get_logger
from orderflow_modules.procurement.orm import PurchaseOrderModel
from orderflow_modules.sales.models import InvoiceStatus
from orderflow_modules.sales.orm import EstimateModel, InvoiceModel, SalesOrderModel
from orderflow_services._support import WarningCollector
from orderflow_services.storage import SqlAlchemyFulfillmentStore

logger = get_logger("services.document_graph")

ZERO = Decimal("0")

T = TypeVar("T")


class DocumentType(str, Enum):
    ESTIMATE = "estimate"
    SALES_ORDER = "sales_order"
    PURCHASE_ORDER = "purchase_order"
    INVOICE = "invoice"


@dataclass(frozen=True)
class DocumentRef:
    """Display summary of one linked document."""

    document_type: DocumentType
    id: UUID
    number: str
    status: str
    document_date: date
    total_amount: Decimal


@dataclass(frozen=True)
class InvoiceRef(DocumentRef):
    sequence: int = 1
    is_partial: bool = False
    is_final: bool = False


@dataclass(frozen=True)
class DocumentRelationshipSnapshot:
    """Read-only view of a document and everything linked to it."""

    focus: DocumentRef
    estimate: DocumentRef | None = None
    sales_order: DocumentRef | None = None
    purchase_orders: tuple[DocumentRef, ...] = ()
    invoices: tuple[InvoiceRef, ...] = ()
    invoiced_total: Decimal = ZERO
    fulfillment_percentage: int = 0
    warnings: tuple[IntegrityWarning, ...] = field(default_factory=tuple)

    @property
    def linked_documents(self) -> tuple[DocumentRef, ...]:
        """Every document in the graph except the focus."""
        docs: list[DocumentRef] = []
        if self.estimate is not None:
            docs.append(self.estimate)
        if self.sales_order is not None:
            docs.append(self.sales_order)
        docs.extend(self.purchase_orders)
        docs.extend(self.invoices)
        return tuple(d for d in docs if d.id != self.focus.id)


# ---------------------------------------------------------------------------
# Two-step reference resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReferenceResolution(Generic[T]):
    target: T | None
    via_legacy_key: bool = False
    dangling_id: bool = False


class ReferenceResolver(Generic[T]):
    """
    Resolve a reference by id, falling back to a legacy human-readable key.

    ``dangling_id`` is set when an id was present but matched nothing.
    """

    def __init__(
        self,
        by_id: Callable[[UUID], T | None],
        by_legacy_key: Callable[[str], T | None] | None = None,
    ):
        self._by_id = by_id
        self._by_legacy_key = by_legacy_key

    def resolve(
        self, reference_id: UUID | None, legacy_key: str | None = None
    ) -> ReferenceResolution[T]:
        dangling = False
        if reference_id is not None:
            target = self._by_id(reference_id)
            if target is not None:
                return ReferenceResolution(target)
            dangling = True
        if legacy_key and self._by_legacy_key is not None:
            target = self._by_legacy_key(legacy_key)
            if target is not None:
                return ReferenceResolution(target, via_legacy_key=True, dangling_id=dangling)
        return ReferenceResolution(None, dangling_id=dangling)


# ---------------------------------------------------------------------------
# Resolver service
# ---------------------------------------------------------------------------


class DocumentGraphService:
    """Builds ``DocumentRelationshipSnapshot`` for any document."""

    def __init__(
        self,
        session: Session,
        config: OrderflowConfig,
        actor_id: UUID,
        store: SqlAlchemyFulfillmentStore | None = None,
    ):
        self._session = session
        self._config = config
        self._actor_id = actor_id
        self._store = store or SqlAlchemyFulfillmentStore(session, actor_id)
        self._estimates = ReferenceResolver(
            self._store.get_estimate, self._store.find_estimate_by_number
        )
        self._sales_orders = ReferenceResolver(
            lambda so_id: self._store.get_sales_order(so_id)
        )

    def resolve_document_graph(
        self, document_id: UUID, document_type: DocumentType
    ) -> DocumentRelationshipSnapshot:
        """
        Resolve the relationship snapshot around ``document_id``.

        Commits any self-heal it performed.
        """
        warnings = WarningCollector()
        with LogContext.bind(actor_id=self._actor_id, document_id=document_id):
            try:
                snapshot = self._resolve(document_id, DocumentType(document_type), warnings)
                self._session.commit()
            except DocumentNotFoundError:
                self._session.rollback()
                raise
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error(
                    "transaction_rolled_back",
                    extra={"operation": "resolve_document_graph"},
                    exc_info=True,
                )
                raise PersistenceFailureError("resolve_document_graph", str(exc)) from exc

            logger.info(
                "document_graph_resolved",
                extra={
                    "document_type": snapshot.focus.document_type.value,
                    "purchase_order_count": len(snapshot.purchase_orders),
                    "invoice_count": len(snapshot.invoices),
                    "fulfillment_percentage": snapshot.fulfillment_percentage,
                    "warning_count": len(snapshot.warnings),
                },
            )
            return snapshot

    # =========================================================================
    # Entry points per focus type
    # =========================================================================

    def _resolve(
        self,
        document_id: UUID,
        document_type: DocumentType,
        warnings: WarningCollector,
    ) -> DocumentRelationshipSnapshot:
        if document_type == DocumentType.SALES_ORDER:
            so = self._store.get_sales_order(document_id)
            if so is None:
                raise DocumentNotFoundError(str(document_id), document_type.value)
            return self._build(_sales_order_ref(so), so, None, warnings)

        if document_type == DocumentType.ESTIMATE:
            estimate = self._store.get_estimate(document_id)
            if estimate is None:
                raise DocumentNotFoundError(str(document_id), document_type.value)
            so = self._sales_order_for_estimate(estimate, warnings)
            return self._build(_estimate_ref(estimate), so, estimate, warnings)

        if document_type == DocumentType.PURCHASE_ORDER:
            po = self._store.get_purchase_order(document_id)
            if po is None:
                raise DocumentNotFoundError(str(document_id), document_type.value)
            so = self._follow_sales_order_ref(po, "source_sales_order_id", warnings)
            snapshot = self._build(_purchase_order_ref(po), so, None, warnings)
            if so is None:
                snapshot = _with(snapshot, purchase_orders=(_purchase_order_ref(po),))
            return snapshot

        invoice = self._store.get_invoice(document_id)
        if invoice is None:
            raise DocumentNotFoundError(str(document_id), document_type.value)
        so = self._follow_sales_order_ref(invoice, "sales_order_id", warnings)
        snapshot = self._build(_invoice_ref(invoice, 1), so, None, warnings)
        if so is None:
            return _with(snapshot, invoices=(_invoice_ref(invoice, 1),))
        listed = next((ref for ref in snapshot.invoices if ref.id == invoice.id), None)
        if listed is not None:
            snapshot = _with(snapshot, focus=listed)
        return snapshot

    # =========================================================================
    # Graph assembly around the sales order
    # =========================================================================

    def _build(
        self,
        focus: DocumentRef,
        so: SalesOrderModel | None,
        estimate: EstimateModel | None,
        warnings: WarningCollector,
    ) -> DocumentRelationshipSnapshot:
        if so is None:
            return DocumentRelationshipSnapshot(
                focus=focus,
                estimate=_estimate_ref(estimate) if estimate is not None else None,
                warnings=warnings.warnings,
            )

        if estimate is None:
            estimate = self._estimate_for_sales_order(so, warnings)

        purchase_orders = tuple(
            _purchase_order_ref(po)
            for po in self._store.find_purchase_orders_by_source_order(so.id)
        )
        invoice_models = self._store.find_invoices_by_order(so.id)
        invoices = tuple(
            _invoice_ref(inv, position)
            for position, inv in enumerate(invoice_models, start=1)
        )
        invoiced_total = sum(
            (
                inv.total_amount
                for inv in invoice_models
                if inv.status != InvoiceStatus.VOID.value
            ),
            ZERO,
        )

        return DocumentRelationshipSnapshot(
            focus=focus,
            estimate=_estimate_ref(estimate) if estimate is not None else None,
            sales_order=_sales_order_ref(so),
            purchase_orders=purchase_orders,
            invoices=invoices,
            invoiced_total=invoiced_total,
            fulfillment_percentage=fulfillment_percentage(invoiced_total, so.total_amount),
            warnings=warnings.warnings,
        )

    def _estimate_for_sales_order(
        self, so: SalesOrderModel, warnings: WarningCollector
    ) -> EstimateModel | None:
        resolution = self._estimates.resolve(so.estimate_id, so.estimate_number)

        if resolution.target is not None and resolution.via_legacy_key:
            if self._config.document_graph.backfill_legacy_references:
                self._store.set_reference(so, "estimate_id", resolution.target.id)
                warnings.add(
                    WarningCode.LEGACY_REFERENCE_BACKFILLED,
                    f"Sales order {so.so_number} linked to estimate "
                    f"{resolution.target.estimate_number} by number; id backfilled",
                    so.id,
                )
                return resolution.target

        if resolution.dangling_id:
            self._store.clear_reference(so, "estimate_id")
            warnings.add(
                WarningCode.DANGLING_REFERENCE_CLEARED,
                f"Sales order {so.so_number} referenced a missing estimate; cleared",
                so.id,
            )

        if resolution.target is None and so.estimate_number:
            warnings.add(
                WarningCode.LEGACY_REFERENCE_UNRESOLVED,
                f"Sales order {so.so_number} names estimate {so.estimate_number}, "
                f"which does not exist",
                so.id,
            )
        return resolution.target

    def _sales_order_for_estimate(
        self, estimate: EstimateModel, warnings: WarningCollector
    ) -> SalesOrderModel | None:
        resolution = self._sales_orders.resolve(estimate.converted_to_sales_order_id)
        if resolution.target is not None:
            return resolution.target

        if resolution.dangling_id:
            self._store.clear_reference(estimate, "converted_to_sales_order_id")
            warnings.add(
                WarningCode.DANGLING_REFERENCE_CLEARED,
                f"Estimate {estimate.estimate_number} referenced a missing sales order; cleared",
                estimate.id,
            )

        so = self._store.find_sales_order_by_estimate(estimate.id)
        if so is not None:
            return so

        so = self._store.find_sales_order_by_estimate_number(estimate.estimate_number)
        if so is not None and self._config.document_graph.backfill_legacy_references:
            self._store.set_reference(so, "estimate_id", estimate.id)
            warnings.add(
                WarningCode.LEGACY_REFERENCE_BACKFILLED,
                f"Sales order {so.so_number} linked to estimate "
                f"{estimate.estimate_number} by number; id backfilled",
                so.id,
            )
        return so

    def _follow_sales_order_ref(
        self,
        document: PurchaseOrderModel | InvoiceModel,
        field_name: str,
        warnings: WarningCollector,
    ) -> SalesOrderModel | None:
        resolution = self._sales_orders.resolve(getattr(document, field_name))
        if resolution.dangling_id:
            self._store.clear_reference(document, field_name)
            warnings.add(
                WarningCode.DANGLING_REFERENCE_CLEARED,
                f"{type(document).__name__} {document.id} referenced a missing "
                f"sales order; cleared",
                document.id,
            )
        return resolution.target


# ---------------------------------------------------------------------------
# Snapshot entries
# ---------------------------------------------------------------------------


def _with(snapshot: DocumentRelationshipSnapshot, **changes) -> DocumentRelationshipSnapshot:
    return replace(snapshot, **changes)


def _estimate_ref(estimate: EstimateModel) -> DocumentRef:
    return DocumentRef(
        document_type=DocumentType.ESTIMATE,
        id=estimate.id,
        number=estimate.estimate_number,
        status=estimate.status,
        document_date=estimate.estimate_date,
        total_amount=estimate.total_amount,
    )


def _sales_order_ref(so: SalesOrderModel) -> DocumentRef:
    return DocumentRef(
        document_type=DocumentType.SALES_ORDER,
        id=so.id,
        number=so.so_number,
        status=so.status,
        document_date=so.order_date,
        total_amount=so.total_amount,
    )


def _purchase_order_ref(po: PurchaseOrderModel) -> DocumentRef:
    return DocumentRef(
        document_type=DocumentType.PURCHASE_ORDER,
        id=po.id,
        number=po.po_number,
        status=po.status,
        document_date=po.order_date,
        total_amount=po.total_amount,
    )


def _invoice_ref(invoice: InvoiceModel, position: int) -> InvoiceRef:
    return InvoiceRef(
        document_type=DocumentType.INVOICE,
        id=invoice.id,
        number=invoice.invoice_number,
        status=invoice.status,
        document_date=invoice.invoice_date,
        total_amount=invoice.total_amount,
        sequence=invoice.invoice_sequence or position,
        is_partial=invoice.is_partial_invoice,
        is_final=invoice.is_final_invoice,
    )
