"""
Typed Exception Hierarchy for the Orderflow Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ReconciliationError:

    ReconciliationError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- QuantityExceedsRemainingError
    |   +-- LineFullyReceivedError
    |   +-- OrderNotReceivableError
    |   +-- LineReorderError
    |   +-- MissingReferenceError
    |       +-- OrderNotFoundError
    |       +-- OrderLineNotFoundError
    |       +-- ReceiptNotFoundError
    |       +-- DocumentNotFoundError
    |
    +-- PersistenceFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_QUANTITY            | Quantity <= 0 (or < 0 on a saved line)
                | QUANTITY_EXCEEDS_REMAINING  | Over-receipt/over-invoice with "reject" policy
                | LINE_FULLY_RECEIVED         | Nothing left to receive on the line
                | ORDER_NOT_RECEIVABLE        | Order is not CONFIRMED / PARTIAL (RECEIVED allows edits)
                | LINE_REORDER_FORBIDDEN      | Referenced lines moved to a new position
                | MISSING_REFERENCE           | Required reference (product, customer) absent
                | ORDER_NOT_FOUND             | Order id doesn't exist
                | ORDER_LINE_NOT_FOUND        | Order line id doesn't exist
                | RECEIPT_NOT_FOUND           | Receipt id doesn't exist
                | DOCUMENT_NOT_FOUND          | Graph focus document doesn't exist
----------------|-----------------------------|-----------------------------------------
Persistence     | PERSISTENCE_FAILURE         | Storage rejected a read or write

Validation errors are raised before any write occurs.  Integrity warnings
and referential conflicts are NOT exceptions -- see
``orderflow_kernel.domain.results``.

===============================================================================
HANDLING PATTERNS
===============================================================================

    result = receiving.receive_inventory(line_id, Decimal("4"))
    if not result.is_success:
        if isinstance(result.error, QuantityExceedsRemainingError):
            notify_user(f"Only {result.error.remaining} left on the line")
        elif isinstance(result.error, PersistenceFailureError):
            notify_user("Could not save, please retry")   # detail is in the logs
"""

from decimal import Decimal


class ReconciliationError(Exception):
    """
    Base exception for all orderflow errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "RECONCILIATION_ERROR"


# Validation exceptions


class ValidationError(ReconciliationError):
    """Input rejected before any write occurred."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is zero or negative where a positive quantity is required."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Decimal, reason: str = "must be greater than zero"):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class QuantityExceedsRemainingError(ValidationError):
    """Requested quantity is larger than what is left on the line."""

    code: str = "QUANTITY_EXCEEDS_REMAINING"

    def __init__(self, line_id: str, quantity: Decimal, remaining: Decimal):
        self.line_id = line_id
        self.quantity = quantity
        self.remaining = remaining
        super().__init__(
            f"Quantity {quantity} exceeds remaining {remaining} on line {line_id}"
        )


class LineFullyReceivedError(ValidationError):
    """The purchase-order line has no remaining quantity to receive."""

    code: str = "LINE_FULLY_RECEIVED"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Line {line_id} is already fully received")


class OrderNotReceivableError(ValidationError):
    """The order is not in a status that accepts receipts."""

    code: str = "ORDER_NOT_RECEIVABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} cannot be received while {status}")


class LineReorderError(ValidationError):
    """
    Lines referenced by downstream documents were moved.

    Positional reconciliation would reassign consumed quantities to the
    wrong line, so the save is refused.
    """

    code: str = "LINE_REORDER_FORBIDDEN"

    def __init__(self, order_id: str, line_id: str, from_position: int, to_position: int):
        self.order_id = order_id
        self.line_id = line_id
        self.from_position = from_position
        self.to_position = to_position
        super().__init__(
            f"Line {line_id} of order {order_id} is referenced downstream and "
            f"cannot move from position {from_position} to {to_position}"
        )


class MissingReferenceError(ValidationError):
    """A required reference is absent."""

    code: str = "MISSING_REFERENCE"

    def __init__(
        self,
        entity: str,
        field_name: str,
        entity_id: str | None = None,
        message: str | None = None,
    ):
        self.entity = entity
        self.field_name = field_name
        self.entity_id = entity_id
        super().__init__(
            message or f"{entity} {entity_id} is missing required reference {field_name}"
        )


class OrderNotFoundError(MissingReferenceError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("order", "id", order_id, f"Order not found: {order_id}")


class OrderLineNotFoundError(MissingReferenceError):
    """Order line with given ID was not found."""

    code: str = "ORDER_LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__("order_line", "id", line_id, f"Order line not found: {line_id}")


class ReceiptNotFoundError(MissingReferenceError):
    """Receipt with given ID was not found."""

    code: str = "RECEIPT_NOT_FOUND"

    def __init__(self, receipt_id: str):
        self.receipt_id = receipt_id
        super().__init__("receipt", "id", receipt_id, f"Receipt not found: {receipt_id}")


class DocumentNotFoundError(MissingReferenceError):
    """Document graph focus document was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str, document_type: str):
        self.document_id = document_id
        self.document_type = document_type
        super().__init__(
            document_type, "id", document_id, f"{document_type} not found: {document_id}"
        )


# Persistence exceptions


class PersistenceFailureError(ReconciliationError):
    """
    The storage collaborator rejected a read or write.

    Not recoverable locally.  The whole operation is reported as failed;
    the transaction has been rolled back.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}")
