"""
Typed Exception Hierarchy for the Concession Kernel.

===============================================================================
ERROR KINDS
===============================================================================

Every exception carries two class attributes:

  code  -- specific and machine-readable (``ORDER_NOT_FOUND``).
  kind  -- one of the error-kind taxonomy values below, used by the HTTP
           layer to choose a status and by the retry layer to decide whether
           an operation may be attempted again.

    Kind               | Meaning
    -------------------|-----------------------------------------------------
    NOT_FOUND          | order, product, combo, ledger row or tenant absent
    INSUFFICIENT_STOCK | cafe balance cannot cover the requested consumption
    INVALID_STATE      | transition not permitted from the current status
    INVALID_INPUT      | missing field, malformed value, phone mismatch
    CONFLICT           | duplicate QR name / seat class, order number race
    TIMEOUT            | persistence deadline exceeded (retriable)
    UNAVAILABLE        | connection pool not ready (retriable)
    INTERNAL           | invariant violation detected at runtime

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ConcessionError (base)
    |
    +-- NotFoundError
    |   +-- TenantNotFoundError
    |   +-- ProductNotFoundError
    |   +-- ComboNotFoundError
    |   +-- OrderNotFoundError
    |   +-- OrderItemNotFoundError
    |   +-- LedgerEntryNotFoundError
    |   +-- QRNameNotFoundError
    |
    +-- InsufficientStockError
    |
    +-- InvalidStateError
    |   +-- OrderAlreadyCancelledError
    |   +-- OrderCompletedError
    |   +-- InvalidStatusTransitionError
    |
    +-- InvalidInputError
    |   +-- MissingFieldError
    |   +-- ZeroQuantityError
    |   +-- EmptyComboError
    |   +-- PhoneMismatchError
    |   +-- InvalidLedgerEntryError
    |
    +-- ConflictError
    |   +-- DuplicateQRNameError
    |   +-- OrderNumberCollisionError
    |
    +-- PersistenceTimeoutError
    +-- UnavailableError
    +-- InvariantViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATCH BY TYPE, REPORT BY CODE:

    try:
        facade.create_order(tenant_id, request)
    except InsufficientStockError as e:
        return {"error": e.code, "maxOrderable": e.max_orderable}

2. RETRIABLE KINDS:

    except (PersistenceTimeoutError, UnavailableError):
        schedule_retry()

3. ``OrderNumberCollisionError`` is raised inside the numbering path and
   retried there. Callers never see it.
"""

from decimal import Decimal


class ConcessionError(Exception):
    """
    Base exception for all concession kernel errors.

    All subclasses must define ``code`` and ``kind`` class attributes.
    """

    code: str = "CONCESSION_ERROR"
    kind: str = "INTERNAL"

    @property
    def retriable(self) -> bool:
        return self.kind in ("TIMEOUT", "UNAVAILABLE")


# Not found


class NotFoundError(ConcessionError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    kind: str = "NOT_FOUND"


class TenantNotFoundError(NotFoundError):
    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = str(tenant_id)
        super().__init__(f"Tenant not found: {tenant_id}")


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, tenant_id: str, product_id: str):
        self.tenant_id = str(tenant_id)
        self.product_id = str(product_id)
        super().__init__(f"Product {product_id} not found for tenant {tenant_id}")


class ComboNotFoundError(NotFoundError):
    code: str = "COMBO_NOT_FOUND"

    def __init__(self, tenant_id: str, combo_id: str):
        self.tenant_id = str(tenant_id)
        self.combo_id = str(combo_id)
        super().__init__(f"Combo offer {combo_id} not found for tenant {tenant_id}")


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"

    def __init__(self, tenant_id: str, order_ref: str):
        self.tenant_id = str(tenant_id)
        self.order_ref = str(order_ref)
        super().__init__(f"Order not found: {order_ref}")


class OrderItemNotFoundError(NotFoundError):
    code: str = "ORDER_ITEM_NOT_FOUND"

    def __init__(self, order_id: str, item_id: str):
        self.order_id = str(order_id)
        self.item_id = str(item_id)
        super().__init__(f"Item {item_id} not found in order {order_id}")


class LedgerEntryNotFoundError(NotFoundError):
    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, ledger_id: str, entry_id: str):
        self.ledger_id = str(ledger_id)
        self.entry_id = str(entry_id)
        super().__init__(f"Stock entry {entry_id} not found in ledger {ledger_id}")


class QRNameNotFoundError(NotFoundError):
    code: str = "QR_NAME_NOT_FOUND"

    def __init__(self, tenant_id: str, qr_name_id: str):
        self.tenant_id = str(tenant_id)
        self.qr_name_id = str(qr_name_id)
        super().__init__(f"QR name {qr_name_id} not found for tenant {tenant_id}")


# Stock


class InsufficientStockError(ConcessionError):
    """
    The cafe balance cannot cover the requested consumption.

    ``requested`` and ``max_orderable`` are counts of sellable items;
    ``available`` is in the ledger's unit.
    """

    code: str = "INSUFFICIENT_STOCK"
    kind: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        product_name: str,
        requested: int,
        available: Decimal,
        max_orderable: int,
        unit: str = "NOS",
        combo_name: str | None = None,
    ):
        self.product_id = str(product_id)
        self.product_name = product_name
        self.requested = requested
        self.available = available
        self.max_orderable = max_orderable
        self.unit = unit
        self.combo_name = combo_name
        where = f" in combo '{combo_name}'" if combo_name else ""
        super().__init__(
            f"Insufficient stock for {product_name}{where}: requested {requested}, "
            f"available {available} {unit}, max orderable {max_orderable}"
        )


# State machine


class InvalidStateError(ConcessionError):
    code: str = "INVALID_STATE"
    kind: str = "INVALID_STATE"


class OrderAlreadyCancelledError(InvalidStateError):
    code: str = "ALREADY_CANCELLED"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} is already cancelled")


class OrderCompletedError(InvalidStateError):
    code: str = "ORDER_COMPLETED"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} is completed and cannot be modified")


class InvalidStatusTransitionError(InvalidStateError):
    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, order_number: str, from_status: str, to_status: str):
        self.order_number = order_number
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_number} cannot move from {from_status} to {to_status}"
        )


# Input


class InvalidInputError(ConcessionError):
    code: str = "INVALID_INPUT"
    kind: str = "INVALID_INPUT"


class MissingFieldError(InvalidInputError):
    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Required field missing: {field_name}")


class ZeroQuantityError(InvalidInputError):
    code: str = "ZERO_QUANTITY"

    def __init__(self, reference: str, quantity: int):
        self.reference = str(reference)
        self.quantity = quantity
        super().__init__(f"Line {reference} has non-positive quantity {quantity}")


class EmptyComboError(InvalidInputError):
    code: str = "EMPTY_COMBO"

    def __init__(self, combo_id: str):
        self.combo_id = str(combo_id)
        super().__init__(f"Combo offer {combo_id} has no products")


class PhoneMismatchError(InvalidInputError):
    code: str = "ACCESS_DENIED"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__("You can only cancel your own orders")


class InvalidLedgerEntryError(InvalidInputError):
    code: str = "INVALID_LEDGER_ENTRY"

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid stock entry field {field_name}: {reason}")


# Conflicts


class ConflictError(ConcessionError):
    code: str = "CONFLICT"
    kind: str = "CONFLICT"


class DuplicateQRNameError(ConflictError):
    code: str = "DUPLICATE_QR_NAME"

    def __init__(self, tenant_id: str, qr_name: str, seat_class: str):
        self.tenant_id = str(tenant_id)
        self.qr_name = qr_name
        self.seat_class = seat_class
        super().__init__(
            f"QR name '{qr_name}' with seat class '{seat_class}' already exists"
        )


class OrderNumberCollisionError(ConflictError):
    code: str = "ORDER_NUMBER_COLLISION"

    def __init__(self, tenant_id: str, order_number: str):
        self.tenant_id = str(tenant_id)
        self.order_number = order_number
        super().__init__(f"Order number {order_number} already allocated")


# Persistence


class PersistenceTimeoutError(ConcessionError):
    code: str = "TIMEOUT"
    kind: str = "TIMEOUT"

    def __init__(self, operation: str, deadline_seconds: float, attempts: int):
        self.operation = operation
        self.deadline_seconds = deadline_seconds
        self.attempts = attempts
        super().__init__(
            f"{operation} exceeded its {deadline_seconds}s deadline after {attempts} attempt(s)"
        )


class UnavailableError(ConcessionError):
    code: str = "UNAVAILABLE"
    kind: str = "UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} unavailable: {reason}")


class InvariantViolationError(ConcessionError):
    code: str = "INVARIANT_VIOLATION"
    kind: str = "INTERNAL"

    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Invariant {invariant} violated: {detail}")
