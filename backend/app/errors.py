from __future__ import annotations

from decimal import Decimal
from typing import Optional


class DomainError(Exception):
    """
    Base for errors raised inside a business transaction.

    Raising one rolls back the owning `conn.transaction()`; the HTTP layer maps
    `status_code` / `error_code` onto the response.
    """

    status_code = 400
    error_code = "domain_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(DomainError):
    status_code = 400
    error_code = "validation_error"


class EntityNotFoundError(DomainError):
    status_code = 404
    error_code = "not_found"

    def __init__(self, entity: str, entity_id, detail: Optional[str] = None):
        super().__init__(detail or f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class DeliveryNotFoundError(EntityNotFoundError):
    def __init__(self, delivery_note_id):
        super().__init__("delivery_note", delivery_note_id)


class InsufficientStockError(DomainError):
    status_code = 409
    error_code = "insufficient_stock"

    def __init__(self, product_id, requested: Decimal, available: Optional[Decimal] = None):
        msg = f"insufficient stock for product {product_id}: requested {requested}"
        if available is not None:
            msg += f", available {available}"
        super().__init__(msg)
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidTransitionError(DomainError):
    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, entity_type: str, current: str, nxt: str, detail: Optional[str] = None):
        super().__init__(detail or f"invalid status change for {entity_type}: {current} -> {nxt}")
        self.entity_type = entity_type
        self.current = current
        self.next = nxt


class ForbiddenHardDeleteError(DomainError):
    status_code = 403
    error_code = "forbidden_hard_delete"

    def __init__(self, entity: str):
        super().__init__(f"hard delete is forbidden on {entity}")
        self.entity = entity


class AllocationExceedsInvoiceError(DomainError):
    status_code = 409
    error_code = "allocation_exceeds_invoice"

    def __init__(self, invoice_id, total: Decimal, allocated: Decimal, requested: Decimal):
        super().__init__(
            f"allocation exceeds invoice {invoice_id}: total {total}, already allocated {allocated}, requested {requested}"
        )
        self.invoice_id = invoice_id
        self.total = total
        self.allocated = allocated
        self.requested = requested


class LedgerInvariantError(DomainError):
    # Fatal: the stored ledger disagrees with what the operation expects. Never retried.
    status_code = 500
    error_code = "ledger_invariant"


class PersistenceError(DomainError):
    status_code = 500
    error_code = "persistence_error"

    def __init__(self, detail: str, retryable: bool = False):
        super().__init__(detail)
        self.retryable = retryable
        if retryable:
            self.status_code = 503
