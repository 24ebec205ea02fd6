from decimal import Decimal

from .errors import AllocationExceedsInvoiceError


def assert_not_overallocated(invoice_id, total: Decimal, allocated: Decimal, amount: Decimal):
    # Exact comparison: amounts are stored at 2dp, so no tolerance is needed.
    if allocated + amount > total:
        raise AllocationExceedsInvoiceError(invoice_id, total, allocated, amount)


def invoice_status_for(total: Decimal, allocated: Decimal) -> str:
    if allocated >= total:
        return "PAID"
    if allocated > 0:
        return "PARTIALLY_PAID"
    return "POSTED"
