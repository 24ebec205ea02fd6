from decimal import Decimal

import pytest

from backend.app.errors import AllocationExceedsInvoiceError, EntityNotFoundError, InvalidTransitionError, ValidationError
from backend.app.services.billing import create_invoice_from_delivery
from backend.app.services.payments import record_payment


@pytest.fixture
def invoice(db, make_shipped_order):
    shipped = make_shipped_order()
    inv = db.run(create_invoice_from_delivery, delivery_note_id=shipped["delivery_note_id"], actor="u1")
    return {"id": inv["id"], "customer_id": shipped["customer_id"]}


def _pay(db, invoice, amount, method="cash", **kw):
    return db.run(
        record_payment,
        party_id=kw.pop("party_id", invoice["customer_id"]),
        amount=Decimal(amount),
        method=method,
        invoice_id=invoice["id"],
        actor="u1",
        **kw,
    )


def test_partial_then_overpay_then_settle(db, invoice):
    first = _pay(db, invoice, "60")
    assert first["invoice_status"] == "PARTIALLY_PAID"
    assert db.one("customer_invoices", id=invoice["id"])["status"] == "PARTIALLY_PAID"

    with pytest.raises(AllocationExceedsInvoiceError) as exc_info:
        _pay(db, invoice, "50")
    exc = exc_info.value
    assert exc.status_code == 409
    assert exc.allocated == Decimal("60.00")
    assert exc.requested == Decimal("50.00")
    assert len(db.tables["payments"]) == 1
    assert len(db.tables["payment_allocations"]) == 1

    last = _pay(db, invoice, "40")
    assert last["invoice_status"] == "PAID"
    assert db.one("customer_invoices", id=invoice["id"])["status"] == "PAID"
    allocated = sum(a["allocated_amount"] for a in db.rows("payment_allocations", invoice_id=invoice["id"]))
    assert allocated == Decimal("100.00")


def test_paid_invoice_rejects_further_payment_as_overallocation(db, invoice):
    _pay(db, invoice, "100")
    with pytest.raises(AllocationExceedsInvoiceError):
        _pay(db, invoice, "0.01")


def test_receipt_journal_debits_cash_or_bank(db, invoice):
    cash = _pay(db, invoice, "30", method="cash")
    bank = _pay(db, invoice, "30", method="bank_transfer")

    def _lines(journal_id):
        return {l["account_code"]: (l["debit"], l["credit"]) for l in db.rows("journal_lines", journal_entry_id=journal_id)}

    assert _lines(cash["journal_id"]) == {"1000": (Decimal("30.00"), Decimal("0.00")), "1200": (Decimal("0.00"), Decimal("30.00"))}
    assert _lines(bank["journal_id"]) == {"1010": (Decimal("30.00"), Decimal("0.00")), "1200": (Decimal("0.00"), Decimal("30.00"))}
    journal = db.one("journal_entries", id=cash["journal_id"])
    assert journal["journal_type"] == "RECEIPT"
    assert journal["source_type"] == "PAYMENT"
    assert journal["source_id"] == cash["id"]


def test_payment_from_another_party_is_rejected(db, invoice):
    stranger = db.add_party("Other Customer", "CUSTOMER")
    with pytest.raises(ValidationError):
        _pay(db, invoice, "10", party_id=stranger)
    assert db.tables["payments"] == []


def test_idempotent_replay_returns_the_original_payment(db, invoice):
    first = _pay(db, invoice, "25", idempotency_key="pos-123")
    again = _pay(db, invoice, "25", idempotency_key="pos-123")

    assert again["replayed"] is True
    assert again["id"] == first["id"]
    assert len(db.tables["payments"]) == 1
    assert len(db.rows("journal_entries", journal_type="RECEIPT")) == 1


def test_reused_key_with_different_amount_is_rejected(db, invoice):
    _pay(db, invoice, "25", idempotency_key="pos-123")
    with pytest.raises(ValidationError):
        _pay(db, invoice, "26", idempotency_key="pos-123")


def test_amount_and_method_are_validated(db, invoice):
    with pytest.raises(ValidationError):
        _pay(db, invoice, "0")
    with pytest.raises(ValidationError):
        _pay(db, invoice, "10", method=" ")


def test_unknown_invoice_is_not_found(db):
    with pytest.raises(EntityNotFoundError):
        db.run(record_payment, party_id="p", amount=Decimal("1"), method="cash", invoice_id="missing")


def test_cancelled_invoice_is_not_payable(db, invoice):
    db.one("customer_invoices", id=invoice["id"])["status"] = "CANCELLED"
    with pytest.raises(InvalidTransitionError):
        _pay(db, invoice, "10")
    assert db.tables["payment_allocations"] == []


def test_payment_is_audited(db, invoice):
    pay = _pay(db, invoice, "10")
    log = db.one("audit_logs", action="payment_receive")
    assert log["entity_id"] == pay["id"]
    assert log["actor"] == "u1"
