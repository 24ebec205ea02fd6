from __future__ import annotations

from typing import Optional

from ..account_defaults import payment_method_role, require_accounts
from ..errors import EntityNotFoundError, InvalidTransitionError, ValidationError
from ..journal_utils import JournalLineIn, post_journal, q_money
from ..payment_guards import assert_not_overallocated, invoice_status_for
from ..state_machine import validate_transition
from .common import write_audit_log

PAYABLE_STATUSES = {"POSTED", "PARTIALLY_PAID"}


def _lock_invoice(cur, invoice_id) -> dict:
    cur.execute(
        """
        SELECT id, invoice_no, customer_id, total_amount, status
        FROM customer_invoices
        WHERE id = %s
        FOR UPDATE
        """,
        (invoice_id,),
    )
    inv = cur.fetchone()
    if not inv:
        raise EntityNotFoundError("customer_invoice", invoice_id)
    return inv


def _find_replay(cur, idempotency_key: str) -> Optional[dict]:
    cur.execute(
        """
        SELECT p.id, p.party_id, p.amount, p.method, a.invoice_id
        FROM payments p
        JOIN payment_allocations a ON a.payment_id = p.id
        WHERE p.idempotency_key = %s
        """,
        (idempotency_key,),
    )
    return cur.fetchone()


def _allocated_total(cur, invoice_id):
    cur.execute(
        """
        SELECT COALESCE(SUM(allocated_amount), 0) AS allocated
        FROM payment_allocations
        WHERE invoice_id = %s
        """,
        (invoice_id,),
    )
    return q_money((cur.fetchone() or {}).get("allocated"))


def record_payment(
    cur,
    *,
    party_id,
    amount,
    method: str,
    invoice_id,
    actor: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> dict:
    """
    Record a customer receipt and allocate it in full to one invoice.

    The invoice row is locked so concurrent payments serialize; the allocation
    check runs against the allocations committed before the lock was granted.
    With an idempotency key, a replay returns the original payment unchanged.
    """
    amt = q_money(amount)
    if amt <= 0:
        raise ValidationError("amount must be > 0")
    method = (method or "").strip().lower()
    if not method:
        raise ValidationError("method is required")
    key = (idempotency_key or "").strip() or None

    inv = _lock_invoice(cur, invoice_id)

    if key:
        prior = _find_replay(cur, key)
        if prior:
            if str(prior["invoice_id"]) != str(inv["id"]) or q_money(prior["amount"]) != amt:
                raise ValidationError(f"idempotency key {key} was already used for a different payment")
            return {
                "id": prior["id"],
                "invoice_id": inv["id"],
                "amount": q_money(prior["amount"]),
                "method": prior["method"],
                "invoice_status": inv["status"],
                "replayed": True,
            }

    if str(inv["customer_id"]) != str(party_id):
        raise ValidationError(f"party {party_id} is not the customer of invoice {inv['invoice_no']}")

    total = q_money(inv["total_amount"])
    allocated = _allocated_total(cur, inv["id"])
    assert_not_overallocated(inv["id"], total, allocated, amt)
    if inv["status"] not in PAYABLE_STATUSES:
        raise InvalidTransitionError("CUSTOMER_INVOICE", inv["status"], "PAID", f"invoice {inv['invoice_no']} is {inv['status']}, not payable")

    next_status = invoice_status_for(total, allocated + amt)
    validate_transition("CUSTOMER_INVOICE", inv["status"], next_status)

    cur.execute(
        """
        INSERT INTO payments (id, party_id, payment_type, method, amount, idempotency_key, payment_date, created_by)
        VALUES (gen_random_uuid(), %s, 'RECEIPT', %s, %s, %s, now(), %s)
        RETURNING id
        """,
        (party_id, method, amt, key, actor),
    )
    payment_id = cur.fetchone()["id"]
    cur.execute(
        """
        INSERT INTO payment_allocations (id, payment_id, invoice_id, allocated_amount)
        VALUES (gen_random_uuid(), %s, %s, %s)
        """,
        (payment_id, inv["id"], amt),
    )
    cur.execute(
        "UPDATE customer_invoices SET status = %s WHERE id = %s",
        (next_status, inv["id"]),
    )

    role = payment_method_role(method)
    accounts = require_accounts(cur, role, "AR")
    journal_id = post_journal(
        cur,
        journal_type="RECEIPT",
        prefix="RCPT",
        source_type="PAYMENT",
        source_id=payment_id,
        lines=[
            JournalLineIn(accounts[role], debit=amt, memo=f"Receipt ({method})"),
            JournalLineIn(accounts["AR"], credit=amt, memo="Accounts receivable"),
        ],
        memo=f"Payment for {inv['invoice_no']}",
        actor=actor,
    )
    write_audit_log(
        cur,
        actor,
        "payment_receive",
        "payment",
        payment_id,
        {"invoice_id": inv["id"], "amount": amt, "method": method, "status": next_status},
    )
    return {
        "id": payment_id,
        "invoice_id": inv["id"],
        "amount": amt,
        "method": method,
        "invoice_status": next_status,
        "journal_id": journal_id,
        "replayed": False,
    }
