from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from ..db import get_conn
from ..deps import get_actor
from ..services.billing import create_invoice_from_delivery
from ..services.payments import record_payment
from ..validation import PaymentMethod, PositiveMoney

router = APIRouter(prefix="/finance", tags=["finance"])


class InvoiceFromDeliveryIn(BaseModel):
    delivery_note_id: str


class PaymentIn(BaseModel):
    party_id: str
    invoice_id: str
    amount: PositiveMoney
    method: PaymentMethod = "bank"
    idempotency_key: Optional[str] = None


@router.post("/invoices")
def create_invoice_api(data: InvoiceFromDeliveryIn, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return create_invoice_from_delivery(cur, delivery_note_id=data.delivery_note_id, actor=actor)


@router.get("/invoices")
def list_invoices(customer_id: Optional[str] = None, status: Optional[str] = None):
    where = ["1=1"]
    params: list = []
    if customer_id:
        where.append("i.customer_id = %s")
        params.append(customer_id)
    if status:
        where.append("i.status = %s")
        params.append(status.strip().upper())
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT i.id, i.invoice_no, i.delivery_note_id, i.sales_order_id, i.customer_id,
                       i.invoice_date, i.total_amount, i.status,
                       COALESCE((SELECT SUM(a.allocated_amount) FROM payment_allocations a WHERE a.invoice_id = i.id), 0) AS paid_amount
                FROM customer_invoices i
                WHERE {' AND '.join(where)}
                ORDER BY i.created_at DESC
                """,
                params,
            )
            return {"invoices": cur.fetchall()}


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, invoice_no, delivery_note_id, sales_order_id, customer_id,
                       invoice_date, total_amount, status, created_by, created_at
                FROM customer_invoices
                WHERE id = %s
                """,
                (invoice_id,),
            )
            inv = cur.fetchone()
            if not inv:
                raise HTTPException(status_code=404, detail="invoice not found")
            cur.execute(
                """
                SELECT id, product_id, quantity, unit_price, line_total
                FROM customer_invoice_lines
                WHERE invoice_id = %s
                ORDER BY id
                """,
                (invoice_id,),
            )
            lines = cur.fetchall()
            cur.execute(
                """
                SELECT p.id, p.method, p.payment_date, a.allocated_amount
                FROM payment_allocations a
                JOIN payments p ON p.id = a.payment_id
                WHERE a.invoice_id = %s
                ORDER BY p.payment_date
                """,
                (invoice_id,),
            )
            return {"invoice": inv, "lines": lines, "payments": cur.fetchall()}


@router.post("/payments")
def record_payment_api(data: PaymentIn, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return record_payment(
                    cur,
                    party_id=data.party_id,
                    amount=data.amount,
                    method=data.method,
                    invoice_id=data.invoice_id,
                    actor=actor,
                    idempotency_key=data.idempotency_key,
                )


@router.get("/journals")
def list_journals(source_type: Optional[str] = None, source_id: Optional[str] = None, limit: int = 100):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    where = ["1=1"]
    params: list = []
    if source_type:
        where.append("j.source_type = %s")
        params.append(source_type.strip().upper())
    if source_id:
        where.append("j.source_id = %s")
        params.append(source_id)
    params.append(limit)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT j.id, j.journal_number, j.journal_type, j.journal_date, j.source_type, j.source_id, j.memo,
                       COALESCE(SUM(l.debit), 0) AS total_debit,
                       COALESCE(SUM(l.credit), 0) AS total_credit
                FROM journal_entries j
                LEFT JOIN journal_lines l ON l.journal_entry_id = j.id
                WHERE {' AND '.join(where)}
                GROUP BY j.id
                ORDER BY j.created_at DESC
                LIMIT %s
                """,
                params,
            )
            return {"journals": cur.fetchall()}


@router.get("/journals/{journal_id}")
def get_journal(journal_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, journal_number, journal_type, journal_date, source_type, source_id, memo, created_by, created_at
                FROM journal_entries
                WHERE id = %s
                """,
                (journal_id,),
            )
            j = cur.fetchone()
            if not j:
                raise HTTPException(status_code=404, detail="journal not found")
            cur.execute(
                """
                SELECT l.id, l.account_code, a.name AS account_name, l.debit, l.credit, l.memo
                FROM journal_lines l
                JOIN gl_accounts a ON a.code = l.account_code
                WHERE l.journal_entry_id = %s
                ORDER BY l.debit DESC, l.account_code
                """,
                (journal_id,),
            )
            return {"journal": j, "lines": cur.fetchall()}
