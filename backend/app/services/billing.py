from __future__ import annotations

from decimal import Decimal
from typing import Optional

from ..account_defaults import require_accounts
from ..errors import DeliveryNotFoundError, LedgerInvariantError
from ..journal_utils import JournalLineIn, post_journal, q_money, q_qty
from .common import doc_no, write_audit_log


def _invoice_lines_for_order(cur, sales_order_id) -> list[dict]:
    # One row per product: repeated order lines for a product are summed.
    cur.execute(
        """
        SELECT product_id, quantity, unit_price, line_total
        FROM sales_order_lines
        WHERE sales_order_id = %s
        ORDER BY id
        """,
        (sales_order_id,),
    )
    by_product: dict[str, dict] = {}
    for r in cur.fetchall():
        key = str(r["product_id"])
        agg = by_product.get(key)
        if agg is None:
            by_product[key] = {
                "product_id": r["product_id"],
                "quantity": q_qty(r["quantity"]),
                "unit_price": q_money(r["unit_price"]),
                "line_total": q_money(r["line_total"]),
            }
            continue
        agg["quantity"] += q_qty(r["quantity"])
        agg["line_total"] += q_money(r["line_total"])
        if agg["quantity"] > 0:
            agg["unit_price"] = q_money(agg["line_total"] / agg["quantity"])
    return list(by_product.values())


def _insert_invoice_lines(cur, invoice_id, lines: list[dict]) -> None:
    for l in lines:
        cur.execute(
            """
            INSERT INTO customer_invoice_lines (id, invoice_id, product_id, quantity, unit_price, line_total)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
            ON CONFLICT (invoice_id, product_id) DO NOTHING
            """,
            (invoice_id, l["product_id"], l["quantity"], l["unit_price"], l["line_total"]),
        )


def create_invoice_from_delivery(cur, *, delivery_note_id, actor: Optional[str] = None) -> dict:
    """
    Invoice a delivery note and post its SALES journal (Dr receivables, Cr sales).

    Keyed by delivery note: calling it again for the same delivery returns the
    invoice already posted and adds nothing.
    """
    cur.execute(
        """
        SELECT dn.id, dn.delivery_no, dn.sales_order_id, so.customer_id, so.total_amount
        FROM delivery_notes dn
        JOIN sales_orders so ON so.id = dn.sales_order_id
        WHERE dn.id = %s
        FOR UPDATE OF dn
        """,
        (delivery_note_id,),
    )
    dn = cur.fetchone()
    if not dn:
        raise DeliveryNotFoundError(delivery_note_id)

    lines = _invoice_lines_for_order(cur, dn["sales_order_id"])

    cur.execute(
        """
        SELECT id, invoice_no, customer_id, total_amount, status
        FROM customer_invoices
        WHERE delivery_note_id = %s
        """,
        (dn["id"],),
    )
    existing = cur.fetchone()
    if existing:
        _insert_invoice_lines(cur, existing["id"], lines)
        return {
            "id": existing["id"],
            "invoice_no": existing["invoice_no"],
            "delivery_note_id": dn["id"],
            "customer_id": existing["customer_id"],
            "total_amount": q_money(existing["total_amount"]),
            "status": existing["status"],
            "created": False,
        }

    total = q_money(dn["total_amount"])
    lines_total = sum((l["line_total"] for l in lines), Decimal("0"))
    if lines_total != total:
        raise LedgerInvariantError(f"sales order total {total} does not match its lines ({lines_total})")

    invoice_no = doc_no("INV")
    cur.execute(
        """
        INSERT INTO customer_invoices
          (id, invoice_no, delivery_note_id, sales_order_id, customer_id, invoice_date, total_amount, status, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, current_date, %s, 'POSTED', %s)
        RETURNING id
        """,
        (invoice_no, dn["id"], dn["sales_order_id"], dn["customer_id"], total, actor),
    )
    invoice_id = cur.fetchone()["id"]
    _insert_invoice_lines(cur, invoice_id, lines)

    accounts = require_accounts(cur, "AR", "SALES")
    journal_id = post_journal(
        cur,
        journal_type="SALES",
        prefix="INV",
        source_type="CUSTOMER_INVOICE",
        source_id=invoice_id,
        lines=[
            JournalLineIn(accounts["AR"], debit=total, memo="Accounts receivable"),
            JournalLineIn(accounts["SALES"], credit=total, memo="Sales revenue"),
        ],
        memo=f"Invoice {invoice_no} for {dn['delivery_no']}",
        actor=actor,
    )
    write_audit_log(cur, actor, "customer_invoice_post", "customer_invoice", invoice_id, {"invoice_no": invoice_no, "delivery_note_id": dn["id"]})
    return {
        "id": invoice_id,
        "invoice_no": invoice_no,
        "delivery_note_id": dn["id"],
        "customer_id": dn["customer_id"],
        "total_amount": total,
        "status": "POSTED",
        "journal_id": journal_id,
        "created": True,
    }
