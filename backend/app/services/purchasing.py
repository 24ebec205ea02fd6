from __future__ import annotations

from decimal import Decimal
from typing import Optional

from ..account_defaults import require_accounts
from ..errors import EntityNotFoundError, ValidationError
from ..journal_utils import JournalLineIn, post_journal, q_money
from ..state_machine import validate_transition
from .common import doc_no, require_supplier, write_audit_log
from .reservations import OrderLine, _normalize_lines


def create_purchase_order(cur, *, supplier_id, lines: list[OrderLine], actor: Optional[str] = None) -> dict:
    norm = _normalize_lines(lines)
    require_supplier(cur, supplier_id)
    total = sum((q_money(l.quantity * l.unit_price) for l in norm), Decimal("0"))
    order_no = doc_no("PO")
    cur.execute(
        """
        INSERT INTO purchase_orders (id, order_no, supplier_id, order_date, status, total_amount, created_by)
        VALUES (gen_random_uuid(), %s, %s, current_date, 'DRAFT', %s, %s)
        RETURNING id
        """,
        (order_no, supplier_id, total, actor),
    )
    po_id = cur.fetchone()["id"]
    out_lines = []
    for l in norm:
        line_total = q_money(l.quantity * l.unit_price)
        cur.execute(
            """
            INSERT INTO purchase_order_lines (id, purchase_order_id, product_id, quantity, unit_price, line_total)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (po_id, l.product_id, l.quantity, l.unit_price, line_total),
        )
        out_lines.append({"id": cur.fetchone()["id"], "product_id": l.product_id, "quantity": l.quantity, "unit_price": l.unit_price, "line_total": line_total})
    write_audit_log(cur, actor, "purchase_order_create", "purchase_order", po_id, {"order_no": order_no, "total_amount": total})
    return {"id": po_id, "order_no": order_no, "status": "DRAFT", "supplier_id": supplier_id, "total_amount": total, "lines": out_lines}


def lock_purchase_order(cur, purchase_order_id) -> dict:
    cur.execute(
        """
        SELECT id, order_no, supplier_id, status, total_amount
        FROM purchase_orders
        WHERE id = %s
        FOR UPDATE
        """,
        (purchase_order_id,),
    )
    po = cur.fetchone()
    if not po:
        raise EntityNotFoundError("purchase_order", purchase_order_id)
    return po


def set_purchase_order_status(cur, po: dict, next_status: str, actor: Optional[str] = None) -> None:
    validate_transition("PURCHASE_ORDER", po["status"], next_status)
    cur.execute(
        "UPDATE purchase_orders SET status = %s WHERE id = %s",
        (next_status, po["id"]),
    )
    write_audit_log(
        cur,
        actor,
        f"purchase_order_{next_status.lower()}",
        "purchase_order",
        po["id"],
        {"from": po["status"], "to": next_status},
    )


def approve_purchase_order(cur, purchase_order_id, actor: Optional[str] = None) -> dict:
    po = lock_purchase_order(cur, purchase_order_id)
    set_purchase_order_status(cur, po, "APPROVED", actor)
    return {"id": po["id"], "status": "APPROVED"}


def cancel_purchase_order(cur, purchase_order_id, actor: Optional[str] = None) -> dict:
    po = lock_purchase_order(cur, purchase_order_id)
    set_purchase_order_status(cur, po, "CANCELLED", actor)
    return {"id": po["id"], "status": "CANCELLED"}


def create_supplier_invoice_from_grn(
    cur,
    *,
    grn_id,
    invoice_no: str,
    amount_untaxed,
    tax_amount,
    actor: Optional[str] = None,
) -> dict:
    """
    Book the supplier's bill for a receipt and post the PURCHASE journal:
    Dr inventory (untaxed), Dr input VAT (tax), Cr payables (total).
    """
    inv_no = (invoice_no or "").strip()
    if not inv_no:
        raise ValidationError("invoice_no is required")
    untaxed = q_money(amount_untaxed)
    tax = q_money(tax_amount)
    if untaxed < 0 or tax < 0:
        raise ValidationError("amounts must be >= 0")
    total = untaxed + tax
    if total <= 0:
        raise ValidationError("invoice total must be > 0")

    cur.execute(
        """
        SELECT g.id, g.grn_number, g.purchase_order_id, po.supplier_id
        FROM grns g
        JOIN purchase_orders po ON po.id = g.purchase_order_id
        WHERE g.id = %s
        """,
        (grn_id,),
    )
    grn = cur.fetchone()
    if not grn:
        raise EntityNotFoundError("grn", grn_id)

    cur.execute(
        """
        INSERT INTO supplier_invoices
          (id, invoice_no, grn_id, purchase_order_id, supplier_id, invoice_date,
           amount_untaxed, tax_amount, total_amount, status, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, current_date, %s, %s, %s, 'POSTED', %s)
        RETURNING id
        """,
        (inv_no, grn["id"], grn["purchase_order_id"], grn["supplier_id"], untaxed, tax, total, actor),
    )
    invoice_id = cur.fetchone()["id"]

    accounts = require_accounts(cur, "INVENTORY", "VAT_RECOVERABLE", "AP")
    lines = [JournalLineIn(accounts["INVENTORY"], debit=untaxed, memo="Inventory received")]
    if tax > 0:
        lines.append(JournalLineIn(accounts["VAT_RECOVERABLE"], debit=tax, memo="Input VAT"))
    lines.append(JournalLineIn(accounts["AP"], credit=total, memo="Accounts payable"))
    journal_id = post_journal(
        cur,
        journal_type="PURCHASE",
        prefix="SUP-INV",
        source_type="SUPPLIER_INVOICE",
        source_id=invoice_id,
        lines=lines,
        memo=f"Supplier invoice {inv_no} for {grn['grn_number']}",
        actor=actor,
    )
    write_audit_log(cur, actor, "supplier_invoice_post", "supplier_invoice", invoice_id, {"invoice_no": inv_no, "grn_id": grn["id"]})
    return {
        "id": invoice_id,
        "invoice_no": inv_no,
        "grn_id": grn["id"],
        "supplier_id": grn["supplier_id"],
        "amount_untaxed": untaxed,
        "tax_amount": tax,
        "total_amount": total,
        "status": "POSTED",
        "journal_id": journal_id,
    }
