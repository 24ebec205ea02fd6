from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from ..errors import ValidationError
from ..journal_utils import q_qty
from ..state_machine import validate_transition
from .batches import create_batch
from .common import doc_no, require_warehouse, write_audit_log
from .purchasing import lock_purchase_order
from .stock_ledger import receive_stock, record_movement


@dataclass(frozen=True)
class ReceiptItem:
    product_id: str
    quantity: Decimal
    batch_number: str
    manufacture_date: date
    expiry_date: Optional[date] = None
    po_line_id: Optional[str] = None
    remarks: Optional[str] = None


def _validate_items(items: list[ReceiptItem]) -> list[ReceiptItem]:
    if not items:
        raise ValidationError("receipt needs at least one item")
    for i, it in enumerate(items, start=1):
        if not it.product_id:
            raise ValidationError(f"item {i}: product_id is required")
        if q_qty(it.quantity) <= 0:
            raise ValidationError(f"item {i}: quantity must be > 0")
        if it.manufacture_date is None:
            raise ValidationError(f"item {i}: manufacture_date is required")
        if it.expiry_date and it.expiry_date < it.manufacture_date:
            raise ValidationError(f"item {i}: expiry_date is before manufacture_date")
    return items


def _po_lines(cur, purchase_order_id) -> dict:
    cur.execute(
        """
        SELECT id, product_id
        FROM purchase_order_lines
        WHERE purchase_order_id = %s
        """,
        (purchase_order_id,),
    )
    return {str(r["id"]): r for r in cur.fetchall()}


def receive_goods(cur, *, purchase_order_id, warehouse_id, items: list[ReceiptItem], actor: Optional[str] = None) -> dict:
    """
    Post a goods receipt against a purchase order.

    Creates the GRN, one batch per item, increments on-hand stock, writes an
    INBOUND movement per item and moves the PO to RECEIVED. The PO row is locked
    and its transition validated before anything is written.
    """
    _validate_items(items)
    po = lock_purchase_order(cur, purchase_order_id)
    validate_transition("PURCHASE_ORDER", po["status"], "RECEIVED")
    require_warehouse(cur, warehouse_id)

    po_lines = _po_lines(cur, po["id"]) if any(it.po_line_id for it in items) else {}

    grn_number = doc_no("GRN")
    cur.execute(
        """
        INSERT INTO grns (id, grn_number, purchase_order_id, warehouse_id, received_at, status, received_by)
        VALUES (gen_random_uuid(), %s, %s, %s, now(), 'COMPLETED', %s)
        RETURNING id, received_at
        """,
        (grn_number, po["id"], warehouse_id, actor),
    )
    grn = cur.fetchone()
    grn_id = grn["id"]

    out_lines = []
    for i, it in enumerate(items, start=1):
        if it.po_line_id:
            pol = po_lines.get(str(it.po_line_id))
            if not pol:
                raise ValidationError(f"item {i}: po_line_id {it.po_line_id} does not belong to this purchase order")
            if str(pol["product_id"]) != str(it.product_id):
                raise ValidationError(f"item {i}: product does not match purchase order line")
        qty = q_qty(it.quantity)
        batch_id = create_batch(
            cur,
            product_id=it.product_id,
            warehouse_id=warehouse_id,
            batch_number=it.batch_number,
            manufacture_date=it.manufacture_date,
            expiry_date=it.expiry_date,
            quantity=qty,
        )
        cur.execute(
            """
            INSERT INTO grn_lines (id, grn_id, product_id, batch_id, po_line_id, received_quantity, expiry_date, remarks)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (grn_id, it.product_id, batch_id, it.po_line_id, qty, it.expiry_date, it.remarks),
        )
        line_id = cur.fetchone()["id"]
        receive_stock(cur, it.product_id, warehouse_id, qty)
        record_movement(
            cur,
            movement_type="INBOUND",
            product_id=it.product_id,
            quantity=qty,
            source_doctype="GRN",
            source_id=grn_id,
            warehouse_to_id=warehouse_id,
            batch_id=batch_id,
            actor=actor,
        )
        out_lines.append({"id": line_id, "product_id": it.product_id, "batch_id": batch_id, "received_quantity": qty})

    cur.execute("UPDATE purchase_orders SET status = 'RECEIVED' WHERE id = %s", (po["id"],))
    write_audit_log(
        cur,
        actor,
        "grn_complete",
        "grn",
        grn_id,
        {"grn_number": grn_number, "purchase_order_id": po["id"], "lines": len(out_lines)},
    )
    return {
        "grn_id": grn_id,
        "grn_number": grn_number,
        "purchase_order_id": po["id"],
        "warehouse_id": warehouse_id,
        "received_at": grn["received_at"],
        "lines": out_lines,
    }
