from __future__ import annotations

from typing import Optional

from ..config import settings
from ..errors import ValidationError
from ..journal_utils import q_qty
from ..state_machine import validate_transition
from .batches import pick_batches
from .common import doc_no, write_audit_log
from .reservations import fetch_sales_order_lines, lock_sales_order, set_sales_order_status
from .stock_ledger import record_movement, ship_stock


def ship_sales_order(cur, *, sales_order_id, warehouse_id=None, actor: Optional[str] = None) -> dict:
    """
    Ship an APPROVED sales order in full from its warehouse.

    Per line: pick batches, consume the reservation, write one OUTBOUND movement
    and one delivery note line per picked batch. The order ends SHIPPED.
    """
    order = lock_sales_order(cur, sales_order_id)
    validate_transition("SALES_ORDER", order["status"], "SHIPPED")
    wh = order["warehouse_id"]
    if warehouse_id is not None and str(warehouse_id) != str(wh):
        raise ValidationError(f"sales order {order['order_no']} is reserved in warehouse {wh}, not {warehouse_id}")

    lines = fetch_sales_order_lines(cur, order["id"])
    if not lines:
        raise ValidationError(f"sales order {order['order_no']} has no lines")

    delivery_no = doc_no("DN")
    cur.execute(
        """
        INSERT INTO delivery_notes (id, delivery_no, sales_order_id, warehouse_id, delivery_date, status, created_by)
        VALUES (gen_random_uuid(), %s, %s, %s, now(), 'POSTED', %s)
        RETURNING id
        """,
        (delivery_no, order["id"], wh, actor),
    )
    delivery_note_id = cur.fetchone()["id"]

    out_lines = []
    for l in lines:
        qty = q_qty(l["quantity"])
        picks = pick_batches(cur, l["product_id"], wh, qty, allow_expired=settings.allow_expired_pick)
        ship_stock(cur, l["product_id"], wh, qty)
        for batch_id, take in picks:
            record_movement(
                cur,
                movement_type="OUTBOUND",
                product_id=l["product_id"],
                quantity=take,
                source_doctype="SALES_ORDER",
                source_id=order["id"],
                warehouse_from_id=wh,
                batch_id=batch_id,
                actor=actor,
            )
            cur.execute(
                """
                INSERT INTO delivery_note_lines
                  (id, delivery_note_id, sales_order_line_id, product_id, batch_id, delivered_quantity)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s)
                """,
                (delivery_note_id, l["id"], l["product_id"], batch_id, take),
            )
            out_lines.append({"sales_order_line_id": l["id"], "product_id": l["product_id"], "batch_id": batch_id, "quantity": take})

    set_sales_order_status(cur, order, "SHIPPED", actor)
    write_audit_log(cur, actor, "delivery_note_post", "delivery_note", delivery_note_id, {"delivery_no": delivery_no, "sales_order_id": order["id"]})
    return {
        "sales_order_id": order["id"],
        "status": "SHIPPED",
        "delivery_note_id": delivery_note_id,
        "delivery_no": delivery_no,
        "lines": out_lines,
    }
