from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from ..errors import InsufficientStockError, LedgerInvariantError, ValidationError
from ..journal_utils import q_qty


def create_batch(
    cur,
    *,
    product_id,
    warehouse_id,
    batch_number: str,
    manufacture_date: date,
    expiry_date: Optional[date],
    quantity,
):
    batch_no = (batch_number or "").strip()
    if not batch_no:
        raise ValidationError("batch_number is required")
    q = q_qty(quantity)
    if q <= 0:
        raise ValidationError("received quantity must be > 0")
    if expiry_date and expiry_date < manufacture_date:
        raise ValidationError(f"batch {batch_no}: expiry_date is before manufacture_date")
    cur.execute(
        """
        INSERT INTO batches
          (id, product_id, warehouse_id, batch_number, manufacture_date, expiry_date,
           received_quantity, available_quantity, status)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, 'ACTIVE')
        RETURNING id
        """,
        (product_id, warehouse_id, batch_no, manufacture_date, expiry_date, q, q),
    )
    return cur.fetchone()["id"]


def plan_batch_picks(batches: list[dict], qty: Decimal) -> Optional[list[tuple[object, Decimal]]]:
    """
    Decide how to draw `qty` from `batches` (already ordered oldest manufacture first).

    The oldest batch that covers the whole quantity on its own wins. Otherwise
    the quantity is split across batches, oldest first. Returns None when the
    batches together cannot cover it.
    """
    for b in batches:
        if q_qty(b["available_quantity"]) >= qty:
            return [(b["id"], qty)]

    out: list[tuple[object, Decimal]] = []
    remaining = qty
    for b in batches:
        if remaining <= 0:
            break
        available = q_qty(b["available_quantity"])
        if available <= 0:
            continue
        take = available if available <= remaining else remaining
        out.append((b["id"], take))
        remaining -= take
    if remaining > 0:
        return None
    return out


def pick_batches(
    cur,
    product_id,
    warehouse_id,
    qty,
    *,
    as_of: Optional[date] = None,
    allow_expired: bool = False,
) -> list[tuple[object, Decimal]]:
    """
    Lock the product's open batches in the warehouse, choose picks (FIFO by
    manufacture date) and decrement them. Returns (batch_id, qty) pairs.
    """
    q = q_qty(qty)
    if q <= 0:
        return []
    cur.execute(
        """
        SELECT id, batch_number, manufacture_date, expiry_date, available_quantity
        FROM batches
        WHERE product_id = %s
          AND warehouse_id = %s
          AND available_quantity > 0
          AND (%s OR expiry_date IS NULL OR expiry_date >= %s)
        ORDER BY manufacture_date ASC, created_at ASC, id ASC
        FOR UPDATE
        """,
        (product_id, warehouse_id, allow_expired, as_of or date.today()),
    )
    rows = cur.fetchall()
    picks = plan_batch_picks(rows, q)
    if picks is None:
        total = sum((q_qty(r["available_quantity"]) for r in rows), Decimal("0"))
        raise InsufficientStockError(product_id, q, total)

    for batch_id, take in picks:
        cur.execute(
            """
            UPDATE batches
            SET available_quantity = available_quantity - %s,
                status = CASE WHEN available_quantity - %s = 0 THEN 'DEPLETED' ELSE status END
            WHERE id = %s AND available_quantity >= %s
            RETURNING id
            """,
            (take, take, batch_id, take),
        )
        if not cur.fetchone():
            raise LedgerInvariantError(f"batch {batch_id} changed while picking")
    return picks
