"""
Stock ledger: the only code that writes `stock_items` and `stock_movements`.

Every quantity change is a single guarded UPDATE (or upsert) so the check and
the write happen atomically under the row lock Postgres takes for the update.
The invariants `quantity_on_hand >= 0` and
`0 <= reserved_quantity <= quantity_on_hand` are part of each WHERE clause.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from ..errors import EntityNotFoundError, InsufficientStockError, LedgerInvariantError, ValidationError
from ..journal_utils import q_qty
from .batches import create_batch, pick_batches


def _positive_qty(qty) -> Decimal:
    q = q_qty(qty)
    if q <= 0:
        raise ValidationError("quantity must be > 0")
    return q


def get_stock_item(cur, product_id, warehouse_id, *, for_update: bool = False) -> Optional[dict]:
    cur.execute(
        f"""
        SELECT id, product_id, warehouse_id, quantity_on_hand, reserved_quantity
        FROM stock_items
        WHERE product_id = %s AND warehouse_id = %s
        {"FOR UPDATE" if for_update else ""}
        """,
        (product_id, warehouse_id),
    )
    return cur.fetchone()


def available_quantity(cur, product_id, warehouse_id) -> Decimal:
    row = get_stock_item(cur, product_id, warehouse_id)
    if not row:
        return Decimal("0")
    return q_qty(row["quantity_on_hand"]) - q_qty(row["reserved_quantity"])


def reserve_stock(cur, product_id, warehouse_id, qty) -> dict:
    """
    Narrow availability by `qty`. Fails with InsufficientStockError (and writes
    nothing) when on-hand minus reserved is below `qty` or no stock row exists.
    """
    q = _positive_qty(qty)
    cur.execute(
        """
        UPDATE stock_items
        SET reserved_quantity = reserved_quantity + %s,
            updated_at = now()
        WHERE product_id = %s AND warehouse_id = %s
          AND reserved_quantity + %s <= quantity_on_hand
        RETURNING id, quantity_on_hand, reserved_quantity
        """,
        (q, product_id, warehouse_id, q),
    )
    row = cur.fetchone()
    if not row:
        raise InsufficientStockError(product_id, q, available_quantity(cur, product_id, warehouse_id))
    return row


def release_reservation(cur, product_id, warehouse_id, qty) -> dict:
    q = _positive_qty(qty)
    cur.execute(
        """
        UPDATE stock_items
        SET reserved_quantity = reserved_quantity - %s,
            updated_at = now()
        WHERE product_id = %s AND warehouse_id = %s
          AND reserved_quantity >= %s
        RETURNING id, quantity_on_hand, reserved_quantity
        """,
        (q, product_id, warehouse_id, q),
    )
    row = cur.fetchone()
    if not row:
        raise LedgerInvariantError(f"cannot release {q} of product {product_id}: reservation is smaller")
    return row


def receive_stock(cur, product_id, warehouse_id, qty) -> dict:
    """Increment on-hand; the row is created with nothing reserved when missing."""
    q = _positive_qty(qty)
    cur.execute(
        """
        INSERT INTO stock_items (id, product_id, warehouse_id, quantity_on_hand, reserved_quantity)
        VALUES (gen_random_uuid(), %s, %s, %s, 0)
        ON CONFLICT (product_id, warehouse_id)
        DO UPDATE SET quantity_on_hand = stock_items.quantity_on_hand + EXCLUDED.quantity_on_hand,
                      updated_at = now()
        RETURNING id, quantity_on_hand, reserved_quantity
        """,
        (product_id, warehouse_id, q),
    )
    return cur.fetchone()


def ship_stock(cur, product_id, warehouse_id, qty) -> dict:
    """
    Consume a reservation: on-hand and reserved both drop by `qty`.
    A shortfall here means the ledger no longer matches the order, which is fatal.
    """
    q = _positive_qty(qty)
    cur.execute(
        """
        UPDATE stock_items
        SET quantity_on_hand = quantity_on_hand - %s,
            reserved_quantity = reserved_quantity - %s,
            updated_at = now()
        WHERE product_id = %s AND warehouse_id = %s
          AND reserved_quantity >= %s
          AND quantity_on_hand >= %s
        RETURNING id, quantity_on_hand, reserved_quantity
        """,
        (q, q, product_id, warehouse_id, q, q),
    )
    row = cur.fetchone()
    if not row:
        raise LedgerInvariantError(
            f"stock ledger cannot ship {q} of product {product_id} from warehouse {warehouse_id}: reserved or on-hand too low"
        )
    return row


def record_movement(
    cur,
    *,
    movement_type: str,
    product_id,
    quantity,
    source_doctype: str,
    source_id=None,
    warehouse_from_id=None,
    warehouse_to_id=None,
    batch_id=None,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
):
    q = _positive_qty(quantity)
    cur.execute(
        """
        INSERT INTO stock_movements
          (id, movement_type, product_id, warehouse_from_id, warehouse_to_id, quantity, batch_id,
           source_doctype, source_id, reason, created_by, posted_at)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
        RETURNING id
        """,
        (movement_type, product_id, warehouse_from_id, warehouse_to_id, q, batch_id, source_doctype, source_id, reason, actor),
    )
    return cur.fetchone()["id"]


def adjust_stock(
    cur,
    product_id,
    warehouse_id,
    qty_delta,
    *,
    batch_number: Optional[str] = None,
    manufacture_date: Optional[date] = None,
    expiry_date: Optional[date] = None,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
) -> dict:
    """
    Signed correction of on-hand (count differences, damage) for a product that
    already has a stock row in the warehouse.

    Batches move with on-hand: a positive delta opens an adjustment batch, a
    negative one draws batches down oldest first (expired batches included, so
    write-offs can target them). Never lets on-hand fall below what is already
    reserved.
    """
    delta = q_qty(qty_delta)
    if delta == 0:
        raise ValidationError("adjustment quantity must be non-zero")
    if not get_stock_item(cur, product_id, warehouse_id, for_update=True):
        raise EntityNotFoundError("stock_item", f"{product_id}@{warehouse_id}")

    if delta > 0:
        if not (batch_number or "").strip():
            raise ValidationError("batch_number is required when adding stock")
        batch_id = create_batch(
            cur,
            product_id=product_id,
            warehouse_id=warehouse_id,
            batch_number=batch_number,
            manufacture_date=manufacture_date or date.today(),
            expiry_date=expiry_date,
            quantity=delta,
        )
        row = receive_stock(cur, product_id, warehouse_id, delta)
        movement_id = record_movement(
            cur,
            movement_type="ADJUSTMENT",
            product_id=product_id,
            quantity=delta,
            source_doctype="STOCK_ADJUSTMENT",
            warehouse_to_id=warehouse_id,
            batch_id=batch_id,
            reason=reason,
            actor=actor,
        )
        return {"stock": row, "movement_id": movement_id, "movement_ids": [movement_id], "batches": [(batch_id, delta)]}

    q = -delta
    cur.execute(
        """
        UPDATE stock_items
        SET quantity_on_hand = quantity_on_hand - %s,
            updated_at = now()
        WHERE product_id = %s AND warehouse_id = %s
          AND quantity_on_hand - %s >= reserved_quantity
        RETURNING id, quantity_on_hand, reserved_quantity
        """,
        (q, product_id, warehouse_id, q),
    )
    row = cur.fetchone()
    if not row:
        raise InsufficientStockError(product_id, q, available_quantity(cur, product_id, warehouse_id))
    picks = pick_batches(cur, product_id, warehouse_id, q, allow_expired=True)
    movement_ids = [
        record_movement(
            cur,
            movement_type="ADJUSTMENT",
            product_id=product_id,
            quantity=take,
            source_doctype="STOCK_ADJUSTMENT",
            warehouse_from_id=warehouse_id,
            batch_id=batch_id,
            reason=reason,
            actor=actor,
        )
        for batch_id, take in picks
    ]
    return {"stock": row, "movement_id": movement_ids[0], "movement_ids": movement_ids, "batches": picks}
