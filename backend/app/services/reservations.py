from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..errors import EntityNotFoundError, ValidationError
from ..journal_utils import q_money, q_qty
from ..state_machine import validate_transition
from .common import doc_no, require_customer, require_warehouse, write_audit_log
from .stock_ledger import release_reservation, reserve_stock


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: Decimal
    unit_price: Decimal


def _normalize_lines(lines: list[OrderLine]) -> list[OrderLine]:
    if not lines:
        raise ValidationError("order needs at least one line")
    out = []
    for i, l in enumerate(lines, start=1):
        if not l.product_id:
            raise ValidationError(f"line {i}: product_id is required")
        qty = q_qty(l.quantity)
        price = q_money(l.unit_price)
        if qty <= 0:
            raise ValidationError(f"line {i}: quantity must be > 0")
        if price < 0:
            raise ValidationError(f"line {i}: unit_price must be >= 0")
        out.append(OrderLine(product_id=str(l.product_id), quantity=qty, unit_price=price))
    return out


def create_sales_order(cur, *, customer_id, warehouse_id, lines: list[OrderLine], actor: Optional[str] = None) -> dict:
    """
    Create a DRAFT sales order and reserve stock for every line.

    All-or-nothing: the first line that cannot be reserved raises
    InsufficientStockError and the caller's transaction discards the order
    together with the reservations already made for earlier lines.
    """
    norm = _normalize_lines(lines)
    require_customer(cur, customer_id)
    require_warehouse(cur, warehouse_id)

    total = sum((q_money(l.quantity * l.unit_price) for l in norm), Decimal("0"))
    order_no = doc_no("SO")
    cur.execute(
        """
        INSERT INTO sales_orders (id, order_no, customer_id, warehouse_id, order_date, status, total_amount, created_by)
        VALUES (gen_random_uuid(), %s, %s, %s, current_date, 'DRAFT', %s, %s)
        RETURNING id
        """,
        (order_no, customer_id, warehouse_id, total, actor),
    )
    order_id = cur.fetchone()["id"]

    # Stock rows are locked in product order so two orders cannot wait on each other.
    for l in sorted(norm, key=lambda l: l.product_id):
        reserve_stock(cur, l.product_id, warehouse_id, l.quantity)

    out_lines = []
    for l in norm:
        line_total = q_money(l.quantity * l.unit_price)
        cur.execute(
            """
            INSERT INTO sales_order_lines (id, sales_order_id, product_id, quantity, unit_price, line_total)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (order_id, l.product_id, l.quantity, l.unit_price, line_total),
        )
        out_lines.append(
            {
                "id": cur.fetchone()["id"],
                "product_id": l.product_id,
                "quantity": l.quantity,
                "unit_price": l.unit_price,
                "line_total": line_total,
            }
        )

    write_audit_log(cur, actor, "sales_order_create", "sales_order", order_id, {"order_no": order_no, "total_amount": total})
    return {
        "id": order_id,
        "order_no": order_no,
        "status": "DRAFT",
        "customer_id": customer_id,
        "warehouse_id": warehouse_id,
        "total_amount": total,
        "lines": out_lines,
    }


def lock_sales_order(cur, sales_order_id) -> dict:
    cur.execute(
        """
        SELECT id, order_no, customer_id, warehouse_id, status, total_amount
        FROM sales_orders
        WHERE id = %s
        FOR UPDATE
        """,
        (sales_order_id,),
    )
    order = cur.fetchone()
    if not order:
        raise EntityNotFoundError("sales_order", sales_order_id)
    return order


def fetch_sales_order_lines(cur, sales_order_id) -> list[dict]:
    cur.execute(
        """
        SELECT id, product_id, quantity, unit_price, line_total
        FROM sales_order_lines
        WHERE sales_order_id = %s
        ORDER BY product_id, id
        """,
        (sales_order_id,),
    )
    return cur.fetchall()


def set_sales_order_status(cur, order: dict, next_status: str, actor: Optional[str] = None) -> None:
    validate_transition("SALES_ORDER", order["status"], next_status)
    cur.execute(
        "UPDATE sales_orders SET status = %s WHERE id = %s",
        (next_status, order["id"]),
    )
    write_audit_log(
        cur,
        actor,
        f"sales_order_{next_status.lower()}",
        "sales_order",
        order["id"],
        {"from": order["status"], "to": next_status},
    )


def _release_order_reservations(cur, order: dict) -> None:
    for l in fetch_sales_order_lines(cur, order["id"]):
        release_reservation(cur, l["product_id"], order["warehouse_id"], l["quantity"])


def approve_sales_order(cur, sales_order_id, actor: Optional[str] = None) -> dict:
    order = lock_sales_order(cur, sales_order_id)
    set_sales_order_status(cur, order, "APPROVED", actor)
    return {"id": order["id"], "status": "APPROVED"}


def cancel_sales_order(cur, sales_order_id, actor: Optional[str] = None) -> dict:
    order = lock_sales_order(cur, sales_order_id)
    # Validate before touching the ledger.
    validate_transition("SALES_ORDER", order["status"], "CANCELLED")
    _release_order_reservations(cur, order)
    set_sales_order_status(cur, order, "CANCELLED", actor)
    return {"id": order["id"], "status": "CANCELLED"}


def close_sales_order(cur, sales_order_id, actor: Optional[str] = None) -> dict:
    order = lock_sales_order(cur, sales_order_id)
    validate_transition("SALES_ORDER", order["status"], "CLOSED")
    if order["status"] == "APPROVED":
        # Closed without shipping: the reserved stock goes back to available.
        _release_order_reservations(cur, order)
    set_sales_order_status(cur, order, "CLOSED", actor)
    return {"id": order["id"], "status": "CLOSED"}
