from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from ..db import get_conn
from ..deps import get_actor
from ..services.fulfillment import ship_sales_order
from ..services.reservations import (
    OrderLine,
    approve_sales_order,
    cancel_sales_order,
    close_sales_order,
    create_sales_order,
)
from ..validation import Money, Quantity

router = APIRouter(prefix="/sales", tags=["sales"])


class SalesLineIn(BaseModel):
    product_id: str
    quantity: Quantity
    unit_price: Money


class SalesOrderIn(BaseModel):
    customer_id: str
    warehouse_id: str
    lines: List[SalesLineIn]


class ShipIn(BaseModel):
    warehouse_id: Optional[str] = None


@router.get("/orders")
def list_sales_orders(status: Optional[str] = None, customer_id: Optional[str] = None):
    where = ["1=1"]
    params: list = []
    if status:
        where.append("so.status = %s")
        params.append(status.strip().upper())
    if customer_id:
        where.append("so.customer_id = %s")
        params.append(customer_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT so.id, so.order_no, so.customer_id, p.name AS customer_name, so.warehouse_id,
                       so.order_date, so.status, so.total_amount, so.created_at
                FROM sales_orders so
                JOIN parties p ON p.id = so.customer_id
                WHERE {' AND '.join(where)}
                ORDER BY so.created_at DESC
                """,
                params,
            )
            return {"orders": cur.fetchall()}


@router.get("/orders/{order_id}")
def get_sales_order(order_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, order_no, customer_id, warehouse_id, order_date, status, total_amount, created_by, created_at
                FROM sales_orders
                WHERE id = %s
                """,
                (order_id,),
            )
            order = cur.fetchone()
            if not order:
                raise HTTPException(status_code=404, detail="sales order not found")
            cur.execute(
                """
                SELECT id, product_id, quantity, unit_price, line_total
                FROM sales_order_lines
                WHERE sales_order_id = %s
                ORDER BY id
                """,
                (order_id,),
            )
            lines = cur.fetchall()
            cur.execute(
                """
                SELECT id, delivery_no, warehouse_id, delivery_date, status
                FROM delivery_notes
                WHERE sales_order_id = %s
                """,
                (order_id,),
            )
            return {"order": order, "lines": lines, "delivery_note": cur.fetchone()}


@router.post("/orders")
def create_sales_order_api(data: SalesOrderIn, actor: str = Depends(get_actor)):
    lines = [OrderLine(product_id=l.product_id, quantity=l.quantity, unit_price=l.unit_price) for l in data.lines]
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return create_sales_order(
                    cur,
                    customer_id=data.customer_id,
                    warehouse_id=data.warehouse_id,
                    lines=lines,
                    actor=actor,
                )


@router.post("/orders/{order_id}/approve")
def approve_sales_order_api(order_id: str, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return approve_sales_order(cur, order_id, actor)


@router.post("/orders/{order_id}/cancel")
def cancel_sales_order_api(order_id: str, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return cancel_sales_order(cur, order_id, actor)


@router.post("/orders/{order_id}/close")
def close_sales_order_api(order_id: str, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return close_sales_order(cur, order_id, actor)


@router.post("/orders/{order_id}/ship")
def ship_sales_order_api(order_id: str, data: Optional[ShipIn] = None, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return ship_sales_order(
                    cur,
                    sales_order_id=order_id,
                    warehouse_id=(data.warehouse_id if data else None),
                    actor=actor,
                )
