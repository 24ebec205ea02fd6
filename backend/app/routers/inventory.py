from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from datetime import date
from decimal import Decimal
from typing import Optional
from ..db import get_conn
from ..deps import get_actor
from ..services.common import write_audit_log
from ..services.stock_ledger import adjust_stock

router = APIRouter(prefix="/inventory", tags=["inventory"])


class StockAdjustIn(BaseModel):
    product_id: str
    warehouse_id: str
    # Signed: positive adds stock, negative removes it.
    qty_delta: Decimal
    reason: Optional[str] = None
    # Required when adding stock: the quantity lands in a new batch.
    batch_number: Optional[str] = None
    manufacture_date: Optional[date] = None
    expiry_date: Optional[date] = None


@router.get("/stock")
def stock_summary(product_id: Optional[str] = None, warehouse_id: Optional[str] = None):
    where = ["1=1"]
    params: list = []
    if product_id:
        where.append("s.product_id = %s")
        params.append(product_id)
    if warehouse_id:
        where.append("s.warehouse_id = %s")
        params.append(warehouse_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT s.product_id, p.sku, p.name AS product_name,
                       s.warehouse_id, w.name AS warehouse_name,
                       s.quantity_on_hand, s.reserved_quantity,
                       (s.quantity_on_hand - s.reserved_quantity) AS available_quantity,
                       s.updated_at
                FROM stock_items s
                JOIN products p ON p.id = s.product_id
                JOIN warehouses w ON w.id = s.warehouse_id
                WHERE {' AND '.join(where)}
                ORDER BY p.sku, w.name
                """,
                params,
            )
            return {"stock": cur.fetchall()}


@router.get("/batches")
def list_batches(product_id: Optional[str] = None, warehouse_id: Optional[str] = None, include_depleted: bool = False):
    where = ["1=1"]
    params: list = []
    if product_id:
        where.append("b.product_id = %s")
        params.append(product_id)
    if warehouse_id:
        where.append("b.warehouse_id = %s")
        params.append(warehouse_id)
    if not include_depleted:
        where.append("b.available_quantity > 0")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT b.id, b.product_id, b.warehouse_id, b.batch_number, b.manufacture_date, b.expiry_date,
                       b.received_quantity, b.available_quantity, b.status,
                       (b.expiry_date IS NOT NULL AND b.expiry_date < current_date) AS is_expired
                FROM batches b
                WHERE {' AND '.join(where)}
                ORDER BY b.manufacture_date, b.created_at
                """,
                params,
            )
            return {"batches": cur.fetchall()}


@router.get("/movements")
def list_movements(
    product_id: Optional[str] = None,
    warehouse_id: Optional[str] = None,
    movement_type: Optional[str] = None,
    limit: int = 200,
):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    where = ["1=1"]
    params: list = []
    # Direction is relative to the filtered warehouse; without a filter it follows the movement type.
    direction = "CASE WHEN m.warehouse_to_id IS NOT NULL THEN 'IN' ELSE 'OUT' END"
    if warehouse_id:
        where.append("(m.warehouse_from_id = %s OR m.warehouse_to_id = %s)")
        params.extend([warehouse_id, warehouse_id])
        direction = "CASE WHEN m.warehouse_to_id = %s THEN 'IN' ELSE 'OUT' END"
    if product_id:
        where.append("m.product_id = %s")
        params.append(product_id)
    if movement_type:
        where.append("m.movement_type = %s")
        params.append(movement_type.strip().upper())
    select_params = [warehouse_id] if warehouse_id else []
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT m.id, m.movement_type, m.product_id, m.warehouse_from_id, m.warehouse_to_id,
                       m.quantity, m.batch_id, m.source_doctype, m.source_id, m.reason,
                       m.created_by, m.posted_at,
                       {direction} AS direction
                FROM stock_movements m
                WHERE {' AND '.join(where)}
                ORDER BY m.posted_at DESC
                LIMIT %s
                """,
                select_params + params + [limit],
            )
            return {"movements": cur.fetchall()}


@router.post("/adjust")
def adjust_stock_api(data: StockAdjustIn, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                res = adjust_stock(
                    cur,
                    data.product_id,
                    data.warehouse_id,
                    data.qty_delta,
                    batch_number=data.batch_number,
                    manufacture_date=data.manufacture_date,
                    expiry_date=data.expiry_date,
                    reason=(data.reason or "").strip() or None,
                    actor=actor,
                )
                write_audit_log(
                    cur,
                    actor,
                    "stock_adjust",
                    "stock_movement",
                    res["movement_id"],
                    {"product_id": data.product_id, "warehouse_id": data.warehouse_id, "qty_delta": data.qty_delta, "reason": data.reason, "batches": res["batches"]},
                )
                return {"movement_id": res["movement_id"], "movement_ids": res["movement_ids"], "stock": res["stock"]}
