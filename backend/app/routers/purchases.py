from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from datetime import date
from typing import List, Optional
from ..db import get_conn
from ..deps import get_actor
from ..events import GRN_COMPLETED, notifications
from ..services.goods_receipt import ReceiptItem, receive_goods
from ..services.purchasing import (
    approve_purchase_order,
    cancel_purchase_order,
    create_purchase_order,
    create_supplier_invoice_from_grn,
)
from ..services.reservations import OrderLine
from ..validation import Money, Quantity

router = APIRouter(prefix="/purchases", tags=["purchases"])


class PurchaseLineIn(BaseModel):
    product_id: str
    quantity: Quantity
    unit_price: Money


class PurchaseOrderIn(BaseModel):
    supplier_id: str
    lines: List[PurchaseLineIn]


class ReceiptItemIn(BaseModel):
    product_id: str
    quantity: Quantity
    batch_number: str
    manufacture_date: date
    expiry_date: Optional[date] = None
    po_line_id: Optional[str] = None
    remarks: Optional[str] = None


class GoodsReceiptIn(BaseModel):
    purchase_order_id: str
    warehouse_id: str
    items: List[ReceiptItemIn]


class SupplierInvoiceIn(BaseModel):
    grn_id: str
    invoice_no: str
    amount_untaxed: Money
    tax_amount: Money = 0


@router.get("/orders")
def list_purchase_orders(status: Optional[str] = None, supplier_id: Optional[str] = None):
    where = ["1=1"]
    params: list = []
    if status:
        where.append("po.status = %s")
        params.append(status.strip().upper())
    if supplier_id:
        where.append("po.supplier_id = %s")
        params.append(supplier_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT po.id, po.order_no, po.supplier_id, p.name AS supplier_name,
                       po.order_date, po.status, po.total_amount, po.created_at
                FROM purchase_orders po
                JOIN parties p ON p.id = po.supplier_id
                WHERE {' AND '.join(where)}
                ORDER BY po.created_at DESC
                """,
                params,
            )
            return {"orders": cur.fetchall()}


@router.get("/orders/{order_id}")
def get_purchase_order(order_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, order_no, supplier_id, order_date, status, total_amount, created_by, created_at
                FROM purchase_orders
                WHERE id = %s
                """,
                (order_id,),
            )
            order = cur.fetchone()
            if not order:
                raise HTTPException(status_code=404, detail="purchase order not found")
            cur.execute(
                """
                SELECT id, product_id, quantity, unit_price, line_total
                FROM purchase_order_lines
                WHERE purchase_order_id = %s
                ORDER BY id
                """,
                (order_id,),
            )
            return {"order": order, "lines": cur.fetchall()}


@router.post("/orders")
def create_purchase_order_api(data: PurchaseOrderIn, actor: str = Depends(get_actor)):
    lines = [OrderLine(product_id=l.product_id, quantity=l.quantity, unit_price=l.unit_price) for l in data.lines]
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return create_purchase_order(cur, supplier_id=data.supplier_id, lines=lines, actor=actor)


@router.post("/orders/{order_id}/approve")
def approve_purchase_order_api(order_id: str, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return approve_purchase_order(cur, order_id, actor)


@router.post("/orders/{order_id}/cancel")
def cancel_purchase_order_api(order_id: str, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return cancel_purchase_order(cur, order_id, actor)


@router.post("/receipts")
def receive_goods_api(data: GoodsReceiptIn, actor: str = Depends(get_actor)):
    items = [
        ReceiptItem(
            product_id=it.product_id,
            quantity=it.quantity,
            batch_number=it.batch_number,
            manufacture_date=it.manufacture_date,
            expiry_date=it.expiry_date,
            po_line_id=it.po_line_id,
            remarks=it.remarks,
        )
        for it in data.items
    ]
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                grn = receive_goods(
                    cur,
                    purchase_order_id=data.purchase_order_id,
                    warehouse_id=data.warehouse_id,
                    items=items,
                    actor=actor,
                )
    # Published only once the receipt is committed.
    notifications.publish(
        GRN_COMPLETED,
        {"grn_id": grn["grn_id"], "grn_number": grn["grn_number"], "received_at": grn["received_at"]},
    )
    return grn


@router.get("/receipts/{grn_id}")
def get_goods_receipt(grn_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, grn_number, purchase_order_id, warehouse_id, received_at, status, received_by
                FROM grns
                WHERE id = %s
                """,
                (grn_id,),
            )
            grn = cur.fetchone()
            if not grn:
                raise HTTPException(status_code=404, detail="goods receipt not found")
            cur.execute(
                """
                SELECT gl.id, gl.product_id, gl.batch_id, b.batch_number, gl.po_line_id,
                       gl.received_quantity, gl.expiry_date, gl.remarks
                FROM grn_lines gl
                JOIN batches b ON b.id = gl.batch_id
                WHERE gl.grn_id = %s
                ORDER BY gl.id
                """,
                (grn_id,),
            )
            return {"grn": grn, "lines": cur.fetchall()}


@router.post("/supplier-invoices")
def create_supplier_invoice_api(data: SupplierInvoiceIn, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return create_supplier_invoice_from_grn(
                    cur,
                    grn_id=data.grn_id,
                    invoice_no=data.invoice_no,
                    amount_untaxed=data.amount_untaxed,
                    tax_amount=data.tax_amount,
                    actor=actor,
                )
