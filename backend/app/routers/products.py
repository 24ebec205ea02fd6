from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from ..db import get_conn
from ..deps import get_actor
from ..services.common import write_audit_log

router = APIRouter(prefix="/products", tags=["products"])


def _norm_uom(code: Optional[str]) -> str:
    c = (code or "").strip()
    if not c:
        raise HTTPException(status_code=400, detail="unit_of_measure is required")
    c = c.upper()
    if len(c) > 32:
        raise HTTPException(status_code=400, detail="unit_of_measure code is too long (max 32 chars)")
    return c


def _norm_sku(sku: Optional[str]) -> str:
    s = (sku or "").strip()
    if not s:
        raise HTTPException(status_code=400, detail="sku is required")
    return s


class ProductIn(BaseModel):
    sku: str
    name: str
    unit_of_measure: str = "EA"
    category: Optional[str] = None
    is_active: bool = True


class ProductUpdate(BaseModel):
    sku: Optional[str] = None
    name: Optional[str] = None
    unit_of_measure: Optional[str] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("")
def list_products(q: str = "", include_inactive: bool = False, limit: int = 200):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    where = ["1=1"]
    params: list = []
    if q.strip():
        where.append("(sku ILIKE %s OR name ILIKE %s)")
        like = f"%{q.strip()}%"
        params.extend([like, like])
    if not include_inactive:
        where.append("is_active = true")
    params.append(limit)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, sku, name, unit_of_measure, category, is_active, updated_at
                FROM products
                WHERE {' AND '.join(where)}
                ORDER BY sku
                LIMIT %s
                """,
                params,
            )
            return {"products": cur.fetchall()}


@router.get("/{product_id}")
def get_product(product_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, sku, name, unit_of_measure, category, is_active, created_at, updated_at
                FROM products
                WHERE id = %s
                """,
                (product_id,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="product not found")
            return {"product": row}


@router.post("")
def create_product(data: ProductIn, actor: str = Depends(get_actor)):
    sku = _norm_sku(data.sku)
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    uom = _norm_uom(data.unit_of_measure)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO products (id, sku, name, unit_of_measure, category, is_active)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (sku, name, uom, (data.category or "").strip() or None, data.is_active),
                )
                pid = cur.fetchone()["id"]
                write_audit_log(cur, actor, "product_create", "product", pid, {"sku": sku, "name": name})
                return {"id": pid}


@router.patch("/{product_id}")
def update_product(product_id: str, data: ProductUpdate, actor: str = Depends(get_actor)):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    if "sku" in patch:
        patch["sku"] = _norm_sku(patch["sku"])
    if "unit_of_measure" in patch:
        patch["unit_of_measure"] = _norm_uom(patch["unit_of_measure"])
    if "name" in patch and not (patch["name"] or "").strip():
        raise HTTPException(status_code=400, detail="name is required")
    if "is_active" in patch and patch["is_active"] is None:
        raise HTTPException(status_code=400, detail="is_active cannot be cleared")
    if not patch:
        return {"ok": True}

    fields = []
    params = []
    for k, v in patch.items():
        fields.append(f"{k} = %s")
        params.append(v)
    params.append(product_id)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE products
                    SET {', '.join(fields)}, updated_at = now()
                    WHERE id = %s
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="product not found")
                write_audit_log(cur, actor, "product_update", "product", product_id, patch)
                return {"ok": True}


@router.delete("/{product_id}")
def deactivate_product(product_id: str, actor: str = Depends(get_actor)):
    # Products are referenced by ledger rows; removal is a soft deactivate.
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE products SET is_active = false, updated_at = now() WHERE id = %s",
                    (product_id,),
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="product not found")
                write_audit_log(cur, actor, "product_deactivate", "product", product_id)
                return {"ok": True}
