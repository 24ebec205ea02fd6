from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from ..db import get_conn
from ..deps import get_actor
from ..services.common import write_audit_log

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


class WarehouseIn(BaseModel):
    name: str
    location: Optional[str] = None
    warehouse_type: str = "GENERAL"


class WarehouseUpdate(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    warehouse_type: Optional[str] = None


@router.get("")
def list_warehouses():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, location, warehouse_type
                FROM warehouses
                ORDER BY name
                """
            )
            return {"warehouses": cur.fetchall()}


@router.post("")
def create_warehouse(data: WarehouseIn, actor: str = Depends(get_actor)):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO warehouses (id, name, location, warehouse_type)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    RETURNING id
                    """,
                    (name, data.location, (data.warehouse_type or "GENERAL").strip().upper()),
                )
                wid = cur.fetchone()["id"]
                write_audit_log(cur, actor, "warehouse_create", "warehouse", wid, data.model_dump())
                return {"id": wid}


@router.patch("/{warehouse_id}")
def update_warehouse(warehouse_id: str, data: WarehouseUpdate, actor: str = Depends(get_actor)):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    if "name" in patch and not (patch["name"] or "").strip():
        raise HTTPException(status_code=400, detail="name is required")
    if not patch:
        return {"ok": True}

    fields = []
    params = []
    for k, v in patch.items():
        fields.append(f"{k} = %s")
        params.append(v)
    params.append(warehouse_id)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE warehouses
                    SET {', '.join(fields)}
                    WHERE id = %s
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="warehouse not found")
                write_audit_log(cur, actor, "warehouse_update", "warehouse", warehouse_id, patch)
                return {"ok": True}


@router.delete("/{warehouse_id}")
def delete_warehouse(warehouse_id: str, actor: str = Depends(get_actor)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM warehouses WHERE id = %s FOR UPDATE", (warehouse_id,))
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="warehouse not found")
                # Stock rows are ledger history; a warehouse that ever held stock stays.
                cur.execute("SELECT 1 FROM stock_items WHERE warehouse_id = %s LIMIT 1", (warehouse_id,))
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail="warehouse has stock records and cannot be deleted")
                cur.execute("DELETE FROM warehouses WHERE id = %s", (warehouse_id,))
                write_audit_log(cur, actor, "warehouse_delete", "warehouse", warehouse_id)
                return {"ok": True}
