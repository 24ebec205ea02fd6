from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from ..db import get_conn
from ..deps import get_actor
from ..services.common import write_audit_log
from ..validation import PartyType

router = APIRouter(prefix="/parties", tags=["parties"])

_PARTY_COLUMNS = """
    id, name, party_type, email, phone, tax_id,
    address_line1, city, country, postal_code, is_active, created_at
"""


class PartyIn(BaseModel):
    name: str
    party_type: PartyType
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None


class PartyUpdate(BaseModel):
    name: Optional[str] = None
    party_type: Optional[PartyType] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("")
def list_parties(party_type: Optional[PartyType] = None, include_inactive: bool = False):
    # BOTH parties show up in CUSTOMER and SUPPLIER listings.
    where = ["1=1"]
    params: list = []
    if party_type in {"CUSTOMER", "SUPPLIER"}:
        where.append("party_type IN (%s, 'BOTH')")
        params.append(party_type)
    elif party_type == "BOTH":
        where.append("party_type = 'BOTH'")
    if not include_inactive:
        where.append("is_active = true")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_PARTY_COLUMNS}
                FROM parties
                WHERE {' AND '.join(where)}
                ORDER BY name
                """,
                params,
            )
            return {"parties": cur.fetchall()}


@router.get("/{party_id}")
def get_party(party_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_PARTY_COLUMNS} FROM parties WHERE id = %s", (party_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="party not found")
            return {"party": row}


@router.post("")
def create_party(data: PartyIn, actor: str = Depends(get_actor)):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO parties
                      (id, name, party_type, email, phone, tax_id, address_line1, city, country, postal_code, is_active)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, true)
                    RETURNING id
                    """,
                    (
                        name,
                        data.party_type,
                        (data.email or "").strip() or None,
                        (data.phone or "").strip() or None,
                        (data.tax_id or "").strip() or None,
                        data.address_line1,
                        data.city,
                        data.country,
                        data.postal_code,
                    ),
                )
                pid = cur.fetchone()["id"]
                write_audit_log(cur, actor, "party_create", "party", pid, data.model_dump())
                return {"id": pid}


@router.patch("/{party_id}")
def update_party(party_id: str, data: PartyUpdate, actor: str = Depends(get_actor)):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    if "name" in patch and not (patch["name"] or "").strip():
        raise HTTPException(status_code=400, detail="name is required")
    if "party_type" in patch and patch["party_type"] is None:
        raise HTTPException(status_code=400, detail="party_type cannot be cleared")
    if "is_active" in patch and patch["is_active"] is None:
        raise HTTPException(status_code=400, detail="is_active cannot be cleared")
    if not patch:
        return {"ok": True}

    fields = []
    params = []
    for k, v in patch.items():
        fields.append(f"{k} = %s")
        params.append(v)
    params.append(party_id)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE parties
                    SET {', '.join(fields)}
                    WHERE id = %s
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="party not found")
                write_audit_log(cur, actor, "party_update", "party", party_id, patch)
                return {"ok": True}
