from __future__ import annotations

import json
import uuid
from datetime import date
from typing import Optional

from ..errors import EntityNotFoundError, ValidationError


def doc_no(prefix: str, on: Optional[date] = None) -> str:
    d = on or date.today()
    return f"{prefix}-{d.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def write_audit_log(cur, actor: Optional[str], action: str, entity_type: str, entity_id, details: Optional[dict] = None) -> None:
    cur.execute(
        """
        INSERT INTO audit_logs (id, actor, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s::jsonb)
        """,
        (actor or "system", action, entity_type, entity_id, json.dumps(details or {}, default=str)),
    )


def _require_party(cur, party_id, allowed: tuple[str, ...], role: str) -> dict:
    cur.execute(
        """
        SELECT id, name, party_type, is_active
        FROM parties
        WHERE id = %s
        """,
        (party_id,),
    )
    party = cur.fetchone()
    if not party:
        raise EntityNotFoundError("party", party_id)
    if party["party_type"] not in allowed:
        raise ValidationError(f"party {party_id} is not a {role}")
    if not party.get("is_active", True):
        raise ValidationError(f"party {party_id} is inactive")
    return party


def require_customer(cur, party_id) -> dict:
    return _require_party(cur, party_id, ("CUSTOMER", "BOTH"), "customer")


def require_supplier(cur, party_id) -> dict:
    return _require_party(cur, party_id, ("SUPPLIER", "BOTH"), "supplier")


def require_warehouse(cur, warehouse_id) -> dict:
    cur.execute("SELECT id, name FROM warehouses WHERE id = %s", (warehouse_id,))
    row = cur.fetchone()
    if not row:
        raise EntityNotFoundError("warehouse", warehouse_id)
    return row
