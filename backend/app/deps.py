from fastapi import Header, HTTPException
from typing import Optional


def get_actor(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> str:
    # Opaque caller identity; written to audit_logs and created_by columns.
    actor = (x_actor_id or "").strip()
    if not actor:
        raise HTTPException(status_code=401, detail="missing actor")
    if len(actor) > 200:
        raise HTTPException(status_code=400, detail="actor id too long")
    return actor
