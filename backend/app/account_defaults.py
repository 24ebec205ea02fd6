from __future__ import annotations

from typing import Iterable, Optional

from .errors import LedgerInvariantError

# Role codes the posting code asks for.
REQUIRED_ROLES = (
    "AR",
    "AP",
    "CASH",
    "BANK",
    "SALES",
    "INVENTORY",
    "INV_ADJ",
    "VAT_RECOVERABLE",
)

ROLE_FALLBACKS = {
    # Keep runtime fallbacks conservative to avoid silent reclassification.
    "BANK": ("CASH",),
    "INV_ADJ": ("INVENTORY",),
}

# Chart of accounts codes used when a role has no explicit default.
ROLE_ACCOUNT_CODE_CANDIDATES = {
    "CASH": ("1000",),
    "BANK": ("1010",),
    "AR": ("1200",),
    "VAT_RECOVERABLE": ("1500",),
    "AP": ("2000",),
    "SALES": ("4000",),
    "INVENTORY": ("5000",),
    "INV_ADJ": ("5100",),
}

# Payment method -> account role used for the debit side of a receipt.
PAYMENT_METHOD_ROLES = {
    "cash": "CASH",
    "bank": "BANK",
    "bank_transfer": "BANK",
    "card": "BANK",
    "cheque": "BANK",
}


def _load_defaults(cur) -> dict[str, str]:
    cur.execute(
        """
        SELECT role_code, account_code
        FROM account_defaults
        """
    )
    out: dict[str, str] = {}
    for row in cur.fetchall():
        code = str(row["role_code"])
        account_code = row["account_code"]
        if code and account_code:
            out[code] = str(account_code)
    return out


def _find_account_by_codes(cur, codes: Iterable[str]) -> Optional[str]:
    for code in codes:
        cur.execute(
            """
            SELECT code
            FROM gl_accounts
            WHERE code = %s
            LIMIT 1
            """,
            (code,),
        )
        row = cur.fetchone()
        if row and row.get("code"):
            return str(row["code"])
    return None


def fetch_account_defaults(cur, roles: Optional[Iterable[str]] = None) -> dict[str, str]:
    """
    Resolve role -> account code. Missing roles fall back to a sibling role,
    then to the standard chart code if that account exists.
    """
    defaults = _load_defaults(cur)
    for role in tuple(roles) if roles is not None else REQUIRED_ROLES:
        if role in defaults:
            continue
        account_code: Optional[str] = None
        for fallback_role in ROLE_FALLBACKS.get(role, ()):
            account_code = defaults.get(fallback_role)
            if account_code:
                break
        if not account_code:
            account_code = _find_account_by_codes(cur, ROLE_ACCOUNT_CODE_CANDIDATES.get(role, ()))
        if account_code:
            defaults[role] = account_code
    return defaults


def require_accounts(cur, *roles: str) -> dict[str, str]:
    defaults = fetch_account_defaults(cur, roles)
    missing = [r for r in roles if not defaults.get(r)]
    if missing:
        raise LedgerInvariantError(f"missing account defaults: {', '.join(missing)}")
    return {r: defaults[r] for r in roles}


def payment_method_role(method: str) -> str:
    return PAYMENT_METHOD_ROLES.get((method or "").strip().lower(), "BANK")
