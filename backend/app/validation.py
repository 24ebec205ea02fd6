from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import AfterValidator, BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _positive(v: Decimal) -> Decimal:
    if v <= 0:
        raise ValueError("must be > 0")
    return v


def _non_negative(v: Decimal) -> Decimal:
    if v < 0:
        raise ValueError("must be >= 0")
    return v


# Canonical codes mirror the Postgres enums in `backend/db/migrations/001_init.sql`.
PartyType = Annotated[Literal["CUSTOMER", "SUPPLIER", "BOTH"], BeforeValidator(_to_upper_str)]
MovementType = Annotated[Literal["INBOUND", "OUTBOUND", "ADJUSTMENT"], BeforeValidator(_to_upper_str)]

# Keep a tight, safe character set so methods are stable identifiers.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]

Quantity = Annotated[Decimal, AfterValidator(_positive)]
Money = Annotated[Decimal, AfterValidator(_non_negative)]
PositiveMoney = Annotated[Decimal, AfterValidator(_positive)]
