from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from .errors import LedgerInvariantError, ValidationError

MONEY_Q = Decimal("0.01")
QTY_Q = Decimal("0.001")


def q_money(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def q_qty(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(QTY_Q, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class JournalLineIn:
    account_code: str
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    memo: Optional[str] = None


def journal_totals(lines: Iterable[JournalLineIn]) -> tuple[Decimal, Decimal]:
    debit = Decimal("0")
    credit = Decimal("0")
    for l in lines:
        debit += q_money(l.debit)
        credit += q_money(l.credit)
    return debit, credit


def _journal_no(prefix: str, source_id) -> str:
    base = str(source_id).replace("-", "")[:8].upper()
    return f"{prefix}-{base}-{uuid.uuid4().hex[:6].upper()}"


def assert_journal_balanced(cur, journal_id) -> None:
    """
    Re-read the stored lines of a journal and fail hard when debits and credits differ.
    Runs inside the posting transaction so an imbalance aborts the whole write.
    """
    cur.execute(
        """
        SELECT
          COALESCE(SUM(debit), 0) AS total_debit,
          COALESCE(SUM(credit), 0) AS total_credit,
          COUNT(*) AS line_count
        FROM journal_lines
        WHERE journal_entry_id = %s
        """,
        (journal_id,),
    )
    row = cur.fetchone() or {}
    debit = q_money(row.get("total_debit"))
    credit = q_money(row.get("total_credit"))
    if int(row.get("line_count") or 0) < 2:
        raise LedgerInvariantError(f"journal {journal_id} has fewer than two lines")
    if debit != credit:
        raise LedgerInvariantError(f"journal {journal_id} is imbalanced: debit {debit} != credit {credit}")


def post_journal(
    cur,
    *,
    journal_type: str,
    prefix: str,
    source_type: str,
    source_id,
    lines: list[JournalLineIn],
    memo: Optional[str] = None,
    actor: Optional[str] = None,
):
    """
    Insert a journal entry with its lines. Lines are checked for balance before
    anything is written, and the stored result is checked again afterwards.
    Returns the journal entry id.
    """
    if len(lines) < 2:
        raise ValidationError("journal needs at least two lines")
    for l in lines:
        if q_money(l.debit) < 0 or q_money(l.credit) < 0:
            raise ValidationError("journal amounts must be >= 0")
        if q_money(l.debit) != 0 and q_money(l.credit) != 0:
            raise ValidationError("journal line must be either debit or credit")
    debit, credit = journal_totals(lines)
    if debit != credit:
        raise LedgerInvariantError(f"journal for {source_type} {source_id} is imbalanced: debit {debit} != credit {credit}")

    cur.execute(
        """
        INSERT INTO journal_entries
          (id, journal_number, journal_type, journal_date, source_type, source_id, memo, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, current_date, %s, %s, %s, %s)
        RETURNING id
        """,
        (_journal_no(prefix, source_id), journal_type, source_type, source_id, memo, actor),
    )
    journal_id = cur.fetchone()["id"]

    for l in lines:
        cur.execute(
            """
            INSERT INTO journal_lines (id, journal_entry_id, account_code, debit, credit, memo)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
            """,
            (journal_id, l.account_code, q_money(l.debit), q_money(l.credit), l.memo),
        )

    assert_journal_balanced(cur, journal_id)
    return journal_id
