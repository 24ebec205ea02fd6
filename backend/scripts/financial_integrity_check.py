#!/usr/bin/env python3
"""
Read-only integrity checks over the stock and financial ledgers.

Verifies invariants the services enforce on write, so drift from manual SQL,
restores or bugs shows up early:
- every journal is balanced and has at least two lines
- no invoice has more allocated to it than its total
- invoice status agrees with its allocations
- every posted customer invoice has its SALES journal
- stock rows keep 0 <= reserved <= on hand

Safe to run against production databases.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from decimal import Decimal


# Allow running from repo root without installing as a package.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.db import get_conn  # noqa: E402
from backend.app.payment_guards import invoice_status_for  # noqa: E402


def d(v) -> Decimal:
    return Decimal(str(v or 0))


@dataclass
class Finding:
    kind: str
    id: str
    ref: str
    message: str


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument("--limit", type=int, default=200, help="Rows per check (default: 200)")
    return p.parse_args()


def check_journal_balance(cur, limit: int) -> list[Finding]:
    cur.execute(
        """
        SELECT j.id,
               j.journal_number,
               j.journal_date,
               COUNT(l.id) AS line_count,
               COALESCE(SUM(l.debit), 0) AS total_debit,
               COALESCE(SUM(l.credit), 0) AS total_credit
        FROM journal_entries j
        LEFT JOIN journal_lines l ON l.journal_entry_id = j.id
        GROUP BY j.id, j.journal_number, j.journal_date
        HAVING COALESCE(SUM(l.debit), 0) <> COALESCE(SUM(l.credit), 0)
            OR COUNT(l.id) < 2
        ORDER BY j.journal_date DESC, j.journal_number DESC
        LIMIT %s
        """,
        (limit,),
    )
    findings: list[Finding] = []
    for r in cur.fetchall():
        debit = d(r["total_debit"])
        credit = d(r["total_credit"])
        findings.append(
            Finding(
                kind="journal_unbalanced",
                id=str(r["id"]),
                ref=str(r["journal_number"] or r["id"]),
                message=f"debit={debit} credit={credit} lines={r['line_count']} on {r['journal_date']}",
            )
        )
    return findings


def check_invoice_allocations(cur, limit: int) -> list[Finding]:
    cur.execute(
        """
        SELECT i.id,
               i.invoice_no,
               i.status,
               i.total_amount,
               COALESCE(SUM(a.allocated_amount), 0) AS allocated
        FROM customer_invoices i
        LEFT JOIN payment_allocations a ON a.invoice_id = i.id
        GROUP BY i.id, i.invoice_no, i.status, i.total_amount
        ORDER BY i.invoice_no DESC
        LIMIT %s
        """,
        (limit,),
    )
    findings: list[Finding] = []
    for r in cur.fetchall():
        total = d(r["total_amount"])
        allocated = d(r["allocated"])
        ref = str(r["invoice_no"] or r["id"])
        if allocated > total:
            findings.append(
                Finding(
                    kind="invoice_overallocated",
                    id=str(r["id"]),
                    ref=ref,
                    message=f"allocated {allocated} exceeds total {total}",
                )
            )
            continue
        expected = invoice_status_for(total, allocated)
        if r["status"] != expected:
            findings.append(
                Finding(
                    kind="invoice_status_mismatch",
                    id=str(r["id"]),
                    ref=ref,
                    message=f"status {r['status']} but allocations say {expected} ({allocated}/{total})",
                )
            )
    return findings


def check_invoice_journals(cur, limit: int) -> list[Finding]:
    cur.execute(
        """
        SELECT i.id, i.invoice_no
        FROM customer_invoices i
        WHERE NOT EXISTS (
          SELECT 1
          FROM journal_entries j
          WHERE j.source_type = 'CUSTOMER_INVOICE'
            AND j.source_id = i.id
        )
        ORDER BY i.invoice_no DESC
        LIMIT %s
        """,
        (limit,),
    )
    return [
        Finding(kind="invoice_missing_journal", id=str(r["id"]), ref=str(r["invoice_no"] or r["id"]), message="no SALES journal posted")
        for r in cur.fetchall()
    ]


def check_stock_items(cur, limit: int) -> list[Finding]:
    cur.execute(
        """
        SELECT id, product_id, warehouse_id, quantity_on_hand, reserved_quantity
        FROM stock_items
        WHERE quantity_on_hand < 0
           OR reserved_quantity < 0
           OR reserved_quantity > quantity_on_hand
        LIMIT %s
        """,
        (limit,),
    )
    findings: list[Finding] = []
    for r in cur.fetchall():
        findings.append(
            Finding(
                kind="stock_invariant_violation",
                id=str(r["id"]),
                ref=f"{r['product_id']}@{r['warehouse_id']}",
                message=f"on_hand={d(r['quantity_on_hand'])} reserved={d(r['reserved_quantity'])}",
            )
        )
    return findings


CHECKS = (check_journal_balance, check_invoice_allocations, check_invoice_journals, check_stock_items)


def run_checks(cur, limit: int) -> list[Finding]:
    findings: list[Finding] = []
    for check in CHECKS:
        findings.extend(check(cur, limit))
    return findings


def main() -> int:
    args = _parse_args()
    limit = max(1, min(int(args.limit or 200), 5000))

    with get_conn() as conn:
        with conn.cursor() as cur:
            findings = run_checks(cur, limit)

    if not findings:
        print("OK: no integrity issues found.")
        return 0

    print(f"Found {len(findings)} issue(s):")
    for f in findings[:200]:
        print(f"- {f.kind}: {f.ref} ({f.id}) -> {f.message}")
    if len(findings) > 200:
        print(f"... plus {len(findings) - 200} more")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
