from decimal import Decimal

from backend.scripts import financial_integrity_check as fic


class _FakeCursor:
    def __init__(self, rows_by_marker: dict[str, list[dict]]):
        self._rows_by_marker = rows_by_marker
        self._rows: list[dict] = []
        self.executed: list[str] = []

    def execute(self, sql, params=None):
        self.executed.append(sql)
        self._rows = []
        for marker, rows in self._rows_by_marker.items():
            if marker in sql:
                self._rows = rows
                return

    def fetchall(self):
        return list(self._rows)


def test_clean_ledgers_have_no_findings():
    cur = _FakeCursor(
        {
            "LEFT JOIN payment_allocations": [
                {"id": "i1", "invoice_no": "INV-1", "status": "PARTIALLY_PAID", "total_amount": Decimal("100.00"), "allocated": Decimal("60.00")},
                {"id": "i2", "invoice_no": "INV-2", "status": "POSTED", "total_amount": Decimal("50.00"), "allocated": Decimal("0")},
            ],
        }
    )
    assert fic.run_checks(cur, 200) == []
    assert len(cur.executed) == len(fic.CHECKS)


def test_unbalanced_journal_is_reported():
    cur = _FakeCursor(
        {
            "HAVING COALESCE": [
                {
                    "id": "j1",
                    "journal_number": "INV-1",
                    "journal_date": "2026-01-02",
                    "line_count": 2,
                    "total_debit": Decimal("100.00"),
                    "total_credit": Decimal("99.00"),
                }
            ]
        }
    )
    findings = fic.check_journal_balance(cur, 10)
    assert [(f.kind, f.ref) for f in findings] == [("journal_unbalanced", "INV-1")]
    assert "debit=100.00 credit=99.00" in findings[0].message


def test_overallocated_and_stale_status_invoices_are_reported():
    cur = _FakeCursor(
        {
            "LEFT JOIN payment_allocations": [
                {"id": "i1", "invoice_no": "INV-1", "status": "PAID", "total_amount": Decimal("100.00"), "allocated": Decimal("110.00")},
                {"id": "i2", "invoice_no": "INV-2", "status": "POSTED", "total_amount": Decimal("100.00"), "allocated": Decimal("100.00")},
            ]
        }
    )
    findings = fic.check_invoice_allocations(cur, 10)
    assert [(f.kind, f.ref) for f in findings] == [
        ("invoice_overallocated", "INV-1"),
        ("invoice_status_mismatch", "INV-2"),
    ]
    assert "allocations say PAID" in findings[1].message


def test_invoice_without_journal_and_broken_stock_rows():
    cur = _FakeCursor(
        {
            "WHERE NOT EXISTS": [{"id": "i9", "invoice_no": "INV-9"}],
            "FROM stock_items": [
                {"id": "s1", "product_id": "p1", "warehouse_id": "w1", "quantity_on_hand": Decimal("5"), "reserved_quantity": Decimal("7")}
            ],
        }
    )
    kinds = [f.kind for f in fic.run_checks(cur, 10)]
    assert kinds == ["invoice_missing_journal", "stock_invariant_violation"]
