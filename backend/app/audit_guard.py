from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from .errors import ForbiddenHardDeleteError


class ProtectedEntity(Enum):
    """Ledger-sensitive tables. Rows are superseded by compensating records, never removed."""

    STOCK_ITEM = "stock_items"
    STOCK_MOVEMENT = "stock_movements"
    JOURNAL_ENTRY = "journal_entries"
    JOURNAL_LINE = "journal_lines"
    CUSTOMER_INVOICE = "customer_invoices"
    CUSTOMER_INVOICE_LINE = "customer_invoice_lines"
    SUPPLIER_INVOICE = "supplier_invoices"
    PAYMENT = "payments"
    PAYMENT_ALLOCATION = "payment_allocations"
    USER = "users"
    AUDIT_LOG = "audit_logs"

    @classmethod
    def for_table(cls, table: str) -> Optional["ProtectedEntity"]:
        name = (table or "").strip().strip('"').lower()
        # Drop a schema qualifier (public.stock_items).
        name = name.rsplit(".", 1)[-1].strip('"')
        return _BY_TABLE.get(name)


_BY_TABLE = {e.value: e for e in ProtectedEntity}


class Operation(Enum):
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    TRUNCATE = "truncate"


_IDENT = r'(?:"[^"]+"|[A-Za-z_][A-Za-z0-9_$]*)(?:\.(?:"[^"]+"|[A-Za-z_][A-Za-z0-9_$]*))?'
_DELETE_RE = re.compile(rf"\bDELETE\s+FROM\s+(?:ONLY\s+)?({_IDENT})", re.IGNORECASE)
_TRUNCATE_RE = re.compile(rf"^\s*TRUNCATE\s+(?:TABLE\s+)?(?:ONLY\s+)?((?:{_IDENT})(?:\s*,\s*{_IDENT})*)", re.IGNORECASE)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


def _strip_comments(sql: str) -> str:
    return _LINE_COMMENT.sub(" ", _BLOCK_COMMENT.sub(" ", sql))


def classify(sql) -> list[tuple[Operation, str]]:
    """
    Return the destructive operations a statement performs, as (operation, table) pairs.

    A DELETE with a WHERE clause is a single-row style `delete`; without one it
    is `delete_many`. Data-modifying CTEs (`WITH x AS (DELETE FROM ...)`) are
    found as well.
    """
    text = _strip_comments(str(sql or ""))
    found: list[tuple[Operation, str]] = []

    m = _TRUNCATE_RE.match(text)
    if m:
        for table in m.group(1).split(","):
            found.append((Operation.TRUNCATE, table.strip()))
        return found

    matches = list(_DELETE_RE.finditer(text))
    for i, m in enumerate(matches):
        # WHERE detection is scoped to the text up to the next DELETE.
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        rest = text[m.end():end]
        op = Operation.DELETE if re.search(r"\bWHERE\b", rest, re.IGNORECASE) else Operation.DELETE_MANY
        found.append((op, m.group(1)))
    return found


def statement_text(query, context=None) -> str:
    """SQL text of `query`. psycopg `sql.Composable` objects are rendered first."""
    if hasattr(query, "as_string"):
        # Cursors and connections are adapt contexts; anything else renders without one.
        return query.as_string(context if hasattr(context, "connection") else None)
    if isinstance(query, (bytes, bytearray)):
        return bytes(query).decode("utf-8", "replace")
    return str(query or "")


def check_statement(sql, context=None) -> None:
    for op, table in classify(statement_text(sql, context)):
        entity = ProtectedEntity.for_table(table)
        if entity is not None:
            raise ForbiddenHardDeleteError(entity.value)


class GuardedCursor:
    """
    Wraps a DB-API cursor; every statement passes `check_statement` before it
    is sent. Anything else is delegated unchanged.
    """

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, query, params=None, **kwargs):
        check_statement(query, self._cursor)
        if params is None:
            return self._cursor.execute(query, **kwargs)
        return self._cursor.execute(query, params, **kwargs)

    def executemany(self, query, params_seq, **kwargs):
        check_statement(query, self._cursor)
        return self._cursor.executemany(query, params_seq, **kwargs)

    def __enter__(self):
        self._cursor.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb):
        return self._cursor.__exit__(exc_type, exc, tb)

    def __iter__(self):
        return iter(self._cursor)

    def __getattr__(self, name):
        return getattr(self._cursor, name)


class GuardedConnection:
    """Connection proxy whose cursors are GuardedCursor instances."""

    def __init__(self, conn):
        self._conn = conn

    def cursor(self, *args, **kwargs):
        return GuardedCursor(self._conn.cursor(*args, **kwargs))

    def execute(self, query, params=None, **kwargs):
        check_statement(query, self._conn)
        if params is None:
            return self._conn.execute(query, **kwargs)
        return self._conn.execute(query, params, **kwargs)

    def __enter__(self):
        self._conn.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb):
        return self._conn.__exit__(exc_type, exc, tb)

    def __getattr__(self, name):
        return getattr(self._conn, name)
