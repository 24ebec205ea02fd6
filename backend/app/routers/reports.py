from fastapi import APIRouter, Response, HTTPException
from datetime import date
from typing import Optional
import csv
import io
from ..db import get_conn

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/stock-summary")
def stock_summary_daily(start_date: Optional[date] = None, end_date: Optional[date] = None, product_id: Optional[str] = None):
    """
    Received quantity per product per day, maintained by the reporting worker.
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            sql = """
                SELECT s.summary_date, s.product_id, p.sku, p.name AS product_name, s.total_received
                FROM stock_summary_daily s
                JOIN products p ON p.id = s.product_id
                WHERE 1=1
            """
            params: list = []
            if start_date:
                sql += " AND s.summary_date >= %s"
                params.append(start_date)
            if end_date:
                sql += " AND s.summary_date <= %s"
                params.append(end_date)
            if product_id:
                sql += " AND s.product_id = %s"
                params.append(product_id)
            sql += " ORDER BY s.summary_date DESC, p.sku"
            cur.execute(sql, params)
            return {"stock_summary": cur.fetchall()}


@router.get("/trial-balance")
def trial_balance(as_of: Optional[date] = None, format: Optional[str] = None):
    as_of = as_of or date.today()
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT a.code AS account_code, a.name, a.account_type,
                       COALESCE(SUM(l.debit), 0) AS debit,
                       COALESCE(SUM(l.credit), 0) AS credit,
                       COALESCE(SUM(l.debit), 0) - COALESCE(SUM(l.credit), 0) AS balance
                FROM gl_accounts a
                LEFT JOIN journal_lines l ON l.account_code = a.code
                LEFT JOIN journal_entries j ON j.id = l.journal_entry_id
                WHERE j.id IS NULL OR j.journal_date <= %s
                GROUP BY a.code, a.name, a.account_type
                ORDER BY a.code
                """,
                (as_of,),
            )
            rows = cur.fetchall()
            if format == "csv":
                output = io.StringIO()
                writer = csv.writer(output)
                writer.writerow(["account_code", "account_name", "account_type", "debit", "credit", "balance"])
                for r in rows:
                    writer.writerow([r["account_code"], r["name"], r["account_type"], r["debit"], r["credit"], r["balance"]])
                return Response(content=output.getvalue(), media_type="text/csv")
            return {"as_of": str(as_of), "trial_balance": rows}


@router.get("/ar-open")
def ar_open_invoices(customer_id: Optional[str] = None):
    with get_conn() as conn:
        with conn.cursor() as cur:
            sql = """
                SELECT i.id AS invoice_id, i.invoice_no, i.customer_id, p.name AS customer_name,
                       i.invoice_date, i.total_amount, i.status,
                       COALESCE(SUM(a.allocated_amount), 0) AS paid_amount,
                       i.total_amount - COALESCE(SUM(a.allocated_amount), 0) AS balance
                FROM customer_invoices i
                JOIN parties p ON p.id = i.customer_id
                LEFT JOIN payment_allocations a ON a.invoice_id = i.id
                WHERE i.status IN ('POSTED', 'PARTIALLY_PAID')
            """
            params: list = []
            if customer_id:
                sql += " AND i.customer_id = %s"
                params.append(customer_id)
            sql += """
                GROUP BY i.id, i.invoice_no, i.customer_id, p.name, i.invoice_date, i.total_amount, i.status
                ORDER BY i.invoice_date, i.invoice_no
            """
            cur.execute(sql, params)
            return {"rows": cur.fetchall()}


@router.get("/audit-logs")
def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action_prefix: Optional[str] = None,
    actor: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")

    with get_conn() as conn:
        with conn.cursor() as cur:
            sql = """
                SELECT l.id, l.actor, l.action, l.entity_type, l.entity_id, l.details, l.created_at
                FROM audit_logs l
                WHERE 1=1
            """
            params: list = []
            if entity_type:
                sql += " AND l.entity_type = %s"
                params.append(entity_type)
            if entity_id:
                sql += " AND l.entity_id = %s::uuid"
                params.append(entity_id)
            if actor:
                sql += " AND l.actor = %s"
                params.append(actor)
            if action_prefix:
                sql += " AND l.action LIKE %s"
                params.append(action_prefix.strip() + "%")

            sql += " ORDER BY l.created_at DESC, l.id DESC LIMIT %s OFFSET %s"
            params.extend([limit, offset])
            cur.execute(sql, params)
            return {"audit_logs": cur.fetchall()}
