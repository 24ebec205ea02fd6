#!/usr/bin/env python3
"""
Reporting worker.

Keeps `stock_summary_daily` (received quantity per product per day) up to date.

In the API process it runs as a background thread draining GRN_COMPLETED
notifications. Standalone it rebuilds the summary for recent days from the
receipt tables, which also repairs totals for notifications that were dropped:

  python -m backend.workers.reporting_worker --days 7 --once
"""

import argparse
import json
import sys
import threading
import time
import traceback
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

import psycopg
from psycopg.rows import dict_row

from ..app.audit_guard import GuardedConnection
from ..app.config import settings
from ..app.events import GRN_COMPLETED, NotificationBus


def _json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


def apply_grn(cur, grn_id) -> int:
    """
    Recompute the daily totals for the (product, day) rows one receipt touches.
    Applying the same receipt twice, or after a rebuild, leaves the totals as they are.
    Returns rows touched.
    """
    cur.execute(
        """
        INSERT INTO stock_summary_daily (product_id, summary_date, total_received)
        SELECT gl.product_id, g.received_at::date, SUM(gl.received_quantity)
        FROM grn_lines gl
        JOIN grns g ON g.id = gl.grn_id
        WHERE (gl.product_id, g.received_at::date) IN (
            SELECT gl2.product_id, g2.received_at::date
            FROM grn_lines gl2
            JOIN grns g2 ON g2.id = gl2.grn_id
            WHERE g2.id = %s
        )
        GROUP BY gl.product_id, g.received_at::date
        ON CONFLICT (product_id, summary_date)
        DO UPDATE SET total_received = EXCLUDED.total_received
        """,
        (grn_id,),
    )
    return cur.rowcount or 0


def rebuild_summary(cur, since: date) -> int:
    """Recompute the daily totals from `since` onwards. Safe to run repeatedly."""
    cur.execute(
        """
        INSERT INTO stock_summary_daily (product_id, summary_date, total_received)
        SELECT gl.product_id, g.received_at::date, SUM(gl.received_quantity)
        FROM grn_lines gl
        JOIN grns g ON g.id = gl.grn_id
        WHERE g.received_at::date >= %s
        GROUP BY gl.product_id, g.received_at::date
        ON CONFLICT (product_id, summary_date)
        DO UPDATE SET total_received = EXCLUDED.total_received
        """,
        (since,),
    )
    return cur.rowcount or 0


class ReportingWorker:
    def __init__(self, bus: NotificationBus, conn_factory: Callable, poll_seconds: float = 0.5):
        self.bus = bus
        self.conn_factory = conn_factory
        self.poll_seconds = poll_seconds
        self.processed = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def handle(self, notification) -> None:
        if notification.event_type != GRN_COMPLETED:
            return
        grn_id = notification.payload.get("grn_id")
        if not grn_id:
            _json_log("warning", "reporting.skip", reason="missing grn_id", payload=notification.payload)
            return
        with self.conn_factory() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    rows = apply_grn(cur, grn_id)
        self.processed += 1
        _json_log("info", "reporting.grn_applied", grn_id=grn_id, grn_number=notification.payload.get("grn_number"), rows=rows)

    def run_pending(self) -> int:
        ran = 0
        for n in self.bus.drain():
            try:
                self.handle(n)
            except Exception as ex:
                # Reporting is derived data; a failure never reaches the business flow.
                _json_log("error", "reporting.error", event_type=n.event_type, payload=n.payload, error=str(ex))
                traceback.print_exc(file=sys.stderr)
            ran += 1
        return ran

    def _loop(self) -> None:
        while not self._stop.is_set():
            n = self.bus.get(timeout=self.poll_seconds)
            if n is None:
                continue
            try:
                self.handle(n)
            except Exception as ex:
                _json_log("error", "reporting.error", event_type=n.event_type, payload=n.payload, error=str(ex))
                traceback.print_exc(file=sys.stderr)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reporting-worker", daemon=True)
        self._thread.start()
        _json_log("info", "reporting.started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        # Anything still queued is applied before shutdown.
        self.run_pending()
        _json_log("info", "reporting.stopped", processed=self.processed)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=settings.db_url)
    parser.add_argument("--days", type=int, default=7, help="Rebuild totals for this many past days")
    parser.add_argument("--sleep", type=float, default=300.0)
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    while True:
        since = date.today() - timedelta(days=max(0, args.days))
        try:
            with psycopg.connect(args.db, row_factory=dict_row) as raw:
                conn = GuardedConnection(raw)
                with conn.transaction():
                    with conn.cursor() as cur:
                        rows = rebuild_summary(cur, since)
            _json_log("info", "reporting.rebuild", since=since, rows=rows)
        except Exception as ex:
            # Never crash the worker loop; the next pass retries.
            _json_log("error", "reporting.rebuild.error", since=since, error=str(ex))
            traceback.print_exc(file=sys.stderr)

        if args.once:
            break
        time.sleep(args.sleep)


if __name__ == "__main__":
    main()
