from datetime import date
from decimal import Decimal

from backend.app.events import GRN_COMPLETED, NotificationBus
from backend.app.services.goods_receipt import ReceiptItem, receive_goods
from backend.app.services.purchasing import create_purchase_order
from backend.app.services.reservations import OrderLine
from backend.workers.reporting_worker import ReportingWorker, rebuild_summary


def _receive(db, supplier_id, warehouse_id, product_id, qty):
    po = db.run(create_purchase_order, supplier_id=supplier_id, lines=[OrderLine(product_id, Decimal(qty), Decimal("1.00"))])
    return db.run(
        receive_goods,
        purchase_order_id=po["id"],
        warehouse_id=warehouse_id,
        items=[ReceiptItem(product_id=product_id, quantity=Decimal(qty), batch_number="LOT", manufacture_date=date(2024, 1, 1))],
    )


def test_full_bus_drops_without_raising():
    bus = NotificationBus(maxsize=1)
    assert bus.publish(GRN_COMPLETED, {"grn_id": "a"}) is True
    assert bus.publish(GRN_COMPLETED, {"grn_id": "b"}) is False
    assert bus.dropped == 1
    assert [n.payload["grn_id"] for n in bus.drain()] == ["a"]
    assert bus.pending() == 0


def test_closed_bus_drops_new_notifications():
    bus = NotificationBus()
    bus.close()
    assert bus.closed
    assert bus.publish(GRN_COMPLETED, {"grn_id": "a"}) is False
    assert bus.get() is None


def test_worker_adds_receipts_to_daily_summary(db):
    supplier_id = db.add_party("Wholesale Co", "SUPPLIER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    bus = NotificationBus()
    worker = ReportingWorker(bus, db.get_conn)

    for qty in ("40", "60"):
        grn = _receive(db, supplier_id, warehouse_id, product_id, qty)
        bus.publish(GRN_COMPLETED, {"grn_id": grn["grn_id"], "grn_number": grn["grn_number"]})

    assert worker.run_pending() == 2
    assert worker.processed == 2
    summary = db.one("stock_summary_daily", product_id=product_id)
    assert summary["total_received"] == Decimal("100")


def test_worker_ignores_other_events_and_missing_ids(db):
    bus = NotificationBus()
    worker = ReportingWorker(bus, db.get_conn)
    bus.publish("SOMETHING_ELSE", {"grn_id": "x"})
    bus.publish(GRN_COMPLETED, {})

    assert worker.run_pending() == 2
    assert worker.processed == 0
    assert db.tables["stock_summary_daily"] == []


def test_worker_failure_does_not_propagate():
    def _broken_conn():
        raise RuntimeError("database unavailable")

    bus = NotificationBus()
    worker = ReportingWorker(bus, _broken_conn)
    bus.publish(GRN_COMPLETED, {"grn_id": "g1"})

    assert worker.run_pending() == 1
    assert worker.processed == 0


def test_stop_applies_what_is_still_queued(db):
    supplier_id = db.add_party("Wholesale Co", "SUPPLIER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    bus = NotificationBus()
    worker = ReportingWorker(bus, db.get_conn)

    grn = _receive(db, supplier_id, warehouse_id, product_id, "5")
    bus.publish(GRN_COMPLETED, {"grn_id": grn["grn_id"]})
    worker.stop()

    assert db.one("stock_summary_daily", product_id=product_id)["total_received"] == Decimal("5")


def test_queued_receipt_after_rebuild_is_not_counted_twice(db):
    supplier_id = db.add_party("Wholesale Co", "SUPPLIER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    bus = NotificationBus()
    worker = ReportingWorker(bus, db.get_conn)

    first = _receive(db, supplier_id, warehouse_id, product_id, "40")
    second = _receive(db, supplier_id, warehouse_id, product_id, "60")
    bus.publish(GRN_COMPLETED, {"grn_id": second["grn_id"]})
    # A standalone rebuild runs while the notification is still queued.
    db.run(rebuild_summary, date(2000, 1, 1))
    assert db.one("stock_summary_daily", product_id=product_id)["total_received"] == Decimal("100")

    bus.publish(GRN_COMPLETED, {"grn_id": first["grn_id"]})
    assert worker.run_pending() == 2
    assert db.one("stock_summary_daily", product_id=product_id)["total_received"] == Decimal("100")
