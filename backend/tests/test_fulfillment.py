from datetime import date
from decimal import Decimal

import pytest

from backend.app.errors import InsufficientStockError, InvalidTransitionError, ValidationError
from backend.app.services.fulfillment import ship_sales_order
from backend.app.services.reservations import OrderLine, approve_sales_order, create_sales_order


@pytest.fixture
def order(db):
    customer_id = db.add_party("Acme Retail", "CUSTOMER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    db.put_stock(product_id, warehouse_id, 30)
    b1 = db.add_batch(product_id, warehouse_id, "B1", date(2024, 1, 1), 10)
    b2 = db.add_batch(product_id, warehouse_id, "B2", date(2024, 2, 1), 20)
    so = db.run(
        create_sales_order,
        customer_id=customer_id,
        warehouse_id=warehouse_id,
        lines=[OrderLine(product_id, Decimal("25"), Decimal("4.00"))],
        actor="u1",
    )
    return {"so": so, "warehouse_id": warehouse_id, "product_id": product_id, "b1": b1, "b2": b2}


def test_ship_splits_across_batches_oldest_first(db, order):
    db.run(approve_sales_order, order["so"]["id"], "u1")

    res = db.run(ship_sales_order, sales_order_id=order["so"]["id"], actor="u1")

    assert res["status"] == "SHIPPED"
    assert res["delivery_no"].startswith("DN-")
    assert [(l["batch_id"], l["quantity"]) for l in res["lines"]] == [
        (order["b1"], Decimal("10")),
        (order["b2"], Decimal("15")),
    ]

    stock = db.stock(order["product_id"], order["warehouse_id"])
    assert stock["quantity_on_hand"] == Decimal("5")
    assert stock["reserved_quantity"] == Decimal("0")
    assert db.one("batches", id=order["b1"])["status"] == "DEPLETED"
    assert db.one("batches", id=order["b2"])["available_quantity"] == Decimal("5")

    movements = db.rows("stock_movements", movement_type="OUTBOUND")
    assert sorted(m["quantity"] for m in movements) == [Decimal("10"), Decimal("15")]
    assert all(m["source_doctype"] == "SALES_ORDER" and m["warehouse_from_id"] == order["warehouse_id"] for m in movements)
    assert len(db.rows("delivery_note_lines", delivery_note_id=res["delivery_note_id"])) == 2
    assert db.one("sales_orders", id=order["so"]["id"])["status"] == "SHIPPED"


def test_single_batch_is_used_when_it_covers_the_line(db):
    customer_id = db.add_party("Acme Retail", "CUSTOMER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    db.put_stock(product_id, warehouse_id, 40)
    db.add_batch(product_id, warehouse_id, "B1", date(2024, 1, 1), 10)
    b2 = db.add_batch(product_id, warehouse_id, "B2", date(2024, 2, 1), 30)
    so = db.run(
        create_sales_order,
        customer_id=customer_id,
        warehouse_id=warehouse_id,
        lines=[OrderLine(product_id, Decimal("12"), Decimal("1.00"))],
    )
    db.run(approve_sales_order, so["id"])

    res = db.run(ship_sales_order, sales_order_id=so["id"])

    assert [(l["batch_id"], l["quantity"]) for l in res["lines"]] == [(b2, Decimal("12"))]


def test_draft_order_cannot_ship(db, order):
    with pytest.raises(InvalidTransitionError):
        db.run(ship_sales_order, sales_order_id=order["so"]["id"])
    assert db.tables["delivery_notes"] == []
    assert db.stock(order["product_id"], order["warehouse_id"])["reserved_quantity"] == Decimal("25")


def test_shipped_order_cannot_ship_again(db, order):
    db.run(approve_sales_order, order["so"]["id"])
    db.run(ship_sales_order, sales_order_id=order["so"]["id"])
    with pytest.raises(InvalidTransitionError):
        db.run(ship_sales_order, sales_order_id=order["so"]["id"])
    assert len(db.tables["delivery_notes"]) == 1


def test_short_batches_roll_back_the_whole_shipment(db):
    customer_id = db.add_party("Acme Retail", "CUSTOMER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    db.put_stock(product_id, warehouse_id, 10)
    db.add_batch(product_id, warehouse_id, "B1", date(2024, 1, 1), 4)
    so = db.run(
        create_sales_order,
        customer_id=customer_id,
        warehouse_id=warehouse_id,
        lines=[OrderLine(product_id, Decimal("10"), Decimal("1.00"))],
    )
    db.run(approve_sales_order, so["id"])

    with pytest.raises(InsufficientStockError):
        db.run(ship_sales_order, sales_order_id=so["id"])

    assert db.one("sales_orders", id=so["id"])["status"] == "APPROVED"
    assert db.tables["delivery_notes"] == []
    assert db.rows("stock_movements", movement_type="OUTBOUND") == []
    stock = db.stock(product_id, warehouse_id)
    assert stock["quantity_on_hand"] == Decimal("10")
    assert stock["reserved_quantity"] == Decimal("10")


def test_ship_from_a_different_warehouse_is_rejected(db, order):
    db.run(approve_sales_order, order["so"]["id"])
    other = db.add_warehouse("Other")
    with pytest.raises(ValidationError):
        db.run(ship_sales_order, sales_order_id=order["so"]["id"], warehouse_id=other)
    assert db.tables["delivery_notes"] == []


def test_ship_from_the_order_warehouse_explicitly(db, order):
    db.run(approve_sales_order, order["so"]["id"])
    res = db.run(ship_sales_order, sales_order_id=order["so"]["id"], warehouse_id=order["warehouse_id"])
    assert res["status"] == "SHIPPED"
