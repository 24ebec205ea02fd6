from datetime import date, timedelta
from decimal import Decimal

import pytest

from backend.app.errors import InsufficientStockError, ValidationError
from backend.app.services.batches import create_batch, pick_batches, plan_batch_picks


def _b(bid, available):
    return {"id": bid, "available_quantity": Decimal(str(available))}


def test_plan_prefers_oldest_batch_that_covers_the_line():
    batches = [_b("old", 10), _b("new", 20)]
    assert plan_batch_picks(batches, Decimal("10")) == [("old", Decimal("10"))]


def test_plan_skips_to_a_younger_batch_that_covers_alone():
    batches = [_b("old", 5), _b("new", 20)]
    assert plan_batch_picks(batches, Decimal("10")) == [("new", Decimal("10"))]


def test_plan_splits_oldest_first_when_no_single_batch_covers():
    batches = [_b("old", 5), _b("mid", 3), _b("new", 4)]
    assert plan_batch_picks(batches, Decimal("9")) == [
        ("old", Decimal("5")),
        ("mid", Decimal("3")),
        ("new", Decimal("1")),
    ]


def test_plan_returns_none_when_batches_cannot_cover():
    assert plan_batch_picks([_b("a", 5), _b("b", 3)], Decimal("9")) is None
    assert plan_batch_picks([], Decimal("1")) is None


def test_pick_decrements_batches_and_marks_depleted(db):
    product_id = db.add_product()
    warehouse_id = db.add_warehouse()
    b1 = db.add_batch(product_id, warehouse_id, "B1", date(2024, 1, 1), 10)
    b2 = db.add_batch(product_id, warehouse_id, "B2", date(2024, 2, 1), 20)
    cur = db.connect().cursor()

    picks = pick_batches(cur, product_id, warehouse_id, Decimal("25"))

    assert picks == [(b1, Decimal("10")), (b2, Decimal("15"))]
    assert db.one("batches", id=b1)["available_quantity"] == Decimal("0")
    assert db.one("batches", id=b1)["status"] == "DEPLETED"
    assert db.one("batches", id=b2)["available_quantity"] == Decimal("5")
    assert db.one("batches", id=b2)["status"] == "ACTIVE"


def test_pick_skips_expired_batches_unless_allowed(db):
    product_id = db.add_product()
    warehouse_id = db.add_warehouse()
    today = date(2025, 6, 1)
    expired = db.add_batch(product_id, warehouse_id, "OLD", date(2024, 1, 1), 10, expiry_date=today - timedelta(days=1))
    fresh = db.add_batch(product_id, warehouse_id, "NEW", date(2025, 1, 1), 10, expiry_date=today + timedelta(days=30))
    cur = db.connect().cursor()

    assert pick_batches(cur, product_id, warehouse_id, 5, as_of=today) == [(fresh, Decimal("5"))]
    assert pick_batches(cur, product_id, warehouse_id, 5, as_of=today, allow_expired=True) == [(expired, Decimal("5"))]


def test_pick_raises_with_total_available_when_short(db):
    product_id = db.add_product()
    warehouse_id = db.add_warehouse()
    db.add_batch(product_id, warehouse_id, "B1", date(2024, 1, 1), 4)
    db.add_batch(product_id, warehouse_id, "B2", date(2024, 2, 1), 3)
    cur = db.connect().cursor()

    with pytest.raises(InsufficientStockError) as exc_info:
        pick_batches(cur, product_id, warehouse_id, 8)
    assert exc_info.value.available == Decimal("7")


def test_pick_only_sees_batches_in_the_requested_warehouse(db):
    product_id = db.add_product()
    main = db.add_warehouse("Main")
    other = db.add_warehouse("Other")
    db.add_batch(product_id, other, "B1", date(2024, 1, 1), 50)
    with pytest.raises(InsufficientStockError):
        pick_batches(db.connect().cursor(), product_id, main, 1)


def test_create_batch_rejects_expiry_before_manufacture(db):
    with pytest.raises(ValidationError):
        create_batch(
            db.connect().cursor(),
            product_id=db.add_product(),
            warehouse_id=db.add_warehouse(),
            batch_number="B1",
            manufacture_date=date(2024, 5, 1),
            expiry_date=date(2024, 4, 1),
            quantity=10,
        )
    assert db.tables["batches"] == []
