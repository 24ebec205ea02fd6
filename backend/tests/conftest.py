import os
import sys
from datetime import date
from decimal import Decimal

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.services.fulfillment import ship_sales_order  # noqa: E402
from backend.app.services.reservations import OrderLine, approve_sales_order, create_sales_order  # noqa: E402
from backend.tests.fake_db import FakeDB  # noqa: E402


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def make_shipped_order(db):
    """
    Build a customer, a warehouse and stocked batches, then create, approve and
    ship an order. Returns ids of everything involved.
    """

    def _make(lines=((Decimal("10"), Decimal("10.00")),), customer_type="CUSTOMER"):
        customer_id = db.add_party("Acme Retail", customer_type)
        warehouse_id = db.add_warehouse("Main")
        order_lines = []
        products = []
        for i, (qty, price) in enumerate(lines, start=1):
            product_id = db.add_product(f"SKU-{i}")
            products.append(product_id)
            db.put_stock(product_id, warehouse_id, qty)
            db.add_batch(product_id, warehouse_id, f"B-{i}", date(2024, 1, 1), qty)
            order_lines.append(OrderLine(product_id=product_id, quantity=qty, unit_price=price))
        order = db.run(create_sales_order, customer_id=customer_id, warehouse_id=warehouse_id, lines=order_lines, actor="u1")
        db.run(approve_sales_order, order["id"], "u1")
        shipped = db.run(ship_sales_order, sales_order_id=order["id"], actor="u1")
        return {
            "customer_id": customer_id,
            "warehouse_id": warehouse_id,
            "products": products,
            "order": order,
            "delivery_note_id": shipped["delivery_note_id"],
        }

    return _make
