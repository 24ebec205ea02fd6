from datetime import date
from decimal import Decimal

import pytest

from backend.app.errors import EntityNotFoundError, InvalidTransitionError, ValidationError
from backend.app.services.goods_receipt import ReceiptItem, receive_goods
from backend.app.services.purchasing import (
    approve_purchase_order,
    cancel_purchase_order,
    create_purchase_order,
    create_supplier_invoice_from_grn,
)
from backend.app.services.reservations import OrderLine


@pytest.fixture
def po(db):
    supplier_id = db.add_party("Wholesale Co", "SUPPLIER")
    warehouse_id = db.add_warehouse("Main")
    product_id = db.add_product("SKU-1")
    order = db.run(
        create_purchase_order,
        supplier_id=supplier_id,
        lines=[OrderLine(product_id, Decimal("100"), Decimal("1.00"))],
        actor="u1",
    )
    return {"supplier_id": supplier_id, "warehouse_id": warehouse_id, "product_id": product_id, "order": order}


def _item(po, qty="100", **kw):
    kw.setdefault("batch_number", "LOT-1")
    kw.setdefault("manufacture_date", date(2024, 3, 1))
    return ReceiptItem(product_id=po["product_id"], quantity=Decimal(qty), **kw)


def test_purchase_order_starts_as_draft(po):
    assert po["order"]["status"] == "DRAFT"
    assert po["order"]["order_no"].startswith("PO-")
    assert po["order"]["total_amount"] == Decimal("100.00")


def test_purchase_order_needs_a_supplier(db):
    customer_id = db.add_party("Acme Retail", "CUSTOMER")
    with pytest.raises(ValidationError):
        db.run(create_purchase_order, supplier_id=customer_id, lines=[OrderLine(db.add_product(), Decimal("1"), Decimal("1.00"))])


def test_receipt_creates_batch_stock_and_inbound_movement(db, po):
    db.run(approve_purchase_order, po["order"]["id"], "u1")

    grn = db.run(
        receive_goods,
        purchase_order_id=po["order"]["id"],
        warehouse_id=po["warehouse_id"],
        items=[_item(po, expiry_date=date(2025, 3, 1))],
        actor="u1",
    )

    assert grn["grn_number"].startswith("GRN-")
    stock = db.stock(po["product_id"], po["warehouse_id"])
    assert stock["quantity_on_hand"] == Decimal("100")
    assert stock["reserved_quantity"] == Decimal("0")

    batch = db.one("batches", product_id=po["product_id"])
    assert batch["batch_number"] == "LOT-1"
    assert batch["available_quantity"] == Decimal("100")
    assert batch["expiry_date"] == date(2025, 3, 1)

    mv = db.one("stock_movements", movement_type="INBOUND")
    assert mv["source_doctype"] == "GRN"
    assert mv["source_id"] == grn["grn_id"]
    assert mv["batch_id"] == batch["id"]
    assert mv["warehouse_to_id"] == po["warehouse_id"]

    assert db.one("purchase_orders", id=po["order"]["id"])["status"] == "RECEIVED"
    assert db.one("grn_lines", grn_id=grn["grn_id"])["received_quantity"] == Decimal("100")
    assert db.one("audit_logs", action="grn_complete")["entity_id"] == grn["grn_id"]


def test_receipt_against_draft_order_is_allowed(db, po):
    db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=[_item(po)])
    assert db.one("purchase_orders", id=po["order"]["id"])["status"] == "RECEIVED"


def test_received_order_cannot_be_received_again(db, po):
    db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=[_item(po)])
    with pytest.raises(InvalidTransitionError):
        db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=[_item(po)])
    assert db.stock(po["product_id"], po["warehouse_id"])["quantity_on_hand"] == Decimal("100")
    assert len(db.tables["grns"]) == 1


def test_cancelled_order_cannot_be_received(db, po):
    db.run(cancel_purchase_order, po["order"]["id"], "u1")
    with pytest.raises(InvalidTransitionError):
        db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=[_item(po)])
    assert db.tables["stock_items"] == []


def test_bad_item_dates_reject_the_whole_receipt(db, po):
    items = [_item(po, qty="5"), _item(po, qty="5", batch_number="LOT-2", expiry_date=date(2024, 1, 1))]
    with pytest.raises(ValidationError):
        db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=items)
    assert db.tables["batches"] == []
    assert db.tables["grns"] == []


def test_po_line_must_belong_to_the_order(db, po):
    line_id = po["order"]["lines"][0]["id"]
    grn = db.run(
        receive_goods,
        purchase_order_id=po["order"]["id"],
        warehouse_id=po["warehouse_id"],
        items=[_item(po, po_line_id=line_id)],
    )
    assert db.one("grn_lines", grn_id=grn["grn_id"])["po_line_id"] == line_id


def test_unknown_po_line_rolls_back_the_receipt(db, po):
    with pytest.raises(ValidationError):
        db.run(
            receive_goods,
            purchase_order_id=po["order"]["id"],
            warehouse_id=po["warehouse_id"],
            items=[_item(po, po_line_id="not-a-line")],
        )
    assert db.tables["grns"] == []
    assert db.one("purchase_orders", id=po["order"]["id"])["status"] == "DRAFT"


def test_unknown_warehouse_is_not_found(db, po):
    with pytest.raises(EntityNotFoundError):
        db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id="missing", items=[_item(po)])


def test_supplier_invoice_posts_balanced_purchase_journal(db, po):
    grn = db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=[_item(po)])

    inv = db.run(
        create_supplier_invoice_from_grn,
        grn_id=grn["grn_id"],
        invoice_no="SUP-778",
        amount_untaxed=Decimal("100"),
        tax_amount=Decimal("11"),
        actor="u1",
    )

    assert inv["total_amount"] == Decimal("111.00")
    assert inv["supplier_id"] == po["supplier_id"]
    journal = db.one("journal_entries", id=inv["journal_id"])
    assert journal["journal_type"] == "PURCHASE"
    assert journal["journal_number"].startswith("SUP-INV-")
    lines = {l["account_code"]: (l["debit"], l["credit"]) for l in db.rows("journal_lines", journal_entry_id=inv["journal_id"])}
    assert lines == {
        "5000": (Decimal("100.00"), Decimal("0.00")),
        "1500": (Decimal("11.00"), Decimal("0.00")),
        "2000": (Decimal("0.00"), Decimal("111.00")),
    }


def test_untaxed_supplier_invoice_skips_vat_line(db, po):
    grn = db.run(receive_goods, purchase_order_id=po["order"]["id"], warehouse_id=po["warehouse_id"], items=[_item(po)])
    inv = db.run(create_supplier_invoice_from_grn, grn_id=grn["grn_id"], invoice_no="SUP-1", amount_untaxed=50, tax_amount=0)
    codes = sorted(l["account_code"] for l in db.rows("journal_lines", journal_entry_id=inv["journal_id"]))
    assert codes == ["2000", "5000"]


def test_supplier_invoice_for_unknown_grn(db):
    with pytest.raises(EntityNotFoundError):
        db.run(create_supplier_invoice_from_grn, grn_id="missing", invoice_no="X", amount_untaxed=1, tax_amount=0)
