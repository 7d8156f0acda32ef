"""
Purchase and sales order tests.

Verifies:
- order numbers, totals and item snapshots on creation
- explicit transition maps for both order types
- purchase receiving accumulates (PARTIAL, then RECEIVED) and brings goods into stock
- sales confirmation creates the receivable and updates customer statistics
"""

import pytest

from erp.extensions import db
from erp.models import AccountReceivable, Customer, Product, PurchaseOrder, StockMovement
from erp.services import catalog_service, order_service, stock_service
from erp.services.order_service import OrderStateError
from erp.services.stock_service import StockError
from erp.validation import NotFoundError, ValidationError

from conftest import make_product


@pytest.fixture
def customer(db_session):
    customer = catalog_service.create_customer(patch={"name": "Ana Souza", "email": "ana@example.com"})
    db_session.commit()
    return customer


@pytest.fixture
def purchase_order(supplier, product, admin_user):
    order = order_service.create_purchase_order(
        supplier_id=supplier.id,
        items=[{"product_id": product.id, "quantity": 10}],
        user_id=admin_user.id,
        shipping_cents=500,
    )
    db.session.commit()
    return order


def _advance_po(order_id, *statuses):
    for status in statuses:
        order_service.update_purchase_order_status(order_id=order_id, status=status)
    db.session.commit()


def _receive(order_id, item_id, quantity):
    order = order_service.receive_purchase_order(
        order_id=order_id, receipts=[{"item_id": item_id, "received_quantity": quantity}]
    )
    db.session.commit()
    return order


# =============================================================================
# PURCHASE ORDERS
# =============================================================================


class TestPurchaseOrderCreation:

    def test_defaults_and_totals(self, purchase_order):
        assert purchase_order.order_number == "PC000001"
        assert purchase_order.status == "DRAFT"
        assert purchase_order.subtotal_cents == 10000
        assert purchase_order.total_cents == 10500
        item = purchase_order.items[0]
        assert item.unit_cost_cents == 1000
        assert item.received_quantity == 0

    def test_unknown_supplier(self, product):
        with pytest.raises(NotFoundError):
            order_service.create_purchase_order(supplier_id=999999, items=[{"product_id": product.id, "quantity": 1}])
        db.session.rollback()

    def test_empty_items_rejected(self, supplier):
        with pytest.raises(ValidationError):
            order_service.create_purchase_order(supplier_id=supplier.id, items=[])
        db.session.rollback()

    def test_discount_beyond_amount_rejected(self, supplier, product):
        with pytest.raises(ValidationError):
            order_service.create_purchase_order(
                supplier_id=supplier.id,
                items=[{"product_id": product.id, "quantity": 1}],
                discount_cents=5000,
            )
        db.session.rollback()


class TestPurchaseOrderTransitions:

    def test_forward_path(self, purchase_order):
        _advance_po(purchase_order.id, "PENDING", "APPROVED", "ORDERED")
        assert db.session.get(PurchaseOrder, purchase_order.id).status == "ORDERED"

    def test_skipping_approval_rejected(self, purchase_order):
        with pytest.raises(OrderStateError):
            order_service.update_purchase_order_status(order_id=purchase_order.id, status="APPROVED")
        db.session.rollback()

    def test_received_only_through_receive(self, purchase_order):
        _advance_po(purchase_order.id, "PENDING", "APPROVED")
        with pytest.raises(OrderStateError):
            order_service.update_purchase_order_status(order_id=purchase_order.id, status="RECEIVED")
        db.session.rollback()

    def test_unknown_status(self, purchase_order):
        with pytest.raises(ValidationError):
            order_service.update_purchase_order_status(order_id=purchase_order.id, status="LOST")
        db.session.rollback()


class TestPurchaseOrderReceiving:

    def test_partial_then_complete(self, purchase_order, product):
        _advance_po(purchase_order.id, "PENDING", "APPROVED")
        item_id = purchase_order.items[0].id

        order = _receive(purchase_order.id, item_id, 4)
        assert order.status == "PARTIAL"
        assert order.items[0].received_quantity == 4
        assert db.session.get(Product, product.id).current_stock == 4

        order = _receive(purchase_order.id, item_id, 6)
        assert order.status == "RECEIVED"
        assert order.received_date is not None
        assert db.session.get(Product, product.id).current_stock == 10

        movements = db.session.query(StockMovement).filter_by(reference_type="PURCHASE_ORDER").all()
        assert [m.quantity for m in movements] == [4, 6]
        assert {m.reason for m in movements} == {"PURCHASE"}
        assert {m.unit_cost_cents for m in movements} == {1000}

    def test_receiving_beyond_ordered_rejected(self, purchase_order):
        _advance_po(purchase_order.id, "PENDING", "APPROVED")
        item_id = purchase_order.items[0].id
        _receive(purchase_order.id, item_id, 8)

        with pytest.raises(ValidationError):
            order_service.receive_purchase_order(
                order_id=purchase_order.id, receipts=[{"item_id": item_id, "received_quantity": 3}]
            )
        db.session.rollback()

    def test_draft_cannot_be_received(self, purchase_order):
        with pytest.raises(OrderStateError):
            order_service.receive_purchase_order(
                order_id=purchase_order.id,
                receipts=[{"item_id": purchase_order.items[0].id, "received_quantity": 1}],
            )
        db.session.rollback()

    def test_receiving_at_a_unit(self, supplier, product, main_unit):
        order = order_service.create_purchase_order(
            supplier_id=supplier.id,
            unit_id=main_unit.id,
            items=[{"product_id": product.id, "quantity": 5}],
        )
        db.session.commit()
        _advance_po(order.id, "PENDING", "APPROVED")

        _receive(order.id, order.items[0].id, 5)

        assert stock_service.get_unit_quantity(main_unit.id, product.id) == 5
        assert db.session.get(Product, product.id).current_stock == 0

    def test_receive_route(self, client, admin_headers, purchase_order):
        _advance_po(purchase_order.id, "PENDING", "APPROVED")
        resp = client.post(f"/api/purchase-orders/{purchase_order.id}/receive", headers=admin_headers, json={
            "items": [{"item_id": purchase_order.items[0].id, "received_quantity": 10}],
        })
        assert resp.status_code == 200
        assert resp.json["status"] == "RECEIVED"


# =============================================================================
# SALES ORDERS
# =============================================================================


class TestSalesOrderCreation:

    def test_prices_default_to_product_and_variant(self, product):
        variant = catalog_service.add_variant(
            product_id=product.id, patch={"sku": "SHIRT-01-XL", "size": "XL", "additional_price_cents": 300}
        )
        db.session.commit()

        order = order_service.create_sales_order(items=[
            {"product_id": product.id, "quantity": 1},
            {"product_id": product.id, "variant_id": variant.id, "quantity": 2},
        ])
        db.session.commit()

        assert order.order_number == "PV000001"
        prices = sorted(i.unit_price_cents for i in order.items)
        assert prices == [2500, 2800]
        assert order.total_cents == 2500 + 2 * 2800
        assert {i.unit_cost_cents for i in order.items} == {1000}

    def test_unknown_product(self):
        with pytest.raises(NotFoundError):
            order_service.create_sales_order(items=[{"product_id": 999999, "quantity": 1}])
        db.session.rollback()


class TestSalesOrderConfirmation:

    def test_confirm_creates_receivable_and_updates_customer(self, product, customer):
        order = order_service.create_sales_order(
            customer_id=customer.id,
            items=[{"product_id": product.id, "quantity": 2}],
        )
        order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
        db.session.commit()

        receivable = db.session.query(AccountReceivable).filter_by(sales_order_id=order.id).one()
        assert receivable.amount_cents == 5000
        assert receivable.customer_id == customer.id

        refreshed = db.session.get(Customer, customer.id)
        assert refreshed.purchase_count == 1
        assert refreshed.total_purchases_cents == 5000
        assert refreshed.last_purchase_at is not None

    def test_large_purchase_makes_customer_vip(self, product, customer):
        order = order_service.create_sales_order(
            customer_id=customer.id,
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 1_000_000}],
        )
        order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
        db.session.commit()

        assert db.session.get(Customer, customer.id).segment == "VIP"

    def test_confirm_leaves_stock_alone_by_default(self, product):
        order = order_service.create_sales_order(items=[{"product_id": product.id, "quantity": 1}])
        order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
        db.session.commit()

        assert db.session.query(StockMovement).filter_by(reason="SALE").count() == 0

    def test_confirm_decrements_stock_when_enabled(self, app, monkeypatch, db_session):
        monkeypatch.setitem(app.config, "SALES_CONFIRM_DECREMENTS_STOCK", True)
        jacket = make_product("JACKET-01", stock=5)
        order = order_service.create_sales_order(items=[{"product_id": jacket.id, "quantity": 2}])
        order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
        db.session.commit()

        assert db.session.get(Product, jacket.id).current_stock == 3
        movement = db.session.query(StockMovement).filter_by(reason="SALE").one()
        assert movement.reference_id == order.id

    def test_confirm_without_stock_fails_when_enabled(self, app, monkeypatch, product):
        monkeypatch.setitem(app.config, "SALES_CONFIRM_DECREMENTS_STOCK", True)
        order = order_service.create_sales_order(items=[{"product_id": product.id, "quantity": 1}])
        db.session.commit()

        with pytest.raises(StockError):
            order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
        db.session.rollback()

        assert order_service.get_sales_order(order.id).status == "DRAFT"
        assert db.session.query(AccountReceivable).count() == 0


class TestSalesOrderTransitions:

    def test_cancel_from_pending(self, product):
        order = order_service.create_sales_order(items=[{"product_id": product.id, "quantity": 1}])
        order_service.update_sales_order_status(order_id=order.id, status="PENDING")
        order_service.update_sales_order_status(order_id=order.id, status="CANCELLED")
        db.session.commit()
        assert order_service.get_sales_order(order.id).status == "CANCELLED"

    def test_cancel_after_confirm_rejected(self, product):
        order = order_service.create_sales_order(items=[{"product_id": product.id, "quantity": 1}])
        order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
        db.session.commit()

        with pytest.raises(OrderStateError):
            order_service.update_sales_order_status(order_id=order.id, status="CANCELLED")
        db.session.rollback()

    def test_fulfilment_path(self, product):
        order = order_service.create_sales_order(items=[{"product_id": product.id, "quantity": 1}])
        for status in ("CONFIRMED", "PROCESSING", "SHIPPED", "DELIVERED"):
            order_service.update_sales_order_status(order_id=order.id, status=status)
        db.session.commit()
        assert order_service.get_sales_order(order.id).status == "DELIVERED"

    def test_status_route(self, client, admin_headers, product):
        resp = client.post("/api/sales-orders", headers=admin_headers, json={
            "items": [{"product_id": product.id, "quantity": 3}],
            "payment_method": "PIX",
        })
        assert resp.status_code == 201
        order_id = resp.json["id"]

        resp = client.post(f"/api/sales-orders/{order_id}/status", headers=admin_headers, json={"status": "CONFIRMED"})
        assert resp.status_code == 200
        assert resp.json["status"] == "CONFIRMED"

        resp = client.post(f"/api/sales-orders/{order_id}/status", headers=admin_headers, json={"status": "DRAFT"})
        assert resp.status_code == 409

        resp = client.get("/api/accounts-receivable", headers=admin_headers)
        assert [r["amount_cents"] for r in resp.json] == [7500]
