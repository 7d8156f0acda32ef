"""
Stock ledger tests.

Verifies:
- Product.current_stock always equals the signed sum of its movements
- previous_stock / new_stock are captured per movement
- OUT beyond the available quantity is rejected and writes nothing
- Threshold alerts (LOW_STOCK, OUT_OF_STOCK, HIGH_STOCK) and their dedupe
- Unit-level movements touch UnitStock, not the product cache
"""

import httpx
import pytest

from erp.extensions import db
from erp.models import Product, StockAlert, StockMovement, UnitStock
from erp.services import catalog_service, stock_service
from erp.services.stock_service import StockError
from erp.validation import ValidationError

from conftest import make_product


def _move(product_id, type, quantity, reason=None, **kwargs):
    reason = reason or {"IN": "PURCHASE", "OUT": "SALE", "ADJUSTMENT": "INVENTORY"}[type]
    movement = stock_service.record_movement(
        product_id=product_id, type=type, reason=reason, quantity=quantity, **kwargs
    )
    db.session.commit()
    return movement


# =============================================================================
# LEDGER / CACHE CONSISTENCY
# =============================================================================


class TestLedgerConsistency:

    def test_current_stock_matches_movement_sum(self, product):
        _move(product.id, "IN", 50)
        _move(product.id, "OUT", 12)
        _move(product.id, "IN", 5)
        _move(product.id, "OUT", 3)

        movements = db.session.query(StockMovement).filter_by(product_id=product.id).all()
        signed = sum(m.quantity if m.type == "IN" else -m.quantity for m in movements)

        assert db.session.get(Product, product.id).current_stock == signed == 40

    def test_each_movement_records_previous_and_new_stock(self, product):
        first = _move(product.id, "IN", 30)
        second = _move(product.id, "OUT", 8)

        assert (first.previous_stock, first.new_stock) == (0, 30)
        assert (second.previous_stock, second.new_stock) == (30, 22)

    def test_adjustment_sets_absolute_level(self, product):
        _move(product.id, "IN", 30)
        adjustment = _move(product.id, "ADJUSTMENT", 17)

        assert adjustment.previous_stock == 30
        assert adjustment.new_stock == 17
        assert db.session.get(Product, product.id).current_stock == 17

    def test_unit_cost_sets_total_cost(self, product):
        movement = _move(product.id, "IN", 4, unit_cost_cents=1250)
        assert movement.total_cost_cents == 5000

    def test_initial_stock_on_create_is_an_inventory_movement(self, db_session):
        created = make_product("JEANS-01", stock=15)

        movement = db.session.query(StockMovement).filter_by(product_id=created.id).one()
        assert movement.type == "ADJUSTMENT"
        assert movement.reason == "INVENTORY"
        assert movement.new_stock == 15
        assert created.current_stock == 15


# =============================================================================
# NEGATIVE STOCK
# =============================================================================


class TestNegativeStockRejected:

    def test_out_beyond_available_raises(self, product):
        _move(product.id, "IN", 5)

        with pytest.raises(StockError):
            stock_service.record_movement(product_id=product.id, type="OUT", reason="SALE", quantity=6)
        db.session.rollback()

        assert db.session.get(Product, product.id).current_stock == 5
        assert db.session.query(StockMovement).filter_by(product_id=product.id).count() == 1

    def test_out_beyond_available_returns_409(self, client, admin_headers, product):
        resp = client.post("/api/stock/movements", headers=admin_headers, json={
            "product_id": product.id,
            "type": "OUT",
            "reason": "SALE",
            "quantity": 1,
        })

        assert resp.status_code == 409
        assert resp.json["code"] == "CONFLICT"
        assert db.session.query(StockMovement).count() == 0

    @pytest.mark.parametrize("type,quantity", [("IN", 0), ("OUT", -1), ("ADJUSTMENT", -5)])
    def test_invalid_quantities(self, product, type, quantity):
        with pytest.raises(ValidationError):
            stock_service.record_movement(product_id=product.id, type=type, reason="ADJUSTMENT", quantity=quantity)
        db.session.rollback()

    def test_unknown_reason(self, product):
        with pytest.raises(ValidationError):
            stock_service.record_movement(product_id=product.id, type="IN", reason="GIFT", quantity=1)
        db.session.rollback()


# =============================================================================
# ALERTS
# =============================================================================


class TestStockAlerts:

    def test_low_stock_alert(self, product):
        _move(product.id, "IN", 20)
        _move(product.id, "OUT", 12)

        alerts = db.session.query(StockAlert).filter_by(product_id=product.id).all()
        assert len(alerts) == 1
        assert alerts[0].alert_type == "LOW_STOCK"
        assert alerts[0].current_stock == 8
        assert alerts[0].threshold == 10

    def test_out_below_minimum_raises_low_stock(self, db_session):
        shirt = make_product("SHIRT-02", stock=20, min_stock=10)

        _move(shirt.id, "OUT", 15)

        assert db.session.get(Product, shirt.id).current_stock == 5
        alert = db.session.query(StockAlert).filter_by(product_id=shirt.id).one()
        assert alert.alert_type == "LOW_STOCK"

    def test_unread_alert_is_not_duplicated(self, product):
        _move(product.id, "IN", 20)
        _move(product.id, "OUT", 12)
        _move(product.id, "OUT", 2)

        assert db.session.query(StockAlert).filter_by(alert_type="LOW_STOCK").count() == 1

    def test_read_alert_allows_a_new_one(self, product):
        _move(product.id, "IN", 20)
        _move(product.id, "OUT", 12)
        alert = db.session.query(StockAlert).one()
        stock_service.mark_alert_read(alert.id)
        db.session.commit()

        _move(product.id, "OUT", 1)

        assert db.session.query(StockAlert).filter_by(alert_type="LOW_STOCK").count() == 2

    def test_out_of_stock_alert(self, product):
        _move(product.id, "IN", 20)
        _move(product.id, "OUT", 20)

        alert = db.session.query(StockAlert).one()
        assert alert.alert_type == "OUT_OF_STOCK"
        assert alert.current_stock == 0

    def test_high_stock_alert(self, product):
        _move(product.id, "IN", 100)

        alert = db.session.query(StockAlert).one()
        assert alert.alert_type == "HIGH_STOCK"
        assert alert.threshold == 100

    def test_stock_between_thresholds_raises_nothing(self, product):
        _move(product.id, "IN", 50)
        assert db.session.query(StockAlert).count() == 0


# =============================================================================
# UNIT-LEVEL LEDGER
# =============================================================================


class TestUnitLedger:

    def test_unit_movement_updates_unit_stock_only(self, product, main_unit):
        movement = _move(product.id, "IN", 12, unit_id=main_unit.id)

        row = db.session.query(UnitStock).filter_by(unit_id=main_unit.id, product_id=product.id).one()
        assert row.quantity == 12
        assert movement.unit_id == main_unit.id
        assert db.session.get(Product, product.id).current_stock == 0

    def test_unit_out_beyond_available(self, product, main_unit):
        _move(product.id, "IN", 3, unit_id=main_unit.id)
        with pytest.raises(StockError):
            stock_service.record_movement(
                product_id=product.id, unit_id=main_unit.id, type="OUT", reason="SALE", quantity=4
            )
        db.session.rollback()

    def test_unit_movement_route(self, client, admin_headers, product, main_unit):
        resp = client.post("/api/unit-movements", headers=admin_headers, json={
            "unit_id": main_unit.id,
            "product_id": product.id,
            "type": "IN",
            "reason": "PURCHASE",
            "quantity": 7,
        })
        assert resp.status_code == 201

        resp = client.get(f"/api/unit-stock/by-unit/{main_unit.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert [r["quantity"] for r in resp.json] == [7]


# =============================================================================
# VARIANTS
# =============================================================================


class TestVariantStock:

    def test_variant_stock_follows_product_delta(self, product):
        variant = catalog_service.add_variant(product_id=product.id, patch={"sku": "SHIRT-01-M", "size": "M"})
        db.session.commit()

        _move(product.id, "IN", 6, variant_id=variant.id)
        _move(product.id, "OUT", 2, variant_id=variant.id)

        assert catalog_service.get_variant(variant.id).stock == 4
        assert db.session.get(Product, product.id).current_stock == 4


# =============================================================================
# ALERT NOTIFICATION
# =============================================================================


class TestAlertNotification:

    @pytest.fixture
    def alert(self, product):
        _move(product.id, "IN", 20)
        _move(product.id, "OUT", 15)
        return db.session.query(StockAlert).one()

    def test_delivered_notification_flags_alert(self, app, monkeypatch, client, admin_headers, alert):
        monkeypatch.setitem(app.config, "NOTIFY_WEBHOOK_URL", "https://hooks.example.test/owner")
        sent = []

        def fake_post(url, json=None, timeout=None):
            sent.append((url, json))
            return httpx.Response(200)

        monkeypatch.setattr("erp.services.notification_service.httpx.post", fake_post)

        resp = client.post(f"/api/stock/alerts/{alert.id}/notify", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json == {"success": True}
        assert sent[0][0] == "https://hooks.example.test/owner"
        assert "low stock" in sent[0][1]["title"]
        refreshed = db.session.get(StockAlert, alert.id)
        assert refreshed.is_notified is True
        assert refreshed.notified_at is not None

    def test_failed_notification_leaves_alert_untouched(self, app, monkeypatch, client, admin_headers, alert):
        monkeypatch.setitem(app.config, "NOTIFY_WEBHOOK_URL", "https://hooks.example.test/owner")

        def failing_post(url, json=None, timeout=None):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr("erp.services.notification_service.httpx.post", failing_post)

        resp = client.post(f"/api/stock/alerts/{alert.id}/notify", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json == {"success": False}
        assert db.session.get(StockAlert, alert.id).is_notified is False

    def test_unconfigured_webhook_reports_failure(self, alert):
        assert stock_service.send_alert_notification(alert.id) is False
