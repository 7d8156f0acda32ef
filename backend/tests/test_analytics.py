"""
Analytics and reporting tests.

Verifies:
- DRE lines are derived from counted orders, processed returns and expenses
- ABC classes follow cumulative revenue share (80 / 95 cut-offs)
- turnover is back-calculated from the movement ledger
- dashboard, multi-unit dashboard, inventory reports and health
"""

from datetime import timedelta

import pytest

from erp.extensions import db
from erp.services import (
    analytics_service,
    finance_service,
    order_service,
    reporting_service,
    return_service,
    stock_service,
    transfer_service,
)
from erp.time_utils import current_period, previous_month_start, utcnow
from erp.validation import NotFoundError, ValidationError

from conftest import make_product


def _confirmed_order(items, **kwargs):
    order = order_service.create_sales_order(items=items, **kwargs)
    order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED")
    db.session.commit()
    return order


def _expense(category, amount_cents):
    finance_service.create_transaction(patch={
        "type": "EXPENSE",
        "category": category,
        "description": category.title(),
        "amount_cents": amount_cents,
    })


# =============================================================================
# DRE
# =============================================================================


class TestDre:

    @pytest.fixture
    def month_activity(self, product):
        _confirmed_order([{"product_id": product.id, "quantity": 4}], discount_cents=1000)

        # Draft orders are not revenue
        order_service.create_sales_order(items=[{"product_id": product.id, "quantity": 9}])

        doc = return_service.create_return(
            type="RETURN",
            reason="WRONG_SIZE",
            refund_method="STORE_CREDIT",
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}],
        )
        return_service.approve_return(return_id=doc.id)
        return_service.process_return(return_id=doc.id)

        for category, amount in (
            ("RENT", 2000),
            ("SALARY", 1500),
            ("MARKETING", 500),
            ("UTILITIES", 300),
            ("TAX", 700),
            ("SUPPLIER", 5000),
        ):
            _expense(category, amount)
        db.session.commit()

    def test_income_statement_lines(self, month_activity):
        dre = analytics_service.calculate_dre()

        assert dre["period"] == current_period()
        assert dre["order_count"] == 1
        assert dre["gross_revenue_cents"] == 10000
        assert dre["discounts_cents"] == 1000
        assert dre["returns_cents"] == 2500
        assert dre["net_revenue_cents"] == 6500
        assert dre["cmv_cents"] == 4000
        assert dre["gross_profit_cents"] == 2500
        assert dre["operating_expenses"] == {
            "salary_cents": 1500,
            "rent_cents": 2000,
            "marketing_cents": 500,
            "other_cents": 300,
            "total_cents": 4300,
        }
        assert dre["operating_profit_cents"] == -1800
        assert dre["taxes_cents"] == 700
        assert dre["net_profit_cents"] == -2500
        assert dre["gross_margin_percent"] == 38.46

    def test_empty_period(self):
        dre = analytics_service.calculate_dre("2001-02")
        assert dre["net_revenue_cents"] == 0
        assert dre["gross_margin_percent"] == 0.0

    def test_invalid_period(self):
        with pytest.raises(ValidationError):
            analytics_service.calculate_dre("2024-13")

    def test_report_spans_months(self):
        rows = analytics_service.dre_report(start_period="2023-11", end_period="2024-02")
        assert [r["period"] for r in rows] == ["2023-11", "2023-12", "2024-01", "2024-02"]

    def test_report_capped_at_36_periods(self):
        with pytest.raises(ValidationError):
            analytics_service.dre_report(start_period="2020-01", end_period="2023-01")

    def test_report_rejects_reversed_range(self):
        with pytest.raises(ValidationError):
            analytics_service.dre_report(start_period="2024-05", end_period="2024-01")

    def test_route(self, client, user_headers, month_activity):
        resp = client.get("/api/dre", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json["net_profit_cents"] == -2500

        resp = client.get("/api/dre?period=bad", headers=user_headers)
        assert resp.status_code == 400


# =============================================================================
# ABC
# =============================================================================


class TestAbcAnalysis:

    @pytest.fixture
    def sold(self, db_session):
        top = make_product("ABC-A")
        mid = make_product("ABC-B")
        tail = make_product("ABC-C")
        _confirmed_order([
            {"product_id": top.id, "quantity": 1, "unit_price_cents": 8000},
            {"product_id": mid.id, "quantity": 1, "unit_price_cents": 1500},
            {"product_id": tail.id, "quantity": 1, "unit_price_cents": 500},
        ])
        return top, mid, tail

    def test_classes_by_cumulative_share(self, sold):
        top, mid, tail = sold
        result = analytics_service.abc_analysis()

        assert result["total_cents"] == 10000
        assert [(r["product_id"], r["class"]) for r in result["rows"]] == [
            (top.id, "A"),
            (mid.id, "B"),
            (tail.id, "C"),
        ]
        assert [r["cumulative_pct"] for r in result["rows"]] == [80.0, 95.0, 100.0]
        assert result["summary"] == {"A": 1, "B": 1, "C": 1}

    def test_profit_metric_leaves_out_losses(self, sold):
        top, mid, tail = sold
        result = analytics_service.abc_analysis(metric="profit")

        assert [r["product_id"] for r in result["rows"]] == [top.id, mid.id]
        assert result["total_cents"] == 7500

    def test_orders_outside_window_are_ignored(self, sold):
        result = analytics_service.abc_analysis(start=utcnow() - timedelta(days=30), end=utcnow() - timedelta(days=1))
        assert result["rows"] == []
        assert result["total_cents"] == 0

    def test_unknown_metric(self):
        with pytest.raises(ValidationError):
            analytics_service.abc_analysis(metric="volume")

    def test_route(self, client, user_headers, sold):
        resp = client.get("/api/reports/abc?metric=revenue", headers=user_headers)
        assert resp.status_code == 200
        assert [r["class"] for r in resp.json["rows"]] == ["A", "B", "C"]


# =============================================================================
# TURNOVER
# =============================================================================


class TestTurnover:

    def test_back_calculated_from_ledger(self, db_session):
        jeans = make_product("JEANS-01", stock=20)
        stock_service.record_movement(product_id=jeans.id, type="OUT", reason="SALE", quantity=5)
        db.session.commit()

        row = analytics_service.calculate_turnover(product_id=jeans.id)

        assert row["period"] == current_period()
        assert row["units_sold"] == 5
        assert row["opening_stock"] == 0
        assert row["closing_stock"] == 15
        assert row["average_stock"] == 7.5
        assert row["turnover_rate"] == 0.67
        assert row["coverage_days"] is not None

    def test_nothing_sold(self, db_session):
        socks = make_product("SOCKS-01", stock=10)

        row = analytics_service.calculate_turnover(product_id=socks.id)

        assert row["units_sold"] == 0
        assert row["turnover_rate"] == 0.0
        assert row["coverage_days"] is None

    def test_counted_orders_stand_in_for_missing_sale_movements(self, product):
        _confirmed_order([{"product_id": product.id, "quantity": 3}])
        row = analytics_service.calculate_turnover(product_id=product.id)
        assert row["units_sold"] == 3
        assert row["turnover_rate"] == 0.0

    def test_unit_scope(self, product, main_unit):
        stock_service.record_movement(product_id=product.id, unit_id=main_unit.id, type="IN", reason="PURCHASE", quantity=10)
        stock_service.record_movement(product_id=product.id, unit_id=main_unit.id, type="OUT", reason="SALE", quantity=4)
        db.session.commit()

        row = analytics_service.calculate_turnover(product_id=product.id, unit_id=main_unit.id)
        assert row["units_sold"] == 4
        assert row["closing_stock"] == 6

        product_row = analytics_service.calculate_turnover(product_id=product.id)
        assert product_row["units_sold"] == 0

    def test_unknown_product(self):
        with pytest.raises(NotFoundError):
            analytics_service.calculate_turnover(product_id=999999)

    def test_report_slowest_first(self, db_session):
        fast = make_product("FAST-01", stock=10)
        slow = make_product("SLOW-01", stock=10)
        stock_service.record_movement(product_id=fast.id, type="OUT", reason="SALE", quantity=8)
        db.session.commit()

        report = analytics_service.turnover_report()
        assert [r["product_id"] for r in report["rows"]] == [slow.id, fast.id]

    def test_route_requires_product(self, client, user_headers):
        resp = client.get("/api/stock-turnover/calculate", headers=user_headers)
        assert resp.status_code == 400


# =============================================================================
# DASHBOARD / REPORTS
# =============================================================================


class TestDashboard:

    def test_stats_and_growth(self, product):
        now = utcnow()
        earlier = _confirmed_order([{"product_id": product.id, "quantity": 2}])
        earlier.order_date = previous_month_start(now.date()) + timedelta(days=1)
        db.session.commit()
        _confirmed_order([{"product_id": product.id, "quantity": 3}])

        stats = reporting_service.dashboard_stats(now=now)

        assert stats["month_sales_cents"] == 7500
        assert stats["month_orders"] == 1
        assert stats["sales_growth_percent"] == 50.0
        assert stats["orders_growth_percent"] == 0.0
        assert stats["open_receivables_cents"] == 12500
        assert stats["low_stock_count"] == 1
        assert stats["average_margin_percent"] == 60.0

    def test_growth_from_empty_previous_month(self, product):
        _confirmed_order([{"product_id": product.id, "quantity": 1}])
        stats = reporting_service.dashboard_stats()
        assert stats["sales_growth_percent"] == 100.0

    def test_multi_unit(self, product, main_unit, branch_unit, admin_user):
        stock_service.record_movement(product_id=product.id, unit_id=main_unit.id, type="IN", reason="PURCHASE", quantity=10)
        transfer_service.create_transfer(
            from_unit_id=main_unit.id,
            to_unit_id=branch_unit.id,
            items=[{"product_id": product.id, "requested_quantity": 2}],
            user_id=admin_user.id,
        )
        db.session.commit()

        rows = {r["code"]: r for r in reporting_service.multi_unit_dashboard()}

        assert rows["MAIN"]["total_quantity"] == 10
        assert rows["MAIN"]["stock_value_cents"] == 10000
        assert rows["MAIN"]["pending_outbound_transfers"] == 1
        assert rows["BR01"]["pending_inbound_transfers"] == 1
        assert rows["BR01"]["sku_count"] == 0

    def test_multi_unit_unknown_unit(self):
        with pytest.raises(NotFoundError):
            reporting_service.multi_unit_dashboard(unit_id=999999)

    def test_routes(self, client, user_headers, product):
        assert client.get("/api/dashboard/stats", headers=user_headers).status_code == 200
        assert client.get("/api/dashboard/multi-unit", headers=user_headers).json == []


class TestInventoryReports:

    def test_inventory_totals(self, db_session):
        make_product("TEE-01", stock=4, cost=1500)
        make_product("TEE-02", stock=6, cost=500)

        report = reporting_service.inventory_report()

        assert report["total_products"] == 2
        assert report["total_items"] == 10
        assert report["total_value_cents"] == 4 * 1500 + 6 * 500

    def test_low_and_high_stock(self, db_session):
        low = make_product("LOW-01", stock=1, min_stock=5)
        high = make_product("HIGH-01", stock=60, max_stock=50)

        assert [r["product_id"] for r in reporting_service.low_stock_report()] == [low.id]
        assert [r["product_id"] for r in reporting_service.high_stock_report()] == [high.id]

    def test_sales_report_and_top_products(self, client, user_headers, product):
        _confirmed_order([{"product_id": product.id, "quantity": 2}])
        _confirmed_order([{"product_id": product.id, "quantity": 4}])

        resp = client.get("/api/reports/sales", headers=user_headers)
        assert resp.json["total_sales_cents"] == 15000
        assert resp.json["average_ticket_cents"] == 7500

        resp = client.get("/api/reports/top-products?limit=5", headers=user_headers)
        assert resp.json[0]["product_id"] == product.id
        assert resp.json[0]["quantity"] == 6


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    def test_degraded_without_collaborators(self, client):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "degraded"
        assert resp.json["checks"]["database"]["status"] == "healthy"
        assert resp.json["checks"]["collaborators"]["details"] == {
            "storage_configured": False,
            "notification_configured": False,
        }

    def test_healthy_when_configured(self, app, monkeypatch, client):
        monkeypatch.setitem(app.config, "STORAGE_BASE_URL", "https://storage.example.test")
        monkeypatch.setitem(app.config, "NOTIFY_WEBHOOK_URL", "https://hooks.example.test/owner")
        assert client.get("/api/system/health").json["status"] == "healthy"

    def test_version(self, client):
        resp = client.get("/api/system/version")
        assert resp.json["api_version"] == "1.0.0"
