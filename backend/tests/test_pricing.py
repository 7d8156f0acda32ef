"""
Pricing calculator and margin simulator tests.
"""

from decimal import Decimal

import pytest

from erp.services import pricing_service
from erp.validation import ValidationError


class TestCalculatePrice:

    def test_margin_only(self):
        result = pricing_service.calculate_price(base_cost="50", target_margin=30)

        assert result["suggested_price"] == Decimal("71.43")
        assert result["breakdown"]["margin"] == Decimal("21.43")
        assert result["breakdown"]["total_fees"] == Decimal("0.00")

    def test_fees_are_part_of_the_divisor(self):
        result = pricing_service.calculate_price(
            base_cost=50, target_margin=20, tax_rate=10, commission_rate=5
        )

        assert result["suggested_price"] == Decimal("76.92")
        assert result["total_fees_percent"] == Decimal("15")
        assert result["breakdown"]["tax"] == Decimal("7.69")
        assert result["breakdown"]["commission"] == Decimal("3.85")

    @pytest.mark.parametrize("margin,fees", [
        (30, {}),
        (20, {"tax_rate": 10, "commission_rate": 5}),
        (12.5, {"marketplace_fee": 16, "acquirer_fee": 2.5, "freight_rate": 4}),
    ])
    def test_simulator_recovers_target_margin(self, margin, fees):
        price = pricing_service.calculate_price(base_cost="80.00", target_margin=margin, **fees)["suggested_price"]

        simulated = pricing_service.simulate_margin(sale_price=price, base_cost="80.00", **fees)

        assert abs(simulated["margin_percent"] - Decimal(str(margin))) <= Decimal("0.05")

    def test_fees_reaching_100_percent_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.calculate_price(base_cost=10, target_margin=60, marketplace_fee=40)

    def test_negative_cost_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.calculate_price(base_cost=-1, target_margin=10)

    def test_missing_margin_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.calculate_price(base_cost=10, target_margin=None)


class TestSimulateMargin:

    def test_fees_and_margin(self):
        result = pricing_service.simulate_margin(sale_price=100, base_cost=50, tax_rate=10, commission_rate=5)

        assert result["breakdown"]["total_fees"] == Decimal("15.00")
        assert result["margin"] == Decimal("35.00")
        assert result["margin_percent"] == Decimal("35.00")

    def test_negative_margin_is_reported(self):
        result = pricing_service.simulate_margin(sale_price=40, base_cost=50)
        assert result["margin"] == Decimal("-10.00")
        assert result["margin_percent"] == Decimal("-25.00")

    def test_zero_price_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.simulate_margin(sale_price=0, base_cost=50)


class TestPricingRoutes:

    def test_calculate_route(self, client, user_headers):
        resp = client.post("/api/pricing/calculate", headers=user_headers, json={
            "base_cost": "50.00",
            "target_margin": 30,
        })
        assert resp.status_code == 200
        assert resp.json["suggested_price"] == 71.43

    def test_simulate_route(self, client, user_headers):
        resp = client.post("/api/pricing/simulate", headers=user_headers, json={
            "sale_price": 100,
            "base_cost": 50,
            "tax_rate": 10,
            "commission_rate": 5,
        })
        assert resp.status_code == 200
        assert resp.json["margin"] == 35.0
        assert resp.json["breakdown"]["total_fees"] == 15.0

    def test_invalid_rates_return_400(self, client, user_headers):
        resp = client.post("/api/pricing/calculate", headers=user_headers, json={
            "base_cost": 10,
            "target_margin": 50,
            "tax_rate": 50,
        })
        assert resp.status_code == 400
        assert resp.json["code"] == "BAD_REQUEST"

    def test_rule_stores_suggested_price(self, client, admin_headers):
        resp = client.post("/api/pricing/rules", headers=admin_headers, json={
            "name": "Default apparel",
            "base_cost_cents": 5000,
            "target_margin": 30,
        })
        assert resp.status_code == 201
        assert resp.json["suggested_price_cents"] == 7143

        rule_id = resp.json["id"]
        resp = client.put(f"/api/pricing/rules/{rule_id}", headers=admin_headers, json={"tax_rate": 10})
        assert resp.status_code == 200
        assert resp.json["suggested_price_cents"] == 8333

    def test_rule_creation_is_admin_only(self, client, user_headers):
        resp = client.post("/api/pricing/rules", headers=user_headers, json={"name": "x", "target_margin": 10})
        assert resp.status_code == 403
