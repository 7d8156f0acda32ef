# Overview: Flask API routes for the pricing calculator, margin simulator and pricing rules.

from flask import Blueprint, jsonify

from ..decorators import require_admin, require_auth
from ..models import PricingRule
from ..services import pricing_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, validate_payload
from .common import DOMAIN_ERRORS, bool_arg, fail, int_arg, internal_error, json_body


PRICING_RULE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "product_id", "category_id", "unit_id", "base_cost_cents",
        "tax_rate", "freight_rate", "commission_rate", "marketplace_fee", "acquirer_fee",
        "target_margin", "min_margin", "max_margin", "is_active",
    },
    required_on_create={"name", "target_margin"},
)

pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


def _rates(payload: dict) -> dict:
    return {field: payload.get(field) for field in pricing_service.FEE_FIELDS}


@pricing_bp.post("/calculate")
@require_auth
def calculate_price():
    """
    Request body (rates in percent, numbers or decimal strings):
    {
        "base_cost": "50.00",
        "target_margin": 30,
        "tax_rate", "freight_rate", "commission_rate", "marketplace_fee", "acquirer_fee": optional
    }
    """
    try:
        payload = json_body()
        result = pricing_service.calculate_price(
            base_cost=payload.get("base_cost"),
            target_margin=payload.get("target_margin"),
            **_rates(payload),
        )
        return jsonify(pricing_service.to_json(result)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@pricing_bp.post("/simulate")
@require_auth
def simulate_margin():
    """Body: {"sale_price", "base_cost", fee rates...}."""
    try:
        payload = json_body()
        result = pricing_service.simulate_margin(
            sale_price=payload.get("sale_price"),
            base_cost=payload.get("base_cost"),
            **_rates(payload),
        )
        return jsonify(pricing_service.to_json(result)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@pricing_bp.get("/rules")
@require_auth
def list_rules():
    """Query params: product_id, category_id, unit_id, active_only (default true)."""
    try:
        rules = pricing_service.list_rules(
            product_id=int_arg("product_id"),
            category_id=int_arg("category_id"),
            unit_id=int_arg("unit_id"),
            active_only=bool_arg("active_only", True),
        )
        return jsonify([r.to_dict() for r in rules]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@pricing_bp.get("/rules/<int:rule_id>")
@require_auth
def get_rule(rule_id: int):
    try:
        return jsonify(pricing_service.get_rule(rule_id).to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@pricing_bp.post("/rules")
@require_auth
@require_admin
def create_rule():
    try:
        patch = validate_payload(model=PricingRule, payload=json_body(), policy=PRICING_RULE_POLICY, partial=False)
        rule = pricing_service.create_rule(patch=patch)
        commit_or_conflict()
        return jsonify(rule.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create pricing rule")


@pricing_bp.put("/rules/<int:rule_id>")
@require_auth
@require_admin
def update_rule(rule_id: int):
    try:
        patch = validate_payload(model=PricingRule, payload=json_body(), policy=PRICING_RULE_POLICY, partial=True)
        rule = pricing_service.update_rule(rule_id=rule_id, patch=patch)
        commit_or_conflict()
        return jsonify(rule.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update pricing rule")
