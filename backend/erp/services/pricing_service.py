# Overview: Markup pricing calculator, margin simulator and saved pricing rules.

"""
Pricing

All rates are percentages of the sale price (10 = 10%).

    suggested_price = base_cost / (1 - (sum(fee rates) + target_margin) / 100)

The margin simulator is the inverse: for a given sale price,
margin = price - price * sum(fee rates) / 100 - base_cost.

Money values handed to and returned by the calculator are in currency
units (Decimal, rounded half-up to 2 places); pricing rules store cents.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from ..extensions import db
from ..models import Category, PricingRule, Product, StoreUnit
from ..validation import NotFoundError, ValidationError, cents_to_decimal, coerce_decimal


FEE_FIELDS = ("tax_rate", "freight_rate", "commission_rate", "marketplace_fee", "acquirer_fee")
BREAKDOWN_KEYS = {
    "tax_rate": "tax",
    "freight_rate": "freight",
    "commission_rate": "commission",
    "marketplace_fee": "marketplace",
    "acquirer_fee": "acquirer",
}

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)


def _q(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _rate(value: Any, name: str) -> Decimal:
    if value is None:
        return Decimal(0)
    rate = coerce_decimal(value, name)
    if rate < 0 or rate >= _HUNDRED:
        raise ValidationError(f"{name} must be between 0 and 100")
    return rate


def _fee_rates(rates: dict) -> dict[str, Decimal]:
    return {field: _rate(rates.get(field), field) for field in FEE_FIELDS}


def _breakdown(price: Decimal, fee_rates: dict[str, Decimal]) -> dict:
    breakdown = {}
    total = Decimal(0)
    for field, rate in fee_rates.items():
        amount = _q(price * rate / _HUNDRED)
        breakdown[BREAKDOWN_KEYS[field]] = amount
        total += amount
    breakdown["total_fees"] = _q(total)
    return breakdown


def calculate_price(*, base_cost: Any, target_margin: Any, **rates) -> dict:
    """
    Suggested price covering base cost, every fee and the target margin.

    Raises ValidationError when fees plus margin reach 100%.
    """
    base_cost = coerce_decimal(base_cost, "base_cost")
    if base_cost < 0:
        raise ValidationError("base_cost must be >= 0")
    if target_margin is None:
        raise ValidationError("target_margin is required")
    margin_rate = _rate(target_margin, "target_margin")
    fee_rates = _fee_rates(rates)

    total_fees_percent = sum(fee_rates.values(), Decimal(0))
    divisor = Decimal(1) - (total_fees_percent + margin_rate) / _HUNDRED
    if divisor <= 0:
        raise ValidationError("Fees plus target margin must be below 100%")

    price = _q(base_cost / divisor)
    breakdown = _breakdown(price, fee_rates)
    breakdown["margin"] = _q(price * margin_rate / _HUNDRED)

    return {
        "suggested_price": price,
        "base_cost": _q(base_cost),
        "target_margin": margin_rate,
        "total_fees_percent": total_fees_percent,
        "breakdown": breakdown,
    }


def simulate_margin(*, sale_price: Any, base_cost: Any, **rates) -> dict:
    """Realized margin (absolute and % of price) for an actual sale price."""
    sale_price = coerce_decimal(sale_price, "sale_price")
    if sale_price <= 0:
        raise ValidationError("sale_price must be > 0")
    base_cost = coerce_decimal(base_cost, "base_cost")
    if base_cost < 0:
        raise ValidationError("base_cost must be >= 0")
    fee_rates = _fee_rates(rates)

    total_fees = sale_price * sum(fee_rates.values(), Decimal(0)) / _HUNDRED
    margin = sale_price - total_fees - base_cost

    breakdown = _breakdown(sale_price, fee_rates)
    breakdown["total_fees"] = _q(total_fees)

    return {
        "sale_price": _q(sale_price),
        "base_cost": _q(base_cost),
        "margin": _q(margin),
        "margin_percent": _q(margin / sale_price * _HUNDRED),
        "breakdown": breakdown,
    }


def to_json(result: dict) -> dict:
    """Decimal -> float, recursively, for jsonify."""
    out = {}
    for key, value in result.items():
        if isinstance(value, dict):
            out[key] = to_json(value)
        elif isinstance(value, Decimal):
            out[key] = float(value)
        else:
            out[key] = value
    return out


# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------

def _suggested_price_cents(rule: PricingRule) -> int | None:
    if rule.base_cost_cents is None:
        return None
    result = calculate_price(
        base_cost=cents_to_decimal(rule.base_cost_cents),
        target_margin=rule.target_margin,
        **{field: getattr(rule, field) for field in FEE_FIELDS},
    )
    return int(result["suggested_price"] * 100)


def _check_refs(patch: dict) -> None:
    if patch.get("product_id") is not None and not db.session.get(Product, patch["product_id"]):
        raise NotFoundError(f"Product {patch['product_id']} not found")
    if patch.get("category_id") is not None and not db.session.get(Category, patch["category_id"]):
        raise NotFoundError(f"Category {patch['category_id']} not found")
    if patch.get("unit_id") is not None and not db.session.get(StoreUnit, patch["unit_id"]):
        raise NotFoundError(f"Store unit {patch['unit_id']} not found")


def list_rules(
    *,
    product_id: int | None = None,
    category_id: int | None = None,
    unit_id: int | None = None,
    active_only: bool = True,
) -> list[PricingRule]:
    query = db.session.query(PricingRule)
    if active_only:
        query = query.filter(PricingRule.is_active.is_(True))
    if product_id is not None:
        query = query.filter(PricingRule.product_id == product_id)
    if category_id is not None:
        query = query.filter(PricingRule.category_id == category_id)
    if unit_id is not None:
        query = query.filter(PricingRule.unit_id == unit_id)
    return query.order_by(PricingRule.name.asc()).all()


def get_rule(rule_id: int) -> PricingRule:
    rule = db.session.get(PricingRule, rule_id)
    if not rule:
        raise NotFoundError(f"Pricing rule {rule_id} not found")
    return rule


def create_rule(*, patch: dict) -> PricingRule:
    _check_refs(patch)
    rule = PricingRule()
    for field in FEE_FIELDS:
        setattr(rule, field, Decimal(0))
    for key, value in patch.items():
        setattr(rule, key, value)
    rule.suggested_price_cents = _suggested_price_cents(rule)
    db.session.add(rule)
    db.session.flush()
    return rule


def update_rule(*, rule_id: int, patch: dict) -> PricingRule:
    rule = get_rule(rule_id)
    _check_refs(patch)
    for key, value in patch.items():
        setattr(rule, key, value)
    rule.suggested_price_cents = _suggested_price_cents(rule)
    db.session.flush()
    return rule
