# Overview: Flask API routes for store units, per-unit stock and the unit-level ledger.

from flask import Blueprint, g, jsonify

from ..decorators import require_admin, require_auth
from ..models import StoreUnit
from ..services import stock_service, unit_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, optional_int, require_positive_int, validate_payload
from .common import DOMAIN_ERRORS, bool_arg, datetime_arg, fail, int_arg, internal_error, json_body, require_field
from .stock import movement_kwargs


UNIT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "type", "address", "city", "state", "zip_code",
        "phone", "email", "manager", "is_active", "is_default",
    },
    required_on_create={"code", "name"},
)

store_units_bp = Blueprint("store_units", __name__, url_prefix="/api/store-units")
unit_stock_bp = Blueprint("unit_stock", __name__, url_prefix="/api/unit-stock")
unit_movements_bp = Blueprint("unit_movements", __name__, url_prefix="/api/unit-movements")


# ---------------------------------------------------------------------------
# Store units
# ---------------------------------------------------------------------------

@store_units_bp.get("")
@require_auth
def list_units():
    try:
        units = unit_service.list_units(active_only=bool_arg("active_only", True))
        return jsonify([u.to_dict() for u in units]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@store_units_bp.get("/<int:unit_id>")
@require_auth
def get_unit(unit_id: int):
    try:
        return jsonify(unit_service.get_unit(unit_id).to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@store_units_bp.post("")
@require_auth
@require_admin
def create_unit():
    """Setting is_default clears the flag on every other unit."""
    try:
        patch = validate_payload(model=StoreUnit, payload=json_body(), policy=UNIT_POLICY, partial=False)
        unit = unit_service.create_unit(patch=patch)
        commit_or_conflict()
        return jsonify(unit.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create store unit")


@store_units_bp.put("/<int:unit_id>")
@require_auth
@require_admin
def update_unit(unit_id: int):
    try:
        patch = validate_payload(model=StoreUnit, payload=json_body(), policy=UNIT_POLICY, partial=True)
        unit = unit_service.update_unit(unit_id=unit_id, patch=patch)
        commit_or_conflict()
        return jsonify(unit.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update store unit")


@store_units_bp.delete("/<int:unit_id>")
@require_auth
@require_admin
def delete_unit(unit_id: int):
    try:
        unit_service.deactivate_unit(unit_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete store unit")


# ---------------------------------------------------------------------------
# Unit stock
# ---------------------------------------------------------------------------

@unit_stock_bp.get("/by-unit/<int:unit_id>")
@require_auth
def stock_by_unit(unit_id: int):
    try:
        return jsonify(unit_service.stock_by_unit(unit_id)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@unit_stock_bp.get("/by-product/<int:product_id>")
@require_auth
def stock_by_product(product_id: int):
    """Consolidated {total, units[]} across units. Query param: variant_id."""
    try:
        return jsonify(unit_service.stock_by_product(product_id, int_arg("variant_id"))), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@unit_stock_bp.put("")
@require_auth
@require_admin
def update_unit_stock():
    """
    Request body:
    {
        "unit_id": int,
        "product_id": int,
        "variant_id": int (optional),
        "quantity": int (optional, recorded as an inventory adjustment),
        "min_stock", "max_stock": int (optional),
        "location": str (optional)
    }
    """
    try:
        payload = json_body()
        row = unit_service.update_unit_stock(
            unit_id=require_positive_int(require_field(payload, "unit_id"), "unit_id"),
            product_id=require_positive_int(require_field(payload, "product_id"), "product_id"),
            variant_id=optional_int(payload.get("variant_id"), "variant_id"),
            quantity=optional_int(payload.get("quantity"), "quantity"),
            min_stock=optional_int(payload.get("min_stock"), "min_stock"),
            max_stock=optional_int(payload.get("max_stock"), "max_stock"),
            location=payload.get("location"),
            user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(row.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update unit stock")


# ---------------------------------------------------------------------------
# Unit movements
# ---------------------------------------------------------------------------

@unit_movements_bp.get("")
@require_auth
def list_unit_movements():
    """Query params: unit_id, product_id, variant_id, start_date, end_date, limit."""
    try:
        movements = stock_service.list_movements(
            unit_id=int_arg("unit_id"),
            product_id=int_arg("product_id"),
            variant_id=int_arg("variant_id"),
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            scope=stock_service.SCOPE_UNIT,
            limit=int_arg("limit", 100),
        )
        return jsonify([m.to_dict() for m in movements]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@unit_movements_bp.post("")
@require_auth
@require_admin
def create_unit_movement():
    """Same body as a product-level movement plus a required unit_id."""
    try:
        payload = json_body()
        unit_id = require_positive_int(require_field(payload, "unit_id"), "unit_id")
        movement = stock_service.add_manual_movement(
            user_id=g.current_user.id,
            unit_id=unit_id,
            **movement_kwargs(payload),
        )
        commit_or_conflict()
        return jsonify(movement.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("record unit movement")
