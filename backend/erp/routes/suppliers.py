# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import require_admin, require_auth
from ..models import Supplier
from ..services import catalog_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, validate_payload
from .common import DOMAIN_ERRORS, bool_arg, fail, internal_error, json_body


SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "trade_name", "cnpj", "email", "phone", "address",
        "city", "state", "zip_code", "contact_name", "notes", "is_active",
    },
    required_on_create={"code", "name"},
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
def list_suppliers():
    """Query params: active_only (default true), search."""
    try:
        suppliers = catalog_service.list_suppliers(
            active_only=bool_arg("active_only", True),
            search=request.args.get("search"),
        )
        return jsonify([s.to_dict() for s in suppliers]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier(supplier_id: int):
    try:
        return jsonify(catalog_service.get_supplier(supplier_id).to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@suppliers_bp.post("")
@require_auth
@require_admin
def create_supplier():
    try:
        patch = validate_payload(model=Supplier, payload=json_body(), policy=SUPPLIER_POLICY, partial=False)
        supplier = catalog_service.create_supplier(patch=patch)
        commit_or_conflict()
        return jsonify(supplier.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create supplier")


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
@require_admin
def update_supplier(supplier_id: int):
    try:
        patch = validate_payload(model=Supplier, payload=json_body(), policy=SUPPLIER_POLICY, partial=True)
        supplier = catalog_service.update_supplier(supplier_id=supplier_id, patch=patch)
        commit_or_conflict()
        return jsonify(supplier.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update supplier")


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_admin
def delete_supplier(supplier_id: int):
    """Soft delete: the supplier is deactivated."""
    try:
        catalog_service.deactivate_supplier(supplier_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete supplier")
