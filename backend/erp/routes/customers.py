# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import require_admin, require_auth
from ..models import Customer
from ..models.catalog import CUSTOMER_SEGMENTS
from ..services import catalog_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, require_choice, validate_payload
from .common import DOMAIN_ERRORS, bool_arg, fail, internal_error, json_body


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "email", "phone", "cpf_cnpj", "address", "city", "state",
        "zip_code", "birth_date", "segment", "notes", "is_active",
    },
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers():
    """Query params: segment, active_only (default true), search."""
    try:
        segment = request.args.get("segment")
        if segment:
            require_choice(segment, CUSTOMER_SEGMENTS, "segment")
        customers = catalog_service.list_customers(
            segment=segment,
            active_only=bool_arg("active_only", True),
            search=request.args.get("search"),
        )
        return jsonify([c.to_dict() for c in customers]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer(customer_id: int):
    try:
        return jsonify(catalog_service.get_customer(customer_id).to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@customers_bp.post("")
@require_auth
@require_admin
def create_customer():
    """code is generated when omitted."""
    try:
        patch = validate_payload(model=Customer, payload=json_body(), policy=CUSTOMER_POLICY, partial=False)
        customer = catalog_service.create_customer(patch=patch)
        commit_or_conflict()
        return jsonify(customer.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create customer")


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_admin
def update_customer(customer_id: int):
    try:
        patch = validate_payload(model=Customer, payload=json_body(), policy=CUSTOMER_POLICY, partial=True)
        customer = catalog_service.update_customer(customer_id=customer_id, patch=patch)
        commit_or_conflict()
        return jsonify(customer.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update customer")


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_admin
def delete_customer(customer_id: int):
    try:
        catalog_service.deactivate_customer(customer_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete customer")
