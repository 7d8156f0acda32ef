# Overview: Flask API routes for product categories.

from flask import Blueprint, jsonify

from ..decorators import require_admin, require_auth
from ..models import Category
from ..services import catalog_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, validate_payload
from .common import DOMAIN_ERRORS, bool_arg, fail, internal_error, json_body


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "parent_id", "is_active"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories():
    try:
        categories = catalog_service.list_categories(active_only=bool_arg("active_only", True))
        return jsonify([c.to_dict() for c in categories]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@categories_bp.post("")
@require_auth
@require_admin
def create_category():
    try:
        patch = validate_payload(model=Category, payload=json_body(), policy=CATEGORY_POLICY, partial=False)
        category = catalog_service.create_category(patch=patch)
        commit_or_conflict()
        return jsonify(category.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create category")


@categories_bp.put("/<int:category_id>")
@require_auth
@require_admin
def update_category(category_id: int):
    try:
        patch = validate_payload(model=Category, payload=json_body(), policy=CATEGORY_POLICY, partial=True)
        category = catalog_service.update_category(category_id=category_id, patch=patch)
        commit_or_conflict()
        return jsonify(category.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update category")


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_admin
def delete_category(category_id: int):
    try:
        catalog_service.deactivate_category(category_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete category")
