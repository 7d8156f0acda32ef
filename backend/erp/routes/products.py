# Overview: Flask API routes for products, variants, images and barcode lookup.

"""
Product catalog routes.

Reads require authentication; every write is admin-only.
current_stock is accepted on create (recorded as an initial inventory
movement) and rejected on update: stock only changes through movements.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models import Product, ProductVariant
from ..services import catalog_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, validate_payload
from .common import DOMAIN_ERRORS, bool_arg, fail, int_arg, internal_error, json_body, require_field


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "description", "barcode", "brand", "category_id", "supplier_id",
        "cost_price_cents", "sale_price_cents", "current_stock", "min_stock", "max_stock",
        "unit", "is_active",
    },
    required_on_create={"code", "name"},
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "size", "color", "barcode", "additional_price_cents", "stock", "is_active"},
    required_on_create={"sku"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
barcode_bp = Blueprint("barcode", __name__, url_prefix="/api/barcode")


@products_bp.get("")
@require_auth
def list_products():
    """Query params: category_id, supplier_id, active_only (default true), search."""
    try:
        products = catalog_service.list_products(
            category_id=int_arg("category_id"),
            supplier_id=int_arg("supplier_id"),
            active_only=bool_arg("active_only", True),
            search=request.args.get("search"),
        )
        return jsonify([p.to_dict() for p in products]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    """Product with its variants and images (primary image first)."""
    try:
        product = catalog_service.get_product(product_id)
        return jsonify(catalog_service.product_detail(product)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@products_bp.post("")
@require_auth
@require_admin
def create_product():
    try:
        patch = validate_payload(model=Product, payload=json_body(), policy=PRODUCT_POLICY, partial=False)
        product = catalog_service.create_product(patch=patch, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(product.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create product")


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product(product_id: int):
    try:
        patch = validate_payload(model=Product, payload=json_body(), policy=PRODUCT_POLICY, partial=True)
        product = catalog_service.update_product(product_id=product_id, patch=patch)
        commit_or_conflict()
        return jsonify(product.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update product")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product(product_id: int):
    try:
        catalog_service.deactivate_product(product_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete product")


# Variants

@products_bp.post("/<int:product_id>/variants")
@require_auth
@require_admin
def add_variant(product_id: int):
    try:
        patch = validate_payload(model=ProductVariant, payload=json_body(), policy=VARIANT_POLICY, partial=False)
        variant = catalog_service.add_variant(product_id=product_id, patch=patch)
        commit_or_conflict()
        return jsonify(variant.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("add variant")


@products_bp.put("/variants/<int:variant_id>")
@require_auth
@require_admin
def update_variant(variant_id: int):
    try:
        patch = validate_payload(model=ProductVariant, payload=json_body(), policy=VARIANT_POLICY, partial=True)
        variant = catalog_service.update_variant(variant_id=variant_id, patch=patch)
        commit_or_conflict()
        return jsonify(variant.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update variant")


@products_bp.delete("/variants/<int:variant_id>")
@require_auth
@require_admin
def delete_variant(variant_id: int):
    try:
        catalog_service.deactivate_variant(variant_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete variant")


# Images

@products_bp.post("/<int:product_id>/images")
@require_auth
@require_admin
def upload_image(product_id: int):
    """
    Request body:
    {
        "file_name": str,
        "content_type": "image/...",
        "data": base64 str
    }

    Returns:
        201: image created
        502: object storage rejected the upload
    """
    try:
        payload = json_body()
        image = catalog_service.upload_image(
            product_id=product_id,
            file_name=require_field(payload, "file_name"),
            data_base64=require_field(payload, "data"),
            content_type=require_field(payload, "content_type"),
        )
        commit_or_conflict()
        return jsonify(image.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("upload image")


@products_bp.delete("/images/<int:image_id>")
@require_auth
@require_admin
def delete_image(image_id: int):
    try:
        catalog_service.delete_image(image_id)
        commit_or_conflict()
        return jsonify({"success": True}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("delete image")


@products_bp.post("/images/<int:image_id>/primary")
@require_auth
@require_admin
def set_primary_image(image_id: int):
    try:
        image = catalog_service.set_primary_image(image_id)
        commit_or_conflict()
        return jsonify(image.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("set primary image")


@barcode_bp.get("/<string:barcode>")
@require_auth
def lookup_barcode(barcode: str):
    try:
        return jsonify(catalog_service.lookup_barcode(barcode)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
