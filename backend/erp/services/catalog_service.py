# Overview: Master data: suppliers, categories, products (variants, images), customers.

"""
Catalog Service

Routes validate payloads against ModelValidationPolicy and hand this module
a clean `patch` dict. This module enforces uniqueness and references,
and flushes; routes commit.

Product.current_stock is never written from a patch: an initial stock on
creation is recorded as an ADJUSTMENT / INVENTORY movement.
"""

from __future__ import annotations

import base64
import binascii
import secrets
import string
import time

from sqlalchemy import or_

from ..extensions import db
from ..models import Category, Customer, Product, ProductImage, ProductVariant, Supplier
from ..models.stock import MOVEMENT_ADJUSTMENT, REASON_INVENTORY
from ..validation import ConflictError, NotFoundError, ValidationError
from . import stock_service, storage_service


_BASE36 = string.digits + string.ascii_uppercase

MAX_IMAGE_BYTES = 5 * 1024 * 1024


def _apply_patch(obj, patch: dict) -> None:
    for key, value in patch.items():
        setattr(obj, key, value)


def _search_filter(search: str | None, *columns):
    if not search or not search.strip():
        return None
    term = f"%{search.strip()}%"
    return or_(*[col.ilike(term) for col in columns])


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_code(prefix: str) -> str:
    """prefix + base-36 millisecond timestamp, e.g. "PROD" -> "PRODM1X2Y3Z4"."""
    prefix = (prefix or "").strip().upper()
    if not prefix:
        raise ValidationError("prefix is required")
    if len(prefix) > 16:
        raise ValidationError("prefix exceeds max length 16")
    return f"{prefix}{_to_base36(int(time.time() * 1000))}"


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

def list_suppliers(*, active_only: bool = True, search: str | None = None) -> list[Supplier]:
    query = db.session.query(Supplier)
    if active_only:
        query = query.filter(Supplier.is_active.is_(True))
    criteria = _search_filter(search, Supplier.name, Supplier.code, Supplier.trade_name, Supplier.cnpj)
    if criteria is not None:
        query = query.filter(criteria)
    return query.order_by(Supplier.name.asc()).all()


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def _ensure_unique_code(model, code: str | None, *, exclude_id: int | None = None) -> None:
    if not code:
        return
    query = db.session.query(model.id).filter(model.code == code)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ConflictError(f"Code {code} already exists")


def create_supplier(*, patch: dict) -> Supplier:
    _ensure_unique_code(Supplier, patch.get("code"))
    supplier = Supplier()
    _apply_patch(supplier, patch)
    db.session.add(supplier)
    db.session.flush()
    return supplier


def update_supplier(*, supplier_id: int, patch: dict) -> Supplier:
    supplier = get_supplier(supplier_id)
    _ensure_unique_code(Supplier, patch.get("code"), exclude_id=supplier.id)
    _apply_patch(supplier, patch)
    db.session.flush()
    return supplier


def deactivate_supplier(supplier_id: int) -> Supplier:
    supplier = get_supplier(supplier_id)
    supplier.is_active = False
    db.session.flush()
    return supplier


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def list_categories(*, active_only: bool = True) -> list[Category]:
    query = db.session.query(Category)
    if active_only:
        query = query.filter(Category.is_active.is_(True))
    return query.order_by(Category.name.asc()).all()


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def _check_parent(category_id: int | None, parent_id: int | None) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise ValidationError("A category cannot be its own parent")
    get_category(parent_id)


def create_category(*, patch: dict) -> Category:
    _check_parent(None, patch.get("parent_id"))
    category = Category()
    _apply_patch(category, patch)
    db.session.add(category)
    db.session.flush()
    return category


def update_category(*, category_id: int, patch: dict) -> Category:
    category = get_category(category_id)
    if "parent_id" in patch:
        _check_parent(category.id, patch["parent_id"])
    _apply_patch(category, patch)
    db.session.flush()
    return category


def deactivate_category(category_id: int) -> Category:
    category = get_category(category_id)
    category.is_active = False
    db.session.flush()
    return category


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def list_products(
    *,
    category_id: int | None = None,
    supplier_id: int | None = None,
    active_only: bool = True,
    search: str | None = None,
) -> list[Product]:
    query = db.session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if supplier_id is not None:
        query = query.filter(Product.supplier_id == supplier_id)
    criteria = _search_filter(search, Product.name, Product.code, Product.barcode, Product.brand)
    if criteria is not None:
        query = query.filter(criteria)
    return query.order_by(Product.name.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def product_detail(product: Product) -> dict:
    data = product.to_dict()
    data["variants"] = [v.to_dict() for v in product.variants]
    data["images"] = [
        img.to_dict()
        for img in sorted(product.images, key=lambda i: (not i.is_primary, i.sort_order, i.id))
    ]
    return data


def _check_product_refs(patch: dict) -> None:
    if patch.get("category_id") is not None:
        get_category(patch["category_id"])
    if patch.get("supplier_id") is not None:
        get_supplier(patch["supplier_id"])
    min_stock = patch.get("min_stock")
    max_stock = patch.get("max_stock")
    for name in ("min_stock", "max_stock"):
        if patch.get(name) is not None and patch[name] < 0:
            raise ValidationError(f"{name} must be >= 0")
    if min_stock is not None and max_stock is not None and min_stock > max_stock:
        raise ValidationError("min_stock cannot exceed max_stock")


def create_product(*, patch: dict, user_id: int | None = None) -> Product:
    patch = dict(patch)
    initial_stock = patch.pop("current_stock", None) or 0
    if initial_stock < 0:
        raise ValidationError("current_stock must be >= 0")

    _ensure_unique_code(Product, patch.get("code"))
    _check_product_refs(patch)

    product = Product(current_stock=0)
    _apply_patch(product, patch)
    db.session.add(product)
    db.session.flush()

    if initial_stock:
        stock_service.record_movement(
            product_id=product.id,
            type=MOVEMENT_ADJUSTMENT,
            reason=REASON_INVENTORY,
            quantity=initial_stock,
            unit_cost_cents=product.cost_price_cents,
            reference_type="PRODUCT",
            reference_id=product.id,
            notes="Initial stock",
            user_id=user_id,
        )

    return product


def update_product(*, product_id: int, patch: dict) -> Product:
    if "current_stock" in patch:
        raise ValidationError("current_stock can only change through stock movements")
    product = get_product(product_id)
    _ensure_unique_code(Product, patch.get("code"), exclude_id=product.id)
    _check_product_refs({
        "min_stock": patch.get("min_stock", product.min_stock),
        "max_stock": patch.get("max_stock", product.max_stock),
        "category_id": patch.get("category_id"),
        "supplier_id": patch.get("supplier_id"),
    })
    _apply_patch(product, patch)
    db.session.flush()
    return product


def deactivate_product(product_id: int) -> Product:
    product = get_product(product_id)
    product.is_active = False
    db.session.flush()
    return product


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

def get_variant(variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if not variant:
        raise NotFoundError(f"Variant {variant_id} not found")
    return variant


def _ensure_unique_sku(sku: str | None, *, exclude_id: int | None = None) -> None:
    if not sku:
        return
    query = db.session.query(ProductVariant.id).filter(ProductVariant.sku == sku)
    if exclude_id is not None:
        query = query.filter(ProductVariant.id != exclude_id)
    if query.first():
        raise ConflictError(f"SKU {sku} already exists")


def add_variant(*, product_id: int, patch: dict) -> ProductVariant:
    get_product(product_id)
    _ensure_unique_sku(patch.get("sku"))
    if (patch.get("stock") or 0) < 0:
        raise ValidationError("stock must be >= 0")
    variant = ProductVariant(product_id=product_id)
    _apply_patch(variant, patch)
    db.session.add(variant)
    db.session.flush()
    return variant


def update_variant(*, variant_id: int, patch: dict) -> ProductVariant:
    if "stock" in patch:
        raise ValidationError("stock can only change through stock movements")
    variant = get_variant(variant_id)
    _ensure_unique_sku(patch.get("sku"), exclude_id=variant.id)
    _apply_patch(variant, patch)
    db.session.flush()
    return variant


def deactivate_variant(variant_id: int) -> ProductVariant:
    variant = get_variant(variant_id)
    variant.is_active = False
    db.session.flush()
    return variant


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def upload_image(
    *,
    product_id: int,
    file_name: str,
    data_base64: str,
    content_type: str,
) -> ProductImage:
    """
    Decode a base64 body, upload it to object storage and attach it.

    The first image of a product becomes its primary image. Storage
    failures propagate as StorageError and nothing is written.
    """
    product = get_product(product_id)
    if not file_name or not file_name.strip():
        raise ValidationError("file_name is required")
    if not content_type or not content_type.startswith("image/"):
        raise ValidationError("content_type must be an image type")
    try:
        data = base64.b64decode(data_base64 or "", validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("data must be base64 encoded")
    if not data:
        raise ValidationError("data is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Image exceeds 5 MB")

    safe_name = "".join(c if c.isalnum() or c in "._-" else "_" for c in file_name.strip())
    key = f"products/{product.id}/{secrets.token_hex(8)}-{safe_name}"
    stored = storage_service.put(key, data, content_type)

    existing = db.session.query(ProductImage).filter_by(product_id=product.id).count()
    image = ProductImage(
        product_id=product.id,
        url=stored["url"],
        file_key=stored["key"],
        is_primary=existing == 0,
        sort_order=existing,
    )
    db.session.add(image)
    db.session.flush()
    return image


def get_image(image_id: int) -> ProductImage:
    image = db.session.get(ProductImage, image_id)
    if not image:
        raise NotFoundError(f"Image {image_id} not found")
    return image


def delete_image(image_id: int) -> None:
    """Remove an image row; a deleted primary hands the flag to the next image."""
    image = get_image(image_id)
    product_id, was_primary = image.product_id, image.is_primary
    db.session.delete(image)
    db.session.flush()

    if was_primary:
        successor = (
            db.session.query(ProductImage)
            .filter_by(product_id=product_id)
            .order_by(ProductImage.sort_order.asc(), ProductImage.id.asc())
            .first()
        )
        if successor:
            successor.is_primary = True
            db.session.flush()


def set_primary_image(image_id: int) -> ProductImage:
    image = get_image(image_id)
    db.session.query(ProductImage).filter(
        ProductImage.product_id == image.product_id,
        ProductImage.id != image.id,
    ).update({ProductImage.is_primary: False}, synchronize_session="fetch")
    image.is_primary = True
    db.session.flush()
    return image


# ---------------------------------------------------------------------------
# Barcode lookup
# ---------------------------------------------------------------------------

def lookup_barcode(barcode: str) -> dict:
    """Resolve a barcode to a product, or to a variant and its product."""
    barcode = (barcode or "").strip()
    if not barcode:
        raise ValidationError("barcode is required")

    product = db.session.query(Product).filter(Product.barcode == barcode).first()
    if product:
        return {"type": "product", "product": product.to_dict(), "variant": None}

    variant = db.session.query(ProductVariant).filter(ProductVariant.barcode == barcode).first()
    if variant:
        return {"type": "variant", "product": variant.product.to_dict(), "variant": variant.to_dict()}

    raise NotFoundError(f"No product with barcode {barcode}")


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

def list_customers(
    *,
    segment: str | None = None,
    active_only: bool = True,
    search: str | None = None,
) -> list[Customer]:
    query = db.session.query(Customer)
    if active_only:
        query = query.filter(Customer.is_active.is_(True))
    if segment:
        query = query.filter(Customer.segment == segment)
    criteria = _search_filter(search, Customer.name, Customer.code, Customer.email, Customer.cpf_cnpj)
    if criteria is not None:
        query = query.filter(criteria)
    return query.order_by(Customer.name.asc()).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(*, patch: dict) -> Customer:
    patch = dict(patch)
    if not patch.get("code"):
        patch["code"] = f"{generate_code('CLI')}{secrets.token_hex(2).upper()}"
    _ensure_unique_code(Customer, patch["code"])
    customer = Customer()
    _apply_patch(customer, patch)
    db.session.add(customer)
    db.session.flush()
    return customer


def update_customer(*, customer_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    _ensure_unique_code(Customer, patch.get("code"), exclude_id=customer.id)
    _apply_patch(customer, patch)
    db.session.flush()
    return customer


def deactivate_customer(customer_id: int) -> Customer:
    customer = get_customer(customer_id)
    customer.is_active = False
    db.session.flush()
    return customer
