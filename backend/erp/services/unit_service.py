# Overview: Store units and per-unit stock views.

from __future__ import annotations

from ..extensions import db
from ..models import Product, ProductVariant, StoreUnit, UnitStock
from ..models.stock import MOVEMENT_ADJUSTMENT, REASON_INVENTORY
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int
from . import stock_service
from .concurrency import lock_for_update


def list_units(*, active_only: bool = True) -> list[StoreUnit]:
    query = db.session.query(StoreUnit)
    if active_only:
        query = query.filter(StoreUnit.is_active.is_(True))
    return query.order_by(StoreUnit.is_default.desc(), StoreUnit.name.asc()).all()


def get_unit(unit_id: int) -> StoreUnit:
    unit = db.session.get(StoreUnit, unit_id)
    if not unit:
        raise NotFoundError(f"Store unit {unit_id} not found")
    return unit


def _ensure_unique_code(code: str | None, *, exclude_id: int | None = None) -> None:
    if not code:
        return
    query = db.session.query(StoreUnit.id).filter(StoreUnit.code == code)
    if exclude_id is not None:
        query = query.filter(StoreUnit.id != exclude_id)
    if query.first():
        raise ConflictError(f"Unit code {code} already exists")


def _clear_other_defaults(unit_id: int) -> None:
    """At most one default unit: unset the flag everywhere else."""
    lock_for_update(
        db.session.query(StoreUnit).filter(StoreUnit.is_default.is_(True), StoreUnit.id != unit_id)
    ).update({StoreUnit.is_default: False}, synchronize_session="fetch")


def create_unit(*, patch: dict) -> StoreUnit:
    _ensure_unique_code(patch.get("code"))
    unit = StoreUnit()
    for key, value in patch.items():
        setattr(unit, key, value)
    db.session.add(unit)
    db.session.flush()
    if unit.is_default:
        _clear_other_defaults(unit.id)
    return unit


def update_unit(*, unit_id: int, patch: dict) -> StoreUnit:
    unit = get_unit(unit_id)
    _ensure_unique_code(patch.get("code"), exclude_id=unit.id)
    for key, value in patch.items():
        setattr(unit, key, value)
    db.session.flush()
    if unit.is_default:
        _clear_other_defaults(unit.id)
    return unit


def deactivate_unit(unit_id: int) -> StoreUnit:
    unit = get_unit(unit_id)
    unit.is_active = False
    unit.is_default = False
    db.session.flush()
    return unit


def stock_by_unit(unit_id: int) -> list[dict]:
    """Unit stock rows enriched with product and variant data (batched lookups)."""
    get_unit(unit_id)
    rows = (
        db.session.query(UnitStock)
        .filter(UnitStock.unit_id == unit_id)
        .order_by(UnitStock.product_id.asc(), UnitStock.variant_id.asc())
        .all()
    )

    product_ids = {r.product_id for r in rows}
    variant_ids = {r.variant_id for r in rows if r.variant_id is not None}
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    } if product_ids else {}
    variants = {
        v.id: v for v in db.session.query(ProductVariant).filter(ProductVariant.id.in_(variant_ids)).all()
    } if variant_ids else {}

    result = []
    for row in rows:
        data = row.to_dict()
        product = products.get(row.product_id)
        variant = variants.get(row.variant_id)
        data["product"] = {"id": product.id, "code": product.code, "name": product.name} if product else None
        data["variant"] = {"id": variant.id, "sku": variant.sku, "size": variant.size, "color": variant.color} if variant else None
        data["is_low"] = row.quantity <= row.min_stock
        result.append(data)
    return result


def stock_by_product(product_id: int, variant_id: int | None = None) -> dict:
    """Consolidated stock of a product (optionally one variant) across units."""
    if not db.session.get(Product, product_id):
        raise NotFoundError(f"Product {product_id} not found")

    query = db.session.query(UnitStock).filter(UnitStock.product_id == product_id)
    if variant_id is not None:
        query = query.filter(UnitStock.variant_id == variant_id)
    rows = query.order_by(UnitStock.unit_id.asc()).all()

    unit_ids = {r.unit_id for r in rows}
    units = {
        u.id: u for u in db.session.query(StoreUnit).filter(StoreUnit.id.in_(unit_ids)).all()
    } if unit_ids else {}

    entries = []
    for row in rows:
        data = row.to_dict()
        unit = units.get(row.unit_id)
        data["unit"] = {"id": unit.id, "code": unit.code, "name": unit.name, "type": unit.type} if unit else None
        entries.append(data)

    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "total": sum(r.quantity for r in rows),
        "units": entries,
    }


def update_unit_stock(
    *,
    unit_id: int,
    product_id: int,
    variant_id: int | None = None,
    quantity: int | None = None,
    min_stock: int | None = None,
    max_stock: int | None = None,
    location: str | None = None,
    user_id: int | None = None,
) -> UnitStock:
    """
    Edit thresholds/location of a unit stock row.

    A new quantity is never written directly: it is recorded as an
    ADJUSTMENT / INVENTORY unit movement so the ledger stays authoritative.
    """
    get_unit(unit_id)
    if not db.session.get(Product, product_id):
        raise NotFoundError(f"Product {product_id} not found")

    row = stock_service.locked_unit_stock(unit_id, product_id, variant_id)

    if min_stock is not None:
        row.min_stock = coerce_int(min_stock, "min_stock")
    if max_stock is not None:
        row.max_stock = coerce_int(max_stock, "max_stock")
    if row.min_stock < 0 or row.max_stock < 0:
        raise ValidationError("Stock thresholds must be >= 0")
    if row.min_stock > row.max_stock:
        raise ValidationError("min_stock cannot exceed max_stock")
    if location is not None:
        row.location = location.strip() or None
    db.session.flush()

    if quantity is not None:
        quantity = coerce_int(quantity, "quantity")
        if quantity != row.quantity:
            stock_service.record_movement(
                product_id=product_id,
                variant_id=variant_id,
                unit_id=unit_id,
                type=MOVEMENT_ADJUSTMENT,
                reason=REASON_INVENTORY,
                quantity=quantity,
                notes="Inventory count",
                user_id=user_id,
            )

    return row
