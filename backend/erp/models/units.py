from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z


UNIT_TYPE_STORE = "STORE"
UNIT_TYPE_WAREHOUSE = "WAREHOUSE"
UNIT_TYPE_ECOMMERCE = "ECOMMERCE"
UNIT_TYPES = {UNIT_TYPE_STORE, UNIT_TYPE_WAREHOUSE, UNIT_TYPE_ECOMMERCE}


class StoreUnit(db.Model):
    """
    A business location holding its own stock (store, warehouse or
    e-commerce channel). At most one unit is flagged as default.
    """
    __tablename__ = "store_units"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=UNIT_TYPE_STORE, info={"choices": UNIT_TYPES})

    address = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(2), nullable=True)
    zip_code = db.Column(db.String(10), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    manager = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "phone": self.phone,
            "email": self.email,
            "manager": self.manager,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class UnitStock(db.Model):
    """
    Per-(unit, product, variant) stock cache.

    quantity mirrors the unit-level stock ledger and is only written by
    stock_service.record_movement. Thresholds are editable directly.
    """
    __tablename__ = "unit_stock"
    __table_args__ = (
        db.UniqueConstraint("unit_id", "product_id", "variant_id", name="uq_unit_stock_unit_product_variant"),
        db.Index("ix_unit_stock_product", "product_id", "variant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=False, default=1000)
    location = db.Column(db.String(64), nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    unit = db.relationship("StoreUnit")
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "location": self.location,
            "updated_at": to_utc_z(self.updated_at),
        }
