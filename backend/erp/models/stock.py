from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z, utcnow


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TYPES = {MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT}

REASON_PURCHASE = "PURCHASE"
REASON_SALE = "SALE"
REASON_RETURN = "RETURN"
REASON_EXCHANGE = "EXCHANGE"
REASON_LOSS = "LOSS"
REASON_ADJUSTMENT = "ADJUSTMENT"
REASON_TRANSFER = "TRANSFER"
REASON_TRANSFER_IN = "TRANSFER_IN"
REASON_TRANSFER_OUT = "TRANSFER_OUT"
REASON_INVENTORY = "INVENTORY"
MOVEMENT_REASONS = {
    REASON_PURCHASE,
    REASON_SALE,
    REASON_RETURN,
    REASON_EXCHANGE,
    REASON_LOSS,
    REASON_ADJUSTMENT,
    REASON_TRANSFER,
    REASON_TRANSFER_IN,
    REASON_TRANSFER_OUT,
    REASON_INVENTORY,
}

ALERT_LOW_STOCK = "LOW_STOCK"
ALERT_HIGH_STOCK = "HIGH_STOCK"
ALERT_OUT_OF_STOCK = "OUT_OF_STOCK"
ALERT_TYPES = {ALERT_LOW_STOCK, ALERT_HIGH_STOCK, ALERT_OUT_OF_STOCK}


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    unit_id NULL: product-level movement (cache = Product.current_stock).
    unit_id set: unit-level movement (cache = UnitStock.quantity).

    previous_stock / new_stock are captured at write time and never
    recomputed.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_unit_created", "unit_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True)

    type = db.Column(db.String(16), nullable=False, info={"choices": MOVEMENT_TYPES})
    reason = db.Column(db.String(16), nullable=False, info={"choices": MOVEMENT_REASONS})

    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    batch = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} unit_id={self.unit_id} "
            f"{self.type} {self.quantity} {self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "unit_id": self.unit_id,
            "type": self.type,
            "reason": self.reason,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "batch": self.batch,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockAlert(db.Model):
    """Threshold alert raised by the ledger; read/notified flags are independent."""
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.Index("ix_stock_alerts_product_type_read", "product_id", "alert_type", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True)

    alert_type = db.Column(db.String(16), nullable=False, info={"choices": ALERT_TYPES})
    current_stock = db.Column(db.Integer, nullable=False)
    threshold = db.Column(db.Integer, nullable=False)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    is_notified = db.Column(db.Boolean, nullable=False, default=False)
    notified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "alert_type": self.alert_type,
            "current_stock": self.current_stock,
            "threshold": self.threshold,
            "is_read": self.is_read,
            "is_notified": self.is_notified,
            "notified_at": to_utc_z(self.notified_at),
            "created_at": to_utc_z(self.created_at),
        }
