from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z, utcnow


ACCOUNT_STATUS_PENDING = "PENDING"
ACCOUNT_STATUS_PARTIAL = "PARTIAL"
ACCOUNT_STATUS_PAID = "PAID"
ACCOUNT_STATUS_RECEIVED = "RECEIVED"
ACCOUNT_STATUS_OVERDUE = "OVERDUE"
ACCOUNT_STATUS_CANCELLED = "CANCELLED"
PAYABLE_STATUSES = {
    ACCOUNT_STATUS_PENDING,
    ACCOUNT_STATUS_PARTIAL,
    ACCOUNT_STATUS_PAID,
    ACCOUNT_STATUS_OVERDUE,
    ACCOUNT_STATUS_CANCELLED,
}
RECEIVABLE_STATUSES = {
    ACCOUNT_STATUS_PENDING,
    ACCOUNT_STATUS_PARTIAL,
    ACCOUNT_STATUS_RECEIVED,
    ACCOUNT_STATUS_OVERDUE,
    ACCOUNT_STATUS_CANCELLED,
}

PAYABLE_CATEGORIES = {"SUPPLIER", "RENT", "UTILITIES", "SALARY", "TAX", "MARKETING", "OTHER"}
PAYABLE_PAYMENT_METHODS = {"CASH", "CREDIT", "DEBIT", "PIX", "TRANSFER", "CHECK"}
RECEIVABLE_PAYMENT_METHODS = {"CASH", "CREDIT", "DEBIT", "PIX", "TRANSFER", "INSTALLMENT", "CHECK"}

TRANSACTION_INCOME = "INCOME"
TRANSACTION_EXPENSE = "EXPENSE"
TRANSACTION_TYPES = {TRANSACTION_INCOME, TRANSACTION_EXPENSE}


class AccountPayable(db.Model):
    """
    Amount owed to a supplier or for an operating expense.

    status is derived from paid_amount_cents vs amount_cents after every
    payment; paid_amount_cents only ever grows.
    """
    __tablename__ = "accounts_payable"
    __table_args__ = (
        db.Index("ix_accounts_payable_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True)
    cost_center = db.Column(db.String(64), nullable=True)

    description = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(16), nullable=False, default="OTHER", info={"choices": PAYABLE_CATEGORIES})

    amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ACCOUNT_STATUS_PENDING, info={"choices": PAYABLE_STATUSES})
    payment_method = db.Column(db.String(16), nullable=True, info={"choices": PAYABLE_PAYMENT_METHODS})

    document_number = db.Column(db.String(64), nullable=True)
    installment_number = db.Column(db.Integer, nullable=False, default=1)
    total_installments = db.Column(db.Integer, nullable=False, default=1)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def balance_cents(self) -> int:
        return max(self.amount_cents - (self.paid_amount_cents or 0), 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "unit_id": self.unit_id,
            "purchase_order_id": self.purchase_order_id,
            "cost_center": self.cost_center,
            "description": self.description,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_cents": self.balance_cents,
            "due_date": to_utc_z(self.due_date),
            "paid_date": to_utc_z(self.paid_date),
            "status": self.status,
            "payment_method": self.payment_method,
            "document_number": self.document_number,
            "installment_number": self.installment_number,
            "total_installments": self.total_installments,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class AccountReceivable(db.Model):
    """Amount owed by a customer; confirmed sales orders create one each."""
    __tablename__ = "accounts_receivable"
    __table_args__ = (
        db.Index("ix_accounts_receivable_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True)

    description = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="SALES")

    amount_cents = db.Column(db.Integer, nullable=False)
    received_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ACCOUNT_STATUS_PENDING, info={"choices": RECEIVABLE_STATUSES})
    payment_method = db.Column(db.String(16), nullable=True, info={"choices": RECEIVABLE_PAYMENT_METHODS})

    document_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def balance_cents(self) -> int:
        return max(self.amount_cents - (self.received_amount_cents or 0), 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sales_order_id": self.sales_order_id,
            "unit_id": self.unit_id,
            "description": self.description,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "received_amount_cents": self.received_amount_cents,
            "balance_cents": self.balance_cents,
            "due_date": to_utc_z(self.due_date),
            "received_date": to_utc_z(self.received_date),
            "status": self.status,
            "payment_method": self.payment_method,
            "document_number": self.document_number,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class FinancialTransaction(db.Model):
    """Cash-flow entry (INCOME / EXPENSE). Payments and receipts create these."""
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.Index("ix_financial_transactions_type_date", "type", "transaction_date"),
        db.Index("ix_financial_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, info={"choices": TRANSACTION_TYPES})
    category = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True, index=True)
    cost_center = db.Column(db.String(64), nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)

    is_reconciled = db.Column(db.Boolean, nullable=False, default=False)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "transaction_date": to_utc_z(self.transaction_date),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "unit_id": self.unit_id,
            "cost_center": self.cost_center,
            "payment_method": self.payment_method,
            "is_reconciled": self.is_reconciled,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class PricingRule(db.Model):
    """
    Saved pricing scenario. Rates and margins are percentages of the sale
    price (10 = 10%). suggested_price_cents is recomputed whenever the
    inputs change.
    """
    __tablename__ = "pricing_rules"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True, index=True)

    base_cost_cents = db.Column(db.Integer, nullable=True)
    tax_rate = db.Column(db.Numeric(7, 2), nullable=False, default=0)
    freight_rate = db.Column(db.Numeric(7, 2), nullable=False, default=0)
    commission_rate = db.Column(db.Numeric(7, 2), nullable=False, default=0)
    marketplace_fee = db.Column(db.Numeric(7, 2), nullable=False, default=0)
    acquirer_fee = db.Column(db.Numeric(7, 2), nullable=False, default=0)
    target_margin = db.Column(db.Numeric(7, 2), nullable=False)
    min_margin = db.Column(db.Numeric(7, 2), nullable=True)
    max_margin = db.Column(db.Numeric(7, 2), nullable=True)

    suggested_price_cents = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        def _num(value):
            return float(value) if value is not None else None

        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "product_id": self.product_id,
            "category_id": self.category_id,
            "unit_id": self.unit_id,
            "base_cost_cents": self.base_cost_cents,
            "tax_rate": _num(self.tax_rate),
            "freight_rate": _num(self.freight_rate),
            "commission_rate": _num(self.commission_rate),
            "marketplace_fee": _num(self.marketplace_fee),
            "acquirer_fee": _num(self.acquirer_fee),
            "target_margin": _num(self.target_margin),
            "min_margin": _num(self.min_margin),
            "max_margin": _num(self.max_margin),
            "suggested_price_cents": self.suggested_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
