# Overview: Accounts payable/receivable, cash-flow transactions and summaries.

"""
Finance Service

INVARIANTS:
- paid_amount_cents / received_amount_cents only grow
- status is recomputed after every payment or receipt:
    balance <= 0          -> PAID / RECEIVED
    0 < paid < amount     -> PARTIAL
    otherwise             -> PENDING, or OVERDUE once the due date has passed
- every payment or receipt posts one FinancialTransaction in the same
  transaction (EXPENSE for payables, INCOME for receivables)
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from ..extensions import db
from ..models import AccountPayable, AccountReceivable, Customer, FinancialTransaction, SalesOrder, StoreUnit, Supplier
from ..models.finance import (
    ACCOUNT_STATUS_CANCELLED,
    ACCOUNT_STATUS_OVERDUE,
    ACCOUNT_STATUS_PAID,
    ACCOUNT_STATUS_PARTIAL,
    ACCOUNT_STATUS_PENDING,
    ACCOUNT_STATUS_RECEIVED,
    PAYABLE_PAYMENT_METHODS,
    RECEIVABLE_PAYMENT_METHODS,
    TRANSACTION_EXPENSE,
    TRANSACTION_INCOME,
    TRANSACTION_TYPES,
)
from ..models.orders import PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_PENDING
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    enforce_amount_cents,
    require_choice,
)
from .audit_service import append_audit_event
from .concurrency import get_for_update
from erp.time_utils import utcnow


SETTLED_STATUSES = {ACCOUNT_STATUS_PAID, ACCOUNT_STATUS_RECEIVED}
INSTALLMENT_INTERVAL_DAYS = 30
MAX_INSTALLMENTS = 60


class AccountStateError(ConflictError):
    """Raised when paying/receiving/cancelling an account in a terminal status."""
    pass


def derive_account_status(
    *,
    amount_cents: int,
    settled_cents: int,
    due_date: datetime | None,
    settled_status: str,
    now: datetime | None = None,
) -> str:
    if amount_cents - settled_cents <= 0:
        return settled_status
    if settled_cents > 0:
        return ACCOUNT_STATUS_PARTIAL
    now = now or utcnow()
    if due_date is not None and due_date < now:
        return ACCOUNT_STATUS_OVERDUE
    return ACCOUNT_STATUS_PENDING


def _positive_amount(value, name: str = "amount_cents") -> int:
    if value is None:
        raise ValidationError(f"{name} is required")
    amount = coerce_int(value, name)
    enforce_amount_cents(amount, name, allow_zero=False)
    return amount


def split_installments(total_cents: int, count: int) -> list[int]:
    """Split an amount into `count` parts; the remainder cents go to the first parts."""
    base, remainder = divmod(total_cents, count)
    return [base + (1 if i < remainder else 0) for i in range(count)]


# ---------------------------------------------------------------------------
# Accounts payable
# ---------------------------------------------------------------------------

def create_payable(*, patch: dict, installments: int | None = None, user_id: int | None = None) -> list[AccountPayable]:
    """
    Create a payable, or `installments` payables due every 30 days.

    Returns the created rows (one unless split).
    """
    amount = _positive_amount(patch.get("amount_cents"))
    if patch.get("due_date") is None:
        raise ValidationError("due_date is required")
    if patch.get("supplier_id") is not None and not db.session.get(Supplier, patch["supplier_id"]):
        raise NotFoundError(f"Supplier {patch['supplier_id']} not found")
    if patch.get("unit_id") is not None and not db.session.get(StoreUnit, patch["unit_id"]):
        raise NotFoundError(f"Store unit {patch['unit_id']} not found")

    count = 1 if installments is None else coerce_int(installments, "installments")
    if count < 1 or count > MAX_INSTALLMENTS:
        raise ValidationError(f"installments must be between 1 and {MAX_INSTALLMENTS}")

    rows = []
    for index, part in enumerate(split_installments(amount, count)):
        data = dict(patch)
        data["amount_cents"] = part
        data["due_date"] = patch["due_date"] + timedelta(days=INSTALLMENT_INTERVAL_DAYS * index)
        if count > 1:
            data["installment_number"] = index + 1
            data["total_installments"] = count
            data["description"] = f"{patch['description']} ({index + 1}/{count})"
        payable = AccountPayable(paid_amount_cents=0, status=ACCOUNT_STATUS_PENDING, created_by_user_id=user_id)
        for key, value in data.items():
            setattr(payable, key, value)
        payable.status = derive_account_status(
            amount_cents=payable.amount_cents,
            settled_cents=0,
            due_date=payable.due_date,
            settled_status=ACCOUNT_STATUS_PAID,
        )
        db.session.add(payable)
        rows.append(payable)
    db.session.flush()

    for payable in rows:
        append_audit_event(
            action="payable.created",
            entity_type="account_payable",
            entity_id=payable.id,
            user_id=user_id,
            details={"amount_cents": payable.amount_cents, "due_date": payable.due_date},
        )
    return rows


def get_payable(payable_id: int) -> AccountPayable:
    payable = db.session.get(AccountPayable, payable_id)
    if not payable:
        raise NotFoundError(f"Account payable {payable_id} not found")
    return payable


def list_payables(
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    supplier_id: int | None = None,
    category: str | None = None,
) -> list[AccountPayable]:
    query = db.session.query(AccountPayable)
    if status:
        query = query.filter(AccountPayable.status == status)
    if start:
        query = query.filter(AccountPayable.due_date >= start)
    if end:
        query = query.filter(AccountPayable.due_date <= end)
    if supplier_id is not None:
        query = query.filter(AccountPayable.supplier_id == supplier_id)
    if category:
        query = query.filter(AccountPayable.category == category)
    return query.order_by(AccountPayable.due_date.asc(), AccountPayable.id.asc()).all()


def serialize_payables(payables: list[AccountPayable]) -> list[dict]:
    supplier_ids = {p.supplier_id for p in payables if p.supplier_id is not None}
    suppliers = {
        s.id: s for s in db.session.query(Supplier).filter(Supplier.id.in_(supplier_ids)).all()
    } if supplier_ids else {}
    result = []
    for payable in payables:
        data = payable.to_dict()
        supplier = suppliers.get(payable.supplier_id)
        data["supplier_name"] = supplier.name if supplier else None
        result.append(data)
    return result


def pay_payable(
    *,
    payable_id: int,
    amount_cents,
    payment_method: str | None = None,
    paid_date: datetime | None = None,
    user_id: int | None = None,
) -> AccountPayable:
    """Register a (partial) payment and post the matching EXPENSE."""
    amount = _positive_amount(amount_cents)
    if payment_method is not None:
        require_choice(payment_method, PAYABLE_PAYMENT_METHODS, "payment_method")

    payable = get_for_update(AccountPayable, payable_id)
    if not payable:
        raise NotFoundError(f"Account payable {payable_id} not found")
    if payable.status == ACCOUNT_STATUS_CANCELLED:
        raise AccountStateError("Cannot pay a cancelled account")
    if payable.status in SETTLED_STATUSES or payable.balance_cents <= 0:
        raise AccountStateError("Account is already paid")
    if amount > payable.balance_cents:
        raise ValidationError(
            f"amount_cents {amount} exceeds the open balance of {payable.balance_cents}"
        )

    now = paid_date or utcnow()
    payable.paid_amount_cents = (payable.paid_amount_cents or 0) + amount
    payable.status = derive_account_status(
        amount_cents=payable.amount_cents,
        settled_cents=payable.paid_amount_cents,
        due_date=payable.due_date,
        settled_status=ACCOUNT_STATUS_PAID,
    )
    if payment_method:
        payable.payment_method = payment_method
    if payable.status == ACCOUNT_STATUS_PAID:
        payable.paid_date = now

    db.session.add(FinancialTransaction(
        type=TRANSACTION_EXPENSE,
        category=payable.category,
        description=f"Payment: {payable.description}",
        amount_cents=amount,
        transaction_date=now,
        reference_type="ACCOUNT_PAYABLE",
        reference_id=payable.id,
        unit_id=payable.unit_id,
        cost_center=payable.cost_center,
        payment_method=payment_method or payable.payment_method,
        created_by_user_id=user_id,
    ))
    db.session.flush()

    append_audit_event(
        action="payable.paid",
        entity_type="account_payable",
        entity_id=payable.id,
        user_id=user_id,
        details={"amount_cents": amount, "paid_amount_cents": payable.paid_amount_cents, "status": payable.status},
    )
    return payable


def cancel_payable(*, payable_id: int, user_id: int | None = None) -> AccountPayable:
    payable = get_for_update(AccountPayable, payable_id)
    if not payable:
        raise NotFoundError(f"Account payable {payable_id} not found")
    if payable.status == ACCOUNT_STATUS_CANCELLED:
        raise AccountStateError("Account is already cancelled")
    if payable.status in SETTLED_STATUSES:
        raise AccountStateError("Cannot cancel a paid account")

    payable.status = ACCOUNT_STATUS_CANCELLED
    db.session.flush()
    append_audit_event(action="payable.cancelled", entity_type="account_payable", entity_id=payable.id, user_id=user_id)
    return payable


# ---------------------------------------------------------------------------
# Accounts receivable
# ---------------------------------------------------------------------------

def create_receivable(*, patch: dict, user_id: int | None = None) -> AccountReceivable:
    _positive_amount(patch.get("amount_cents"))
    if patch.get("due_date") is None:
        raise ValidationError("due_date is required")
    if patch.get("customer_id") is not None and not db.session.get(Customer, patch["customer_id"]):
        raise NotFoundError(f"Customer {patch['customer_id']} not found")
    if patch.get("sales_order_id") is not None and not db.session.get(SalesOrder, patch["sales_order_id"]):
        raise NotFoundError(f"Sales order {patch['sales_order_id']} not found")
    if patch.get("unit_id") is not None and not db.session.get(StoreUnit, patch["unit_id"]):
        raise NotFoundError(f"Store unit {patch['unit_id']} not found")

    receivable = AccountReceivable(received_amount_cents=0, created_by_user_id=user_id)
    for key, value in patch.items():
        setattr(receivable, key, value)
    receivable.status = derive_account_status(
        amount_cents=receivable.amount_cents,
        settled_cents=0,
        due_date=receivable.due_date,
        settled_status=ACCOUNT_STATUS_RECEIVED,
    )
    db.session.add(receivable)
    db.session.flush()

    append_audit_event(
        action="receivable.created",
        entity_type="account_receivable",
        entity_id=receivable.id,
        user_id=user_id,
        details={"amount_cents": receivable.amount_cents},
    )
    return receivable


def get_receivable(receivable_id: int) -> AccountReceivable:
    receivable = db.session.get(AccountReceivable, receivable_id)
    if not receivable:
        raise NotFoundError(f"Account receivable {receivable_id} not found")
    return receivable


def list_receivables(
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    customer_id: int | None = None,
) -> list[AccountReceivable]:
    query = db.session.query(AccountReceivable)
    if status:
        query = query.filter(AccountReceivable.status == status)
    if start:
        query = query.filter(AccountReceivable.due_date >= start)
    if end:
        query = query.filter(AccountReceivable.due_date <= end)
    if customer_id is not None:
        query = query.filter(AccountReceivable.customer_id == customer_id)
    return query.order_by(AccountReceivable.due_date.asc(), AccountReceivable.id.asc()).all()


def serialize_receivables(receivables: list[AccountReceivable]) -> list[dict]:
    customer_ids = {r.customer_id for r in receivables if r.customer_id is not None}
    customers = {
        c.id: c for c in db.session.query(Customer).filter(Customer.id.in_(customer_ids)).all()
    } if customer_ids else {}
    result = []
    for receivable in receivables:
        data = receivable.to_dict()
        customer = customers.get(receivable.customer_id)
        data["customer_name"] = customer.name if customer else None
        result.append(data)
    return result


def _sync_order_payment_status(receivable: AccountReceivable) -> None:
    if receivable.sales_order_id is None:
        return
    order = db.session.get(SalesOrder, receivable.sales_order_id)
    if order is None:
        return
    if receivable.status == ACCOUNT_STATUS_RECEIVED:
        order.payment_status = PAYMENT_STATUS_PAID
    elif receivable.status == ACCOUNT_STATUS_PARTIAL:
        order.payment_status = PAYMENT_STATUS_PARTIAL
    else:
        order.payment_status = PAYMENT_STATUS_PENDING


def receive_receivable(
    *,
    receivable_id: int,
    amount_cents,
    payment_method: str | None = None,
    received_date: datetime | None = None,
    user_id: int | None = None,
) -> AccountReceivable:
    """Register a (partial) receipt and post the matching INCOME."""
    amount = _positive_amount(amount_cents)
    if payment_method is not None:
        require_choice(payment_method, RECEIVABLE_PAYMENT_METHODS, "payment_method")

    receivable = get_for_update(AccountReceivable, receivable_id)
    if not receivable:
        raise NotFoundError(f"Account receivable {receivable_id} not found")
    if receivable.status == ACCOUNT_STATUS_CANCELLED:
        raise AccountStateError("Cannot receive a cancelled account")
    if receivable.status in SETTLED_STATUSES or receivable.balance_cents <= 0:
        raise AccountStateError("Account is already received")
    if amount > receivable.balance_cents:
        raise ValidationError(
            f"amount_cents {amount} exceeds the open balance of {receivable.balance_cents}"
        )

    now = received_date or utcnow()
    receivable.received_amount_cents = (receivable.received_amount_cents or 0) + amount
    receivable.status = derive_account_status(
        amount_cents=receivable.amount_cents,
        settled_cents=receivable.received_amount_cents,
        due_date=receivable.due_date,
        settled_status=ACCOUNT_STATUS_RECEIVED,
    )
    if payment_method:
        receivable.payment_method = payment_method
    if receivable.status == ACCOUNT_STATUS_RECEIVED:
        receivable.received_date = now

    db.session.add(FinancialTransaction(
        type=TRANSACTION_INCOME,
        category=receivable.category or "SALES",
        description=f"Receipt: {receivable.description}",
        amount_cents=amount,
        transaction_date=now,
        reference_type="ACCOUNT_RECEIVABLE",
        reference_id=receivable.id,
        unit_id=receivable.unit_id,
        payment_method=payment_method or receivable.payment_method,
        created_by_user_id=user_id,
    ))
    _sync_order_payment_status(receivable)
    db.session.flush()

    append_audit_event(
        action="receivable.received",
        entity_type="account_receivable",
        entity_id=receivable.id,
        user_id=user_id,
        details={
            "amount_cents": amount,
            "received_amount_cents": receivable.received_amount_cents,
            "status": receivable.status,
        },
    )
    return receivable


def cancel_receivable(*, receivable_id: int, user_id: int | None = None) -> AccountReceivable:
    receivable = get_for_update(AccountReceivable, receivable_id)
    if not receivable:
        raise NotFoundError(f"Account receivable {receivable_id} not found")
    if receivable.status == ACCOUNT_STATUS_CANCELLED:
        raise AccountStateError("Account is already cancelled")
    if receivable.status in SETTLED_STATUSES:
        raise AccountStateError("Cannot cancel a received account")

    receivable.status = ACCOUNT_STATUS_CANCELLED
    db.session.flush()
    append_audit_event(
        action="receivable.cancelled", entity_type="account_receivable", entity_id=receivable.id, user_id=user_id
    )
    return receivable


def mark_overdue(*, now: datetime | None = None) -> dict:
    """Flag PENDING payables and receivables whose due date has passed."""
    now = now or utcnow()
    payables = (
        db.session.query(AccountPayable)
        .filter(AccountPayable.status == ACCOUNT_STATUS_PENDING, AccountPayable.due_date < now)
        .update({AccountPayable.status: ACCOUNT_STATUS_OVERDUE}, synchronize_session="fetch")
    )
    receivables = (
        db.session.query(AccountReceivable)
        .filter(AccountReceivable.status == ACCOUNT_STATUS_PENDING, AccountReceivable.due_date < now)
        .update({AccountReceivable.status: ACCOUNT_STATUS_OVERDUE}, synchronize_session="fetch")
    )
    db.session.flush()
    return {"payables": payables, "receivables": receivables}


# ---------------------------------------------------------------------------
# Financial transactions / cash flow
# ---------------------------------------------------------------------------

def create_transaction(*, patch: dict, user_id: int | None = None) -> FinancialTransaction:
    require_choice(patch.get("type"), TRANSACTION_TYPES, "type")
    _positive_amount(patch.get("amount_cents"))
    if patch.get("unit_id") is not None and not db.session.get(StoreUnit, patch["unit_id"]):
        raise NotFoundError(f"Store unit {patch['unit_id']} not found")

    txn = FinancialTransaction(created_by_user_id=user_id)
    for key, value in patch.items():
        setattr(txn, key, value)
    if txn.transaction_date is None:
        txn.transaction_date = utcnow()
    db.session.add(txn)
    db.session.flush()

    append_audit_event(
        action="transaction.created",
        entity_type="financial_transaction",
        entity_id=txn.id,
        user_id=user_id,
        details={"type": txn.type, "category": txn.category, "amount_cents": txn.amount_cents},
    )
    return txn


def _transactions_query(
    *,
    txn_type: str | None = None,
    category: str | None = None,
    unit_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    is_reconciled: bool | None = None,
):
    query = db.session.query(FinancialTransaction)
    if txn_type:
        query = query.filter(FinancialTransaction.type == txn_type)
    if category:
        query = query.filter(FinancialTransaction.category == category)
    if unit_id is not None:
        query = query.filter(FinancialTransaction.unit_id == unit_id)
    if start:
        query = query.filter(FinancialTransaction.transaction_date >= start)
    if end:
        query = query.filter(FinancialTransaction.transaction_date <= end)
    if is_reconciled is not None:
        query = query.filter(FinancialTransaction.is_reconciled.is_(is_reconciled))
    return query


def list_transactions(**filters) -> list[FinancialTransaction]:
    return (
        _transactions_query(**filters)
        .order_by(FinancialTransaction.transaction_date.desc(), FinancialTransaction.id.desc())
        .all()
    )


def reconcile_transaction(*, transaction_id: int, user_id: int | None = None) -> FinancialTransaction:
    txn = get_for_update(FinancialTransaction, transaction_id)
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    if txn.is_reconciled:
        raise ConflictError("Transaction is already reconciled")
    txn.is_reconciled = True
    txn.reconciled_at = utcnow()
    db.session.flush()
    append_audit_event(
        action="transaction.reconciled", entity_type="financial_transaction", entity_id=txn.id, user_id=user_id
    )
    return txn


def cash_flow_summary(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    unit_id: int | None = None,
    category: str | None = None,
) -> dict:
    """
    Sum INCOME vs EXPENSE in a range.

    Returns {transactions, total_income_cents, total_expense_cents,
    balance_cents, by_category: {category: {income_cents, expense_cents}}}.
    """
    transactions = list_transactions(start=start, end=end, unit_id=unit_id, category=category)

    total_income = 0
    total_expense = 0
    by_category: dict[str, dict[str, int]] = defaultdict(lambda: {"income_cents": 0, "expense_cents": 0})
    for txn in transactions:
        if txn.type == TRANSACTION_INCOME:
            total_income += txn.amount_cents
            by_category[txn.category]["income_cents"] += txn.amount_cents
        else:
            total_expense += txn.amount_cents
            by_category[txn.category]["expense_cents"] += txn.amount_cents

    return {
        "transactions": [t.to_dict() for t in transactions],
        "total_income_cents": total_income,
        "total_expense_cents": total_expense,
        "balance_cents": total_income - total_expense,
        "by_category": dict(by_category),
    }
