# Overview: Flask API routes for payables, receivables and the financial transaction ledger.

"""
Finance API routes.

Settlement (pay / receive) accumulates into the account and posts a
matching EXPENSE / INCOME transaction in the same commit.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models import AccountPayable, AccountReceivable, FinancialTransaction
from ..models.finance import PAYABLE_CATEGORIES, PAYABLE_STATUSES, RECEIVABLE_STATUSES, TRANSACTION_TYPES
from ..services import finance_service
from ..services.concurrency import commit_or_conflict
from ..validation import ModelValidationPolicy, require_choice, validate_payload
from .common import (
    DOMAIN_ERRORS,
    bool_arg,
    datetime_arg,
    datetime_field,
    fail,
    int_arg,
    internal_error,
    json_body,
    require_field,
)


PAYABLE_POLICY = ModelValidationPolicy(
    writable_fields={
        "supplier_id", "unit_id", "purchase_order_id", "cost_center", "description", "category",
        "amount_cents", "due_date", "payment_method", "document_number", "notes",
    },
    required_on_create={"description", "amount_cents", "due_date"},
)

RECEIVABLE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id", "sales_order_id", "unit_id", "description", "category",
        "amount_cents", "due_date", "payment_method", "document_number", "notes",
    },
    required_on_create={"description", "amount_cents", "due_date"},
)

TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "type", "category", "description", "amount_cents", "transaction_date",
        "reference_type", "reference_id", "unit_id", "cost_center", "payment_method",
    },
    required_on_create={"type", "category", "description", "amount_cents"},
)

accounts_payable_bp = Blueprint("accounts_payable", __name__, url_prefix="/api/accounts-payable")
accounts_receivable_bp = Blueprint("accounts_receivable", __name__, url_prefix="/api/accounts-receivable")
financial_bp = Blueprint("financial", __name__, url_prefix="/api/financial")


def _status_arg(choices) -> str | None:
    status = request.args.get("status")
    if status:
        require_choice(status, choices, "status")
    return status


# ---------------------------------------------------------------------------
# Accounts payable
# ---------------------------------------------------------------------------

@accounts_payable_bp.get("")
@require_auth
def list_payables():
    """Query params: status, start_date, end_date (due date range), supplier_id, category."""
    try:
        category = request.args.get("category")
        if category:
            require_choice(category, PAYABLE_CATEGORIES, "category")
        payables = finance_service.list_payables(
            status=_status_arg(PAYABLE_STATUSES),
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            supplier_id=int_arg("supplier_id"),
            category=category,
        )
        return jsonify(finance_service.serialize_payables(payables)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@accounts_payable_bp.get("/<int:payable_id>")
@require_auth
def get_payable(payable_id: int):
    try:
        return jsonify(finance_service.get_payable(payable_id).to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@accounts_payable_bp.post("")
@require_auth
@require_admin
def create_payable():
    """
    Body: payable fields plus optional "installments" (int). With installments
    the amount is split into that many payables due every 30 days.

    Returns the list of created payables.
    """
    try:
        payload = dict(json_body())
        installments = payload.pop("installments", None)
        patch = validate_payload(model=AccountPayable, payload=payload, policy=PAYABLE_POLICY, partial=False)
        payables = finance_service.create_payable(patch=patch, installments=installments, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify([p.to_dict() for p in payables]), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create payable")


@accounts_payable_bp.post("/<int:payable_id>/pay")
@require_auth
@require_admin
def pay_payable(payable_id: int):
    """Body: {"amount_cents": int, "payment_method"?: str, "paid_date"?: ISO-8601}"""
    try:
        payload = json_body()
        payable = finance_service.pay_payable(
            payable_id=payable_id,
            amount_cents=require_field(payload, "amount_cents"),
            payment_method=payload.get("payment_method"),
            paid_date=datetime_field(payload, "paid_date"),
            user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(payable.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("pay payable")


@accounts_payable_bp.post("/<int:payable_id>/cancel")
@require_auth
@require_admin
def cancel_payable(payable_id: int):
    try:
        payable = finance_service.cancel_payable(payable_id=payable_id, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(payable.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("cancel payable")


@accounts_payable_bp.post("/mark-overdue")
@require_auth
@require_admin
def mark_payables_overdue():
    try:
        counts = finance_service.mark_overdue()
        commit_or_conflict()
        return jsonify(counts), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("mark accounts overdue")


# ---------------------------------------------------------------------------
# Accounts receivable
# ---------------------------------------------------------------------------

@accounts_receivable_bp.get("")
@require_auth
def list_receivables():
    """Query params: status, start_date, end_date (due date range), customer_id."""
    try:
        receivables = finance_service.list_receivables(
            status=_status_arg(RECEIVABLE_STATUSES),
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            customer_id=int_arg("customer_id"),
        )
        return jsonify(finance_service.serialize_receivables(receivables)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@accounts_receivable_bp.get("/<int:receivable_id>")
@require_auth
def get_receivable(receivable_id: int):
    try:
        return jsonify(finance_service.get_receivable(receivable_id).to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@accounts_receivable_bp.post("")
@require_auth
@require_admin
def create_receivable():
    try:
        patch = validate_payload(
            model=AccountReceivable, payload=json_body(), policy=RECEIVABLE_POLICY, partial=False
        )
        receivable = finance_service.create_receivable(patch=patch, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(receivable.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create receivable")


@accounts_receivable_bp.post("/<int:receivable_id>/receive")
@require_auth
@require_admin
def receive_receivable(receivable_id: int):
    """Body: {"amount_cents": int, "payment_method"?: str, "received_date"?: ISO-8601}"""
    try:
        payload = json_body()
        receivable = finance_service.receive_receivable(
            receivable_id=receivable_id,
            amount_cents=require_field(payload, "amount_cents"),
            payment_method=payload.get("payment_method"),
            received_date=datetime_field(payload, "received_date"),
            user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(receivable.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("receive receivable")


@accounts_receivable_bp.post("/<int:receivable_id>/cancel")
@require_auth
@require_admin
def cancel_receivable(receivable_id: int):
    try:
        receivable = finance_service.cancel_receivable(receivable_id=receivable_id, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(receivable.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("cancel receivable")


@accounts_receivable_bp.post("/mark-overdue")
@require_auth
@require_admin
def mark_receivables_overdue():
    try:
        counts = finance_service.mark_overdue()
        commit_or_conflict()
        return jsonify(counts), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("mark accounts overdue")


# ---------------------------------------------------------------------------
# Financial transactions
# ---------------------------------------------------------------------------

@financial_bp.get("/transactions")
@require_auth
def list_transactions():
    """Query params: type, category, unit_id, start_date, end_date, is_reconciled."""
    try:
        txn_type = request.args.get("type")
        if txn_type:
            require_choice(txn_type, TRANSACTION_TYPES, "type")
        transactions = finance_service.list_transactions(
            txn_type=txn_type,
            category=request.args.get("category"),
            unit_id=int_arg("unit_id"),
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            is_reconciled=bool_arg("is_reconciled"),
        )
        return jsonify([t.to_dict() for t in transactions]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@financial_bp.post("/transactions")
@require_auth
@require_admin
def create_transaction():
    try:
        patch = validate_payload(
            model=FinancialTransaction, payload=json_body(), policy=TRANSACTION_POLICY, partial=False
        )
        txn = finance_service.create_transaction(patch=patch, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(txn.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create transaction")


@financial_bp.post("/transactions/<int:transaction_id>/reconcile")
@require_auth
@require_admin
def reconcile_transaction(transaction_id: int):
    try:
        txn = finance_service.reconcile_transaction(transaction_id=transaction_id, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(txn.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("reconcile transaction")


@financial_bp.get("/cash-flow")
@require_auth
def cash_flow():
    """Query params: start_date, end_date, unit_id, category."""
    try:
        summary = finance_service.cash_flow_summary(
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            unit_id=int_arg("unit_id"),
            category=request.args.get("category"),
        )
        return jsonify(summary), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
