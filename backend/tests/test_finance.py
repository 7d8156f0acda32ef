"""
Finance tests: payables, receivables, transactions and cash flow.

Verifies:
- paid_amount accumulates across payments; status PARTIAL then PAID
- cancelled and settled accounts refuse payments
- each payment/receipt posts one financial transaction
- installments split the amount with the remainder on the first parts
"""

from datetime import timedelta

import pytest

from erp.extensions import db
from erp.models import AccountPayable, FinancialTransaction, SalesOrder
from erp.services import finance_service, order_service
from erp.services.finance_service import AccountStateError
from erp.time_utils import utcnow
from erp.validation import ValidationError


def _payable(amount_cents=10000, days=30, **fields):
    patch = {
        "description": fields.pop("description", "Store rent"),
        "category": fields.pop("category", "RENT"),
        "amount_cents": amount_cents,
        "due_date": utcnow() + timedelta(days=days),
        **fields,
    }
    rows = finance_service.create_payable(patch=patch)
    db.session.commit()
    return rows[0]


def _pay(payable_id, amount_cents, **kwargs):
    payable = finance_service.pay_payable(payable_id=payable_id, amount_cents=amount_cents, **kwargs)
    db.session.commit()
    return payable


# =============================================================================
# PAYABLES
# =============================================================================


class TestPayablePayments:

    def test_partial_then_full_payment(self):
        payable = _payable(10000)
        assert payable.status == "PENDING"

        payable = _pay(payable.id, 4000, payment_method="PIX")
        assert payable.status == "PARTIAL"
        assert payable.paid_amount_cents == 4000
        assert payable.paid_date is None

        payable = _pay(payable.id, 6000)
        assert payable.status == "PAID"
        assert payable.paid_amount_cents == 10000
        assert payable.paid_date is not None

    def test_paid_amount_never_decreases(self):
        payable = _payable(9000)
        seen = []
        for amount in (1000, 2500, 500):
            seen.append(_pay(payable.id, amount).paid_amount_cents)

        assert seen == [1000, 3500, 4000]
        assert db.session.get(AccountPayable, payable.id).status == "PARTIAL"

    def test_each_payment_posts_an_expense(self):
        payable = _payable(10000)
        _pay(payable.id, 3000)
        _pay(payable.id, 7000)

        txns = db.session.query(FinancialTransaction).filter_by(reference_type="ACCOUNT_PAYABLE").all()
        assert sorted(t.amount_cents for t in txns) == [3000, 7000]
        assert {t.type for t in txns} == {"EXPENSE"}
        assert {t.category for t in txns} == {"RENT"}

    def test_paying_a_paid_account_rejected(self):
        payable = _payable(5000)
        _pay(payable.id, 5000)

        with pytest.raises(AccountStateError):
            finance_service.pay_payable(payable_id=payable.id, amount_cents=1)
        db.session.rollback()

    def test_paying_a_cancelled_account_rejected(self):
        payable = _payable(5000)
        finance_service.cancel_payable(payable_id=payable.id)
        db.session.commit()

        with pytest.raises(AccountStateError):
            finance_service.pay_payable(payable_id=payable.id, amount_cents=100)
        db.session.rollback()

        assert db.session.get(AccountPayable, payable.id).paid_amount_cents == 0

    def test_payment_beyond_open_balance_rejected(self):
        payable = _payable(5000)
        _pay(payable.id, 3000)

        with pytest.raises(ValidationError):
            finance_service.pay_payable(payable_id=payable.id, amount_cents=2001)
        db.session.rollback()

        refreshed = db.session.get(AccountPayable, payable.id)
        assert refreshed.paid_amount_cents == 3000
        assert refreshed.status == "PARTIAL"
        assert db.session.query(FinancialTransaction).count() == 1

    @pytest.mark.parametrize("amount", [0, -10, "abc"])
    def test_invalid_amount_rejected(self, amount):
        payable = _payable(5000)
        with pytest.raises(ValidationError):
            finance_service.pay_payable(payable_id=payable.id, amount_cents=amount)
        db.session.rollback()

    def test_cannot_cancel_a_paid_account(self):
        payable = _payable(5000)
        _pay(payable.id, 5000)
        with pytest.raises(AccountStateError):
            finance_service.cancel_payable(payable_id=payable.id)
        db.session.rollback()


class TestPayableCreation:

    def test_installments_split_amount(self):
        rows = finance_service.create_payable(
            patch={
                "description": "Fabric order",
                "category": "SUPPLIER",
                "amount_cents": 10001,
                "due_date": utcnow() + timedelta(days=10),
            },
            installments=3,
        )
        db.session.commit()

        assert [r.amount_cents for r in rows] == [3334, 3334, 3333]
        assert [r.installment_number for r in rows] == [1, 2, 3]
        assert rows[2].description == "Fabric order (3/3)"
        assert (rows[1].due_date - rows[0].due_date).days == 30

    def test_past_due_date_is_overdue_on_creation(self):
        payable = _payable(1000, days=-3)
        assert payable.status == "OVERDUE"

    def test_mark_overdue(self):
        payable = _payable(1000, days=5)

        counts = finance_service.mark_overdue(now=utcnow() + timedelta(days=6))
        db.session.commit()

        assert counts["payables"] == 1
        assert db.session.get(AccountPayable, payable.id).status == "OVERDUE"

    def test_split_installments_helper(self):
        assert finance_service.split_installments(100, 3) == [34, 33, 33]
        assert sum(finance_service.split_installments(99999, 7)) == 99999


# =============================================================================
# RECEIVABLES
# =============================================================================


class TestReceivables:

    @pytest.fixture
    def confirmed_order(self, product, admin_user):
        order = order_service.create_sales_order(
            items=[{"product_id": product.id, "quantity": 2}],
            user_id=admin_user.id,
        )
        order_service.update_sales_order_status(order_id=order.id, status="CONFIRMED", user_id=admin_user.id)
        db.session.commit()
        return order

    def test_receipts_sync_order_payment_status(self, confirmed_order):
        receivable = finance_service.list_receivables()[0]
        assert receivable.amount_cents == 5000

        finance_service.receive_receivable(receivable_id=receivable.id, amount_cents=2000)
        db.session.commit()
        assert db.session.get(SalesOrder, confirmed_order.id).payment_status == "PARTIAL"

        received = finance_service.receive_receivable(receivable_id=receivable.id, amount_cents=3000)
        db.session.commit()
        assert received.status == "RECEIVED"
        assert db.session.get(SalesOrder, confirmed_order.id).payment_status == "PAID"

        incomes = db.session.query(FinancialTransaction).filter_by(type="INCOME").all()
        assert sum(t.amount_cents for t in incomes) == 5000

    def test_receipt_beyond_open_balance_rejected(self, confirmed_order):
        receivable = finance_service.list_receivables()[0]

        with pytest.raises(ValidationError):
            finance_service.receive_receivable(receivable_id=receivable.id, amount_cents=5001)
        db.session.rollback()

        assert finance_service.get_receivable(receivable.id).received_amount_cents == 0
        assert db.session.query(FinancialTransaction).filter_by(type="INCOME").count() == 0
        assert db.session.get(SalesOrder, confirmed_order.id).payment_status == "PENDING"

    def test_cancelled_receivable_refuses_receipts(self, confirmed_order):
        receivable = finance_service.list_receivables()[0]
        finance_service.cancel_receivable(receivable_id=receivable.id)
        db.session.commit()

        with pytest.raises(AccountStateError):
            finance_service.receive_receivable(receivable_id=receivable.id, amount_cents=100)
        db.session.rollback()


# =============================================================================
# CASH FLOW
# =============================================================================


class TestCashFlow:

    def test_summary_by_category(self):
        for txn in (
            {"type": "INCOME", "category": "SALES", "description": "Counter sales", "amount_cents": 50000},
            {"type": "EXPENSE", "category": "RENT", "description": "Rent", "amount_cents": 20000},
            {"type": "EXPENSE", "category": "MARKETING", "description": "Ads", "amount_cents": 5000},
        ):
            finance_service.create_transaction(patch=dict(txn, transaction_date=utcnow()))
        db.session.commit()

        summary = finance_service.cash_flow_summary()

        assert summary["total_income_cents"] == 50000
        assert summary["total_expense_cents"] == 25000
        assert summary["balance_cents"] == 25000
        assert summary["by_category"]["RENT"] == {"income_cents": 0, "expense_cents": 20000}
        assert len(summary["transactions"]) == 3


# =============================================================================
# API
# =============================================================================


class TestFinanceRoutes:

    def test_create_with_installments_and_pay(self, client, admin_headers):
        resp = client.post("/api/accounts-payable", headers=admin_headers, json={
            "description": "Display fixtures",
            "category": "OTHER",
            "amount_cents": 30000,
            "due_date": "2099-01-10",
            "installments": 2,
        })
        assert resp.status_code == 201
        assert [p["amount_cents"] for p in resp.json] == [15000, 15000]

        payable_id = resp.json[0]["id"]
        resp = client.post(f"/api/accounts-payable/{payable_id}/pay", headers=admin_headers, json={
            "amount_cents": 5000,
            "payment_method": "PIX",
        })
        assert resp.status_code == 200
        assert resp.json["status"] == "PARTIAL"

        resp = client.post(f"/api/accounts-payable/{payable_id}/pay", headers=admin_headers, json={
            "amount_cents": 10000,
        })
        assert resp.json["status"] == "PAID"

        resp = client.post(f"/api/accounts-payable/{payable_id}/pay", headers=admin_headers, json={
            "amount_cents": 1,
        })
        assert resp.status_code == 409

    def test_pay_requires_amount(self, client, admin_headers):
        payable = _payable(1000)
        resp = client.post(f"/api/accounts-payable/{payable.id}/pay", headers=admin_headers, json={})
        assert resp.status_code == 400

    def test_regular_user_cannot_pay(self, client, user_headers):
        payable = _payable(1000)
        resp = client.post(f"/api/accounts-payable/{payable.id}/pay", headers=user_headers, json={
            "amount_cents": 1000,
        })
        assert resp.status_code == 403
        assert db.session.get(AccountPayable, payable.id).paid_amount_cents == 0

    def test_cash_flow_route(self, client, user_headers):
        resp = client.get("/api/financial/cash-flow", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json["balance_cents"] == 0
