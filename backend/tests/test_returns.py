"""
Returns and exchanges tests.

Verifies:
- processing an approved return writes one IN movement per sellable item
- damaged/defective items stay out of stock unless configured otherwise
- cash/credit refunds post an EXPENSE transaction
- PENDING -> APPROVED -> PROCESSED and PENDING -> REJECTED only
"""

import pytest

from erp.extensions import db
from erp.models import FinancialTransaction, Product, Return, StockMovement
from erp.services import return_service, stock_service
from erp.services.return_service import ReturnStateError
from erp.validation import ValidationError

from conftest import make_product


@pytest.fixture
def pants(db_session):
    return make_product("PANTS-01", cost=3000, price=8000)


def _create_return(items, **kwargs):
    kwargs.setdefault("type", "RETURN")
    kwargs.setdefault("reason", "WRONG_SIZE")
    doc = return_service.create_return(items=items, **kwargs)
    db.session.commit()
    return doc


def _approve(doc):
    return_service.approve_return(return_id=doc.id)
    db.session.commit()


# =============================================================================
# PROCESSING
# =============================================================================


class TestProcessReturn:

    def test_two_items_become_two_in_movements(self, product, pants):
        doc = _create_return([
            {"product_id": product.id, "quantity": 2, "unit_price_cents": 2500},
            {"product_id": pants.id, "quantity": 3, "unit_price_cents": 8000},
        ])
        _approve(doc)

        return_service.process_return(return_id=doc.id, return_to_stock=True)
        db.session.commit()

        movements = db.session.query(StockMovement).filter_by(reference_type="RETURN").order_by(StockMovement.id).all()
        assert len(movements) == 2
        assert [(m.product_id, m.quantity) for m in movements] == [(product.id, 2), (pants.id, 3)]
        assert {m.type for m in movements} == {"IN"}
        assert {m.reason for m in movements} == {"RETURN"}

        refreshed = db.session.get(Return, doc.id)
        assert refreshed.status == "PROCESSED"
        assert all(item.restocked for item in refreshed.items)
        assert db.session.get(Product, pants.id).current_stock == 3

    def test_damaged_items_are_kept_out_of_stock(self, product, pants):
        doc = _create_return([
            {"product_id": product.id, "quantity": 1, "unit_price_cents": 2500, "condition": "DAMAGED"},
            {"product_id": pants.id, "quantity": 1, "unit_price_cents": 8000, "condition": "NEW"},
        ])
        _approve(doc)

        return_service.process_return(return_id=doc.id)
        db.session.commit()

        movements = db.session.query(StockMovement).filter_by(reference_type="RETURN").all()
        assert [m.product_id for m in movements] == [pants.id]
        items = {item.product_id: item for item in db.session.get(Return, doc.id).items}
        assert items[product.id].restocked is False
        assert items[pants.id].restocked is True

    def test_damaged_items_restocked_when_enabled(self, app, monkeypatch, product):
        monkeypatch.setitem(app.config, "RESTOCK_DAMAGED_RETURNS", True)
        doc = _create_return([
            {"product_id": product.id, "quantity": 1, "unit_price_cents": 2500, "condition": "DEFECTIVE"},
        ])
        _approve(doc)

        return_service.process_return(return_id=doc.id)
        db.session.commit()

        assert db.session.query(StockMovement).filter_by(reference_type="RETURN").count() == 1

    def test_without_return_to_stock_nothing_moves(self, product):
        doc = _create_return([{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}])
        _approve(doc)

        return_service.process_return(return_id=doc.id, return_to_stock=False)
        db.session.commit()

        assert db.session.query(StockMovement).count() == 0
        assert db.session.get(Return, doc.id).status == "PROCESSED"

    def test_exchange_uses_exchange_reason(self, product):
        doc = _create_return(
            [{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}],
            type="EXCHANGE",
            refund_method="EXCHANGE",
        )
        _approve(doc)
        return_service.process_return(return_id=doc.id)
        db.session.commit()

        assert db.session.query(StockMovement).one().reason == "EXCHANGE"

    def test_unit_return_goes_to_unit_stock(self, product, main_unit):
        doc = _create_return(
            [{"product_id": product.id, "quantity": 2, "unit_price_cents": 2500}],
            unit_id=main_unit.id,
        )
        _approve(doc)
        return_service.process_return(return_id=doc.id)
        db.session.commit()

        assert stock_service.get_unit_quantity(main_unit.id, product.id) == 2


# =============================================================================
# REFUNDS
# =============================================================================


class TestRefunds:

    def test_cash_refund_posts_expense(self, product):
        doc = _create_return(
            [{"product_id": product.id, "quantity": 2, "unit_price_cents": 2500}],
            refund_method="CASH",
        )
        assert doc.refund_amount_cents == 5000
        _approve(doc)

        return_service.process_return(return_id=doc.id)
        db.session.commit()

        txn = db.session.query(FinancialTransaction).one()
        assert txn.type == "EXPENSE"
        assert txn.category == "REFUNDS"
        assert txn.amount_cents == 5000
        assert txn.reference_id == doc.id

    def test_store_credit_posts_nothing(self, product):
        doc = _create_return(
            [{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}],
            refund_method="STORE_CREDIT",
        )
        _approve(doc)
        return_service.process_return(return_id=doc.id)
        db.session.commit()

        assert db.session.query(FinancialTransaction).count() == 0

    def test_explicit_refund_amount(self, product):
        doc = _create_return(
            [{"product_id": product.id, "quantity": 2, "unit_price_cents": 2500}],
            refund_amount_cents=4000,
        )
        assert doc.refund_amount_cents == 4000


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestReturnLifecycle:

    def test_number_and_initial_status(self, product):
        doc = _create_return([{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}])
        assert doc.return_number == "DV000001"
        assert doc.status == "PENDING"

    def test_process_requires_approval(self, product):
        doc = _create_return([{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}])
        with pytest.raises(ReturnStateError):
            return_service.process_return(return_id=doc.id)
        db.session.rollback()
        assert db.session.query(StockMovement).count() == 0

    def test_rejected_return_cannot_be_approved(self, product):
        doc = _create_return([{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}])
        return_service.reject_return(return_id=doc.id, reason="Worn item")
        db.session.commit()

        assert "Rejected: Worn item" in db.session.get(Return, doc.id).notes
        with pytest.raises(ReturnStateError):
            return_service.approve_return(return_id=doc.id)
        db.session.rollback()

    def test_processed_return_cannot_be_processed_again(self, product):
        doc = _create_return([{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}])
        _approve(doc)
        return_service.process_return(return_id=doc.id)
        db.session.commit()

        with pytest.raises(ReturnStateError):
            return_service.process_return(return_id=doc.id)
        db.session.rollback()
        assert db.session.query(StockMovement).count() == 1

    def test_invalid_condition_rejected(self, product):
        with pytest.raises(ValidationError):
            return_service.create_return(
                type="RETURN",
                reason="OTHER",
                items=[{"product_id": product.id, "quantity": 1, "condition": "SOILED"}],
            )
        db.session.rollback()


class TestReturnRoutes:

    def test_route_flow(self, client, admin_headers, product):
        resp = client.post("/api/returns", headers=admin_headers, json={
            "type": "RETURN",
            "reason": "REGRET",
            "refund_method": "CREDIT",
            "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 2500}],
        })
        assert resp.status_code == 201
        return_id = resp.json["id"]

        assert client.post(f"/api/returns/{return_id}/process", headers=admin_headers).status_code == 409
        assert client.post(f"/api/returns/{return_id}/approve", headers=admin_headers).status_code == 200

        resp = client.post(f"/api/returns/{return_id}/process", headers=admin_headers, json={"return_to_stock": True})
        assert resp.status_code == 200
        assert resp.json["status"] == "PROCESSED"
        assert db.session.get(Product, product.id).current_stock == 1
