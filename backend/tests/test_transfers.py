"""
Inter-unit transfer tests.

Verifies:
- REQUESTED -> APPROVED -> SHIPPED -> RECEIVED, no skipping
- Shipping moves stock out of the origin, receiving into the destination
- Cancellation only before shipping, without stock effect
"""

import pytest

from erp.extensions import db
from erp.models import StockMovement, StockTransfer
from erp.services import stock_service, transfer_service
from erp.services.stock_service import StockError
from erp.services.transfer_service import TransferStateError
from erp.validation import NotFoundError, ValidationError


@pytest.fixture
def stocked(product, main_unit):
    """20 units of `product` at the main unit."""
    stock_service.record_movement(
        product_id=product.id, unit_id=main_unit.id, type="IN", reason="PURCHASE", quantity=20
    )
    db.session.commit()
    return product


@pytest.fixture
def transfer(stocked, main_unit, branch_unit, admin_user):
    doc = transfer_service.create_transfer(
        from_unit_id=main_unit.id,
        to_unit_id=branch_unit.id,
        items=[{"product_id": stocked.id, "requested_quantity": 8}],
        user_id=admin_user.id,
    )
    db.session.commit()
    return doc


def _ship(transfer_id, user_id, items=None):
    doc = transfer_service.ship_transfer(transfer_id=transfer_id, user_id=user_id, items=items)
    db.session.commit()
    return doc


# =============================================================================
# CREATION
# =============================================================================


class TestCreateTransfer:

    def test_created_as_requested_with_number(self, transfer):
        assert transfer.status == "REQUESTED"
        assert transfer.transfer_number == "TR000001"
        assert len(transfer.items) == 1

    def test_numbers_are_sequential(self, transfer, main_unit, branch_unit, admin_user, stocked):
        second = transfer_service.create_transfer(
            from_unit_id=main_unit.id,
            to_unit_id=branch_unit.id,
            items=[{"product_id": stocked.id, "requested_quantity": 1}],
            user_id=admin_user.id,
        )
        db.session.commit()
        assert second.transfer_number == "TR000002"

    def test_same_unit_rejected(self, main_unit, admin_user, stocked):
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(
                from_unit_id=main_unit.id,
                to_unit_id=main_unit.id,
                items=[{"product_id": stocked.id, "requested_quantity": 1}],
                user_id=admin_user.id,
            )
        db.session.rollback()

    def test_empty_items_rejected(self, main_unit, branch_unit, admin_user):
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(
                from_unit_id=main_unit.id, to_unit_id=branch_unit.id, items=[], user_id=admin_user.id
            )
        db.session.rollback()

    def test_unknown_unit(self, main_unit, admin_user, stocked):
        with pytest.raises(NotFoundError):
            transfer_service.create_transfer(
                from_unit_id=main_unit.id,
                to_unit_id=main_unit.id + 999,
                items=[{"product_id": stocked.id, "requested_quantity": 1}],
                user_id=admin_user.id,
            )
        db.session.rollback()


# =============================================================================
# LIFECYCLE ORDER
# =============================================================================


class TestLifecycleOrder:

    def test_ship_before_approve_rejected(self, transfer, admin_user):
        with pytest.raises(TransferStateError):
            transfer_service.ship_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.rollback()

        assert db.session.get(StockTransfer, transfer.id).status == "REQUESTED"
        assert db.session.query(StockMovement).filter_by(reason="TRANSFER_OUT").count() == 0

    def test_receive_before_ship_rejected(self, transfer, admin_user):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        item = transfer.items[0]

        with pytest.raises(TransferStateError):
            transfer_service.receive_transfer(
                transfer_id=transfer.id,
                user_id=admin_user.id,
                items=[{"item_id": item.id, "received_quantity": 8}],
            )
        db.session.rollback()

    def test_approve_twice_rejected(self, transfer, admin_user):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        with pytest.raises(TransferStateError):
            transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.rollback()

    def test_ship_before_approve_route_returns_409(self, client, admin_headers, transfer):
        resp = client.post(f"/api/transfers/{transfer.id}/ship", headers=admin_headers)
        assert resp.status_code == 409


# =============================================================================
# STOCK EFFECTS
# =============================================================================


class TestStockEffects:

    def test_full_flow_moves_stock_between_units(self, transfer, admin_user, main_unit, branch_unit, stocked):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        _ship(transfer.id, admin_user.id)

        assert stock_service.get_unit_quantity(main_unit.id, stocked.id) == 12
        assert stock_service.get_unit_quantity(branch_unit.id, stocked.id) == 0

        item = transfer.items[0]
        transfer_service.receive_transfer(
            transfer_id=transfer.id,
            user_id=admin_user.id,
            items=[{"item_id": item.id, "received_quantity": 7}],
        )
        db.session.commit()

        doc = db.session.get(StockTransfer, transfer.id)
        assert doc.status == "RECEIVED"
        assert doc.items[0].shipped_quantity == 8
        assert doc.items[0].received_quantity == 7
        assert stock_service.get_unit_quantity(branch_unit.id, stocked.id) == 7

        reasons = sorted(m.reason for m in db.session.query(StockMovement).filter_by(reference_type="TRANSFER"))
        assert reasons == ["TRANSFER_IN", "TRANSFER_OUT"]

    def test_ship_override_quantity(self, transfer, admin_user, main_unit, stocked):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        item = transfer.items[0]

        _ship(transfer.id, admin_user.id, items=[{"item_id": item.id, "shipped_quantity": 5}])

        assert stock_service.get_unit_quantity(main_unit.id, stocked.id) == 15

    def test_ship_without_origin_stock_rejected(self, transfer, admin_user, main_unit, stocked):
        stock_service.record_movement(
            product_id=stocked.id, unit_id=main_unit.id, type="ADJUSTMENT", reason="INVENTORY", quantity=3
        )
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()

        with pytest.raises(StockError):
            transfer_service.ship_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.rollback()

        assert db.session.get(StockTransfer, transfer.id).status == "APPROVED"
        assert stock_service.get_unit_quantity(main_unit.id, stocked.id) == 3

    def test_receive_more_than_shipped_rejected(self, transfer, admin_user):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        _ship(transfer.id, admin_user.id)
        item = transfer.items[0]

        with pytest.raises(ValidationError):
            transfer_service.receive_transfer(
                transfer_id=transfer.id,
                user_id=admin_user.id,
                items=[{"item_id": item.id, "received_quantity": 9}],
            )
        db.session.rollback()


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancel:

    def test_cancel_requested(self, transfer, admin_user, main_unit, stocked):
        doc = transfer_service.cancel_transfer(transfer_id=transfer.id, user_id=admin_user.id, reason="Wrong unit")
        db.session.commit()

        assert doc.status == "CANCELLED"
        assert "Cancelled: Wrong unit" in doc.notes
        assert stock_service.get_unit_quantity(main_unit.id, stocked.id) == 20

    def test_cancel_after_ship_rejected(self, transfer, admin_user):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        _ship(transfer.id, admin_user.id)

        with pytest.raises(TransferStateError):
            transfer_service.cancel_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.rollback()


# =============================================================================
# API
# =============================================================================


class TestTransferRoutes:

    def test_route_flow(self, client, admin_headers, stocked, main_unit, branch_unit):
        resp = client.post("/api/transfers", headers=admin_headers, json={
            "from_unit_id": main_unit.id,
            "to_unit_id": branch_unit.id,
            "items": [{"product_id": stocked.id, "requested_quantity": 4}],
        })
        assert resp.status_code == 201
        transfer_id = resp.json["id"]
        item_id = resp.json["items"][0]["id"]

        assert client.post(f"/api/transfers/{transfer_id}/approve", headers=admin_headers).status_code == 200
        assert client.post(f"/api/transfers/{transfer_id}/ship", headers=admin_headers).status_code == 200
        resp = client.post(f"/api/transfers/{transfer_id}/receive", headers=admin_headers, json={
            "items": [{"item_id": item_id, "received_quantity": 4}],
        })
        assert resp.status_code == 200
        assert resp.json["status"] == "RECEIVED"

        resp = client.get(f"/api/unit-stock/by-product/{stocked.id}", headers=admin_headers)
        assert resp.status_code == 200

    def test_each_step_is_audited(self, client, admin_headers, transfer, admin_user):
        transfer_service.approve_transfer(transfer_id=transfer.id, user_id=admin_user.id)
        db.session.commit()
        _ship(transfer.id, admin_user.id)

        resp = client.get(
            f"/api/audit-logs?entity_type=transfer&entity_id={transfer.id}", headers=admin_headers
        )
        assert resp.status_code == 200
        assert [e["action"] for e in resp.json] == [
            "transfer.shipped",
            "transfer.approved",
            "transfer.requested",
        ]
        assert {e["user_id"] for e in resp.json} == {admin_user.id}

    def test_get_missing_transfer(self, client, admin_headers):
        resp = client.get("/api/transfers/999999", headers=admin_headers)
        assert resp.status_code == 404
