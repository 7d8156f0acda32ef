"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Regular users are denied admin-gated mutations (403) with no state change
- Admins can perform the same mutations
- Login / me / logout session handling
"""

import pytest

from erp.extensions import db
from erp.models import SessionToken, StockTransfer, StoreUnit, Supplier

from conftest import PASSWORD, auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/suppliers"),
            ("POST", "/api/suppliers"),
            ("GET", "/api/products"),
            ("GET", "/api/stock/movements"),
            ("POST", "/api/stock/movements"),
            ("GET", "/api/store-units"),
            ("GET", "/api/transfers"),
            ("GET", "/api/returns"),
            ("GET", "/api/accounts-payable"),
            ("GET", "/api/financial/cash-flow"),
            ("GET", "/api/reports/inventory"),
            ("GET", "/api/dashboard/stats"),
            ("GET", "/api/dre"),
            ("POST", "/api/pricing/calculate"),
            ("GET", "/api/audit-logs"),
            ("POST", "/api/auth/logout"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.json["code"] == "UNAUTHORIZED"

    def test_unknown_token_rejected(self, client):
        resp = client.get("/api/products", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401


# =============================================================================
# REGULAR USER DENIED ADMIN MUTATIONS (403)
# =============================================================================


class TestRegularUserDenied:
    """A user without the admin role cannot mutate and nothing is written."""

    def test_cannot_create_supplier(self, client, user_headers):
        resp = client.post("/api/suppliers", headers=user_headers, json={"code": "S1", "name": "Blocked"})
        assert resp.status_code == 403
        assert resp.json["code"] == "FORBIDDEN"
        assert db.session.query(Supplier).count() == 0

    def test_cannot_create_store_unit(self, client, user_headers):
        resp = client.post("/api/store-units", headers=user_headers, json={"code": "U1", "name": "Blocked"})
        assert resp.status_code == 403
        assert db.session.query(StoreUnit).count() == 0

    def test_cannot_create_transfer(self, client, user_headers, main_unit, branch_unit, product):
        resp = client.post("/api/transfers", headers=user_headers, json={
            "from_unit_id": main_unit.id,
            "to_unit_id": branch_unit.id,
            "items": [{"product_id": product.id, "requested_quantity": 1}],
        })
        assert resp.status_code == 403
        assert db.session.query(StockTransfer).count() == 0

    def test_forbidden_even_with_invalid_body(self, client, user_headers):
        resp = client.post("/api/suppliers", headers=user_headers, data="not json", content_type="text/plain")
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/products"),
            ("POST", "/api/categories"),
            ("POST", "/api/customers"),
            ("POST", "/api/purchase-orders"),
            ("POST", "/api/sales-orders"),
            ("POST", "/api/returns"),
            ("POST", "/api/accounts-payable"),
            ("POST", "/api/accounts-receivable"),
            ("POST", "/api/financial/transactions"),
            ("PUT", "/api/unit-stock"),
            ("POST", "/api/unit-movements"),
        ],
    )
    def test_admin_gated_mutations(self, client, user_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=user_headers, json={})
        assert resp.status_code == 403

    def test_regular_user_can_read(self, client, user_headers):
        assert client.get("/api/suppliers", headers=user_headers).status_code == 200
        assert client.get("/api/store-units", headers=user_headers).status_code == 200


# =============================================================================
# ADMIN ALLOWED
# =============================================================================


class TestAdminAllowed:

    def test_admin_creates_supplier(self, client, admin_headers):
        resp = client.post("/api/suppliers", headers=admin_headers, json={"code": "S1", "name": "Denim Co"})
        assert resp.status_code == 201
        assert resp.json["name"] == "Denim Co"

    def test_duplicate_supplier_code_conflicts(self, client, admin_headers, supplier):
        resp = client.post("/api/suppliers", headers=admin_headers, json={"code": supplier.code, "name": "Other"})
        assert resp.status_code == 409

    def test_missing_required_fields(self, client, admin_headers):
        resp = client.post("/api/store-units", headers=admin_headers, json={"name": "No code"})
        assert resp.status_code == 400

    def test_unknown_field_rejected(self, client, admin_headers):
        resp = client.post("/api/suppliers", headers=admin_headers, json={"code": "S2", "name": "X", "owner": 1})
        assert resp.status_code == 400


# =============================================================================
# SESSIONS
# =============================================================================


class TestSessions:

    def test_me_is_null_for_anonymous(self, client):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 200
        assert resp.json == {"user": None}

    def test_login_and_me(self, client, regular_user):
        token = get_auth_token(client, "clerk", PASSWORD)
        assert token

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.json["user"]["username"] == "clerk"
        assert resp.json["user"]["role"] == "user"

    def test_login_with_wrong_password(self, client, regular_user):
        resp = client.post("/api/auth/login", json={"username": "clerk", "password": "WrongPass1"})
        assert resp.status_code == 401

    def test_login_requires_fields(self, client):
        resp = client.post("/api/auth/login", json={"username": "clerk"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, regular_user):
        token = get_auth_token(client, "clerk", PASSWORD)
        headers = auth_headers(token)

        resp = client.post("/api/auth/logout", headers=headers)
        assert resp.status_code == 200
        assert resp.json == {"success": True}

        assert client.get("/api/products", headers=headers).status_code == 401
        assert db.session.query(SessionToken).filter(SessionToken.revoked_at.isnot(None)).count() == 1

    def test_token_is_stored_hashed(self, client, regular_user):
        token = get_auth_token(client, "clerk", PASSWORD)
        stored = db.session.query(SessionToken).one()
        assert stored.token_hash != token
