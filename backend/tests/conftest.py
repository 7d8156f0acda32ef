"""
Pytest fixtures for the ERP backend tests.

Provides an in-memory database, the test client, admin/regular users with
their bearer headers and a few master-data records.
"""

import pytest

from erp import create_app
from erp.extensions import db
from erp.models.auth import ROLE_ADMIN, ROLE_USER
from erp.services import catalog_service, unit_service
from erp.services.auth_service import create_user


PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'STORAGE_BASE_URL': None,
        'NOTIFY_WEBHOOK_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Empty every table before each test; the schema is kept."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", PASSWORD, email="admin@erp.local", name="Admin", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def regular_user(db_session):
    return create_user("clerk", PASSWORD, email="clerk@erp.local", name="Clerk", role=ROLE_USER)


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username, PASSWORD))


@pytest.fixture(scope='function')
def user_headers(client, regular_user):
    return auth_headers(get_auth_token(client, regular_user.username, PASSWORD))


@pytest.fixture(scope='function')
def main_unit(db_session):
    unit = unit_service.create_unit(patch={"code": "MAIN", "name": "Main Store", "is_default": True})
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def branch_unit(db_session):
    unit = unit_service.create_unit(patch={"code": "BR01", "name": "Branch 01"})
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = catalog_service.create_supplier(patch={"code": "SUP01", "name": "Textile Supplier"})
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def product(db_session):
    """Product with min_stock 10, max_stock 100 and no stock yet."""
    return make_product("SHIRT-01", min_stock=10, max_stock=100)


def make_product(code: str, *, stock: int = 0, cost: int = 1000, price: int = 2500, **fields):
    """Create and commit a product; `stock` becomes its initial ledger entry."""
    patch = {
        "code": code,
        "name": fields.pop("name", f"Product {code}"),
        "cost_price_cents": cost,
        "sale_price_cents": price,
        "current_stock": stock,
        **fields,
    }
    product = catalog_service.create_product(patch=patch)
    db.session.commit()
    return product


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
