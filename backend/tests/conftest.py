"""
Pytest fixtures for liquorpos backend tests.

Provides test database setup, staff accounts with session tokens, and a
beer family (single + six-pack) plus an unrelated wine family.
"""

import pytest

from liquorpos import create_app
from liquorpos.extensions import db
from liquorpos.models import Product, User
from liquorpos.models.auth import ROLE_ADMINISTRATOR, ROLE_SALES
from liquorpos.services import session_service
from liquorpos.services.auth_service import Actor, hash_password
from liquorpos.services.stock_service import derive_status


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'TRANSACTION_RETRY_BACKOFF': 0,
        'TAX_RATE': '0.15',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def reload(model, pk):
    """Fetch a row bypassing anything cached in the session."""
    db.session.expire_all()
    return db.session.get(model, pk)


def make_user(email: str, role: str, name: str = None, surname: str = None) -> User:
    user = User(
        email=email,
        name=name,
        surname=surname,
        role=role,
        password_hash=hash_password(TEST_PASSWORD),
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_product(
    sku: str,
    name: str,
    stock: int,
    threshold: int = 0,
    base_product_sku: str = None,
    contained_units: int = 1,
    price_cents: int = 1000,
) -> Product:
    product = Product(
        sku=sku,
        name=name,
        base_product_sku=base_product_sku or sku,
        contained_units=contained_units,
        stock=stock,
        threshold=threshold,
        status=derive_status(stock, threshold),
        price_cents=price_cents,
    )
    db.session.add(product)
    db.session.commit()
    return product


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user("admin@store.test", ROLE_ADMINISTRATOR, name="Ada", surname="Admin")


@pytest.fixture(scope='function')
def sales_user(db_session):
    return make_user("till@store.test", ROLE_SALES, name="Sam", surname="Seller")


@pytest.fixture(scope='function')
def admin_actor(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture(scope='function')
def sales_actor(sales_user):
    return Actor.from_user(sales_user)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = session_service.create_session(admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def sales_headers(sales_user):
    _, token = session_service.create_session(sales_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def beer(db_session):
    """
    Base single (B1: 100 units, threshold 10) and a six-pack (B6) whose
    stock is consistent with it: floor(100 / 6) = 16.
    """
    single = make_product("B1", "Beer-Single", stock=100, threshold=10, price_cents=2000)
    six_pack = make_product(
        "B6", "Beer-SixPack", stock=16, threshold=2,
        base_product_sku="B1", contained_units=6, price_cents=11000,
    )
    return single, six_pack


@pytest.fixture(scope='function')
def wine(db_session):
    return make_product("W1", "House Red", stock=50, threshold=5, price_cents=9000)
