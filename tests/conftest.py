import os

# must be set before storefront is imported: main.py creates tables at import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from storefront import models  # noqa: F401  (registers tables on Base)
from storefront.accounts import CredentialAuthority
from storefront.auth import create_token
from storefront.config import settings
from storefront.db import Base, create_db_engine, get_db
from storefront.logging import configure_logging
from storefront.models import Product, User
from storefront.schemas import CartLineIn, ProductRef, ShippingDetails


@pytest.fixture(scope="session", autouse=True)
def _logging():
    configure_logging(settings.log_level, settings.log_json)


@pytest.fixture()
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'storefront-test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    from storefront.main import app

    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_test_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(password="s3cret-pass", is_admin=False, username=None) -> User:
        counter["n"] += 1
        name = username or f"user{counter['n']}"
        u = CredentialAuthority(db).register(name, f"{name}@example.com", password)
        if is_admin:
            u.is_admin = True
            db.commit()
        return u

    return _make


@pytest.fixture()
def make_product(db):
    def _make(name="Widget", price=10.0, stock=100) -> Product:
        p = Product(name=name, price=price, stock_quantity=stock, image_url=f"https://example.com/{name}.jpg")
        db.add(p)
        db.commit()
        return p

    return _make


@pytest.fixture()
def auth_header():
    def _header(user: User) -> dict:
        return {"Authorization": f"Bearer {create_token(user.id, user.username)}"}

    return _header


@pytest.fixture()
def shipping():
    return ShippingDetails(
        full_name="Ada Lovelace",
        address_line1="12 St James's Square",
        city="London",
        postal_code="SW1Y 4JH",
        country="UK",
    )


@pytest.fixture()
def shipping_json():
    return {
        "full_name": "Ada Lovelace",
        "address_line1": "12 St James's Square",
        "city": "London",
        "postal_code": "SW1Y 4JH",
        "country": "UK",
    }


@pytest.fixture()
def cart_line():
    def _line(product: Product, quantity: int, price: float | None = None) -> CartLineIn:
        return CartLineIn(
            product=ProductRef(id=product.id, price=product.price if price is None else price),
            quantity=quantity,
        )

    return _line
