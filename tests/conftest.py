import bcrypt
import mongomock
import pytest
from flask_jwt_extended import create_access_token

from backend.app import create_app
from backend.carousel import CarouselManager
from backend.products import ProductManager
from backend.store import Store

ADMIN_PASSWORD = "correct horse battery staple"


@pytest.fixture
def database():
    return mongomock.MongoClient().db


@pytest.fixture
def store(database):
    return Store(database)


@pytest.fixture
def products(store):
    return ProductManager(store)


@pytest.fixture
def carousel(store):
    return CarouselManager(store)


@pytest.fixture
def app_config(tmp_path):
    return {
        "TESTING": True,
        "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD_HASH": bcrypt.hashpw(
            ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)
        ).decode("utf-8"),
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "CAROUSEL_REFERENCE_FORMAT": "filename",
        "TRUSTED_PROXY_HOPS": "0",
    }


@pytest.fixture
def app(app_config, database):
    return create_app(app_config, database=database)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    with app.app_context():
        token = create_access_token(identity="admin", additional_claims={"role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def visitor_headers(app):
    with app.app_context():
        token = create_access_token(identity="visitor")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def product_payload():
    def build(**overrides):
        payload = {
            "name": "Filter A",
            "description": "Replacement cartridge for kitchen purifiers.",
            "price": "49.90",
            "imageUrl": "https://cdn.example.com/filter-a.jpg",
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def admin_password():
    return ADMIN_PASSWORD
