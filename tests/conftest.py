import os
import tempfile

os.environ["DATABASE_URL"] = "mongomock://localhost"
os.environ["DATABASE_NAME"] = "storefront_test"
os.environ["CACHE_BACKEND"] = "none"
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["UPLOAD_PATH"] = tempfile.mkdtemp(prefix="storefront-uploads-")

import pytest
from fastapi.testclient import TestClient

import cache
from database import db, utcnow
from schemas import ProductCreate, ProductVariant, Role
from security import get_password_hash, token_for_user


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    cache.configure_cache(cache.NullCache())
    yield


@pytest.fixture
def client():
    from main import app

    return TestClient(app)


def _make_user(email, role):
    now = utcnow()
    doc = {
        "email": email,
        "password_hash": get_password_hash("secret123"),
        "first_name": "Test",
        "last_name": role.title(),
        "role": role,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    db["user"].insert_one(doc)
    return doc


@pytest.fixture
def user():
    return _make_user("user@example.com", Role.USER.value)


@pytest.fixture
def admin():
    return _make_user("admin@example.com", Role.ADMIN.value)


@pytest.fixture
def user_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {token_for_user(admin)}"}


@pytest.fixture
def category():
    doc = {"name": "Clothing", "is_active": True, "created_at": utcnow()}
    db["category"].insert_one(doc)
    return doc


@pytest.fixture
def make_product(category):
    import products

    def factory(**fields):
        data = {"name": "Plain Tee", "price": 20.0, "stock": 10, "category_id": str(category["_id"])}
        data.update(fields)
        return products.create_product(ProductCreate(**data))

    return factory


@pytest.fixture
def variant_product(make_product):
    return make_product(
        name="Hoodie",
        price=40.0,
        stock=0,
        variants=[
            ProductVariant(color="Red", size="M", stock=3),
            ProductVariant(color="Blue", size="L", stock=7),
        ],
    )
