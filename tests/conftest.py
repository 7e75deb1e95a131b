import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
from database import create_document, ensure_indexes, get_db, to_object_id
from main import app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["goldlegacy_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email="cliente@example.com", role="USER", name=None):
    user_id = create_document(db, "user", {"email": email, "password_hash": "!", "name": name, "role": role})
    return db["user"].find_one({"_id": to_object_id(user_id)})


def make_category(db, slug="cadenas", name="Cadenas", is_active=True):
    category_id = create_document(db, "category", {"name": name, "slug": slug, "is_active": is_active})
    return db["category"].find_one({"_id": to_object_id(category_id)})


def make_product(db, **overrides):
    doc = {
        "name": "Cadena Oro 18K",
        "slug": "cadena-oro-18k",
        "description": "Pieza en oro de 18 kilates.",
        "price": 760000.0,
        "material": "Oro 18K",
        "type": "CHAIN",
        "images": ["https://ejemplo.com/img1.jpg"],
        "stock": 5,
        "is_featured": False,
        "category_id": None,
    }
    doc.update(overrides)
    product_id = create_document(db, "product", doc)
    return db["product"].find_one({"_id": to_object_id(product_id)})


def login_as(client, user):
    client.cookies.set(auth.SESSION_COOKIE, auth.issue_session(str(user["_id"]), user["email"], user["role"]))


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@goldlegacy.com", role="ADMIN", name="Admin")


@pytest.fixture
def admin_client(client, admin):
    login_as(client, admin)
    return client
