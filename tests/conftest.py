import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def signup(client, email, name="Test User", password="secret123"):
    res = client.post("/signup", json={"email": email, "password": password, "name": name})
    assert res.status_code == 201, res.text
    return res.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(client):
    return bearer(signup(client, "shopper@example.com", name="Shopper")["token"])


@pytest.fixture
def admin_headers(client, db):
    data = signup(client, "admin@example.com", name="Admin")
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"role": "admin"}})
    return bearer(data["token"])


@pytest.fixture
def category(client, admin_headers):
    res = client.post("/categories", json={"name": "Electronics", "description": "Gadgets"}, headers=admin_headers)
    assert res.status_code == 201, res.text
    return res.json()


@pytest.fixture
def make_product(client, admin_headers):
    def _make(name="Widget", price=10.0, stock=5, **extra):
        body = {"name": name, "description": f"A {name.lower()}", "price": price, "stock": stock, **extra}
        res = client.post("/products", json=body, headers=admin_headers)
        assert res.status_code == 201, res.text
        return res.json()
    return _make
