def test_root(client):
    assert client.get("/").json() == {"message": "Storefront API running"}


def test_seed_populates_catalog_once(client, db, admin_headers):
    first = client.post("/seed", headers=admin_headers).json()
    assert first["seeded"] is True
    assert first["products"] == 5

    products = client.get("/products").json()["products"]
    assert all(p["category"] for p in products)
    assert {c["name"] for c in client.get("/categories").json()["categories"]} == {"Home Office", "Kitchen", "Outdoor"}

    assert client.post("/seed", headers=admin_headers).json()["seeded"] is False
    assert db["product"].count_documents({}) == 5


def test_seed_creates_no_accounts(client, db, admin_headers):
    client.post("/seed", headers=admin_headers)
    assert db["user"].count_documents({}) == 1
    assert db["user"].count_documents({"role": "admin"}) == 1


def test_seed_requires_admin(client, db, user_headers):
    anonymous = client.post("/seed")
    assert anonymous.status_code == 401
    assert anonymous.json() == {"error": "Missing bearer token"}

    shopper = client.post("/seed", headers=user_headers)
    assert shopper.status_code == 403
    assert shopper.json() == {"error": "Admin only"}

    assert db["product"].count_documents({}) == 0
    assert db["user"].count_documents({"role": "admin"}) == 0
