from conftest import bearer, signup


def test_signup_returns_token_and_user(client):
    data = signup(client, "new@example.com", name="New")
    assert data["token"]
    assert data["user"]["email"] == "new@example.com"
    assert data["user"]["role"] == "user"
    assert "password_hash" not in data["user"]


def test_duplicate_email_rejected(client):
    signup(client, "dup@example.com")
    res = client.post("/signup", json={"email": "dup@example.com", "password": "secret123", "name": "Again"})
    assert res.status_code == 400
    assert res.json() == {"error": "Email already registered"}


def test_malformed_signup_is_400_with_error(client):
    res = client.post("/signup", json={"email": "not-an-email", "password": "secret123", "name": "X"})
    assert res.status_code == 400
    assert "error" in res.json()


def test_login(client):
    signup(client, "login@example.com", password="hunter22")
    ok = client.post("/login", json={"email": "login@example.com", "password": "hunter22"})
    assert ok.status_code == 200
    assert ok.json()["token"]
    bad = client.post("/login", json={"email": "login@example.com", "password": "wrong!!"})
    assert bad.status_code == 401
    assert bad.json()["error"] == "Invalid credentials"


def test_missing_and_invalid_token(client):
    assert client.get("/user").status_code == 401
    res = client.get("/user", headers=bearer("garbage"))
    assert res.status_code == 401
    assert res.json()["error"] == "Invalid token"


def test_profile_read_and_update(client, user_headers):
    assert client.get("/user", headers=user_headers).json()["user"]["name"] == "Shopper"
    res = client.put("/user", json={"name": "Renamed", "phone": "555-0100"}, headers=user_headers)
    assert res.status_code == 200
    assert res.json()["user"]["name"] == "Renamed"
    assert res.json()["user"]["phone"] == "555-0100"


def test_admin_route_requires_admin_role(client, user_headers, admin_headers):
    res = client.get("/admin/orders", headers=user_headers)
    assert res.status_code == 403
    assert res.json()["error"] == "Admin only"
    assert client.get("/admin/orders", headers=admin_headers).status_code == 200


def test_role_is_reread_on_every_request(client, db, user_headers):
    assert client.get("/user/role", headers=user_headers).json() == {"role": "user"}
    db["user"].update_one({"email": "shopper@example.com"}, {"$set": {"role": "admin"}})
    assert client.get("/user/role", headers=user_headers).json() == {"role": "admin"}
    assert client.get("/admin/logs", headers=user_headers).status_code == 200


def test_deleted_user_token_rejected(client, db, user_headers):
    db["user"].delete_one({"email": "shopper@example.com"})
    assert client.get("/user", headers=user_headers).status_code == 401


def test_admin_mutations_reject_anonymous_and_shoppers(client, db, user_headers, category, make_product):
    product = make_product("Lamp", price=12.0, stock=3)
    attempts = [
        ("post", "/categories", {"name": "Garden"}),
        ("put", f"/categories/{category['id']}", {"description": "x"}),
        ("delete", f"/categories/{category['id']}", None),
        ("post", "/products", {"name": "Rake", "price": 5.0, "stock": 1}),
        ("put", f"/products/{product['id']}", {"price": 1.0}),
        ("delete", f"/products/{product['id']}", None),
        ("post", "/seed", None),
    ]
    for method, path, body in attempts:
        kwargs = {"json": body} if body is not None else {}
        assert getattr(client, method)(path, **kwargs).status_code == 401, path
        assert getattr(client, method)(path, headers=user_headers, **kwargs).status_code == 403, path

    assert client.get(f"/products/{product['id']}").json()["price"] == 12.0
    assert db["category"].count_documents({}) == 1
    assert db["product"].count_documents({}) == 1
