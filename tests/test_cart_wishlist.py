from conftest import bearer, signup


def test_adding_same_product_twice_increments(client, db, user_headers, make_product):
    product = make_product("Pen", price=2.5)
    client.post("/cart", json={"productId": product["id"], "quantity": 2}, headers=user_headers)
    res = client.post("/cart", json={"productId": product["id"]}, headers=user_headers)
    assert res.status_code == 200
    assert res.json() == {"productId": product["id"], "quantity": 3}
    row = db["cart_item"].find_one({"product_id": product["id"]})
    assert (row["product_id"], row["quantity"]) == (product["id"], 3)
    assert row["user_id"] == str(db["user"].find_one({"email": "shopper@example.com"})["_id"])
    assert row["created_at"]
    assert db["cart_item"].count_documents({"product_id": product["id"]}) == 1

    cart = client.get("/cart", headers=user_headers).json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["product"]["name"] == "Pen"
    assert cart["total"] == 7.5


def test_set_quantity_and_remove(client, user_headers, make_product):
    product = make_product("Pad")
    client.post("/cart", json={"productId": product["id"]}, headers=user_headers)
    res = client.put(f"/cart/{product['id']}", json={"quantity": 4}, headers=user_headers)
    assert res.json()["quantity"] == 4
    assert client.put(f"/cart/{product['id']}", json={"quantity": 0}, headers=user_headers).status_code == 400
    assert client.delete(f"/cart/{product['id']}", headers=user_headers).json() == {"ok": True}
    assert client.delete(f"/cart/{product['id']}", headers=user_headers).status_code == 404
    assert client.put(f"/cart/{product['id']}", json={"quantity": 1}, headers=user_headers).status_code == 404


def test_cart_rejects_unknown_product(client, user_headers):
    res = client.post("/cart", json={"productId": "000000000000000000000000"}, headers=user_headers)
    assert res.status_code == 404
    assert client.post("/cart", json={"productId": "nope"}, headers=user_headers).status_code == 404


def test_carts_are_per_user(client, user_headers, make_product):
    product = make_product("Cup")
    client.post("/cart", json={"productId": product["id"]}, headers=user_headers)
    other = bearer(signup(client, "other@example.com")["token"])
    assert client.get("/cart", headers=other).json()["items"] == []
    assert client.get("/cart").status_code == 401


def test_wishlist_add_is_idempotent(client, db, user_headers, make_product):
    product = make_product("Hat")
    for _ in range(2):
        assert client.post("/wishlist", json={"productId": product["id"]}, headers=user_headers).json() == {"ok": True}
    assert db["wishlist_item"].count_documents({}) == 1
    assert set(db["wishlist_item"].find_one({})) == {"_id", "user_id", "product_id", "created_at"}
    items = client.get("/wishlist", headers=user_headers).json()["items"]
    assert [i["product"]["name"] for i in items] == ["Hat"]

    assert client.delete(f"/wishlist/{product['id']}", headers=user_headers).json() == {"ok": True}
    assert client.get("/wishlist", headers=user_headers).json() == {"items": []}
    assert client.delete(f"/wishlist/{product['id']}", headers=user_headers).status_code == 404
