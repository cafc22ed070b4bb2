import pytest
from bson import ObjectId

import checkout as checkout_service
from errors import ConcurrencyConflictError

SHIPPING = {"name": "Ada Lovelace", "address": "12 Analytical St", "phone": "555-0100"}


def stock_of(db, pid):
    return db["product"].find_one({"_id": ObjectId(pid)})["stock"]


def test_checkout_creates_order_and_decrements_stock(client, db, auth_headers, make_product):
    rose = make_product(name="Mystic Rose", price=89.0, stock=5)
    oud = make_product(name="Midnight Oud", price=150.0, stock=3)
    client.post("/cart", json={"product_id": rose, "quantity": 2}, headers=auth_headers)
    client.post("/cart", json={"product_id": oud, "quantity": 1}, headers=auth_headers)

    res = client.post("/checkout", json={**SHIPPING, "payment_method": "Card"}, headers=auth_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 2 * 89.0 + 150.0

    order = db["order"].find_one({"_id": ObjectId(body["order_id"])})
    assert order["status"] == "placed"
    assert order["payment_method"] == "Card"
    assert {(i["product_id"], i["quantity"], i["unit_price"]) for i in order["items"]} == {
        (rose, 2, 89.0),
        (oud, 1, 150.0),
    }
    assert stock_of(db, rose) == 3
    assert stock_of(db, oud) == 2

    cart = db["cart"].find_one({})
    assert cart is not None
    assert cart["items"] == []


def test_checkout_defaults_to_cash_on_delivery(client, db, auth_headers, make_product):
    pid = make_product()
    client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=auth_headers)
    res = client.post("/checkout", json=SHIPPING, headers=auth_headers)
    assert db["order"].find_one({"_id": ObjectId(res.json()["order_id"])})["payment_method"] == "COD"


def test_checkout_requires_shipping_fields(client, db, auth_headers, make_product):
    pid = make_product()
    client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=auth_headers)
    res = client.post("/checkout", json={**SHIPPING, "phone": ""}, headers=auth_headers)
    assert res.status_code == 400
    assert db["order"].count_documents({}) == 0


def test_checkout_empty_cart(client, auth_headers):
    res = client.post("/checkout", json=SHIPPING, headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["detail"] == "Cart is empty"


def test_checkout_cart_of_only_deleted_products_is_empty(client, db, auth_headers, make_product):
    pid = make_product()
    client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=auth_headers)
    db["product"].delete_one({"_id": ObjectId(pid)})
    res = client.post("/checkout", json=SHIPPING, headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["detail"] == "Cart is empty"


def test_checkout_skips_deleted_products(client, db, auth_headers, make_product):
    keep = make_product(name="Ocean Breeze", price=78.0)
    gone = make_product(name="Golden Amber", price=95.0)
    client.post("/cart", json={"product_id": keep, "quantity": 1}, headers=auth_headers)
    client.post("/cart", json={"product_id": gone, "quantity": 1}, headers=auth_headers)
    db["product"].delete_one({"_id": ObjectId(gone)})

    res = client.post("/checkout", json=SHIPPING, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["total"] == 78.0


def test_checkout_stale_stock_changes_nothing(client, db, auth_headers, make_product):
    p = make_product(name="Mystic Rose", stock=2)
    q = make_product(name="Golden Amber", stock=1)
    client.post("/cart", json={"product_id": p, "quantity": 2}, headers=auth_headers)
    client.post("/cart", json={"product_id": q, "quantity": 1}, headers=auth_headers)
    db["product"].update_one({"_id": ObjectId(q)}, {"$set": {"stock": 0}})

    res = client.post("/checkout", json=SHIPPING, headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["product_id"] == q

    assert stock_of(db, p) == 2
    assert stock_of(db, q) == 0
    assert db["order"].count_documents({}) == 0
    assert len(db["cart"].find_one({})["items"]) == 2


def test_order_keeps_price_after_catalog_change(client, db, auth_headers, make_product):
    pid = make_product(price=89.0)
    client.post("/cart", json={"product_id": pid, "quantity": 2}, headers=auth_headers)
    order_id = client.post("/checkout", json=SHIPPING, headers=auth_headers).json()["order_id"]

    db["product"].update_one({"_id": ObjectId(pid)}, {"$set": {"price": 999.0}})

    order = client.get(f"/orders/{order_id}", headers=auth_headers).json()
    assert order["items"][0]["unit_price"] == 89.0
    assert order["total"] == 178.0


def test_concurrent_stock_loss_is_rolled_back(db, make_product, make_user, monkeypatch):
    user_id = make_user()
    first = make_product(name="Mystic Rose", stock=3)
    second = make_product(name="Midnight Oud", stock=1)
    db["cart"].insert_one({
        "user_id": user_id,
        "items": [{"product_id": first, "quantity": 2}, {"product_id": second, "quantity": 1}],
    })

    real_load = checkout_service.load_cart_lines

    def load_then_race(database, uid):
        lines = real_load(database, uid)
        # another checkout buys the last unit after our validation read
        database["product"].update_one({"_id": ObjectId(second)}, {"$inc": {"stock": -1}})
        return lines

    monkeypatch.setattr(checkout_service, "load_cart_lines", load_then_race)

    with pytest.raises(ConcurrencyConflictError):
        checkout_service.checkout(db, user_id, "Ada", "12 Analytical St", "555-0100")

    assert stock_of(db, first) == 3
    assert stock_of(db, second) == 0
    assert db["order"].count_documents({}) == 0
    assert len(db["cart"].find_one({"user_id": user_id})["items"]) == 2


def test_orders_listing_is_per_user(client, db, login_as, make_product):
    pid = make_product(stock=10)
    alice = login_as(email="alice@example.com")
    bob = login_as(email="bob@example.com")
    client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=alice)
    order_id = client.post("/checkout", json=SHIPPING, headers=alice).json()["order_id"]

    assert [o["id"] for o in client.get("/orders", headers=alice).json()] == [order_id]
    assert client.get("/orders", headers=bob).json() == []
    assert client.get(f"/orders/{order_id}", headers=bob).status_code == 404
