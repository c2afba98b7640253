import pytest
from bson import ObjectId

from conftest import bearer

PICKUP = "2026-10-20T10:00:00+00:00"


@pytest.fixture
def setup(make_user, make_store, make_product):
    user, user_token = make_user()
    admin, admin_token = make_user(role="admin")
    return {
        "user": user,
        "user_token": user_token,
        "admin": admin,
        "admin_token": admin_token,
        "store": make_store(coordinates=(6.629, 46.522)),
        "product": make_product(base_price=5.9),
    }


def order_body(setup, **overrides):
    body = {
        "store_id": str(setup["store"]["_id"]),
        "pickup": PICKUP,
        "items": [{"product_id": str(setup["product"]["_id"]), "size": "L", "quantity": 2}],
    }
    body.update(overrides)
    return body


def place(client, setup):
    res = client.post("/api/v1/orders", json=order_body(setup), headers=bearer(setup["user_token"]))
    assert res.status_code == 201
    return res.json()["order"]


# ---------------
# Accounts
# ---------------

def test_register_login_me(client):
    res = client.post("/api/v1/users", json={
        "email": "Mia@Ocha.ch", "password": "Password-123!", "display_name": "mia_tea",
    })
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["email"] == "mia@ocha.ch"
    assert body["token"]

    res = client.post("/api/v1/auth/login", json={"email": "mia@ocha.ch", "password": "Password-123!"})
    assert res.status_code == 200
    token = res.json()["token"]

    me = client.get("/api/v1/users/me", headers=bearer(token)).json()["user"]
    assert me["display_name"] == "mia_tea"
    assert "password_hash" not in me

    assert client.post("/api/v1/auth/logout", headers=bearer(token)).status_code == 204
    assert client.get("/api/v1/users/me", headers=bearer(token)).status_code == 401


def test_register_rejects_weak_password(client):
    res = client.post("/api/v1/users", json={"email": "a@ocha.ch", "password": "password", "display_name": "abc"})
    assert res.status_code == 422
    assert res.json()["message"] == "Invalid data"


def test_register_duplicate_email(client, make_user):
    user, _ = make_user()
    res = client.post("/api/v1/users", json={
        "email": user["email"], "password": "Password-123!", "display_name": "fresh_name",
    })
    assert res.status_code == 409


def test_login_failure(client):
    res = client.post("/api/v1/auth/login", json={"email": "ghost@ocha.ch", "password": "Password-123!"})
    assert res.status_code == 401
    assert res.json() == {"message": "Email or password incorrect"}


# ---------------
# Orders
# ---------------

def test_create_order(client, setup, database, sink):
    order = place(client, setup)
    assert order["total_price"] == pytest.approx(17.8)
    assert order["status"] == "preparing"
    assert order["user"]["id"] == str(setup["user"]["_id"])
    assert set(order["user"]) == {"id", "email", "display_name"}
    assert order["store"]["slug"] == setup["store"]["slug"]
    assert database["orderitem"].count_documents({"order_id": ObjectId(order["id"])}) == 1
    assert "order.created" in sink.names()


def test_create_order_requires_auth(client):
    assert client.post("/api/v1/orders", json={}).status_code == 401
    res = client.post("/api/v1/orders", json={}, headers=bearer("bogus"))
    assert res.status_code == 401


def test_create_order_missing_fields(client, setup):
    res = client.post("/api/v1/orders", json={}, headers=bearer(setup["user_token"]))
    assert res.status_code == 400
    assert "store_id" in res.json()["message"]

    res = client.post("/api/v1/orders", json=order_body(setup, items=[]), headers=bearer(setup["user_token"]))
    assert res.status_code == 400
    assert "items" in res.json()["message"]


def test_create_order_unknown_store(client, setup, database):
    body = order_body(setup, store_id=str(ObjectId()))
    res = client.post("/api/v1/orders", json=body, headers=bearer(setup["user_token"]))
    assert res.status_code == 404
    assert res.json()["message"] == "Store not found"
    assert database["orderitem"].count_documents({}) == 0


def test_create_order_unknown_product(client, setup, database):
    items = order_body(setup)["items"] + [{"product_id": str(ObjectId()), "size": "S", "quantity": 1}]
    res = client.post("/api/v1/orders", json=order_body(setup, items=items), headers=bearer(setup["user_token"]))
    assert res.status_code == 404
    assert database["order"].count_documents({}) == 0
    assert database["orderitem"].count_documents({}) == 0


def test_my_orders(client, setup):
    assert client.get("/api/v1/orders/me", headers=bearer(setup["user_token"])).json()["orders"] == []
    mine = place(client, setup)
    client.post("/api/v1/orders", json=order_body(setup), headers=bearer(setup["admin_token"]))

    for path in ("/api/v1/orders/me", "/api/v1/users/me/orders"):
        body = client.get(path, headers=bearer(setup["user_token"])).json()
        assert body["totalOrders"] == 1
        assert body["page"] == 1
        assert body["totalPages"] == 1
        assert body["orders"][0]["id"] == mine["id"]
        assert body["orders"][0]["user_id"] == str(setup["user"]["_id"])

    assert client.get("/api/v1/orders/me").status_code == 401


def test_get_order(client, setup, make_user):
    order = place(client, setup)
    res = client.get(f"/api/v1/orders/{order['id']}", headers=bearer(setup["user_token"]))
    assert res.status_code == 200
    assert res.json()["order"]["id"] == order["id"]

    assert client.get(f"/api/v1/orders/{order['id']}", headers=bearer(setup["admin_token"])).status_code == 200
    _, stranger = make_user()
    assert client.get(f"/api/v1/orders/{order['id']}", headers=bearer(stranger)).status_code == 403


def test_get_order_errors(client, setup):
    res = client.get(f"/api/v1/orders/{ObjectId()}", headers=bearer(setup["user_token"]))
    assert res.status_code == 404
    assert res.json()["message"] == "Order not found"

    res = client.get("/api/v1/orders/invalid-id", headers=bearer(setup["user_token"]))
    assert res.status_code == 400
    assert "invalid" in res.json()["message"]


def test_update_status(client, setup, sink):
    order = place(client, setup)
    path = f"/api/v1/orders/{order['id']}/status"

    res = client.patch(path, json={"status": "ready"}, headers=bearer(setup["admin_token"]))
    assert res.status_code == 200
    assert res.json()["order"]["status"] == "ready"
    assert "order.status_changed" in sink.names()

    assert client.patch(path, json={"status": "ready"}, headers=bearer(setup["user_token"])).status_code == 403

    res = client.patch(path, json={"status": "shipped"}, headers=bearer(setup["admin_token"]))
    assert res.status_code == 400
    assert "shipped" in res.json()["message"]

    assert client.patch(path, json={}, headers=bearer(setup["admin_token"])).status_code == 400
    res = client.patch(path, json={"status": "preparing"}, headers=bearer(setup["admin_token"]))
    assert res.status_code == 409

    missing = f"/api/v1/orders/{ObjectId()}/status"
    assert client.patch(missing, json={"status": "ready"}, headers=bearer(setup["admin_token"])).status_code == 404


def test_order_items(client, setup):
    order = place(client, setup)
    res = client.get(f"/api/v1/orders/{order['id']}/items", headers=bearer(setup["user_token"]))
    assert res.status_code == 200
    items = res.json()["items"]
    assert len(items) == 1
    assert items[0]["size"] == "L"
    assert items[0]["final_price"] == pytest.approx(17.8)
    assert items[0]["product"]["id"] == str(setup["product"]["_id"])


def test_delete_order(client, setup, database):
    order = place(client, setup)
    res = client.delete(f"/api/v1/orders/{order['id']}", headers=bearer(setup["user_token"]))
    assert res.status_code == 204
    assert database["order"].count_documents({}) == 0
    assert database["orderitem"].count_documents({"order_id": ObjectId(order["id"])}) == 0

    res = client.delete(f"/api/v1/orders/{order['id']}", headers=bearer(setup["user_token"]))
    assert res.status_code == 404


def test_order_stats(client, setup):
    place(client, setup)
    res = client.get("/api/v1/order-stats", headers=bearer(setup["admin_token"]))
    assert res.status_code == 200
    stats = res.json()["stats"]
    assert stats[0]["totalOrders"] == 1
    assert stats[0]["totalSpent"] == pytest.approx(17.8)

    assert client.get("/api/v1/order-stats", headers=bearer(setup["user_token"])).status_code == 403


# ---------------
# Catalog
# ---------------

def test_products_admin_only(client, setup):
    body = {"slug": "yuzu-soda", "name": "Yuzu Soda", "category": "soda", "description": "Sparkling yuzu",
            "base_price": 4.9, "image": "https://cdn.ocha.ch/yuzu.jpg"}
    assert client.post("/api/v1/products", json=body, headers=bearer(setup["user_token"])).status_code == 403
    res = client.post("/api/v1/products", json=body, headers=bearer(setup["admin_token"]))
    assert res.status_code == 201
    product_id = res.json()["product"]["id"]

    res = client.patch(f"/api/v1/products/{product_id}", json={"base_price": 5.2},
                       headers=bearer(setup["admin_token"]))
    assert res.json()["product"]["base_price"] == 5.2
    assert client.get(f"/api/v1/products/{product_id}").json()["product"]["slug"] == "yuzu-soda"
    assert client.get("/api/v1/products?active=true").json()["totalProducts"] == 2

    assert client.delete(f"/api/v1/products/{product_id}", headers=bearer(setup["admin_token"])).status_code == 204
    assert client.get(f"/api/v1/products/{product_id}").status_code == 404


def test_store_search(client, setup, make_store):
    make_store(coordinates=(6.629, 46.972))
    res = client.get("/api/v1/stores", params={"near": "6.629,46.522", "radius": "1000"})
    assert res.status_code == 200
    body = res.json()
    assert [s["id"] for s in body["stores"]] == [str(setup["store"]["_id"])]

    assert client.get("/api/v1/stores", params={"near": "6.629"}).status_code == 400

    listing = client.get("/api/v1/stores", params={"limit": 1}).json()
    assert listing["totalStores"] == 2
    assert listing["totalPages"] == 2

    nearby = client.get("/api/v1/stores/nearby", params={"lng": 6.629, "lat": 46.522}).json()
    assert nearby["totalStores"] == 1


def test_store_by_id_and_hours(client, setup):
    store_id = str(setup["store"]["_id"])
    assert client.get(f"/api/v1/stores/{store_id}").json()["store"]["id"] == store_id
    assert client.get(f"/api/v1/stores/{ObjectId()}").status_code == 404
    assert client.get("/api/v1/stores/nope").status_code == 400

    hours = client.get(f"/api/v1/stores/{store_id}/hours", params={"at": "2026-10-19T10:30:00"}).json()
    assert hours == {"open": True, "day": 1, "hours": ["09:00", "17:00"]}


def test_store_admin_crud(client, setup):
    body = {
        "name": "Ocha Fribourg",
        "email": "fribourg@ocha.ch",
        "address": {"line1": "Rue de Romont 1", "city": "Fribourg", "zipcode": "1700", "country": "Suisse"},
        "location": {"type": "Point", "coordinates": [7.1514, 46.8035]},
    }
    assert client.post("/api/v1/stores", json=body, headers=bearer(setup["user_token"])).status_code == 403
    res = client.post("/api/v1/stores", json=body, headers=bearer(setup["admin_token"]))
    assert res.status_code == 201
    store = res.json()["store"]
    assert store["slug"] == "ocha-fribourg"

    assert client.post("/api/v1/stores", json=body, headers=bearer(setup["admin_token"])).status_code == 409

    res = client.patch(f"/api/v1/stores/{store['id']}", json={"name": "Ocha Fribourg Gare"},
                       headers=bearer(setup["admin_token"]))
    assert res.json()["store"]["slug"] == "ocha-fribourg-gare"

    bad = client.post("/api/v1/stores", json={**body, "opening_hours": [[]]}, headers=bearer(setup["admin_token"]))
    assert bad.status_code == 422

    assert client.delete(f"/api/v1/stores/{store['id']}", headers=bearer(setup["admin_token"])).status_code == 204
