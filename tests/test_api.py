import pyotp

from storefront.errors import QueryTimeoutError
from storefront.models import CartItem, Order
from storefront.ordering.cart import CartStore


def _checkout(client, headers, shipping_json, items, total, payment_intent_id):
    return client.post(
        "/orders",
        headers=headers,
        json={
            "shipping": shipping_json,
            "items": items,
            "total": total,
            "payment_intent_id": payment_intent_id,
        },
    )


def test_health(client):
    assert client.get("/").json()["ok"] is True


def test_request_id_is_echoed(client):
    r = client.get("/", headers={"X-Request-ID": "abc123"})

    assert r.headers["X-Request-ID"] == "abc123"


def test_register_then_login(client):
    r = client.post(
        "/auth/register",
        json={"username": "ada", "email": "ada@example.com", "password": "pw-123"},
    )
    assert r.status_code == 201
    assert r.json()["user"]["username"] == "ada"

    r = client.post("/auth/login", json={"email": "ada@example.com", "password": "pw-123"})
    assert r.status_code == 200
    token = r.json()["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "ada@example.com"


def test_register_duplicate_is_conflict(client, make_user):
    user = make_user()

    r = client.post(
        "/auth/register",
        json={"username": user.username, "email": "new@example.com", "password": "pw"},
    )

    assert r.status_code == 409
    assert r.json()["error"]["category"] == "conflict"


def test_missing_or_bad_token_is_unauthorized(client):
    assert client.get("/cart").status_code == 401

    r = client.get("/cart", headers={"Authorization": "Bearer nonsense"})
    assert r.status_code == 401
    assert r.json() == {
        "error": {
            "category": "unauthorized",
            "message": "Unauthorized: Invalid or expired token.",
            "retryable": False,
        }
    }


def test_cart_endpoints(client, make_user, make_product, auth_header):
    user, p = make_user(), make_product("Mouse", 19.99)
    h = auth_header(user)

    r = client.post("/cart/items", headers=h, json={"product_id": p.id, "quantity": 2})
    assert r.status_code == 201
    assert r.json()["total"] == 39.98

    r = client.put(f"/cart/items/{p.id}", headers=h, json={"quantity": 5})
    assert r.json()["items"][0]["quantity"] == 5

    r = client.delete(f"/cart/items/{p.id}", headers=h)
    assert r.json() == {"items": [], "total": 0.0}

    r = client.post("/cart/items", headers=h, json={"product_id": 9999, "quantity": 1})
    assert r.status_code == 404
    assert r.json()["error"]["category"] == "not_found"


def test_products_endpoints(client, make_product):
    p = make_product("Keyboard", 39.99)

    listed = client.get("/products").json()
    assert [x["name"] for x in listed] == ["Keyboard"]
    assert client.get(f"/products/{p.id}").json()["price"] == 39.99
    assert client.get("/products/9999").status_code == 404


def test_checkout_end_to_end(client, db, make_user, make_product, auth_header, shipping_json):
    user = make_user()
    mouse, keyboard = make_product("Mouse", 19.99), make_product("Keyboard", 39.99)
    h = auth_header(user)
    client.post("/cart/items", headers=h, json={"product_id": mouse.id, "quantity": 1})
    client.post("/cart/items", headers=h, json={"product_id": keyboard.id, "quantity": 2})
    snapshot = client.get("/cart", headers=h).json()

    r = _checkout(client, h, shipping_json, snapshot["items"], snapshot["total"], "pi_e2e")

    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Order placed successfully!"
    assert body["order"]["status"] == "Pending"
    assert body["order"]["total_amount"] == 99.97
    assert client.get("/cart", headers=h).json()["items"] == []

    history = client.get("/orders", headers=h).json()
    assert [o["id"] for o in history] == [body["order"]["id"]]

    detail = client.get(f"/orders/{body['order']['id']}", headers=h).json()
    assert sorted((i["name"], i["quantity"], i["price_per_unit"]) for i in detail["items"]) == [
        ("Keyboard", 2, 39.99),
        ("Mouse", 1, 19.99),
    ]


def test_repeated_checkout_is_conflict(client, db, make_user, make_product, auth_header, shipping_json):
    user, p = make_user(), make_product()
    h = auth_header(user)
    items = [{"product": {"id": p.id, "price": 10.0}, "quantity": 1}]

    assert _checkout(client, h, shipping_json, items, 10.0, "pi_twice").status_code == 201
    client.post("/cart/items", headers=h, json={"product_id": p.id, "quantity": 1})
    r = _checkout(client, h, shipping_json, items, 10.0, "pi_twice")

    assert r.status_code == 409
    db.expire_all()
    assert db.query(Order).count() == 1
    assert db.query(CartItem).count() == 1


def test_empty_checkout_is_validation_error(client, make_user, auth_header, shipping_json):
    user = make_user()

    r = _checkout(client, auth_header(user), shipping_json, [], 0, "pi_empty")

    assert r.status_code == 400
    assert r.json()["error"]["category"] == "validation"


def test_malformed_body_is_validation_error(client, make_user, auth_header):
    user = make_user()

    r = client.post("/orders", headers=auth_header(user), json={"items": "nope"})

    assert r.status_code == 400
    assert r.json()["error"]["category"] == "validation"
    assert r.json()["error"]["retryable"] is False


def test_other_users_order_is_not_found(client, make_user, make_product, auth_header, shipping_json):
    alice, bob, p = make_user(), make_user(), make_product()
    items = [{"product": {"id": p.id, "price": 10.0}, "quantity": 1}]
    order_id = _checkout(client, auth_header(alice), shipping_json, items, 10.0, "pi_alice").json()["order"]["id"]

    assert client.get(f"/orders/{order_id}", headers=auth_header(bob)).status_code == 404


def test_admin_changes_status_of_another_users_order(
    client, db, make_user, make_product, auth_header, shipping_json
):
    customer, admin, p = make_user(), make_user(is_admin=True), make_product()
    items = [{"product": {"id": p.id, "price": 10.0}, "quantity": 1}]
    order_id = _checkout(client, auth_header(customer), shipping_json, items, 10.0, "pi_c").json()["order"]["id"]

    r = client.put(f"/admin/orders/{order_id}/status", headers=auth_header(admin), json={"status": "Shipped"})
    assert r.status_code == 200
    assert r.json()["status"] == "Shipped"

    r = client.put(f"/admin/orders/{order_id}/status", headers=auth_header(admin), json={"status": "shipped"})
    assert r.status_code == 400
    assert r.json()["error"]["category"] == "validation"

    r = client.put("/admin/orders/99999/status", headers=auth_header(admin), json={"status": "Shipped"})
    assert r.status_code == 404

    db.expire_all()
    assert db.get(Order, order_id).status == "Shipped"


def test_non_admin_is_forbidden(client, make_user, auth_header):
    user = make_user()

    r = client.put("/admin/orders/1/status", headers=auth_header(user), json={"status": "Shipped"})

    assert r.status_code == 403
    assert r.json()["error"]["category"] == "forbidden"


def test_revoked_admin_is_forbidden_on_next_request(client, db, make_user, auth_header):
    admin, other = make_user(is_admin=True), make_user()
    h = auth_header(admin)
    assert client.put(f"/admin/users/{other.id}/role", headers=h, json={"is_admin": True}).status_code == 200

    r = client.put(f"/admin/users/{admin.id}/role", headers=auth_header(other), json={"is_admin": False})
    assert r.status_code == 200

    r = client.put(f"/admin/users/{other.id}/role", headers=h, json={"is_admin": False})
    assert r.status_code == 403


def test_admin_cannot_change_own_role(client, make_user, auth_header):
    admin = make_user(is_admin=True)

    r = client.put(f"/admin/users/{admin.id}/role", headers=auth_header(admin), json={"is_admin": False})

    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Cannot change own role."


def test_timeout_surfaces_as_retryable(client, make_user, auth_header, monkeypatch):
    user = make_user()

    def _slow(self, user_id):
        raise QueryTimeoutError()

    monkeypatch.setattr(CartStore, "read", _slow)
    r = client.get("/cart", headers=auth_header(user))

    assert r.status_code == 504
    assert r.json()["error"] == {
        "category": "timeout",
        "message": "Database query timed out.",
        "retryable": True,
    }


def test_two_factor_flow_over_http(client, make_user, auth_header):
    user = make_user(password="pw-1")
    h = auth_header(user)

    gen = client.post("/auth/2fa/generate", headers=h).json()
    secret = gen["secret"]
    assert gen["qr_code_url"].startswith("data:image/png;base64,")

    r = client.post("/auth/2fa/verify", headers=h, json={"secret": secret, "token": "000000x"})
    assert r.status_code == 400

    r = client.post("/auth/2fa/verify", headers=h, json={"secret": secret, "token": pyotp.TOTP(secret).now()})
    assert r.json() == {"verified": True, "message": "2FA enabled successfully!"}

    challenge = client.post("/auth/login", json={"email": user.email, "password": "pw-1"}).json()
    assert challenge == {"requires_2fa": True, "user_id": user.id}

    r = client.post("/auth/verify-2fa", json={"user_id": user.id, "totp_code": pyotp.TOTP(secret).now()})
    assert r.status_code == 200
    assert "token" in r.json()

    r = client.post("/auth/2fa/disable", headers=h, json={"password": "wrong"})
    assert r.status_code == 401

    r = client.post("/auth/2fa/disable", headers=h, json={"password": "pw-1"})
    assert r.json()["disabled"] is True
