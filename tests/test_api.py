"""HTTP and WebSocket tests against the FastAPI app."""

import asyncio

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from sapjuice.config import Settings
from sapjuice.main import create_app, wait_for_disconnect
from sapjuice.ordering.notification import OrderNotifier

ADMIN_EMAIL = "admin@example.com"


@pytest.fixture
def app(session_factory, feed):
    settings = Settings(
        progression_delay_seconds=60,
        admin_emails=[ADMIN_EMAIL],
        order_notify_endpoint="",
    )
    app = create_app(
        session_factory=session_factory,
        feed=feed,
        notifier=OrderNotifier(""),
        settings=settings,
    )
    yield app
    for timer in app.state.progressions:
        timer.cancel()


@pytest.fixture
def client(app):
    return TestClient(app)


def signup(client, email, name="Asha Rao", password="secret123", phone="9876543210"):
    r = client.post(
        "/auth/signup",
        json={"name": name, "email": email, "phone": phone, "password": password},
    )
    assert r.status_code == 201, r.text
    return r.json()["token"]


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(client):
    return signup(client, "asha@example.com")


@pytest.fixture
def admin(client):
    return signup(client, ADMIN_EMAIL, name="Shop Admin")


def place(client, token, items=("1",), address="12 MG Road, Pune", **extra):
    body = {"items": list(items), "address": address}
    body.update(extra)
    return client.post("/orders", json=body, headers=auth(token))


class TestHealthAndMenu:
    def test_root(self, client):
        assert client.get("/").json()["ok"] is True

    def test_menu(self, client):
        items = client.get("/menu").json()["items"]
        assert {"id": "1", "price": 299}.items() <= items[0].items()
        assert len(items) == 6


class TestAuth:
    def test_signup_and_login(self, client):
        signup(client, "meera@example.com")
        r = client.post("/auth/login", json={"email": "MEERA@example.com", "password": "secret123"})
        assert r.status_code == 200
        assert r.json()["token"]

    def test_wrong_password(self, client, customer):
        r = client.post("/auth/login", json={"email": "asha@example.com", "password": "nope123"})
        assert r.status_code == 401

    def test_duplicate_email(self, client, customer):
        r = client.post(
            "/auth/signup",
            json={"name": "Asha", "email": "asha@example.com", "phone": "1234567", "password": "secret123"},
        )
        assert r.status_code == 400
        assert r.json()["detail"] == "This email is already registered"

    @pytest.mark.parametrize(
        "field,value",
        [("name", "A"), ("phone", "12-34"), ("phone", "123456"), ("password", "12345"), ("email", "nope")],
    )
    def test_signup_validation(self, client, field, value):
        body = {"name": "Asha", "email": "x@example.com", "phone": "9876543210", "password": "secret123"}
        body[field] = value
        assert client.post("/auth/signup", json=body).status_code == 422

    def test_protected_routes_need_token(self, client):
        assert client.get("/me").status_code == 401
        assert client.get("/orders", headers=auth("garbage")).status_code == 401


class TestProfile:
    def test_me(self, client, customer):
        me = client.get("/me", headers=auth(customer)).json()
        assert me["email"] == "asha@example.com"
        assert me["points_balance"] == 0
        assert me["saved_address"] is None
        assert me["is_admin"] is False

    def test_admin_flag_from_config(self, client, admin):
        assert client.get("/me", headers=auth(admin)).json()["is_admin"] is True

    def test_address_save_and_clear(self, client, customer):
        r = client.put("/me/address", json={"address": "  4 Park Street "}, headers=auth(customer))
        assert r.json()["saved_address"] == "4 Park Street"
        assert client.get("/me", headers=auth(customer)).json()["saved_address"] == "4 Park Street"

        client.delete("/me/address", headers=auth(customer))
        assert client.get("/me", headers=auth(customer)).json()["saved_address"] is None

    def test_blank_address_rejected(self, client, customer):
        r = client.put("/me/address", json={"address": "   "}, headers=auth(customer))
        assert r.status_code == 400


class TestOrders:
    def test_place_order_earns_points(self, client, customer):
        r = place(client, customer, items=["1", "6"], notes="No ice")
        assert r.status_code == 201, r.text
        data = r.json()
        assert data["order_id"].startswith("SJ-")
        assert data["subtotal"] == 498
        assert data["total"] == 498
        assert data["points_earned"] == 49
        assert data["points_balance"] == 49
        assert data["status"] == "placed"
        assert data["notified"] is False

        assert client.get("/me", headers=auth(customer)).json()["points_balance"] == 49

    def test_redeem_points(self, client, customer):
        place(client, customer, items=["1", "6"])
        data = place(client, customer, items=["3"], redeem_points=49).json()
        assert data["points_used"] == 49
        assert data["total"] == 230
        assert data["points_earned"] == 23
        assert data["points_balance"] == 23

    def test_over_redemption(self, client, customer):
        r = place(client, customer, redeem_points=10)
        assert r.status_code == 400

    def test_bad_carts(self, client, customer):
        assert place(client, customer, items=[]).status_code == 400
        assert place(client, customer, items=["999"]).status_code == 400
        assert place(client, customer, address="  ").status_code == 400

    def test_save_address_with_order(self, client, customer):
        r = place(client, customer, address="7 Lake Road", save_address=True)
        assert r.json()["address_saved"] is True
        assert client.get("/me", headers=auth(customer)).json()["saved_address"] == "7 Lake Road"

    def test_progression_scheduled(self, app, client, customer):
        place(client, customer)
        assert len(app.state.progressions) == 1

    def test_timestamps_carry_utc_offset(self, client, customer):
        placed_at = place(client, customer).json()["placed_at"]
        assert placed_at.endswith("+00:00")

        history = client.get("/orders", headers=auth(customer)).json()["items"]
        code = history[0]["order_id"]
        assert history[0]["placed_at"] == placed_at
        assert client.get(f"/orders/{code}", headers=auth(customer)).json()["placed_at"] == placed_at
        assert client.get(f"/orders/{code}/status", headers=auth(customer)).json()["updated_at"].endswith("+00:00")

    def test_history(self, client, customer):
        first = place(client, customer, address="1 Lake Road").json()["order_id"]
        second = place(client, customer, address="9 Hill View").json()["order_id"]
        other = signup(client, "ravi@example.com", name="Ravi")
        place(client, other)

        body = client.get("/orders", headers=auth(customer)).json()
        assert [o["order_id"] for o in body["items"]] == [second, first]
        assert body["has_more"] is False

        oldest = client.get("/orders", params={"sort": "oldest"}, headers=auth(customer)).json()
        assert [o["order_id"] for o in oldest["items"]] == [first, second]

        found = client.get("/orders", params={"q": "lake"}, headers=auth(customer)).json()
        assert [o["order_id"] for o in found["items"]] == [first]

    def test_history_bad_status(self, client, customer):
        r = client.get("/orders", params={"status": "lost"}, headers=auth(customer))
        assert r.status_code == 400

    def test_order_detail_and_status(self, client, customer):
        code = place(client, customer, items=["2"]).json()["order_id"]

        detail = client.get(f"/orders/{code}", headers=auth(customer)).json()
        assert detail["items"] == [{"id": "2", "name": detail["items"][0]["name"], "price": 249}]

        status = client.get(f"/orders/{code}/status", headers=auth(customer)).json()
        assert status["status"] == "placed"
        assert status["label"] == "Order Placed"

    def test_other_users_order_is_hidden(self, client, customer):
        code = place(client, customer).json()["order_id"]
        other = signup(client, "ravi@example.com", name="Ravi")
        assert client.get(f"/orders/{code}", headers=auth(other)).status_code == 404
        assert client.get(f"/orders/{code}/status", headers=auth(other)).status_code == 404


class TestAdmin:
    def test_customer_is_forbidden(self, client, customer):
        assert client.get("/admin/orders", headers=auth(customer)).status_code == 403

    def test_list_includes_customer(self, client, customer, admin):
        place(client, customer)
        items = client.get("/admin/orders", headers=auth(admin)).json()["items"]
        assert items[0]["customer"]["email"] == "asha@example.com"

    def test_status_filter(self, client, customer, admin):
        a = place(client, customer).json()["order_id"]
        place(client, customer)
        client.patch(f"/admin/orders/{a}", json={"status": "preparing"}, headers=auth(admin))

        items = client.get("/admin/orders", params={"status": "preparing"}, headers=auth(admin)).json()["items"]
        assert [o["order_id"] for o in items] == [a]

    def test_forward_then_backward(self, client, customer, admin):
        code = place(client, customer).json()["order_id"]

        r = client.patch(f"/admin/orders/{code}", json={"status": "out_for_delivery"}, headers=auth(admin))
        assert r.json()["applied"] is True
        assert r.json()["status"] == "out_for_delivery"

        r = client.patch(f"/admin/orders/{code}", json={"status": "preparing"}, headers=auth(admin))
        assert r.json()["applied"] is False
        assert r.json()["status"] == "out_for_delivery"

    def test_unknown_status_and_order(self, client, customer, admin):
        code = place(client, customer).json()["order_id"]
        assert client.patch(
            f"/admin/orders/{code}", json={"status": "cancelled"}, headers=auth(admin)
        ).status_code == 422
        assert client.patch(
            "/admin/orders/SJ-00000000", json={"status": "delivered"}, headers=auth(admin)
        ).status_code == 404


class TestReviews:
    def test_submit_and_aggregate(self, client, customer):
        r = client.post(
            "/reviews",
            json={"item_id": "1", "taste_rating": 4, "quality_rating": 2, "comment": " tangy "},
            headers=auth(customer),
        )
        assert r.status_code == 201
        assert r.json()["user_name"] == "Asha Rao"
        assert r.json()["comment"] == "tangy"

        client.post(
            "/reviews",
            json={"item_id": "1", "taste_rating": 5, "quality_rating": 5, "anonymous": True},
            headers=auth(customer),
        )

        body = client.get("/reviews/1").json()
        assert body["count"] == 2
        assert body["average_rating"] == 4
        assert body["reviews"][0]["user_name"] == "Anonymous"
        assert client.get("/reviews/2").json() == {"reviews": [], "count": 0, "average_rating": 0}

    def test_rating_gate(self, client, customer):
        r = client.post(
            "/reviews", json={"item_id": "1", "taste_rating": 0, "quality_rating": 0}, headers=auth(customer)
        )
        assert r.status_code == 400
        assert r.json()["detail"] == "Please rate taste or quality before submitting."

        r = client.post(
            "/reviews", json={"item_id": "1", "taste_rating": 4, "quality_rating": 0}, headers=auth(customer)
        )
        assert r.status_code == 400

    def test_out_of_range(self, client, customer):
        r = client.post(
            "/reviews", json={"item_id": "1", "taste_rating": 6, "quality_rating": 3}, headers=auth(customer)
        )
        assert r.status_code == 422


class TestTrackingSocket:
    def test_live_updates_until_delivered(self, client, customer, admin):
        code = place(client, customer).json()["order_id"]

        with client.websocket_connect(f"/orders/{code}/track?token={customer}") as ws:
            first = ws.receive_json()
            assert first["status"] == "placed"
            assert first["label"] == "Order Placed"

            client.patch(f"/admin/orders/{code}", json={"status": "delivered"}, headers=auth(admin))

            last = ws.receive_json()
            assert last["status"] == "delivered"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

    def test_binary_frames_are_ignored(self, client, customer, admin):
        code = place(client, customer).json()["order_id"]

        with client.websocket_connect(f"/orders/{code}/track?token={customer}") as ws:
            assert ws.receive_json()["status"] == "placed"
            ws.send_bytes(b"\x00\x01")
            ws.send_text("ping")

            client.patch(f"/admin/orders/{code}", json={"status": "delivered"}, headers=auth(admin))
            assert ws.receive_json()["status"] == "delivered"

    def test_disconnect_seen_after_binary_frame(self):
        class ScriptedSocket:
            def __init__(self, messages):
                self.messages = list(messages)

            async def receive(self):
                return self.messages.pop(0)

        ws = ScriptedSocket([
            {"type": "websocket.receive", "bytes": b"\x00"},
            {"type": "websocket.receive", "text": "ping"},
            {"type": "websocket.disconnect", "code": 1000},
        ])
        asyncio.run(asyncio.wait_for(wait_for_disconnect(ws), timeout=1))
        assert ws.messages == []

    def test_rejects_bad_token(self, client, customer):
        code = place(client, customer).json()["order_id"]
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/orders/{code}/track?token=garbage") as ws:
                ws.receive_json()
