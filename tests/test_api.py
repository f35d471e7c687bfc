from dataclasses import replace
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import bakery.main
from bakery.auth import add_rewards, create_access_token, create_user, get_user_by_id
from bakery.main import app
from bakery.orders import get_order
from bakery.schemas import RegisterRequest

from conftest import count_orders


@pytest.fixture
def api(db):
    return TestClient(app)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def order_payload(**overrides):
    payload = {
        "items": [{"product_id": "1", "name": "Croissant", "price": 120, "quantity": 2}],
        "shipping_address": {
            "full_name": "Asha Verma",
            "phone": "9876543210",
            "email": "asha@example.com",
            "street": "12 Civil Lines",
            "city": "Lucknow",
            "state": "Uttar Pradesh",
            "pincode": "226001",
        },
        "payment_method": "online",
        "items_price": 240,
        "tax_price": 12,
        "shipping_price": 50,
        "total_price": 302,
    }
    payload.update(overrides)
    return payload


def place_order(api, user, **overrides):
    response = api.post("/api/orders", json=order_payload(**overrides), headers=auth(user))
    assert response.status_code == 201, response.text
    return response.json()["order"]


# ==================== AUTH ====================

def test_register_login_and_me(api):
    response = api.post(
        "/api/auth/register",
        json={"first_name": "Ravi", "email": "Ravi@Example.com", "password": "baguette1"},
    )
    assert response.status_code == 201
    assert response.json()["user"]["email"] == "ravi@example.com"

    response = api.post("/api/auth/login", json={"email": "ravi@example.com", "password": "baguette1"})
    assert response.status_code == 200
    token = response.json()["token"]

    response = api.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.json()["user"]["first_name"] == "Ravi"


def test_duplicate_email_is_conflict(api, customer):
    response = api.post(
        "/api/auth/register",
        json={"first_name": "Asha", "email": "asha@example.com", "password": "another1"},
    )
    assert response.status_code == 409
    assert response.json()["success"] is False


def test_wrong_password(api, customer):
    response = api.post("/api/auth/login", json={"email": "asha@example.com", "password": "nope"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid email or password"}


def test_missing_token_is_unauthorized(api):
    response = api.get("/api/orders/my-orders")

    assert response.status_code == 401
    assert response.json()["message"] == "Not authorized, please login"


# ==================== ORDERS ====================

def test_create_order(api, customer):
    order = place_order(api, customer, notes="Extra butter")

    assert order["order_number"].startswith("PB")
    assert len(order["order_number"]) == 12
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["items"][0]["quantity"] == 2
    assert order["notes"] == "Extra butter"
    assert order["estimated_delivery"]


def test_create_order_without_items(api, customer):
    response = api.post("/api/orders", json=order_payload(items=[]), headers=auth(customer))

    assert response.status_code == 400
    assert response.json()["message"] == "No order items provided"


def test_create_order_with_inconsistent_prices(api, customer):
    response = api.post("/api/orders", json=order_payload(total_price=250), headers=auth(customer))

    assert response.status_code == 400
    assert "Total price" in response.json()["message"]


def test_create_order_with_unknown_payment_method(api, customer):
    response = api.post("/api/orders", json=order_payload(payment_method="bitcoin"), headers=auth(customer))

    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"


def test_my_orders_newest_first(api, customer):
    first = place_order(api, customer)
    second = place_order(api, customer, payment_method="cod")

    response = api.get("/api/orders/my-orders", headers=auth(customer))

    body = response.json()
    assert body["count"] == 2
    assert [o["id"] for o in body["orders"]] == [second["id"], first["id"]]


def test_order_of_another_user_is_forbidden(api, customer, admin):
    order = place_order(api, customer)
    other = create_user(RegisterRequest(first_name="Meera", email="meera@example.com", password="muffin12"))

    assert api.get(f"/api/orders/{order['id']}", headers=auth(other)).status_code == 403
    assert api.get(f"/api/orders/{order['id']}", headers=auth(admin)).status_code == 200
    assert api.get("/api/orders/999", headers=auth(customer)).status_code == 404


def test_cancel_pending_order(api, customer):
    order = place_order(api, customer)

    response = api.put(f"/api/orders/{order['id']}/cancel", headers=auth(customer))

    assert response.json()["order"]["status"] == "cancelled"


def test_cannot_cancel_order_being_prepared(api, customer, admin):
    order = place_order(api, customer)
    api.put(f"/api/orders/{order['id']}/status", json={"status": "preparing"}, headers=auth(admin))

    response = api.put(f"/api/orders/{order['id']}/cancel", headers=auth(customer))

    assert response.status_code == 400


def test_rewards_redeemed_and_returned_on_cancel(api, customer):
    add_rewards(customer.id, 100)

    order = place_order(api, customer, discount_amount=40, rewards_used=40, total_price=262, coupon_code="WELCOME10")

    assert order["rewards_used"] == 40
    assert order["coupon_code"] == "WELCOME10"
    assert get_user_by_id(customer.id).rewards == 60

    api.put(f"/api/orders/{order['id']}/cancel", headers=auth(customer))
    assert get_user_by_id(customer.id).rewards == 100


def test_rewards_beyond_balance_are_rejected(api, customer):
    response = api.post(
        "/api/orders",
        json=order_payload(discount_amount=40, rewards_used=40, total_price=262),
        headers=auth(customer),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Not enough reward points"
    assert count_orders() == 0
    assert get_user_by_id(customer.id).rewards == 0


def test_discount_without_rewards_is_rejected(api, customer):
    response = api.post(
        "/api/orders",
        json=order_payload(discount_amount=40, total_price=262),
        headers=auth(customer),
    )

    assert response.status_code == 400
    assert "Discount" in response.json()["message"]


def test_status_update_is_admin_only(api, customer):
    order = place_order(api, customer)

    response = api.put(f"/api/orders/{order['id']}/status", json={"status": "ready"}, headers=auth(customer))

    assert response.status_code == 403


# ==================== PAYMENTS ====================

def test_gateway_status_not_configured(api, gateway_not_configured):
    body = api.get("/api/payments/status").json()

    assert body["configured"] is False
    assert body["gateway"] == "stripe"


def test_payment_session_when_not_configured(api, customer, gateway_not_configured):
    order = place_order(api, customer)

    response = api.post(
        "/api/payments/create-order",
        json={"amount": 302, "order_id": order["id"]},
        headers=auth(customer),
    )

    assert response.status_code == 503
    assert response.json()["configured"] is False
    assert response.json()["success"] is False


def test_payment_session_for_order(api, customer, checkout_sessions):
    order = place_order(api, customer)

    response = api.post(
        "/api/payments/create-order",
        json={"amount": 302, "order_id": order["id"]},
        headers=auth(customer),
    )

    body = response.json()
    assert body["success"] is True
    assert body["session"]["id"] == "cs_test_1"
    assert body["session"]["amount"] == 302
    assert checkout_sessions.created[0]["client_reference_id"] == str(order["id"])
    assert get_order(order["id"]).gateway_session_id == "cs_test_1"


def test_new_payment_session_supersedes_previous(api, customer, checkout_sessions):
    order = place_order(api, customer)
    for _ in range(2):
        api.post(
            "/api/payments/create-order",
            json={"amount": 302, "order_id": order["id"]},
            headers=auth(customer),
        )

    assert checkout_sessions.expired == ["cs_test_1"]
    assert get_order(order["id"]).gateway_session_id == "cs_test_2"


@pytest.mark.parametrize("amount", [0, -5, 300])
def test_payment_session_amount_must_match_order(api, customer, checkout_sessions, amount):
    order = place_order(api, customer)

    response = api.post(
        "/api/payments/create-order",
        json={"amount": amount, "order_id": order["id"]},
        headers=auth(customer),
    )

    assert response.status_code == 400
    assert checkout_sessions.created == []


def test_verify_payment(api, customer, admin, checkout_sessions):
    order = place_order(api, customer)
    api.post("/api/payments/create-order", json={"amount": 302, "order_id": order["id"]}, headers=auth(customer))
    intent = checkout_sessions.pay("cs_test_1")

    response = api.post(
        "/api/payments/verify",
        json={"gateway_order_id": "cs_test_1", "gateway_payment_id": intent, "order_id": order["id"]},
        headers=auth(customer),
    )

    body = response.json()
    assert body["success"] is True
    assert body["order"]["payment_status"] == "paid"
    assert body["order"]["status"] == "confirmed"
    assert body["order"]["paid_at"]
    assert body["order"]["rewards_earned"] == 30

    # paid orders cannot be charged again
    response = api.post(
        "/api/payments/create-order",
        json={"amount": 302, "order_id": order["id"]},
        headers=auth(customer),
    )
    assert response.status_code == 400

    api.put(f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=auth(admin))
    assert get_user_by_id(customer.id).rewards == 30
    assert get_order(order["id"]).delivered_at


def test_verify_rejects_unpaid_session(api, customer, checkout_sessions):
    order = place_order(api, customer)
    api.post("/api/payments/create-order", json={"amount": 302, "order_id": order["id"]}, headers=auth(customer))

    response = api.post(
        "/api/payments/verify",
        json={"gateway_order_id": "cs_test_1", "gateway_payment_id": "pi_forged", "order_id": order["id"]},
        headers=auth(customer),
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert get_order(order["id"]).payment_status == "pending"


def test_verify_rejects_session_of_another_order(api, customer, checkout_sessions):
    paid = place_order(api, customer)
    other = place_order(api, customer)
    api.post("/api/payments/create-order", json={"amount": 302, "order_id": paid["id"]}, headers=auth(customer))
    intent = checkout_sessions.pay("cs_test_1")

    response = api.post(
        "/api/payments/verify",
        json={"gateway_order_id": "cs_test_1", "gateway_payment_id": intent, "order_id": other["id"]},
        headers=auth(customer),
    )

    assert response.status_code == 400
    assert "does not belong" in response.json()["message"]
    assert get_order(other["id"]).payment_status == "pending"


def test_verify_rejects_wrong_payment_id(api, customer, checkout_sessions):
    order = place_order(api, customer)
    api.post("/api/payments/create-order", json={"amount": 302, "order_id": order["id"]}, headers=auth(customer))
    checkout_sessions.pay("cs_test_1")

    response = api.post(
        "/api/payments/verify",
        json={"gateway_order_id": "cs_test_1", "gateway_payment_id": "pi_other", "order_id": order["id"]},
        headers=auth(customer),
    )

    assert response.status_code == 400


def test_unknown_gateway_session_is_bad_gateway(api, customer, checkout_sessions):
    order = place_order(api, customer)

    response = api.post(
        "/api/payments/verify",
        json={"gateway_order_id": "cs_missing", "gateway_payment_id": "pi_x", "order_id": order["id"]},
        headers=auth(customer),
    )

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_session_state(api, customer, checkout_sessions):
    order = place_order(api, customer)
    api.post("/api/payments/create-order", json={"amount": 302, "order_id": order["id"]}, headers=auth(customer))
    checkout_sessions.pay("cs_test_1")

    body = api.get("/api/payments/sessions/cs_test_1", headers=auth(customer)).json()

    assert body["status"] == "complete"
    assert body["payment_status"] == "paid"
    assert body["payment_intent"] == "pi_cs_test_1"
    assert body["order_id"] == order["id"]


def test_webhook_without_secret_changes_nothing(api, customer, checkout_sessions):
    order = place_order(api, customer)

    response = api.post("/api/payments/webhook", content=b"{}")

    assert response.json()["verified"] is False
    assert get_order(order["id"]).payment_status == "pending"


def test_signed_webhook_marks_order_paid(api, customer, monkeypatch):
    order = place_order(api, customer)
    event = SimpleNamespace(
        type="checkout.session.completed",
        data=SimpleNamespace(
            object=SimpleNamespace(
                id="cs_test_9",
                payment_status="paid",
                payment_intent="pi_9",
                client_reference_id=str(order["id"]),
                metadata=SimpleNamespace(order_id=str(order["id"])),
            )
        ),
    )
    monkeypatch.setattr(bakery.main, "settings", replace(bakery.main.settings, stripe_webhook_secret="whsec_test"))
    monkeypatch.setattr(bakery.main, "construct_webhook_event", lambda payload, signature: event)

    response = api.post("/api/payments/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=abc"})

    assert response.json()["verified"] is True
    paid = get_order(order["id"])
    assert paid.payment_status == "paid"
    assert paid.payment_result["source"] == "webhook"


def paid_order(api, customer, checkout_sessions):
    order = place_order(api, customer)
    api.post("/api/payments/create-order", json={"amount": 302, "order_id": order["id"]}, headers=auth(customer))
    intent = checkout_sessions.pay("cs_test_1")
    api.post(
        "/api/payments/verify",
        json={"gateway_order_id": "cs_test_1", "gateway_payment_id": intent, "order_id": order["id"]},
        headers=auth(customer),
    )
    return order, intent


def test_payment_details(api, customer, checkout_sessions):
    order, intent = paid_order(api, customer, checkout_sessions)

    body = api.get(f"/api/payments/{intent}", headers=auth(customer)).json()

    assert body["payment"]["amount"] == 302
    assert body["payment"]["status"] == "succeeded"
    assert body["payment"]["method"] == "card"
    assert body["payment"]["order_id"] == order["id"]


def test_payment_details_of_another_user_are_forbidden(api, customer, checkout_sessions):
    _, intent = paid_order(api, customer, checkout_sessions)
    other = create_user(RegisterRequest(first_name="Meera", email="meera@example.com", password="muffin12"))

    assert api.get(f"/api/payments/{intent}", headers=auth(other)).status_code == 403
    assert api.get("/api/payments/pi_missing", headers=auth(customer)).status_code == 502


def test_full_refund_marks_order_refunded(api, customer, admin, checkout_sessions):
    order, intent = paid_order(api, customer, checkout_sessions)

    response = api.post(f"/api/payments/{intent}/refund", json={"reason": "Burnt loaf"}, headers=auth(admin))

    body = response.json()
    assert body["success"] is True
    assert body["refund"]["amount"] == 302
    assert checkout_sessions.refunds[0]["metadata"] == {"reason": "Burnt loaf"}
    refunded = get_order(order["id"])
    assert refunded.payment_status == "refunded"
    assert refunded.payment_result["refund_id"] == "re_test_1"

    response = api.post(
        "/api/payments/create-order",
        json={"amount": 302, "order_id": order["id"]},
        headers=auth(customer),
    )
    assert response.status_code == 400


def test_partial_refund_keeps_order_paid(api, customer, admin, checkout_sessions):
    order, intent = paid_order(api, customer, checkout_sessions)

    body = api.post(f"/api/payments/{intent}/refund", json={"amount": 50}, headers=auth(admin)).json()

    assert body["refund"]["amount"] == 50
    assert checkout_sessions.refunds[0]["amount"] == 5000
    assert get_order(order["id"]).payment_status == "paid"


def test_refund_is_admin_only(api, customer, checkout_sessions):
    _, intent = paid_order(api, customer, checkout_sessions)

    response = api.post(f"/api/payments/{intent}/refund", json={}, headers=auth(customer))

    assert response.status_code == 403
    assert checkout_sessions.refunds == []


def test_refund_cannot_exceed_payment(api, customer, admin, checkout_sessions):
    _, intent = paid_order(api, customer, checkout_sessions)

    response = api.post(f"/api/payments/{intent}/refund", json={"amount": 500}, headers=auth(admin))

    assert response.status_code == 400
    assert checkout_sessions.refunds == []
