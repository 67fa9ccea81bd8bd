from __future__ import annotations

from decimal import Decimal

from canteen.core.config import get_settings
from conftest import order_payload


def _place(client, headers, customer_id: str = "alice") -> dict:
    response = client.post("/orders", json=order_payload(customer_id=customer_id), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_requests_need_a_known_api_key(client, auth_headers):
    assert client.get("/queue/live").status_code == 401
    assert client.get("/queue/live", headers={"X-API-Key": "guess"}).status_code == 401
    assert client.get("/queue/live", headers={"Authorization": "Basic abc"}).status_code == 401

    customer_key_only = {"X-API-Key": auth_headers["alice"]["X-API-Key"]}
    assert client.get("/queue/live", headers=customer_key_only).status_code == 401

    bearer = {"Authorization": f"Bearer {auth_headers['staff']['X-API-Key']}"}
    assert client.get("/admin/orders", headers=bearer).status_code == 200


def test_order_lifecycle_over_http(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    assert created["order_state"] == "CREATED"
    assert created["payment_state"] == "PENDING"
    assert Decimal(created["total_amount"]) == Decimal("140")
    assert created["created_at"].endswith("Z")
    assert "device_token" not in created

    checkout = client.post(f"/orders/{created['id']}/checkout", headers=auth_headers["alice"])
    assert checkout.status_code == 200
    queued = checkout.json()["order"]
    assert queued["order_state"] == "QUEUED"
    assert queued["queue_number"] == 1
    assert queued["estimated_minutes"] == 4

    live = client.get("/queue/live", headers=auth_headers["bob"]).json()
    assert live["count"] == 1
    assert live["orders"][0]["queue_number"] == 1
    assert live["orders"][0]["mine"] is False
    assert client.get("/queue/live", headers=auth_headers["alice"]).json()["orders"][0]["mine"] is True

    for target in ("PREPARING", "READY", "COMPLETED"):
        moved = client.post(
            f"/orders/{created['id']}/transitions",
            json={"to_state": target},
            headers=auth_headers["staff"],
        )
        assert moved.status_code == 200, moved.text
        assert moved.json()["to_state"] == target

    assert client.get("/queue/live", headers=auth_headers["alice"]).json()["count"] == 0
    final = client.get(f"/orders/{created['id']}", headers=auth_headers["alice"]).json()
    assert final["order_state"] == "COMPLETED"


def test_customers_only_touch_their_own_orders(client, auth_headers):
    created = _place(client, auth_headers["alice"])

    assert client.post("/orders", json=order_payload(customer_id="alice"), headers=auth_headers["bob"]).status_code == 403
    assert client.get(f"/orders/{created['id']}", headers=auth_headers["bob"]).status_code == 403
    assert client.post(f"/orders/{created['id']}/checkout", headers=auth_headers["bob"]).status_code == 403
    assert client.get("/customers/alice/orders", headers=auth_headers["bob"]).status_code == 403

    mine = client.get("/customers/alice/orders", headers=auth_headers["alice"]).json()
    assert [order["id"] for order in mine["orders"]] == [created["id"]]
    assert client.get("/customers/alice/orders", headers=auth_headers["staff"]).status_code == 200


def test_only_staff_advance_orders(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    client.post(f"/orders/{created['id']}/checkout", headers=auth_headers["alice"])

    as_customer = client.post(
        f"/orders/{created['id']}/transitions", json={"to_state": "PREPARING"}, headers=auth_headers["alice"]
    )
    assert as_customer.status_code == 403

    cancel = client.post(
        f"/orders/{created['id']}/transitions", json={"to_state": "CANCELLED"}, headers=auth_headers["staff"]
    )
    assert cancel.status_code == 409


def test_invalid_transition_is_conflict(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    client.post(f"/orders/{created['id']}/checkout", headers=auth_headers["alice"])

    skipped = client.post(
        f"/orders/{created['id']}/transitions", json={"to_state": "READY"}, headers=auth_headers["staff"]
    )
    assert skipped.status_code == 409
    assert skipped.json()["error"] == "invalid_transition"

    stale = client.post(
        f"/orders/{created['id']}/transitions",
        json={"to_state": "PREPARING", "expected_from": "CREATED"},
        headers=auth_headers["staff"],
    )
    assert stale.status_code == 409
    assert client.get(f"/orders/{created['id']}", headers=auth_headers["staff"]).json()["order_state"] == "QUEUED"


def test_validation_and_missing_orders(client, auth_headers):
    mismatch = client.post("/orders", json=order_payload(total_amount="999"), headers=auth_headers["alice"])
    assert mismatch.status_code == 422

    missing = client.get("/orders/ORD-nope", headers=auth_headers["staff"])
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_payment_webhook(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    body = {"orderId": created["id"], "paymentId": "pay-hook-1", "status": "captured"}

    assert client.post("/payments/webhook", json=body, headers=auth_headers["staff"]).status_code == 403

    first = client.post("/payments/webhook", json=body, headers=auth_headers["system"])
    assert first.status_code == 200
    assert first.json()["order_state"] == "QUEUED"
    assert first.json()["queue_number"] == 1
    assert first.json()["replayed"] is False

    replay = client.post("/payments/webhook", json=body, headers=auth_headers["system"])
    assert replay.json()["replayed"] is True
    assert replay.json()["queue_number"] == 1

    missing = client.post("/payments/webhook", json={"orderId": created["id"]}, headers=auth_headers["system"])
    assert missing.status_code == 400


def test_payment_webhook_failure_cancels(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    body = {"orderId": created["id"], "paymentId": "pay-hook-2", "status": "failed"}

    response = client.post("/payments/webhook", json=body, headers=auth_headers["system"])

    assert response.json()["order_state"] == "CANCELLED"
    assert response.json()["payment_state"] == "FAILED"
    assert response.json()["queue_number"] is None


def test_system_payment_result_endpoint(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    url = f"/orders/{created['id']}/payment"

    assert client.post(url, json={"payment_id": "p1", "authorized": True}, headers=auth_headers["alice"]).status_code == 403
    result = client.post(url, json={"payment_id": "p1", "authorized": True}, headers=auth_headers["system"])
    assert result.json()["order"]["queue_number"] == 1


def test_device_token_registration_and_board(client, auth_headers):
    registered = client.put(
        "/customers/alice/device-token", json={"device_token": "token-a"}, headers=auth_headers["alice"]
    )
    assert registered.json() == {"customer_id": "alice", "registered": True}

    _place(client, auth_headers["alice"])
    board = client.get("/admin/orders", headers=auth_headers["staff"])
    assert board.json()["count"] == 1
    assert client.get("/admin/orders", headers=auth_headers["alice"]).status_code == 403


def test_summary_and_reaper(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    client.post(f"/orders/{created['id']}/checkout", headers=auth_headers["alice"])
    _place(client, auth_headers["bob"], customer_id="bob")

    summary = client.get("/admin/summary", headers=auth_headers["staff"]).json()
    assert summary["total_orders"] == 2
    assert summary["paid_orders"] == 1
    assert Decimal(summary["revenue"]) == Decimal("140")
    assert summary["orders_by_state"]["QUEUED"] == 1
    assert summary["popular_items"][0] == {"name": "Noodles", "quantity": 2}
    assert client.get("/admin/summary", params={"day": "yesterday"}, headers=auth_headers["staff"]).status_code == 400

    reaped = client.post("/admin/reap", headers=auth_headers["system"]).json()
    assert reaped == {"cancelled": [], "count": 0}
    assert client.post("/admin/reap", headers=auth_headers["alice"]).status_code == 403


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_unsupported_payment_gateway_rejects_checkout(client, auth_headers):
    created = _place(client, auth_headers["alice"])
    get_settings().payment_gateway = "stripe"

    checkout = client.post(f"/orders/{created['id']}/checkout", headers=auth_headers["alice"])

    assert checkout.status_code == 422
    assert checkout.json()["error"] == "validation_error"
    assert "stripe" in checkout.json()["detail"]
    order = client.get(f"/orders/{created['id']}", headers=auth_headers["alice"]).json()
    assert order["order_state"] == "CREATED"
