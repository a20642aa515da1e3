"""Tests for the FastAPI API."""

import pytest
from fastapi.testclient import TestClient

from jewelcart.api import app, get_service

CUSTOMER = {
    "first_name": "Ada",
    "last_name": "Stone",
    "email": "ada@example.com",
    "phone": "5551234567",
    "address": "12 Main Street",
    "city": "Trenton",
    "zip_code": "08601",
}

USER = {"X-User-Id": "user-1"}


def order_payload(**overrides):
    payload = {
        "customer": dict(CUSTOMER),
        "items": [{"product_id": "ring-1", "name": "Gold Ring", "price": 40.0, "quantity": 2}],
        "subtotal": 80.0,
        "payment_proof": "uploads/receipt.png",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def api_client(service, products):
    """Test client wired to the fixture service."""
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def order_id(api_client):
    response = api_client.post("/api/orders", json=order_payload(), headers=USER)
    assert response.status_code == 201
    return response.json()["order_id"]


class TestHealthCheck:
    def test_health(self, api_client):
        response = api_client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["store_available"] is True
        assert set(data["queue"]) == {"pending", "processing", "sent", "failed"}


class TestCreateOrder:
    def test_create(self, api_client, service, transport):
        response = api_client.post("/api/orders", json=order_payload(), headers=USER)

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Order placed successfully"
        order = service.get_order(data["order_id"])
        assert order.total == 90.0
        assert len(transport.sent) == 1

    def test_requires_user(self, api_client):
        response = api_client.post("/api/orders", json=order_payload())
        assert response.status_code == 401

    @pytest.mark.parametrize(
        "field,value",
        [
            ("phone", "123"),
            ("address", "abc"),
            ("email", "not-an-email"),
            ("first_name", ""),
        ],
    )
    def test_customer_validation(self, api_client, field, value):
        customer = dict(CUSTOMER, **{field: value})

        response = api_client.post("/api/orders", json=order_payload(customer=customer), headers=USER)
        assert response.status_code == 422

    def test_empty_cart_rejected(self, api_client, service):
        response = api_client.post("/api/orders", json=order_payload(items=[]), headers=USER)

        assert response.status_code == 422
        assert service.list_user_orders("user-1") == []

    def test_zero_quantity_rejected(self, api_client):
        items = [{"product_id": "ring-1", "name": "Gold Ring", "price": 40.0, "quantity": 0}]

        response = api_client.post("/api/orders", json=order_payload(items=items), headers=USER)
        assert response.status_code == 422

    def test_missing_proof_rejected(self, api_client):
        payload = order_payload()
        del payload["payment_proof"]

        response = api_client.post("/api/orders", json=payload, headers=USER)
        assert response.status_code == 422

    def test_email_outage_still_creates_order(self, api_client, transport):
        transport.fail_next()

        response = api_client.post("/api/orders", json=order_payload(), headers=USER)
        assert response.status_code == 201


class TestCustomerOrders:
    def test_list_my_orders(self, api_client, order_id):
        response = api_client.get("/api/orders", headers=USER)

        data = response.json()
        assert data["count"] == 1
        assert data["orders"][0]["id"] == order_id
        assert data["orders"][0]["payment_method"] == "bank_transfer"

    def test_other_user_sees_nothing(self, api_client, order_id):
        response = api_client.get("/api/orders", headers={"X-User-Id": "user-2"})
        assert response.json()["count"] == 0

    def test_resubmit_payment(self, api_client, order_id):
        response = api_client.patch(
            f"/api/orders/{order_id}/payment",
            json={"payment_proof": "uploads/new.png"},
            headers=USER,
        )

        assert response.status_code == 200
        assert response.json()["payment_status"] == "pending"
        assert response.json()["payment_proof"] == "uploads/new.png"

    def test_resubmit_foreign_order(self, api_client, order_id):
        response = api_client.patch(
            f"/api/orders/{order_id}/payment",
            json={"payment_proof": "uploads/new.png"},
            headers={"X-User-Id": "intruder"},
        )

        assert response.status_code == 404
        assert response.json()["error_type"] == "OrderOwnershipError"


class TestAdminOrders:
    def test_get_order(self, api_client, order_id):
        response = api_client.get(f"/api/admin/orders/{order_id}")

        assert response.status_code == 200
        assert response.json()["customer"]["email"] == "ada@example.com"

    def test_get_missing(self, api_client):
        response = api_client.get("/api/admin/orders/missing")

        assert response.status_code == 404
        assert response.json()["error_type"] == "OrderNotFoundError"

    def test_list_with_pagination(self, api_client, order_id):
        response = api_client.get("/api/admin/orders", params={"page": 1, "limit": 10, "search": "ada"})

        data = response.json()
        assert [o["id"] for o in data["orders"]] == [order_id]
        assert data["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}

    def test_ship(self, api_client, order_id, transport):
        transport.sent.clear()

        response = api_client.put(
            f"/api/admin/orders/{order_id}",
            json={"order_status": "shipped", "tracking_id": "1Z999", "carrier": "UPS"},
        )

        assert response.status_code == 200
        assert response.json()["order_status"] == "shipped"
        assert len(transport.sent) == 1

    def test_illegal_transition_is_conflict(self, api_client, order_id):
        api_client.put(f"/api/admin/orders/{order_id}", json={"order_status": "cancelled"})

        response = api_client.put(f"/api/admin/orders/{order_id}", json={"order_status": "processing"})

        assert response.status_code == 409
        assert response.json()["error_type"] == "InvalidTransitionError"

    def test_unknown_status_rejected(self, api_client, order_id):
        response = api_client.put(f"/api/admin/orders/{order_id}", json={"order_status": "lost"})
        assert response.status_code == 422

    def test_delete(self, api_client, order_id):
        assert api_client.delete(f"/api/admin/orders/{order_id}").status_code == 200
        assert api_client.get(f"/api/admin/orders/{order_id}").status_code == 404


class TestMarketing:
    def test_send_queues_and_drains(self, api_client, store, transport, fake_sleep):
        store.users.insert_many(
            [
                {"id": "u1", "email": "one@example.com", "name": "One"},
                {"id": "u2", "email": "two@example.com"},
            ]
        )

        response = api_client.post(
            "/api/admin/marketing/send",
            json={"user_ids": ["u1", "u2"], "template_id": "custom", "subject": "Hi {{name}}", "body": "Sale"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Queued 2 email(s) for delivery",
            "recipient_count": 2,
        }
        assert transport.subjects() == ["Hi One", "Hi Valued Customer"]
        assert fake_sleep.calls == [3.0]

    def test_missing_content(self, api_client, store):
        store.users.insert({"id": "u1", "email": "one@example.com"})

        response = api_client.post(
            "/api/admin/marketing/send", json={"user_ids": ["u1"], "template_id": "custom"}
        )
        assert response.status_code == 400

    def test_requires_recipients(self, api_client):
        response = api_client.post(
            "/api/admin/marketing/send", json={"user_ids": [], "subject": "S", "body": "B"}
        )
        assert response.status_code == 422


class TestTemplates:
    def test_defaults_seeded_on_startup(self, api_client):
        data = api_client.get("/api/admin/templates").json()

        names = {t["name"] for t in data["templates"]}
        assert {"order_confirmation", "order_shipped", "payment_rejected"} <= names

    def test_upsert(self, api_client):
        response = api_client.put(
            "/api/admin/templates/spring",
            json={"subject": "Spring {{name}}", "body": "Body"},
        )

        assert response.status_code == 200
        assert response.json()["placeholders"] == ["name"]
        assert response.json()["type"] == "marketing"

    def test_edit_system_template_keeps_type(self, api_client):
        response = api_client.put(
            "/api/admin/templates/order_confirmation",
            json={"subject": "Thanks {{name}}", "body": "Order {{orderId}} total {{total}}"},
        )

        assert response.status_code == 200
        assert response.json()["type"] == "system"
        templates = api_client.get("/api/admin/templates").json()["templates"]
        [stored] = [t for t in templates if t["name"] == "order_confirmation"]
        assert stored["type"] == "system"


class TestQueue:
    def test_list(self, api_client, order_id):
        data = api_client.get("/api/admin/queue").json()

        assert data["count"] == 1
        assert data["messages"][0]["status"] == "sent"
        assert data["counts_by_status"]["sent"] == 1

    def test_filter_by_status(self, api_client, order_id):
        data = api_client.get("/api/admin/queue", params={"status": "failed"}).json()
        assert data["count"] == 0

    def test_retry_missing(self, api_client):
        response = api_client.post("/api/admin/queue/missing/retry")
        assert response.status_code == 404


class TestNotifications:
    def test_order_creates_notification(self, api_client, order_id):
        data = api_client.get("/api/admin/notifications").json()

        assert data["unread_count"] == 1
        assert data["notifications"][0]["title"] == "New Order Placed"

    def test_mark_all_read(self, api_client, order_id):
        response = api_client.patch("/api/admin/notifications/all")

        assert response.json() == {"success": True, "updated": 1}
        assert api_client.get("/api/admin/notifications").json()["unread_count"] == 0

    def test_mark_missing(self, api_client):
        assert api_client.patch("/api/admin/notifications/missing").status_code == 404


class TestSettings:
    def test_update_settings(self, api_client):
        response = api_client.put("/api/admin/settings", json={"standard_shipping_fee": 15})

        assert response.status_code == 200
        assert response.json()["standard_shipping_fee"] == 15
        assert response.json()["free_shipping_threshold"] == 100

    def test_new_fee_applies_to_next_order(self, api_client, service):
        api_client.put("/api/admin/settings", json={"standard_shipping_fee": 15})

        order_id = api_client.post("/api/orders", json=order_payload(), headers=USER).json()["order_id"]
        assert service.get_order(order_id).shipping == 15
