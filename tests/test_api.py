import pytest
from fastapi.testclient import TestClient

from storefront_service.main import create_app

FORWARDED = {"X-Forwarded-For": "203.0.113.7"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_preflight_is_empty_200_with_cors_headers(client):
    response = client.options("/v1/orders", headers={
        "Origin": "https://shop.example",
        "Access-Control-Request-Method": "POST",
    })

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert "content-type" in response.headers["access-control-allow-headers"]


def test_create_order_prices_from_catalog(client, store, valid_order):
    valid_order["items"] = [{"product_id": "ring-1", "quantity": 2, "price": 1}]

    response = client.post("/v1/orders", json=valid_order)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    order = body["order"]
    assert order["total_amount"] == 6400
    assert order["status"] == "pending"
    assert order["items"][0]["product_price"] == 3200
    assert set(order) == {"id", "total_amount", "items", "status"}
    assert response.headers["access-control-allow-origin"] == "*"

    stored = store.orders[order["id"]]
    assert stored.customer_email == "nusrat@example.com"
    assert stored.total_amount == 6400


def test_create_order_out_of_stock_creates_nothing(client, store, valid_order):
    valid_order["items"] = [{"product_id": "ring-1", "quantity": 1}, {"product_id": "bangle-3", "quantity": 1}]

    response = client.post("/v1/orders", json=valid_order)

    assert response.status_code == 400
    assert response.json() == {"error": "Product is out of stock: Silver Bangle"}
    assert store.orders == {}


def test_create_order_unknown_product(client, store, valid_order):
    valid_order["items"] = [{"product_id": "ring-1", "quantity": 1}, {"product_id": "ghost-7", "quantity": 1}]

    response = client.post("/v1/orders", json=valid_order)

    assert response.status_code == 400
    assert response.json() == {"error": "Product not found: ghost-7"}
    assert store.orders == {}


def test_create_order_validation_boundaries(client, valid_order):
    valid_order["customer_details"]["name"] = "N"
    assert client.post("/v1/orders", json=valid_order).status_code == 400

    valid_order["customer_details"]["name"] = "Nu"
    assert client.post("/v1/orders", json=valid_order).status_code == 200

    valid_order["customer_details"]["address"] = "Dhaka 1209"[:9]
    response = client.post("/v1/orders", json=valid_order)
    assert response.status_code == 400
    assert response.json() == {"error": "Address must be between 10 and 500 characters"}

    valid_order["customer_details"]["address"] = "Dhaka 1209"
    assert client.post("/v1/orders", json=valid_order).status_code == 200


def test_mobile_payment_transaction_id(client, store, valid_order):
    valid_order["payment_method"] = "bkash"
    valid_order["transaction_id"] = ""
    response = client.post("/v1/orders", json=valid_order)
    assert response.status_code == 400
    assert response.json() == {"error": "Transaction ID is required for mobile payments"}

    valid_order["transaction_id"] = "8N7A6C5B4D"
    response = client.post("/v1/orders", json=valid_order)
    assert response.status_code == 200
    assert store.orders[response.json()["order"]["id"]].transaction_id == "8N7A6C5B4D"


def test_same_request_twice_creates_two_orders(client, store, valid_order):
    first = client.post("/v1/orders", json=valid_order).json()["order"]
    second = client.post("/v1/orders", json=valid_order).json()["order"]

    assert first["id"] != second["id"]
    assert first["total_amount"] == second["total_amount"] == 6400
    assert len(store.orders) == 2


def test_catalog_outage_is_generic_500(client, store, valid_order):
    store.fail_products = True

    response = client.post("/v1/orders", json=valid_order)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to validate products"}


def test_insert_failure_is_generic_500(client, store, valid_order):
    store.fail_insert = True

    response = client.post("/v1/orders", json=valid_order)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to create order"}


def test_malformed_body_is_400(client):
    response = client.post("/v1/orders", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}

    response = client.post("/v1/orders", json={"items": "ring-1"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}


def test_unexpected_error_is_not_leaked(store, sms, valid_order):
    def explode(product_ids):
        raise RuntimeError("secret connection string")

    store.fetch_products = explode
    with TestClient(create_app(store=store, sms_client=sms), raise_server_exceptions=False) as client:
        response = client.post("/v1/orders", json=valid_order)

    assert response.status_code == 500
    assert response.json() == {"error": "An unexpected error occurred"}
    assert response.headers["access-control-allow-origin"] == "*"


def test_order_sms_uses_persisted_order(client, sms, valid_order):
    order_id = client.post("/v1/orders", json=valid_order).json()["order"]["id"]

    response = client.post("/v1/notifications/order-sms", json={"order_id": order_id}, headers=FORWARDED)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message_id": "SM1"}
    to, body = sms.sent[0]
    assert to == "+8801712345678"
    assert "৳6,400" in body


def test_order_sms_unknown_order(client):
    response = client.post("/v1/notifications/order-sms", json={"order_id": "missing"}, headers=FORWARDED)

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_order_sms_not_configured(client, sms, valid_order):
    sms.configured = False

    response = client.post("/v1/notifications/order-sms", json={"order_id": "anything"}, headers=FORWARDED)

    assert response.status_code == 500
    assert response.json() == {"error": "SMS service not configured"}


def test_order_sms_rate_limited(client, clock):
    for _ in range(10):
        client.post("/v1/notifications/order-sms", json={"order_id": "missing"}, headers=FORWARDED)

    response = client.post("/v1/notifications/order-sms", json={"order_id": "missing"}, headers=FORWARDED)
    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMITED"

    clock.advance(61)
    assert client.post("/v1/notifications/order-sms", json={"order_id": "missing"},
                       headers=FORWARDED).status_code == 404


CONTACT = {
    "name": "Rahim Uddin",
    "email": "Rahim@Example.com",
    "phone": "+880 1712-345678",
    "subject": "Custom ring",
    "message": "Do you make rings in size 7 with a ruby?",
}


def test_contact_message_stored(client, store):
    response = client.post("/v1/contact", json=CONTACT, headers=FORWARDED)

    assert response.status_code == 200
    assert response.json() == {"success": True, "id": "msg-1"}
    assert store.contact_messages[0]["email"] == "rahim@example.com"
    assert store.contact_messages[0]["phone"] == "+880 1712-345678"


def test_contact_honeypot_pretends_success(client, store):
    response = client.post("/v1/contact", json=dict(CONTACT, honeypot="http://spam"), headers=FORWARDED)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert store.contact_messages == []


def test_contact_email_with_trailing_newline_rejected(client, store):
    response = client.post("/v1/contact", json=dict(CONTACT, email="rahim@example.com\n"), headers=FORWARDED)

    assert response.status_code == 400
    assert response.json() == {"error": "Valid email address is required", "code": "VALIDATION_ERROR"}
    assert store.contact_messages == []


def test_contact_store_failure_is_db_error(client, store):
    store.fail_contact = True

    response = client.post("/v1/contact", json=CONTACT, headers=FORWARDED)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to submit message. Please try again.", "code": "DB_ERROR"}


def test_contact_reports_all_errors(client, store):
    response = client.post("/v1/contact", json={"name": "R", "email": "nope", "subject": "hi",
                                                "message": "short", "phone": "abc"}, headers=FORWARDED)

    assert response.status_code == 400
    assert response.json() == {
        "error": "Name must be at least 2 characters, Valid email address is required, "
                 "Subject must be at least 3 characters, Message must be at least 10 characters, "
                 "Invalid phone number format",
        "code": "VALIDATION_ERROR",
    }
    assert store.contact_messages == []


def test_contact_rate_limit_per_client(client, clock):
    for _ in range(3):
        assert client.post("/v1/contact", json=CONTACT, headers=FORWARDED).status_code == 200

    limited = client.post("/v1/contact", json=CONTACT, headers=FORWARDED)
    assert limited.status_code == 429
    assert limited.json() == {
        "error": "Too many submissions. Please wait a few minutes before trying again.",
        "code": "RATE_LIMITED",
    }

    other = client.post("/v1/contact", json=CONTACT, headers={"X-Real-IP": "198.51.100.2"})
    assert other.status_code == 200

    clock.advance(301)
    assert client.post("/v1/contact", json=CONTACT, headers=FORWARDED).status_code == 200


def test_rate_limit_applies_before_validation(client):
    for _ in range(3):
        client.post("/v1/contact", json={}, headers=FORWARDED)

    assert client.post("/v1/contact", json={}, headers=FORWARDED).status_code == 429


def test_track_order(client, valid_order):
    order_id = client.post("/v1/orders", json=valid_order).json()["order"]["id"]

    response = client.post("/v1/orders/track", json={"orderId": order_id, "phoneNumber": "01712345678"},
                           headers=FORWARDED)

    assert response.status_code == 200
    order = response.json()["order"]
    assert order["id"] == order_id
    assert order["total_amount"] == 6400
    assert order["rider_name"] == "Karim"
    assert "customer_email" not in order
    assert "customer_address" not in order


def test_track_order_wrong_phone(client, valid_order):
    order_id = client.post("/v1/orders", json=valid_order).json()["order"]["id"]

    response = client.post("/v1/orders/track", json={"orderId": order_id, "phoneNumber": "01800000000"},
                           headers=FORWARDED)

    assert response.status_code == 404
    assert response.json() == {
        "error": "Order not found. Please check your order ID and phone number.",
        "code": "NOT_FOUND",
    }


def test_track_order_validation(client):
    response = client.post("/v1/orders/track", json={"orderId": "xyz", "phoneNumber": "12"}, headers=FORWARDED)

    assert response.status_code == 400
    assert response.json() == {
        "error": "Order ID must be at least 10 characters, Phone number must be at least 10 characters, "
                 "Invalid order ID format, Invalid phone number format",
        "code": "VALIDATION_ERROR",
    }


def test_track_order_rate_limited(client):
    payload = {"orderId": "xyz", "phoneNumber": "12"}
    for _ in range(5):
        client.post("/v1/orders/track", json=payload)

    response = client.post("/v1/orders/track", json=payload)
    assert response.status_code == 429
    assert response.json()["error"].startswith("Too many tracking attempts")


ETA = {
    "rider_lat": 23.7465,
    "rider_lng": 90.3760,
    "dest_lat": 23.7925,
    "dest_lng": 90.4078,
    "vehicle_type": "motorcycle",
    "rider_name": "Karim",
}
NEAR = dict(ETA, rider_lat=23.7905, rider_lng=90.4070)


@pytest.fixture
def order_id(client, valid_order):
    return client.post("/v1/orders", json=valid_order).json()["order"]["id"]


def test_delivery_eta_far_away(client, sms, order_id):
    response = client.post(f"/v1/deliveries/{order_id}/eta", json=ETA)

    assert response.status_code == 200
    body = response.json()
    assert body["near_destination"] is False
    assert body["duration_minutes"] > 0
    assert body["notifications"] == {"nearby": None, "arrived": None}
    assert sms.sent == []


def test_delivery_eta_nearby_then_arrived(client, sms, order_id):
    first = client.post(f"/v1/deliveries/{order_id}/eta", json=NEAR).json()
    assert first["near_destination"] is True
    assert first["notifications"]["nearby"] == {"sent": True, "reason": None}

    repeat = client.post(f"/v1/deliveries/{order_id}/eta", json=NEAR).json()
    assert repeat["notifications"]["nearby"]["sent"] is False

    at_door = dict(ETA, rider_lat=ETA["dest_lat"], rider_lng=ETA["dest_lng"])
    arrived = client.post(f"/v1/deliveries/{order_id}/eta", json=at_door).json()
    assert arrived["formatted_eta"] == "Arriving now"
    assert arrived["notifications"]["arrived"] == {"sent": True, "reason": None}
    assert len(sms.sent) == 2


def test_delivery_sms_goes_to_the_stored_customer(client, sms, order_id):
    payload = dict(NEAR, customer_phone="01999999999", customer_name="Mallory")

    response = client.post(f"/v1/deliveries/{order_id}/eta", json=payload)

    assert response.status_code == 200
    to, body = sms.sent[0]
    assert to == "+8801712345678"
    assert "Nusrat Jahan" in body
    assert "Mallory" not in body


def test_delivery_eta_unknown_order_sends_nothing(client, sms):
    response = client.post("/v1/deliveries/not-an-order/eta", json=NEAR, headers=FORWARDED)

    assert response.status_code == 404
    assert response.json() == {"error": "Order not found", "code": "NOT_FOUND"}
    assert sms.sent == []


def test_delivery_eta_rate_limited(client, sms, clock):
    for i in range(12):
        client.post(f"/v1/deliveries/fake-{i}/eta", json=NEAR, headers=FORWARDED)

    response = client.post("/v1/deliveries/fake-12/eta", json=NEAR, headers=FORWARDED)
    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMITED"
    assert sms.sent == []

    clock.advance(61)
    assert client.post("/v1/deliveries/fake-13/eta", json=NEAR, headers=FORWARDED).status_code == 404


def test_delivery_eta_rejects_invalid_coordinates(client, order_id):
    response = client.post(f"/v1/deliveries/{order_id}/eta", json=dict(ETA, rider_lat=123))
    assert response.status_code == 400
