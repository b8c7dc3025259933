import uuid

import pytest
from fastapi.testclient import TestClient

from storefront_service.config import RateLimitPolicy
from storefront_service.errors import NotificationError, StoreError
from storefront_service.main import create_app
from storefront_service.models import Order, ProductRecord
from storefront_service.notifications import DeliveryNotifier
from storefront_service.rate_limit import build_rate_limiters


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeStore:
    """In-memory stand-in for the hosted database client."""

    def __init__(self, products=()):
        self.products = {p.id: p for p in products}
        self.orders = {}
        self.contact_messages = []
        self.fetch_calls = []
        self.fail_products = False
        self.fail_insert = False
        self.fail_contact = False

    def fetch_products(self, product_ids):
        self.fetch_calls.append(list(product_ids))
        if self.fail_products:
            raise StoreError("Database request failed")
        return [self.products[i] for i in product_ids if i in self.products]

    def insert_order(self, row):
        if self.fail_insert:
            raise StoreError("Database request failed")
        order = Order.model_validate(dict(row, id=str(uuid.uuid4())))
        self.orders[order.id] = order
        return order

    def get_order(self, order_id):
        return self.orders.get(order_id)

    def find_order_for_tracking(self, order_id, phone):
        order = self.orders.get(order_id)
        if order is None or order.customer_phone != phone:
            return None
        row = order.model_dump(mode="json")
        row["delivery_riders"] = {"id": "rider-1", "name": "Karim", "phone": "01811111111",
                                  "vehicle_type": "motorcycle"}
        return row

    def insert_contact_message(self, row):
        if self.fail_contact:
            raise StoreError("Database request failed")
        self.contact_messages.append(row)
        return f"msg-{len(self.contact_messages)}"


class FakeSmsClient:
    def __init__(self, configured=True):
        self.configured = configured
        self.sent = []
        self.fail = False

    def send_sms(self, to, body):
        if self.fail:
            raise NotificationError("Failed to send SMS")
        self.sent.append((to, body))
        return f"SM{len(self.sent)}"

    def close(self):
        pass


CATALOG = [
    ProductRecord(id="ring-1", name="Gold Plated Ring", price=3200, image_url="https://cdn/ring.jpg", in_stock=True),
    ProductRecord(id="necklace-2", name="Pearl Necklace", price=5400, in_stock=True),
    ProductRecord(id="bangle-3", name="Silver Bangle", price=2100, in_stock=False),
    ProductRecord(id="earring-4", name="Jhumka Earrings", price=1500),
]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return FakeStore(CATALOG)


@pytest.fixture
def sms():
    return FakeSmsClient()


@pytest.fixture
def catalog_lookup(store):
    return store.fetch_products


@pytest.fixture
def valid_order():
    return {
        "items": [{"product_id": "ring-1", "quantity": 2}],
        "customer_details": {
            "name": "Nusrat Jahan",
            "email": "Nusrat@Example.com",
            "phone": "01712345678",
            "address": "House 12, Road 5, Dhanmondi, Dhaka",
        },
        "payment_method": "cod",
    }


@pytest.fixture
def app(store, sms, clock):
    policies = {
        "order_sms": RateLimitPolicy(10, 60),
        "contact": RateLimitPolicy(3, 300, "Too many submissions. Please wait a few minutes before trying again."),
        "track_order": RateLimitPolicy(5, 300, "Too many tracking attempts. Please wait a few minutes before trying again."),
        "delivery_eta": RateLimitPolicy(12, 60),
    }
    return create_app(
        store=store,
        sms_client=sms,
        rate_limiters=build_rate_limiters(policies, clock=clock),
        notifier=DeliveryNotifier(sms, clock=clock),
        sweep_interval=3600,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
