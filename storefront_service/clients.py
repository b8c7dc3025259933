"""
This module provides communication clients for the external systems used by the storefront service:
- Hosted database (REST API): products, orders, contact messages, riders
- SMS gateway (Twilio REST API)
- Order event queue (RabbitMQ)
Each class encapsulates its protocol logic, error handling, and connection management.
Transport failures are logged here with full detail and re-raised as service errors
carrying only a generic public message.
"""

import json
import logging
import threading
import time
import uuid
from typing import List, Optional

import httpx
import pika

from .config import (
    ORDER_EVENTS_QUEUE,
    RABBITMQ_HOST,
    RABBITMQ_PASSWORD,
    RABBITMQ_USER,
    STORE_TIMEOUT_SECONDS,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
    TWILIO_ACCOUNT_SID,
    TWILIO_API_URL,
    TWILIO_AUTH_TOKEN,
    TWILIO_PHONE_NUMBER,
)
from .errors import NotificationError, NotificationNotConfigured, StoreError
from .models import Order, ProductRecord

log = logging.getLogger(__name__)

PRODUCT_COLUMNS = "id,name,price,image_url,in_stock"
TRACKING_COLUMNS = (
    "id,status,items,total_amount,created_at,customer_name,rider_assigned_at,assigned_rider_id,"
    "delivery_riders(id,name,phone,vehicle_type)"
)


def _in_filter(values: List[str]) -> str:
    """Builds a PostgREST `in` filter with quoted values."""
    quoted = ",".join('"{}"'.format(v.replace("\\", "\\\\").replace('"', '\\"')) for v in values)
    return f"in.({quoted})"


# --- Hosted database client (REST) ---
class SupabaseStoreClient:
    """
    Client for the REST API of the hosted database.
    Uses the service role key, so row level security does not hide catalog prices.
    """

    def __init__(self, base_url: str = SUPABASE_URL, service_key: str = SUPABASE_SERVICE_ROLE_KEY,
                 timeout: float = STORE_TIMEOUT_SECONDS, transport: httpx.BaseTransport = None):
        """
        Initializes the HTTP client with authentication headers and timeout configuration.

        Args:
            base_url (str): Project URL of the hosted database.
            service_key (str): Service role key.
            timeout (float): Timeout in seconds for every call.
            transport (httpx.BaseTransport): Optional transport (used by tests).
        """
        headers = {"apikey": service_key, "Authorization": f"Bearer {service_key}"}
        self.client = httpx.Client(base_url=f"{base_url.rstrip('/')}/rest/v1", headers=headers,
                                   timeout=httpx.Timeout(timeout), transport=transport)

    def close(self):
        self.client.close()

    def _request(self, method: str, path: str, not_found_on_client_error: bool = False, **kwargs):
        """
        Executes a call and returns the decoded JSON body.

        Raises:
            StoreError: If the store is unreachable, answers with an error status
                or returns a body that is not JSON. With `not_found_on_client_error`,
                a 4xx answer returns None instead.
        """
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if not_found_on_client_error and e.response.status_code < 500:
                log.info(f"Store rejected {method} {path} (HTTP {e.response.status_code}): {e.response.text}")
                return None
            log.error(f"Store error on {method} {path}: HTTP {e.response.status_code} - {e.response.text}")
            raise StoreError("Database request failed") from e
        except httpx.RequestError as e:
            log.error(f"Store unreachable on {method} {path}: {e}")
            raise StoreError("Database request failed") from e
        except ValueError as e:
            log.error(f"Store returned invalid JSON on {method} {path}: {e}")
            raise StoreError("Database request failed") from e

    def fetch_products(self, product_ids: List[str]) -> List[ProductRecord]:
        """
        Returns the catalog rows for the given ids. Unknown ids are simply missing.

        Raises:
            StoreError: If the catalog cannot be read.
        """
        if not product_ids:
            return []
        rows = self._request("GET", "/products", params={"select": PRODUCT_COLUMNS, "id": _in_filter(product_ids)})
        return [ProductRecord.model_validate(row) for row in rows or []]

    def insert_order(self, row: dict) -> Order:
        """
        Inserts one order row and returns it as stored (including the generated id).

        Raises:
            StoreError: If the insert fails.
        """
        rows = self._request("POST", "/orders", json=[row], headers={"Prefer": "return=representation"})
        if not rows:
            log.error("Store accepted the order insert but returned no row.")
            raise StoreError("Database request failed")
        return Order.model_validate(rows[0])

    def get_order(self, order_id: str) -> Optional[Order]:
        rows = self._request("GET", "/orders", not_found_on_client_error=True,
                             params={"select": "*", "id": f"eq.{order_id}", "limit": "1"})
        return Order.model_validate(rows[0]) if rows else None

    def find_order_for_tracking(self, order_id: str, phone: str) -> Optional[dict]:
        """
        Looks up an order by id AND customer phone, joined with its rider.

        Returns:
            dict: The raw row, or None if no order matches both values.
        """
        rows = self._request("GET", "/orders", not_found_on_client_error=True, params={
            "select": TRACKING_COLUMNS,
            "id": f"eq.{order_id}",
            "customer_phone": f"eq.{phone}",
            "limit": "1",
        })
        return rows[0] if rows else None

    def insert_contact_message(self, row: dict) -> str:
        rows = self._request("POST", "/contact_messages", json=[row], headers={"Prefer": "return=representation"})
        if not rows:
            log.error("Store accepted the contact message but returned no row.")
            raise StoreError("Database request failed")
        return str(rows[0]["id"])


# --- SMS gateway client (REST) ---
class TwilioSmsClient:
    """
    Client for the Twilio Messages API.
    """

    def __init__(self, account_sid: str = TWILIO_ACCOUNT_SID, auth_token: str = TWILIO_AUTH_TOKEN,
                 from_number: str = TWILIO_PHONE_NUMBER, base_url: str = TWILIO_API_URL,
                 transport: httpx.BaseTransport = None):
        self.account_sid = account_sid
        self.from_number = from_number
        timeout_config = httpx.Timeout(5.0, read=8.0)
        self.client = httpx.Client(base_url=base_url, auth=(account_sid, auth_token),
                                   timeout=timeout_config, transport=transport)
        self._configured = bool(account_sid and auth_token and from_number)

    @property
    def configured(self) -> bool:
        return self._configured

    def close(self):
        self.client.close()

    def send_sms(self, to: str, body: str) -> str:
        """
        Sends one SMS.

        Args:
            to (str): Recipient in E.164 format.
            body (str): Message text.

        Returns:
            str: The message sid assigned by the gateway.

        Raises:
            NotificationNotConfigured: If credentials are missing.
            NotificationError: If the gateway is unreachable or rejects the message.
        """
        if not self.configured:
            log.error("Missing Twilio credentials")
            raise NotificationNotConfigured()

        try:
            response = self.client.post(
                f"/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                data={"To": to, "From": self.from_number, "Body": body},
            )
            response.raise_for_status()
            return response.json().get("sid", "")
        except httpx.HTTPStatusError as e:
            log.error(f"SMS gateway error (HTTP {e.response.status_code}): {e.response.text}")
            raise NotificationError("Failed to send SMS") from e
        except httpx.RequestError as e:
            log.error(f"SMS gateway unreachable: {e}")
            raise NotificationError("Failed to send SMS") from e


# --- Order event publisher (MQ) ---
class OrderEventPublisher:
    """
    Publishes `orders.created` events to RabbitMQ so notification workers (email, SMS,
    WhatsApp) act on the persisted order instead of client-supplied data.
    The connection is opened on first use and re-opened after it was lost.
    """

    def __init__(self, host: str = RABBITMQ_HOST, queue: str = ORDER_EVENTS_QUEUE,
                 user: str = RABBITMQ_USER, password: str = RABBITMQ_PASSWORD):
        self.host = host
        self.queue = queue
        self.credentials = pika.PlainCredentials(user, password)
        self.connection = None
        self.channel = None
        # BlockingConnection is not thread-safe; background tasks run on a thread pool.
        self._lock = threading.Lock()

    def _connect(self):
        """
        Establishes the RabbitMQ connection and declares the event queue.
        Raises:
            pika.exceptions.AMQPConnectionError: If the connection fails.
        """
        try:
            self.connection = pika.BlockingConnection(
                pika.ConnectionParameters(host=self.host, credentials=self.credentials, heartbeat=60)
            )
            self.channel = self.connection.channel()
            self.channel.queue_declare(queue=self.queue, durable=True)
            log.info("Order event publisher connected to RabbitMQ.")
        except pika.exceptions.AMQPConnectionError as e:
            log.critical(f"Cannot connect to RabbitMQ (order events): {e}")
            raise

    def publish_order_created(self, order: Order):
        """
        Sends an `orders.created` event carrying the persisted order.
        Raises:
            pika.exceptions.AMQPError: If publishing fails.
        """
        message = {
            "eventId": str(uuid.uuid4()),
            "eventType": "orders.created",
            "eventTimestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "order": order.model_dump(mode="json"),
        }
        with self._lock:
            try:
                if not self.connection or self.connection.is_closed:
                    self._connect()
                self.channel.basic_publish(
                    exchange='',
                    routing_key=self.queue,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(delivery_mode=2, content_type="application/json")
                )
            except pika.exceptions.AMQPError as e:
                log.error(f"[Order: {order.id}] Failed to publish order event: {e}")
                self.connection = None
                raise
        log.info(f"[Order: {order.id}] Order event published to '{self.queue}'.")

    def close(self):
        with self._lock:
            if self.connection and self.connection.is_open:
                self.connection.close()
            self.connection = None
