"""
notifications.py — Customer SMS Notifications

Order confirmation SMS and delivery proximity SMS.

All messages are built from persisted data: the confirmation is rendered from
the stored order, never from values posted by the client.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .clients import TwilioSmsClient
from .config import DELIVERY_NOTIFICATION_RETENTION_SECONDS
from .errors import NotFoundError, NotificationError, NotificationNotConfigured
from .models import Order

log = logging.getLogger(__name__)

STORE_SIGNATURE = "Chitraboli"
NOTIFICATION_COOLDOWN_SECONDS = 5 * 60


def format_bd_phone(phone: str) -> str:
    """
    Normalizes a Bangladeshi phone number to E.164.

    Examples:
        "01712-345678" → "+8801712345678", "8801712345678" → "+8801712345678"
    """
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("0"):
        digits = "880" + digits[1:]
    if not digits.startswith("880"):
        digits = "880" + digits
    return "+" + digits


def format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def order_confirmation_message(order: Order) -> str:
    return (
        f"Dear {order.customer_name}, your order #{order.id[-8:].upper()} has been confirmed. "
        f"Total: ৳{format_amount(order.total_amount)}. Payment: {order.payment_method}. "
        f"Thank you! - {STORE_SIGNATURE}"
    )


class OrderSmsService:
    """
    Sends the order confirmation SMS for an order that already exists.

    Args:
        store: Object providing `get_order(order_id)`.
        sms_client (TwilioSmsClient): Gateway client.
    """

    def __init__(self, store, sms_client: TwilioSmsClient):
        self.store = store
        self.sms_client = sms_client

    def send_confirmation(self, order_id: str) -> str:
        """
        Returns:
            str: Gateway message id.

        Raises:
            NotFoundError: No order with this id.
            NotificationNotConfigured / NotificationError: Gateway problems.
            StoreError: The order could not be read.
        """
        if not self.sms_client.configured:
            log.error("Missing Twilio credentials")
            raise NotificationNotConfigured()

        order = self.store.get_order(order_id)
        if order is None:
            log.info(f"Order confirmation SMS requested for unknown order {order_id[:8]}***")
            raise NotFoundError("Order not found")

        to = format_bd_phone(order.customer_phone)
        log.info(f"[Order: {order.id}] Sending confirmation SMS to {to}")
        message_id = self.sms_client.send_sms(to, order_confirmation_message(order))
        log.info(f"[Order: {order.id}] SMS sent successfully: {message_id}")
        return message_id


@dataclass
class NotificationOutcome:
    sent: bool
    reason: Optional[str] = None


class DeliveryNotifier:
    """
    Sends the "rider nearby" and "rider arrived" SMS at most once per order.

    State (which notifications went out, and when) lives in this object and is
    shared by all requests of the process. Entries older than
    `retention_seconds` are dropped by `sweep`. A notification is claimed under the
    lock before the SMS is sent, so two concurrent position updates cannot both
    fire it. A failed SMS still counts as sent; the rider is not re-announced on
    every following position update.
    """

    def __init__(self, sms_client: TwilioSmsClient, clock=time.monotonic,
                 cooldown_seconds: float = NOTIFICATION_COOLDOWN_SECONDS,
                 retention_seconds: float = DELIVERY_NOTIFICATION_RETENTION_SECONDS):
        self.sms_client = sms_client
        self.clock = clock
        self.cooldown_seconds = cooldown_seconds
        self.retention_seconds = retention_seconds
        # notification key -> time it was claimed
        self._sent = {}
        self._last_sent_at = {}
        self._lock = threading.Lock()

    def _can_send(self, order_id: str, now: float) -> bool:
        last = self._last_sent_at.get(order_id)
        return last is None or now - last >= self.cooldown_seconds

    def _deliver(self, order_id: str, phone: str, message: str):
        try:
            self.sms_client.send_sms(format_bd_phone(phone), message)
            log.info(f"[Order: {order_id}] Delivery notification sent.")
        except (NotificationError, NotificationNotConfigured) as e:
            log.warning(f"[Order: {order_id}] Delivery notification SMS failed: {e}")

    def send_nearby(self, order_id: str, customer_phone: str, customer_name: str, rider_name: str,
                    distance_km: float, eta_minutes: int, threshold_km: float = 0.5) -> NotificationOutcome:
        """
        Tells the customer the rider is close, once per order.

        Returns:
            NotificationOutcome: `sent` False with a reason when skipped.
        """
        now = self.clock()
        with self._lock:
            if order_id in self._sent or not self._can_send(order_id, now):
                return NotificationOutcome(False, "Already notified or cooldown active")
            if distance_km > threshold_km:
                return NotificationOutcome(False, "Rider not near enough")
            self._sent[order_id] = now
            self._last_sent_at[order_id] = now

        message = (
            f"Dear {customer_name}, your delivery rider {rider_name} will reach you in about "
            f"{eta_minutes} minutes. Please be ready! - {STORE_SIGNATURE}"
        )
        self._deliver(order_id, customer_phone, message)
        return NotificationOutcome(True)

    def send_arrived(self, order_id: str, customer_phone: str, customer_name: str,
                     rider_name: str) -> NotificationOutcome:
        arrived_key = f"{order_id}-arrived"
        now = self.clock()
        with self._lock:
            if arrived_key in self._sent:
                return NotificationOutcome(False, "Already notified arrival")
            self._sent[arrived_key] = now

        message = (
            f"Dear {customer_name}, your delivery rider {rider_name} has arrived at your address. "
            f"Please receive your order. - {STORE_SIGNATURE}"
        )
        self._deliver(order_id, customer_phone, message)
        return NotificationOutcome(True)

    def reset(self, order_id: str = None):
        """Forgets the notifications of one order, or of all orders."""
        with self._lock:
            if order_id is None:
                self._sent.clear()
                self._last_sent_at.clear()
                return
            self._sent.pop(order_id, None)
            self._sent.pop(f"{order_id}-arrived", None)
            self._last_sent_at.pop(order_id, None)

    def sweep(self) -> int:
        """
        Forgets notifications recorded more than `retention_seconds` ago.

        Returns:
            int: Number of entries removed.
        """
        cutoff = self.clock() - self.retention_seconds
        with self._lock:
            stale = [key for key, at in self._sent.items() if at < cutoff]
            for key in stale:
                del self._sent[key]
            stale_orders = [order_id for order_id, at in self._last_sent_at.items() if at < cutoff]
            for order_id in stale_orders:
                del self._last_sent_at[order_id]
        if stale:
            log.info(f"{len(stale)} delivery notification record(s) expired.")
        return len(stale)
