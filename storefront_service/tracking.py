"""
tracking.py — Public Order Tracking

Lets a customer look up an order with its id and the phone number used at
checkout. Only fields that are safe to show to that customer are returned.
"""

import logging
import re
from typing import List

from .errors import NotFoundError, RequestValidationFailed
from .models import TrackedOrder, TrackingRequest

log = logging.getLogger(__name__)

ORDER_ID_RE = re.compile(r"[a-f0-9-]{10,}", re.IGNORECASE)
TRACKING_PHONE_RE = re.compile(r"[+]?[\d\s\-()]{10,20}")


def mask_order_id(order_id: str) -> str:
    return f"{order_id[:8]}***"


def validate_tracking_request(request: TrackingRequest) -> List[str]:
    errors = []
    order_id = (request.orderId or "").strip()
    phone = (request.phoneNumber or "").strip()

    if len(order_id) < 10:
        errors.append("Order ID must be at least 10 characters")
    if len(phone) < 10:
        errors.append("Phone number must be at least 10 characters")
    if order_id and not ORDER_ID_RE.fullmatch(order_id):
        errors.append("Invalid order ID format")
    if phone and not TRACKING_PHONE_RE.fullmatch(phone):
        errors.append("Invalid phone number format")
    return errors


class TrackingService:
    def __init__(self, store):
        self.store = store

    def track(self, request: TrackingRequest, client_id: str) -> TrackedOrder:
        """
        Raises:
            RequestValidationFailed: Malformed order id or phone number.
            NotFoundError: No order matches both the id and the phone number.
            StoreError: The store could not be reached.
        """
        errors = validate_tracking_request(request)
        if errors:
            log.warning(f"Validation errors for IP {client_id}: {errors}")
            raise RequestValidationFailed(errors)

        order_id = request.orderId.strip()
        row = self.store.find_order_for_tracking(order_id, request.phoneNumber.strip())
        if not row:
            log.info(f"Order not found for ID: {mask_order_id(order_id)}")
            raise NotFoundError("Order not found. Please check your order ID and phone number.")

        rider = row.get("delivery_riders") or {}
        log.info(f"Order found successfully for ID: {mask_order_id(order_id)}")
        return TrackedOrder(
            id=row["id"],
            status=row["status"],
            items=row.get("items") or [],
            total_amount=row["total_amount"],
            created_at=row.get("created_at"),
            customer_name=row["customer_name"],
            rider_assigned_at=row.get("rider_assigned_at"),
            rider_id=rider.get("id"),
            rider_name=rider.get("name"),
            rider_phone=rider.get("phone"),
            rider_vehicle_type=rider.get("vehicle_type"),
        )
