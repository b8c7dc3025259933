"""
workflow.py — Order Intake Workflow

This module coordinates the creation of an order from an untrusted checkout request:

Workflow Overview:
1. Validate the request and price it from the catalog (pricing.validate_and_price)
2. Persist exactly one order row with the server-calculated total
3. Publish an `orders.created` event for the notification workers (background task)

Validation failures are permanent and returned verbatim to the caller. Store
failures are surfaced as generic server errors; there is no retry loop here.
"""

import logging
from typing import Optional

import pika

from .clients import OrderEventPublisher
from .errors import OrderPersistenceError, StoreError
from .models import Order, OrderRequest, OrderSummary
from .pricing import validate_and_price

log = logging.getLogger(__name__)


class OrderIntakeService:
    """
    Turns validated, priced requests into persisted orders.

    Args:
        store: Object providing `fetch_products(ids)` and `insert_order(row)`
            (e.g. clients.SupabaseStoreClient).
    """

    def __init__(self, store):
        self.store = store

    def create_order(self, request: OrderRequest) -> Order:
        """
        Validates, prices and persists one order.

        Args:
            request (OrderRequest): The untrusted checkout request.

        Returns:
            Order: The row as stored, including its generated id.

        Raises:
            OrderValidationError: If the request is rejected (HTTP 400).
            CatalogUnavailableError: If product prices cannot be read (HTTP 500).
            OrderPersistenceError: If the insert fails (HTTP 500).
        """
        customer = request.customer_details
        log.info(
            f"Order request received: {len(request.items or [])} item(s), "
            f"payment={request.payment_method}, customer={customer.name if customer else None}"
        )

        priced = validate_and_price(request, self.store.fetch_products)
        log.info(f"Total order amount (server-calculated): {priced.total_amount}")

        try:
            order = self.store.insert_order(priced.to_row())
        except StoreError as e:
            log.error(f"Failed to create order: {e}")
            raise OrderPersistenceError() from e

        log.info(f"[Order: {order.id}] Order created successfully.")
        return order


def summarize(order: Order) -> OrderSummary:
    return OrderSummary(id=order.id, total_amount=order.total_amount, items=order.items, status=order.status)


def notify_order_created(publisher: Optional[OrderEventPublisher], order: Order):
    """
    Background task: hands the persisted order to the notification workers.

    The order is already committed at this point, so failures are logged for
    manual follow-up and never reach the client.
    """
    log_prefix = f"[Order: {order.id}]"
    if publisher is None:
        log.info(f"{log_prefix} Order events disabled; no notification event sent.")
        return
    try:
        publisher.publish_order_created(order)
    except pika.exceptions.AMQPError as e:
        log.critical(f"{log_prefix} Order event could not be published, notify the customer manually. {e}")
