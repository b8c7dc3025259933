"""
pricing.py — Server-Side Order Validation and Pricing

This module is the financial integrity boundary of the storefront. It turns an
untrusted OrderRequest into a PricedOrder whose item names, prices and total
come exclusively from the catalog.

`validate_and_price` is independent of HTTP and of the database: the catalog
is passed in as a callable, so the rules can be exercised with a plain list of
ProductRecords.

Validation Steps (fail-fast, first violation wins):
1. Items present, each with a product_id and a positive integer quantity
2. Customer details complete
3. Name, email, phone and address format
4. Payment method, and transaction id for mobile payments
5. Catalog lookup, product existence and stock
6. Pricing from catalog prices only
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .errors import CatalogUnavailableError, OrderValidationError, StoreError
from .models import (
    MOBILE_PAYMENT_METHODS,
    PAYMENT_METHODS,
    OrderRequest,
    ProductRecord,
    ValidatedOrderItem,
)

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")

NAME_LENGTH = (2, 100)
PHONE_LENGTH = (10, 15)
ADDRESS_LENGTH = (10, 500)

CatalogLookup = Callable[[List[str]], Iterable[ProductRecord]]


@dataclass
class PricedOrder:
    """
    A validated order ready to be persisted.

    Customer fields are already normalized; `total_amount` is the sum of
    product_price * quantity over `items`.
    """
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: str
    payment_method: str
    items: List[ValidatedOrderItem] = field(default_factory=list)
    total_amount: float = 0
    transaction_id: Optional[str] = None
    session_id: Optional[str] = None
    status: str = "pending"

    def to_row(self) -> dict:
        """Returns the row inserted into the `orders` table."""
        return {
            "session_id": self.session_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "items": [item.model_dump() for item in self.items],
            "total_amount": self.total_amount,
            "status": self.status,
            "payment_method": self.payment_method,
            "transaction_id": self.transaction_id,
        }


def _positive_int(value) -> Optional[int]:
    """Returns `value` as an int if it is a whole number >= 1, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value >= 1:
        return value
    return None


def _check_length(value: str, bounds: tuple, message: str):
    low, high = bounds
    if not low <= len(value) <= high:
        raise OrderValidationError(message)


def validate_request(request: OrderRequest) -> List[int]:
    """
    Runs the structural checks that need no catalog data.

    Args:
        request (OrderRequest): The untrusted order.

    Returns:
        List[int]: The quantities of `request.items`, normalized to int.

    Raises:
        OrderValidationError: On the first violated rule.
    """
    if not request.items:
        raise OrderValidationError("At least one item is required")

    quantities = []
    for item in request.items:
        quantity = _positive_int(item.quantity)
        if not isinstance(item.product_id, str) or not item.product_id or quantity is None:
            log.warning(f"Rejected invalid item: {item.model_dump()}")
            raise OrderValidationError("Each item must have a valid product_id and positive integer quantity")
        quantities.append(quantity)

    customer = request.customer_details
    if not customer or not (customer.name and customer.email and customer.phone and customer.address):
        raise OrderValidationError("All customer details are required (name, email, phone, address)")

    _check_length(customer.name, NAME_LENGTH, "Name must be between 2 and 100 characters")
    if not EMAIL_RE.fullmatch(customer.email):
        raise OrderValidationError("Invalid email address")
    _check_length(customer.phone, PHONE_LENGTH, "Phone number must be between 10 and 15 characters")
    _check_length(customer.address, ADDRESS_LENGTH, "Address must be between 10 and 500 characters")

    if request.payment_method not in PAYMENT_METHODS:
        raise OrderValidationError("Invalid payment method")

    if request.payment_method in MOBILE_PAYMENT_METHODS and not (request.transaction_id or "").strip():
        raise OrderValidationError("Transaction ID is required for mobile payments")

    return quantities


def validate_and_price(request: OrderRequest, catalog_lookup: CatalogLookup) -> PricedOrder:
    """
    Validates an untrusted order and prices it from the catalog.

    No price, name or image supplied by the client is ever read: the request
    model does not even carry them.

    Args:
        request (OrderRequest): The untrusted order.
        catalog_lookup (CatalogLookup): Returns the ProductRecords for a list
            of product ids. Ids without a row are simply absent from the result.
            Raises StoreError if the catalog cannot be read.

    Returns:
        PricedOrder: Normalized customer data, validated items and total.

    Raises:
        OrderValidationError: Structural or business rule violated (HTTP 400).
        CatalogUnavailableError: The catalog could not be read (HTTP 500).
    """
    quantities = validate_request(request)

    product_ids = list(dict.fromkeys(item.product_id for item in request.items))
    log.info(f"Fetching catalog prices for {len(product_ids)} product(s): {product_ids}")

    try:
        products = {product.id: product for product in catalog_lookup(product_ids)}
    except StoreError as e:
        log.error(f"Catalog lookup failed: {e}")
        raise CatalogUnavailableError() from e

    if not products:
        log.warning(f"No products found for IDs: {product_ids}")
        raise OrderValidationError("No valid products found")

    total_amount = 0
    validated_items = []
    for item, quantity in zip(request.items, quantities):
        product = products.get(item.product_id)
        if product is None:
            log.warning(f"Product not found: {item.product_id}")
            raise OrderValidationError(f"Product not found: {item.product_id}")

        if product.in_stock is False:
            log.warning(f"Product out of stock: {product.name}")
            raise OrderValidationError(f"Product is out of stock: {product.name}")

        item_total = product.price * quantity
        total_amount += item_total
        validated_items.append(ValidatedOrderItem(
            product_id=item.product_id,
            product_name=product.name,
            product_price=product.price,
            quantity=quantity,
            product_image=product.image_url or None,
        ))
        log.info(f"Validated item: {product.name} x{quantity} @ {product.price} = {item_total}")

    customer = request.customer_details
    return PricedOrder(
        customer_name=customer.name.strip(),
        customer_email=customer.email.strip().lower(),
        customer_phone=customer.phone.strip(),
        customer_address=customer.address.strip(),
        payment_method=request.payment_method,
        items=validated_items,
        total_amount=total_amount,
        transaction_id=request.transaction_id.strip() if request.payment_method != "cod" else None,
        session_id=request.session_id or None,
    )
