"""
models.py — Data Models for the Storefront Service

This module defines the data structures exchanged with clients and with the
hosted database. It uses Pydantic models for parsing and serialization.

Request models are deliberately lenient: they only guarantee the shape of the
JSON body. The business checks (lengths, formats, quantities) are performed
by the validators so that each violation is reported with its own message.

Models:
    - OrderItemRequest / CustomerDetails / OrderRequest: untrusted order input.
    - ProductRecord: authoritative catalog row.
    - ValidatedOrderItem / Order / OrderSummary: priced and persisted order.
    - OrderSmsRequest, ContactMessageRequest, TrackingRequest, EtaRequest:
      inputs of the satellite endpoints.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

PAYMENT_METHODS = ("cod", "bkash", "nagad")
MOBILE_PAYMENT_METHODS = ("bkash", "nagad")


# --- Order intake (untrusted) ---
class OrderItemRequest(BaseModel):
    """
    A single cart line as sent by the client.

    Attributes:
        product_id (Any): Catalog id of the product; must be a non-empty string,
            checked by the validator.
        quantity (Any): Requested quantity; checked to be a positive integer
            by the validator, so floats and strings are not coerced here.

    Any price, name or image sent along is ignored. A cart line that is not an
    object parses as an empty line, so the validator rejects it like any other
    malformed item.
    """
    product_id: Any = None
    quantity: Any = None

    @model_validator(mode="before")
    @classmethod
    def _non_object_line(cls, data):
        return data if isinstance(data, (dict, cls)) else {}


class CustomerDetails(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderRequest(BaseModel):
    """
    Represents an order submitted by the storefront checkout.

    Attributes:
        items (List[OrderItemRequest]): Cart lines.
        customer_details (CustomerDetails): Contact and delivery data.
        payment_method (str): One of 'cod', 'bkash', 'nagad'.
        transaction_id (str): Mobile payment reference, required for bkash/nagad.
        session_id (str): Anonymous cart session, stored as-is when present.
    """
    items: Optional[List[OrderItemRequest]] = None
    customer_details: Optional[CustomerDetails] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    session_id: Optional[str] = None


# --- Catalog (authoritative) ---
class ProductRecord(BaseModel):
    """
    A product row as stored in the catalog.

    `in_stock` may be missing on older rows; only an explicit False counts
    as out of stock.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    price: float
    image_url: Optional[str] = None
    in_stock: Optional[bool] = None


# --- Priced / persisted order ---
class ValidatedOrderItem(BaseModel):
    product_id: str
    product_name: str
    product_price: float
    quantity: int
    product_image: Optional[str] = None


class Order(BaseModel):
    """
    An order row as persisted in the `orders` table.

    Attributes:
        id (str): Generated by the store on insert.
        total_amount (float): Sum of product_price * quantity over `items`.
        status (str): Starts as 'pending'.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    session_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: str
    items: List[ValidatedOrderItem]
    total_amount: float
    status: str = "pending"
    payment_method: str
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderSummary(BaseModel):
    id: str
    total_amount: float
    items: List[ValidatedOrderItem]
    status: str


# --- Satellite endpoints ---
class OrderSmsRequest(BaseModel):
    order_id: str = Field(..., min_length=1)


class ContactMessageRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    # Hidden form field; humans leave it empty.
    honeypot: Any = None


class TrackingRequest(BaseModel):
    orderId: Optional[str] = None
    phoneNumber: Optional[str] = None


class TrackedOrder(BaseModel):
    """Fields of an order that are safe to show to whoever knows its id and phone."""
    id: str
    status: str
    items: List[Any]
    total_amount: float
    created_at: Optional[datetime] = None
    customer_name: str
    rider_assigned_at: Optional[datetime] = None
    rider_id: Optional[str] = None
    rider_name: Optional[str] = None
    rider_phone: Optional[str] = None
    rider_vehicle_type: Optional[str] = None


class EtaRequest(BaseModel):
    """
    A rider position update for an order out for delivery.

    Attributes:
        rider_lat / rider_lng (float): Current rider coordinates.
        dest_lat / dest_lng (float): Delivery address coordinates.
        vehicle_type (str): 'motorcycle', 'bicycle' or 'van'; anything else
            is treated as a motorcycle.
        rider_name (str): Named in the proximity SMS. The customer's name and
            phone always come from the stored order.
        threshold_km (float): Distance at which the customer is told the
            rider is nearby.
    """
    rider_lat: float = Field(..., ge=-90, le=90)
    rider_lng: float = Field(..., ge=-180, le=180)
    dest_lat: float = Field(..., ge=-90, le=90)
    dest_lng: float = Field(..., ge=-180, le=180)
    vehicle_type: str = "motorcycle"
    rider_name: str
    threshold_km: float = Field(0.5, gt=0)
