"""
mock_store.py — Mock Implementation of the Hosted Database REST API

This module provides a simulated (mock) subset of the hosted database REST API
used by the storefront service, so the service can be run without the real backend.

The mock keeps its tables in memory and understands only the filters the service sends:
    • `id=in.("a","b")` on products
    • `id=eq.<id>` and `customer_phone=eq.<phone>` on orders
    • `select` with the `delivery_riders(...)` embed on orders

Seeded catalog:
    - "ring-gold-01"      in stock, 3200
    - "necklace-pearl-02" in stock, 5400
    - "bangle-silver-03"  out of stock
    - "earring-legacy-04" without stock flag (legacy row)

Port:
    Default: 8002 (HTTP)
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Request

app = FastAPI(title="Mock Hosted Database")
logging.basicConfig(level=logging.INFO)

PRODUCTS = {
    "ring-gold-01": {"id": "ring-gold-01", "name": "Gold Plated Ring", "price": 3200,
                     "image_url": "https://cdn.example.com/ring.jpg", "in_stock": True},
    "necklace-pearl-02": {"id": "necklace-pearl-02", "name": "Pearl Necklace", "price": 5400,
                          "image_url": None, "in_stock": True},
    "bangle-silver-03": {"id": "bangle-silver-03", "name": "Silver Bangle", "price": 2100,
                         "image_url": None, "in_stock": False},
    "earring-legacy-04": {"id": "earring-legacy-04", "name": "Jhumka Earrings", "price": 1500,
                          "image_url": None},
}
RIDERS = {
    "rider-1": {"id": "rider-1", "name": "Karim", "phone": "01811111111", "vehicle_type": "motorcycle"},
}
ORDERS = {}
CONTACT_MESSAGES = {}


def _filter_value(raw: Optional[str], operator: str) -> Optional[str]:
    if raw is None or not raw.startswith(f"{operator}."):
        return None
    return raw[len(operator) + 1:]


def _in_values(raw: str) -> List[str]:
    return [m.replace('\\"', '"') for m in re.findall(r'"((?:[^"\\]|\\.)*)"', raw)]


@app.get("/rest/v1/products")
def get_products(request: Request):
    """Returns the catalog rows whose id is in the `in.(...)` filter."""
    raw = _filter_value(request.query_params.get("id"), "in") or "()"
    ids = _in_values(raw)
    logging.info(f"[DB] products lookup: {ids}")
    return [PRODUCTS[i] for i in ids if i in PRODUCTS]


@app.get("/rest/v1/orders")
def get_orders(request: Request):
    order_id = _filter_value(request.query_params.get("id"), "eq")
    phone = _filter_value(request.query_params.get("customer_phone"), "eq")
    rows = []
    for order in ORDERS.values():
        if order_id and order["id"] != order_id:
            continue
        if phone and order["customer_phone"] != phone:
            continue
        row = dict(order)
        if "delivery_riders" in request.query_params.get("select", ""):
            row["delivery_riders"] = RIDERS.get(order.get("assigned_rider_id"))
        rows.append(row)
    return rows


@app.post("/rest/v1/orders", status_code=201)
async def insert_orders(request: Request):
    rows = []
    for row in await request.json():
        stored = dict(row, id=str(uuid.uuid4()), created_at=datetime.now(timezone.utc).isoformat(),
                      assigned_rider_id="rider-1", rider_assigned_at=None)
        ORDERS[stored["id"]] = stored
        logging.info(f"[DB] order inserted: {stored['id']} total={stored['total_amount']}")
        rows.append(stored)
    return rows


@app.post("/rest/v1/contact_messages", status_code=201)
async def insert_contact_messages(request: Request):
    rows = []
    for row in await request.json():
        stored = dict(row, id=str(uuid.uuid4()), created_at=datetime.now(timezone.utc).isoformat())
        CONTACT_MESSAGES[stored["id"]] = stored
        rows.append(stored)
    return rows


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8002)
