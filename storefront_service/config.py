"""
config.py — Runtime Configuration for the Storefront Service

All settings are read once from environment variables at import time,
with defaults suitable for local development against the mock services.

Groups:
    • Hosted database (REST API of the storefront backend)
    • SMS gateway (Twilio)
    • Message broker (RabbitMQ) for order events
    • Rate limiting policies per endpoint
    • CORS and logging
"""

import os
from dataclasses import dataclass

# --- Hosted database ---
SUPABASE_URL = os.environ.get("SUPABASE_URL", "http://localhost:8002")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "service-role-dev-key")
STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", "5.0"))

# --- SMS gateway ---
TWILIO_API_URL = os.environ.get("TWILIO_API_URL", "https://api.twilio.com")
TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER = os.environ.get("TWILIO_PHONE_NUMBER", "")

# --- Message broker ---
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "storefront")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "storefront")
ORDER_EVENTS_QUEUE = os.environ.get("ORDER_EVENTS_QUEUE", "orders.created")
ORDER_EVENTS_ENABLED = os.environ.get("ORDER_EVENTS_ENABLED", "false").lower() in ("1", "true", "yes")

# --- HTTP surface ---
CORS_ALLOW_ORIGINS = [o.strip() for o in os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

# --- Logging ---
LOG_FILE = os.environ.get("LOG_FILE", "storefront_service.log")

# --- Rate limiting ---
RATE_LIMIT_SWEEP_SECONDS = float(os.environ.get("RATE_LIMIT_SWEEP_SECONDS", "60"))

# --- Delivery notifications ---
# How long the sent-notification state of an order is kept after its last SMS.
DELIVERY_NOTIFICATION_RETENTION_SECONDS = float(os.environ.get("DELIVERY_NOTIFICATION_RETENTION_SECONDS",
                                                               str(24 * 60 * 60)))


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    Throttling policy for one endpoint.

    Attributes:
        limit (int): Maximum number of requests allowed inside one window.
        window_seconds (float): Length of the fixed window.
        message (str): Error text returned to a throttled client.
    """
    limit: int
    window_seconds: float
    message: str = "Rate limit exceeded. Please try again later."


def _policy(name: str, default: RateLimitPolicy) -> RateLimitPolicy:
    """
    Applies an optional override of the form RATE_LIMIT_<NAME>=<limit>/<seconds>.

    A malformed override raises ValueError at startup instead of silently
    falling back to the default.
    """
    raw = os.environ.get(f"RATE_LIMIT_{name.upper()}")
    if not raw:
        return default
    limit, _, seconds = raw.partition("/")
    return RateLimitPolicy(limit=int(limit), window_seconds=float(seconds), message=default.message)


RATE_LIMITS = {
    "order_sms": _policy("order_sms", RateLimitPolicy(10, 60)),
    "contact": _policy("contact", RateLimitPolicy(
        3, 5 * 60, "Too many submissions. Please wait a few minutes before trying again.")),
    "track_order": _policy("track_order", RateLimitPolicy(
        5, 5 * 60, "Too many tracking attempts. Please wait a few minutes before trying again.")),
    # Every rider position update may text the customer.
    "delivery_eta": _policy("delivery_eta", RateLimitPolicy(12, 60)),
    # Reserved for the chat and speech proxies.
    "ai_chat": _policy("ai_chat", RateLimitPolicy(30, 60)),
    "tts": _policy("tts", RateLimitPolicy(20, 60)),
}
