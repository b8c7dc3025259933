"""
main.py — FastAPI Entry Point for the Storefront Service

This module provides the REST API of the storefront backend functions.

Responsibilities:
    • Accept checkout requests and create server-priced orders
    • Send order confirmation and delivery proximity SMS
    • Accept contact form submissions and public order tracking lookups
    • Throttle the cost-incurring endpoints per client IP
    • Answer CORS pre-flight requests and render every error as `{error, code?}`
    • Start and stop the rate limit sweeper with the application

Collaborators (store, SMS gateway, event publisher, limiters, notifier) are
created at startup unless they were passed to `create_app`, which is how the
tests run the API without any network access.
"""

from typing import Dict

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .clients import OrderEventPublisher, SupabaseStoreClient, TwilioSmsClient
from .config import (
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_ORIGINS,
    ORDER_EVENTS_ENABLED,
    RATE_LIMIT_SWEEP_SECONDS,
    RATE_LIMITS,
)
from .contact import ContactService
from .errors import NotFoundError, RateLimitExceeded, ServiceError
from .eta import calculate_eta, is_near_destination
from .logging_config import get_logger, setup_logging
from .models import ContactMessageRequest, EtaRequest, OrderRequest, OrderSmsRequest, TrackingRequest
from .notifications import DeliveryNotifier, OrderSmsService
from .rate_limit import RateLimiter, RateLimitSweeper, build_rate_limiters, client_identity
from .tracking import TrackingService
from .workflow import OrderIntakeService, notify_order_created, summarize

log = get_logger(__name__)

# Road distance (km) at which the rider counts as arrived.
ARRIVAL_THRESHOLD_KM = 0.05

CORS_HEADERS = {
    "Access-Control-Allow-Origin": ",".join(CORS_ALLOW_ORIGINS) or "*",
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


def rate_limited(policy_name: str):
    """
    Builds a dependency that throttles the endpoint with the named policy.

    The dependency returns the client identity so handlers can log with it.
    """
    def dependency(request: Request) -> str:
        client_id = client_identity(request.headers)
        limiter: RateLimiter = request.app.state.rate_limiters[policy_name]
        if not limiter.check(client_id):
            log.warning(f"Rate limit exceeded for IP: {client_id} ({policy_name})")
            raise RateLimitExceeded(limiter.message)
        return client_id

    return dependency


def create_app(store=None, sms_client: TwilioSmsClient = None, publisher: OrderEventPublisher = None,
               rate_limiters: Dict[str, RateLimiter] = None, notifier: DeliveryNotifier = None,
               sweep_interval: float = RATE_LIMIT_SWEEP_SECONDS) -> FastAPI:
    """
    Creates the FastAPI application.

    Args:
        store: Hosted database client; defaults to SupabaseStoreClient.
        sms_client (TwilioSmsClient): SMS gateway client.
        publisher (OrderEventPublisher): Order event publisher; created only when
            ORDER_EVENTS_ENABLED is set.
        rate_limiters (Dict[str, RateLimiter]): Limiter per policy name.
        notifier (DeliveryNotifier): Delivery proximity notification state.
        sweep_interval (float): Seconds between rate limit sweeps.
    """
    app = FastAPI(title="Chitraboli Storefront Service")

    @app.on_event("startup")
    def on_startup():
        """
        Wires the collaborators and starts the rate limit sweeper thread.
        The sweeper runs as a daemon and is stopped on shutdown.
        """
        log.info("Storefront service starting...")
        state = app.state
        state.store = store if store is not None else SupabaseStoreClient()
        state.sms_client = sms_client if sms_client is not None else TwilioSmsClient()
        state.publisher = publisher
        if state.publisher is None and ORDER_EVENTS_ENABLED:
            state.publisher = OrderEventPublisher()
        state.rate_limiters = rate_limiters if rate_limiters is not None else build_rate_limiters(RATE_LIMITS)
        state.notifier = notifier if notifier is not None else DeliveryNotifier(state.sms_client)

        state.order_service = OrderIntakeService(state.store)
        state.order_sms_service = OrderSmsService(state.store, state.sms_client)
        state.contact_service = ContactService(state.store)
        state.tracking_service = TrackingService(state.store)

        sweepables = list(state.rate_limiters.values()) + [state.notifier]
        state.sweeper = RateLimitSweeper(sweepables, interval_seconds=sweep_interval)
        state.sweeper.start()

    @app.on_event("shutdown")
    def on_shutdown():
        log.info("Storefront service shutting down...")
        state = app.state
        state.sweeper.stop()
        for limiter in state.rate_limiters.values():
            limiter.store.clear()
        state.notifier.reset()
        if state.publisher is not None:
            state.publisher.close()
        # Only close what this app created.
        if store is None:
            state.store.close()
        if sms_client is None:
            state.sms_client.close()

    # --- CORS ---
    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    # --- Error rendering ---
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def invalid_body_handler(request: Request, exc: RequestValidationError):
        log.warning(f"Invalid request body on {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log.critical(f"Unexpected error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "An unexpected error occurred"},
                            headers=CORS_HEADERS)

    # --- Order intake ---
    @app.post("/v1/orders")
    def create_order(order: OrderRequest, background_tasks: BackgroundTasks, request: Request):
        """
        Validates, prices and persists a checkout request.

        Prices, names and the total always come from the catalog. After the
        order is stored, an `orders.created` event is published in the
        background for the notification workers.

        Returns:
            dict: `{success: true, order: {id, total_amount, items, status}}`.
        """
        state = request.app.state
        created = state.order_service.create_order(order)
        background_tasks.add_task(notify_order_created, state.publisher, created)
        return {"success": True, "order": summarize(created).model_dump()}

    # --- Notifications ---
    @app.post("/v1/notifications/order-sms")
    def send_order_sms(body: OrderSmsRequest, request: Request,
                       client_id: str = Depends(rate_limited("order_sms"))):
        """Sends the confirmation SMS of a persisted order to its customer."""
        message_id = request.app.state.order_sms_service.send_confirmation(body.order_id)
        return {"success": True, "message_id": message_id}

    @app.post("/v1/deliveries/{order_id}/eta")
    def delivery_eta(order_id: str, body: EtaRequest, request: Request,
                     client_id: str = Depends(rate_limited("delivery_eta"))):
        """
        Estimates the rider's arrival and notifies the customer when the rider
        is nearby or has arrived (each at most once per order).

        The SMS recipient and greeting come from the stored order; an unknown
        order id is answered with 404 and nothing is sent.
        """
        state = request.app.state
        order = state.store.get_order(order_id)
        if order is None:
            log.warning(f"ETA update for unknown order {order_id} from IP: {client_id}")
            raise NotFoundError("Order not found")

        notifier: DeliveryNotifier = state.notifier
        eta = calculate_eta(body.rider_lat, body.rider_lng, body.dest_lat, body.dest_lng, body.vehicle_type)
        near = is_near_destination(eta.distance_km, body.threshold_km)

        nearby = arrived = None
        if near:
            nearby = notifier.send_nearby(order.id, order.customer_phone, order.customer_name, body.rider_name,
                                          eta.distance_km, eta.duration_minutes, body.threshold_km)
        if is_near_destination(eta.distance_km, ARRIVAL_THRESHOLD_KM):
            arrived = notifier.send_arrived(order.id, order.customer_phone, order.customer_name, body.rider_name)

        return {
            "order_id": order_id,
            "distance_km": eta.distance_km,
            "duration_minutes": eta.duration_minutes,
            "formatted_eta": eta.formatted_eta,
            "arrival_time": eta.arrival_time.isoformat(),
            "near_destination": near,
            "notifications": {
                "nearby": vars(nearby) if nearby else None,
                "arrived": vars(arrived) if arrived else None,
            },
        }

    # --- Contact form ---
    @app.post("/v1/contact")
    def submit_contact_message(body: ContactMessageRequest, request: Request,
                               client_id: str = Depends(rate_limited("contact"))):
        log.info(f"Contact form submission from IP: {client_id}")
        message_id = request.app.state.contact_service.submit(body, client_id)
        if message_id is None:
            return {"success": True}
        return {"success": True, "id": message_id}

    # --- Order tracking ---
    @app.post("/v1/orders/track")
    def track_order(body: TrackingRequest, request: Request,
                    client_id: str = Depends(rate_limited("track_order"))):
        log.info(f"Order tracking request from IP: {client_id}")
        tracked = request.app.state.tracking_service.track(body, client_id)
        return {"success": True, "order": tracked.model_dump(mode="json")}

    # --- Health check ---
    @app.get("/health")
    def health_check():
        """
        Simple health check endpoint for monitoring systems and container orchestrators.
        """
        return {"status": "ok"}

    return app


setup_logging()
app = create_app()
