"""
errors.py — Error Taxonomy of the Storefront Service

Every error that may reach a client is a ServiceError carrying the HTTP
status, an optional machine-readable code and the public message. Internal
details (store responses, stack traces) are logged where the error is raised
and never become part of the public message.
"""

from typing import List, Optional


class ServiceError(Exception):
    """Base class for errors rendered as `{error, code?}` JSON bodies."""
    status_code = 500
    code: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict:
        body = {"error": self.message}
        if self.code:
            body["code"] = self.code
        return body


# --- Client errors (never retried) ---
class OrderValidationError(ServiceError):
    """An order request violates a structural or business rule (fail-fast)."""
    status_code = 400


class RequestValidationFailed(ServiceError):
    """One or more field checks failed; all violations are reported at once."""
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, errors: List[str]):
        super().__init__(", ".join(errors))
        self.errors = errors


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class RateLimitExceeded(ServiceError):
    status_code = 429
    code = "RATE_LIMITED"


# --- Upstream / server errors (generic public message) ---
class StoreError(ServiceError):
    """The hosted database could not be reached or rejected the call."""
    status_code = 500


class CatalogUnavailableError(StoreError):
    def __init__(self, message: str = "Failed to validate products"):
        super().__init__(message)


class OrderPersistenceError(StoreError):
    def __init__(self, message: str = "Failed to create order"):
        super().__init__(message)


class ContactPersistenceError(StoreError):
    code = "DB_ERROR"

    def __init__(self, message: str = "Failed to submit message. Please try again."):
        super().__init__(message)


class NotificationError(ServiceError):
    """The SMS gateway refused or failed to deliver a message."""
    status_code = 502


class NotificationNotConfigured(ServiceError):
    status_code = 500

    def __init__(self, message: str = "SMS service not configured"):
        super().__init__(message)
