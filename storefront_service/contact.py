"""
contact.py — Contact Form Submissions

Validates and stores messages from the storefront contact form. All field
violations are collected and reported together.
"""

import logging
import re
from typing import List, Optional

from .errors import ContactPersistenceError, RequestValidationFailed, StoreError
from .models import ContactMessageRequest
from .pricing import EMAIL_RE

log = logging.getLogger(__name__)

CONTACT_PHONE_RE = re.compile(r"[+]?[\d\s\-()]{7,20}")


def validate_contact_message(request: ContactMessageRequest) -> List[str]:
    errors = []
    if not request.name or len(request.name.strip()) < 2:
        errors.append("Name must be at least 2 characters")
    if not request.email or not EMAIL_RE.fullmatch(request.email):
        errors.append("Valid email address is required")
    if not request.subject or len(request.subject.strip()) < 3:
        errors.append("Subject must be at least 3 characters")
    if not request.message or len(request.message.strip()) < 10:
        errors.append("Message must be at least 10 characters")
    if request.phone and request.phone.strip() and not CONTACT_PHONE_RE.fullmatch(request.phone.strip()):
        errors.append("Invalid phone number format")
    return errors


class ContactService:
    def __init__(self, store):
        self.store = store

    def submit(self, request: ContactMessageRequest, client_id: str) -> Optional[str]:
        """
        Stores a contact message.

        Returns:
            str: Id of the stored message, or None when the honeypot field was
                filled (the bot gets a success answer, nothing is stored).

        Raises:
            RequestValidationFailed: One or more fields are invalid.
            ContactPersistenceError: The message could not be stored.
        """
        if request.honeypot:
            log.warning(f"Honeypot triggered for IP: {client_id}")
            return None

        errors = validate_contact_message(request)
        if errors:
            log.warning(f"Validation errors for IP {client_id}: {errors}")
            raise RequestValidationFailed(errors)

        phone = (request.phone or "").strip()
        try:
            message_id = self.store.insert_contact_message({
                "name": request.name.strip(),
                "email": request.email.strip().lower(),
                "phone": phone or None,
                "subject": request.subject.strip(),
                "message": request.message.strip(),
            })
        except StoreError as e:
            log.error(f"Failed to store contact message: {e}")
            raise ContactPersistenceError() from e
        log.info(f"Contact message saved successfully, ID: {message_id}")
        return message_id
