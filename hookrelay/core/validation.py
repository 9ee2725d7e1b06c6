"""
Input Validation Utilities

Validation for event submissions and subscription URLs. Validators return
``(is_valid, error)`` tuples; callers decide which exception to raise.
"""
import re
from typing import Any
from urllib.parse import urlparse


class ValidationPatterns:
    """Regex patterns for validation"""

    # Dotted lowercase identifiers: "job.created", "candidate.status_changed"
    EVENT_TYPE = re.compile(r"^[a-z0-9_]+(?:\.[a-z0-9_]+)*$")

    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class EventValidator:
    """Validation of event submissions before ingestion"""

    MAX_TYPE_LENGTH = 100
    MAX_NAME_LENGTH = 255
    MAX_SOURCE_LENGTH = 100
    MAX_IDEMPOTENCY_KEY_LENGTH = 255

    @staticmethod
    def validate_type(event_type: str, allowed: set[str] | None = None) -> tuple[bool, str | None]:
        if not event_type or not isinstance(event_type, str):
            return False, "Event type is required"
        if len(event_type) > EventValidator.MAX_TYPE_LENGTH:
            return False, f"Event type too long (max {EventValidator.MAX_TYPE_LENGTH} characters)"
        if not ValidationPatterns.EVENT_TYPE.match(event_type):
            return False, "Event type must be a dotted lowercase identifier (e.g. job.created)"
        if allowed and event_type not in allowed:
            return False, f"Unsupported event type: {event_type}"
        return True, None

    @staticmethod
    def validate_text(value: str, label: str, max_length: int) -> tuple[bool, str | None]:
        if not value or not isinstance(value, str) or not value.strip():
            return False, f"{label} is required"
        if len(value) > max_length:
            return False, f"{label} too long (max {max_length} characters)"
        if ValidationPatterns.CONTROL_CHARS.search(value):
            return False, f"{label} contains control characters"
        return True, None

    @staticmethod
    def validate_payload(payload: Any) -> tuple[bool, str | None]:
        if not isinstance(payload, dict):
            return False, "Payload must be a JSON object"
        return True, None

    @staticmethod
    def validate_idempotency_key(key: str | None) -> tuple[bool, str | None]:
        if key is None:
            return True, None
        if not isinstance(key, str) or not key.strip():
            return False, "Idempotency key must be a non-empty string"
        if len(key) > EventValidator.MAX_IDEMPOTENCY_KEY_LENGTH:
            return False, (
                f"Idempotency key too long (max {EventValidator.MAX_IDEMPOTENCY_KEY_LENGTH} characters)"
            )
        return True, None


class UrlValidator:
    """Subscriber URL validation"""

    MAX_LENGTH = 2048

    @staticmethod
    def validate(url: str) -> tuple[bool, str | None]:
        if not url:
            return False, "URL is required"
        if len(url) > UrlValidator.MAX_LENGTH:
            return False, f"URL too long (max {UrlValidator.MAX_LENGTH} characters)"
        try:
            parsed = urlparse(url)
        except ValueError:
            return False, "Invalid URL"
        if parsed.scheme not in ("http", "https"):
            return False, "URL scheme must be http or https"
        if not parsed.netloc:
            return False, "URL must include a host"
        return True, None
