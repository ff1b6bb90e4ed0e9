"""
Input validators shared by every endpoint that accepts untrusted input.

``is_valid_*`` helpers are pure predicates and never raise. ``validate_*``
helpers return the normalized value or raise ``ValueError`` with a message
that is safe to show to the client; pydantic field validators call them so
that a request body fails closed on the first bad field.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

from core.config import settings
from core.password_policy import validate_password

UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_REGEX = re.compile(r"^\+?[\d\s().-]{7,20}$")
TOKEN_REGEX = re.compile(r"^[A-Za-z0-9_-]+$")

SUPPORTED_LOCALES = ("en", "es", "zh")
DEFAULT_LOCALE = "es"

VALID_ROLES = ("owner", "admin", "officer")
VALID_CONSULTATION_STATUSES = ("pending", "contacted", "confirmed", "cancelled")
VALID_HSK_STATUSES = ("pending", "approved", "rejected", "cancelled", "completed")
VALID_AUDIT_ACTIONS = ("INSERT", "UPDATE", "DELETE")
# Tables this service writes audit entries for
VALID_AUDIT_TABLES = ("profiles", "invitations", "hsk_exam_sessions", "hsk_registrations")

# Size limits (characters)
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_NAME_LENGTH = 100
MAX_BIO_LENGTH = 5000
MAX_MESSAGE_LENGTH = 5000
MAX_EMAIL_LENGTH = 254
MAX_PHONE_LENGTH = 20
MAX_TEXT_LENGTH = 5000

MIN_TOKEN_LENGTH = 16
MAX_TOKEN_LENGTH = 128

MIN_SLOTS = 1
MAX_SLOTS = 1000


def is_valid_uuid(value) -> bool:
    return isinstance(value, str) and bool(UUID_REGEX.match(value))


def is_valid_email(value) -> bool:
    if not isinstance(value, str):
        return False
    value = value.strip()
    if not value or len(value) > MAX_EMAIL_LENGTH:
        return False
    return bool(EMAIL_REGEX.match(value))


def is_valid_phone(value) -> bool:
    if not isinstance(value, str):
        return False
    if len(value) > MAX_PHONE_LENGTH:
        return False
    return bool(PHONE_REGEX.match(value))


def is_valid_token(value) -> bool:
    """Opaque URL-safe token: letters, digits, '-' and '_' only."""
    if not isinstance(value, str):
        return False
    if not MIN_TOKEN_LENGTH <= len(value) <= MAX_TOKEN_LENGTH:
        return False
    return bool(TOKEN_REGEX.match(value))


def is_valid_password(value) -> bool:
    ok, _ = validate_password(value)
    return ok


def is_valid_locale(value) -> bool:
    return isinstance(value, str) and value in SUPPORTED_LOCALES


def is_valid_role(value) -> bool:
    return isinstance(value, str) and value in VALID_ROLES


def is_valid_consultation_status(value) -> bool:
    return isinstance(value, str) and value in VALID_CONSULTATION_STATUSES


def is_valid_hsk_status(value) -> bool:
    return isinstance(value, str) and value in VALID_HSK_STATUSES


def is_valid_audit_action(value) -> bool:
    return isinstance(value, str) and value in VALID_AUDIT_ACTIONS


def is_valid_audit_table(value) -> bool:
    return isinstance(value, str) and value in VALID_AUDIT_TABLES


def is_valid_text_length(value, max_length: int) -> bool:
    return isinstance(value, str) and len(value) <= max_length


def is_valid_future_date(value, now: Optional[datetime] = None) -> bool:
    """True iff value is a datetime (or ISO-8601 string) strictly after now."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return False
    if not isinstance(value, datetime):
        return False
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return value > now


def is_valid_slots(value) -> bool:
    # bool is an int subclass; True must not count as one slot
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return MIN_SLOTS <= value <= MAX_SLOTS


def parse_pagination(limit=None, offset=None) -> Tuple[int, int]:
    """
    Clamp client pagination into safe bounds.

    Missing or unparseable values fall back to defaults; out-of-range values
    are clamped rather than rejected.
    """
    default_limit = settings.PAGINATION_DEFAULT_LIMIT
    max_limit = settings.PAGINATION_MAX_LIMIT

    try:
        parsed_limit = int(limit) if limit is not None else default_limit
    except (TypeError, ValueError):
        parsed_limit = default_limit
    try:
        parsed_offset = int(offset) if offset is not None else 0
    except (TypeError, ValueError):
        parsed_offset = 0

    parsed_limit = max(1, min(parsed_limit, max_limit))
    parsed_offset = max(0, parsed_offset)
    return parsed_limit, parsed_offset


# ---------------------------------------------------------------------------
# Validation chains: normalize or raise ValueError
# ---------------------------------------------------------------------------

def validate_email_field(value) -> str:
    if not is_valid_email(value):
        raise ValueError("Invalid email address")
    return value.strip().lower()


def validate_role_field(value, allowed: Iterable[str] = VALID_ROLES) -> str:
    allowed = tuple(allowed)
    if not isinstance(value, str) or value not in allowed:
        raise ValueError(f"Invalid role. Must be one of: {', '.join(allowed)}")
    return value


def validate_locale_field(value) -> str:
    if not is_valid_locale(value):
        raise ValueError(f"Invalid locale. Must be one of: {', '.join(SUPPORTED_LOCALES)}")
    return value


def validate_uuid_field(value) -> str:
    if not is_valid_uuid(value):
        raise ValueError("Invalid ID format")
    return value.lower()


def validate_token_field(value) -> str:
    if not is_valid_token(value):
        raise ValueError("Invalid token format")
    return value


def validate_password_field(value) -> str:
    ok, errors = validate_password(value)
    if not ok:
        raise ValueError("; ".join(errors))
    return value


def validate_phone_field(value) -> str:
    if not is_valid_phone(value):
        raise ValueError("Invalid phone number")
    return value.strip()


def validate_text_field(value, max_length: int = MAX_TEXT_LENGTH, *, required: bool = False,
                        label: str = "Text") -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string")
    if not is_valid_text_length(value, max_length):
        raise ValueError(f"{label} must not exceed {max_length} characters")
    value = value.strip()
    if required and not value:
        raise ValueError(f"{label} is required")
    return value


def validate_status_field(value, valid_statuses: Iterable[str]) -> str:
    valid_statuses = tuple(valid_statuses)
    if not isinstance(value, str) or value not in valid_statuses:
        raise ValueError(f"Invalid status. Must be one of: {', '.join(valid_statuses)}")
    return value


def validate_slots_field(value) -> int:
    if not is_valid_slots(value):
        raise ValueError(f"Available slots must be between {MIN_SLOTS} and {MAX_SLOTS}")
    return value


def validate_future_date_field(value: datetime) -> datetime:
    if not is_valid_future_date(value):
        raise ValueError("Date must be in the future")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
