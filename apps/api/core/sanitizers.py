"""
Sanitization for free text and for store errors.

Free text:
- Script/style blocks are dropped with their content, every remaining tag is
  stripped by bleach (no tag whitelist), entities are decoded back to plain
  characters, and dangerous URL schemes are removed.
- The pass repeats until the output stops changing, so sanitizing an already
  sanitized string is a no-op.
- Only flat string fields go through here. Structured rich-text documents are
  stored as-is and rendered through a constrained renderer downstream.

Store errors:
- Raw driver messages never reach the client. Known categories map to a short
  actionable message; everything else becomes a generic one.
"""
from __future__ import annotations

import html
import logging
import re
from typing import Optional

import bleach
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

from core.exceptions import (
    APIException,
    ConflictError,
    ForbiddenError,
    InternalError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_SCRIPT_BLOCK = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]*)", re.IGNORECASE)
_DANGEROUS_SCHEME = re.compile(r"(javascript|vbscript)\s*:|data\s*:\s*text/html", re.IGNORECASE)

_MAX_PASSES = 10

GENERIC_ERROR_MESSAGE = "An error occurred. Please try again."
DUPLICATE_MESSAGE = "This record already exists"
FOREIGN_KEY_MESSAGE = "Referenced record does not exist"
CHECK_MESSAGE = "Invalid data"
NOT_NULL_MESSAGE = "Missing required field"
PERMISSION_MESSAGE = "Not allowed"


def _sanitize_once(text: str) -> str:
    text = _SCRIPT_BLOCK.sub("", text)
    text = bleach.clean(text, tags=[], attributes={}, protocols=[], strip=True, strip_comments=True)
    # bleach escapes &, < and > in plain text; store the characters themselves
    text = html.unescape(text)
    text = _EVENT_HANDLER.sub("", text)
    text = _DANGEROUS_SCHEME.sub("", text)
    return text.strip()


def sanitize_text_input(text: Optional[str]) -> str:
    """Neutralize markup in a free-text field before it is stored."""
    if not text:
        return ""
    previous = None
    current = text
    for _ in range(_MAX_PASSES):
        if current == previous:
            break
        previous = current
        current = _sanitize_once(current)
    return current


def sanitize_email(email: str) -> str:
    return email.strip().lower()


def sanitize_name(name: str) -> str:
    return " ".join(sanitize_text_input(name).split())


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

def _error_category(error: BaseException) -> Optional[str]:
    message = str(getattr(error, "orig", None) or error).lower()
    if "duplicate key" in message or "unique constraint" in message or "already exists" in message:
        return "duplicate"
    if "foreign key" in message:
        return "foreign_key"
    if "check constraint" in message:
        return "check"
    if "not null" in message or "null value" in message:
        return "not_null"
    if "permission denied" in message or "row-level security" in message or "policy" in message:
        return "permission"
    return None


_CATEGORY_MESSAGES = {
    "duplicate": DUPLICATE_MESSAGE,
    "foreign_key": FOREIGN_KEY_MESSAGE,
    "check": CHECK_MESSAGE,
    "not_null": NOT_NULL_MESSAGE,
    "permission": PERMISSION_MESSAGE,
}


def sanitize_error(error: Optional[BaseException]) -> str:
    """Map a store-layer failure to a message that is safe to return."""
    if error is None:
        return GENERIC_ERROR_MESSAGE
    if isinstance(error, APIException):
        return str(error.detail)
    category = _error_category(error) if isinstance(error, (SQLAlchemyError, DBAPIError)) else None
    return _CATEGORY_MESSAGES.get(category, GENERIC_ERROR_MESSAGE)


def api_error_from_store(error: BaseException, *, conflict_message: Optional[str] = None) -> APIException:
    """
    Convert a store exception into the API error the client should see.

    The original exception is logged server-side only.
    """
    if isinstance(error, APIException):
        return error

    category = _error_category(error) if isinstance(error, SQLAlchemyError) else None
    logger.warning(
        "Store operation failed",
        extra={"extra_fields": {"error_type": type(error).__name__, "category": category}},
    )
    if category == "duplicate":
        return ConflictError(conflict_message or DUPLICATE_MESSAGE)
    if category == "foreign_key":
        return ValidationError(FOREIGN_KEY_MESSAGE)
    if category == "check":
        return ValidationError(CHECK_MESSAGE)
    if category == "not_null":
        return ValidationError(NOT_NULL_MESSAGE)
    if category == "permission":
        return ForbiddenError(PERMISSION_MESSAGE)
    if isinstance(error, IntegrityError):
        return ValidationError(CHECK_MESSAGE)
    return InternalError(GENERIC_ERROR_MESSAGE)
