"""
Request body guard.

Every endpoint body is an explicit pydantic model (unknown fields forbidden,
strict types). ``json_body(Model)`` is a FastAPI dependency that:

1. rejects bodies at or above MAX_PAYLOAD_BYTES (Content-Length first, then
   the bytes actually received) with 413, before any parsing;
2. parses and validates the JSON in one step;
3. reports the first failing field as a 422 ValidationError.

Declare it after the guard dependencies so CSRF/auth failures win.
"""
from __future__ import annotations

from typing import Optional, Type, TypeVar
from uuid import UUID

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.config import settings
from core.exceptions import PayloadTooLargeError, ValidationError
from core.validators import validate_uuid_field

ModelT = TypeVar("ModelT", bound=BaseModel)

_VALUE_ERROR_PREFIX = "Value error, "


def enforce_payload_size(size: int, limit: Optional[int] = None) -> None:
    limit = limit or settings.MAX_PAYLOAD_BYTES
    if size >= limit:
        raise PayloadTooLargeError(limit)


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts)


def validation_error_from_pydantic(exc: PydanticValidationError) -> ValidationError:
    errors = exc.errors()
    if not errors:
        return ValidationError("Invalid request body")
    first = errors[0]
    field = _field_name(first.get("loc", ()))
    kind = first.get("type", "")
    msg = first.get("msg", "Invalid value")

    if kind == "json_invalid":
        return ValidationError("Invalid JSON")
    if kind == "model_type" or (kind == "model_attributes_type"):
        return ValidationError("Request body must be a JSON object")
    if kind == "extra_forbidden":
        return ValidationError(f"Unknown field: {field}", field=field or None)
    if kind == "missing":
        return ValidationError(f"Missing required field: {field}", field=field or None)
    if msg.startswith(_VALUE_ERROR_PREFIX):
        msg = msg[len(_VALUE_ERROR_PREFIX):]
    return ValidationError(f"{field}: {msg}" if field else msg, field=field or None)


def parse_body(raw: bytes, model: Type[ModelT]) -> ModelT:
    enforce_payload_size(len(raw))
    if not raw.strip():
        raise ValidationError("Request body is required")
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise validation_error_from_pydantic(exc) from None


async def read_body_with_limit(request: Request, limit: Optional[int] = None) -> bytes:
    """Consume the request stream, stopping as soon as the ceiling is reached."""
    limit = limit or settings.MAX_PAYLOAD_BYTES
    total = 0
    buffer = bytearray()
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        enforce_payload_size(total, limit)
        buffer.extend(chunk)
    return bytes(buffer)


def json_body(model: Type[ModelT]):
    """Dependency factory: size-checked, strictly validated request body."""

    async def dependency(request: Request) -> ModelT:
        declared = request.headers.get("content-length")
        if declared:
            try:
                enforce_payload_size(int(declared))
            except ValueError:
                raise ValidationError("Invalid Content-Length header")
        raw = await read_body_with_limit(request)
        return parse_body(raw, model)

    dependency.__name__ = f"json_body_{model.__name__}"
    return dependency


def parse_id_param(value: str, field: str = "id") -> UUID:
    """Path ids are plain strings so the guard runs before they are checked."""
    try:
        return UUID(validate_uuid_field(value))
    except ValueError as e:
        raise ValidationError(str(e), field=field) from None


def parse_choice_param(value: Optional[str], choices, field: str) -> Optional[str]:
    """Optional query filter restricted to a closed set of values."""
    if value is None or value == "":
        return None
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(f"Invalid {field}. Must be one of: {', '.join(choices)}", field=field)
    return value
