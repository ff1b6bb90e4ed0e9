"""
Logging setup and request logging.

JSON lines in production (or LOG_FORMAT=json), plain text otherwise. Context
goes in ``extra={"extra_fields": {...}}``. Secrets never reach a log line:
invitation tokens are masked in request paths and credential-like keys are
dropped from ``extra_fields`` by the formatter.
"""
import json
import logging
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Request

from core.config import settings

REDACTED = "***"

# Keys whose values are credentials (passwords, invitation tokens, bearer tokens)
SENSITIVE_KEYS = frozenset({"password", "token", "access_token", "authorization", "cookie", "secret"})

# Paths that carry an invitation token as a segment
_TOKEN_PATH = re.compile(r"^(/v1/invitations/token/)[^/]+")

request_logger = logging.getLogger("cultural_center.requests")


def redact_path(path: str) -> str:
    return _TOKEN_PATH.sub(r"\1" + REDACTED, path)


def scrub_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (REDACTED if k.lower() in SENSITIVE_KEYS else v) for k, v in fields.items()}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; extra_fields are merged after scrubbing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "environment": settings.ENVIRONMENT,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(scrub_fields(extra_fields))

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure the root logger once at startup.

    Uses JSON format in production, text format in development and tests.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # Requests are logged by log_requests below
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return root_logger


async def log_requests(request: Request, call_next):
    """HTTP middleware: one line per request with status and latency."""
    start_time = time.perf_counter()
    path = redact_path(request.url.path)
    fields = {
        "method": request.method,
        "path": path,
        "client_ip": request.client.host if request.client else None,
    }

    try:
        response = await call_next(request)
    except Exception as e:
        request_logger.error(
            f"Request failed: {request.method} {path}",
            exc_info=True,
            extra={"extra_fields": {**fields, "error": type(e).__name__}},
        )
        raise

    elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
    request_logger.info(
        f"Response: {request.method} {path} - {response.status_code}",
        extra={"extra_fields": {**fields, "status_code": response.status_code, "process_time_ms": elapsed_ms}},
    )
    response.headers["X-Process-Time"] = str(elapsed_ms / 1000)
    return response
