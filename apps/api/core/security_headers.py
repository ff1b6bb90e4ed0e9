"""
Security Headers Middleware

The API only serves JSON, so the policy is deny-everything: no framing, no
sniffing, no caching of authenticated responses, and a CSP that allows no
resource loads at all.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from core.config import settings

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), geolocation=(), microphone=(), payment=(), usb=()",
    "Cross-Origin-Opener-Policy": "same-origin",
}

PRODUCTION_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in BASE_HEADERS.items():
            response.headers[name] = value

        # Tokens and profile data must not end up in shared caches
        if "authorization" in request.headers:
            response.headers["Cache-Control"] = "no-store"

        if not settings.DEBUG:
            for name, value in PRODUCTION_HEADERS.items():
                response.headers[name] = value

        return response
