"""
Authentication and authorization dependencies.

FastAPI wiring for core.guard. Dependencies resolve in declaration order, so
every guarded dependency takes ``csrf_protect`` as its first parameter: a
cross-site request is rejected before a DB session is even opened.

Usage:
    @router.delete("/{invitation_id}")
    def revoke(actor: Actor = Depends(require_roles("owner", "admin")), ...):
        ...
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.guard import (
    Actor,
    AuthUser,
    RequestContext,
    authenticate,
    authorize,
    authorize_resource,
    check_csrf,
    _normalize_roles,
)
from core.permissions import Action, Resource
from services.identity_provider import IdentityProvider, get_identity_provider


def _bearer_token(request: Request):
    header = request.headers.get("authorization") or ""
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def build_request_context(request: Request) -> RequestContext:
    url = request.url
    server_origin = f"{url.scheme}://{url.netloc}" if url.netloc else None
    return RequestContext(
        method=request.method,
        server_origin=server_origin,
        origin=request.headers.get("origin"),
        referer=request.headers.get("referer"),
        bearer_token=_bearer_token(request),
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def csrf_protect(request: Request) -> RequestContext:
    """First gate for every handler. Touches neither auth state nor the store."""
    ctx = build_request_context(request)
    check_csrf(ctx, settings.trusted_origins)
    return ctx


def get_current_user(
    ctx: RequestContext = Depends(csrf_protect),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> AuthUser:
    """Authenticated user, profile not required."""
    return authenticate(ctx, identity)


def require_roles(*roles: str):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/admin-only")
        def admin_endpoint(actor: Actor = Depends(require_roles("owner", "admin"))):
            ...
    """
    allowed = _normalize_roles(roles)

    def role_checker(
        ctx: RequestContext = Depends(csrf_protect),
        identity: IdentityProvider = Depends(get_identity_provider),
        db: Session = Depends(get_db),
    ) -> Actor:
        user = authenticate(ctx, identity)
        return authorize(db, user, allowed)

    return role_checker


def require_resource_permission(resource: str, action: str):
    """
    Dependency factory for the resource permission table.

    Resource and action names are parsed here, so a typo fails at import time.
    """
    res = Resource.parse(resource)
    act = Action.parse(action)

    def permission_checker(
        ctx: RequestContext = Depends(csrf_protect),
        identity: IdentityProvider = Depends(get_identity_provider),
        db: Session = Depends(get_db),
    ) -> Actor:
        user = authenticate(ctx, identity)
        return authorize_resource(db, user, res, act)

    return permission_checker


require_admin = require_roles("owner", "admin")
