"""
Request guard: CSRF origin check, authentication, authorization.

The three checks are independent and composable. Handlers run them in this
order and the first failure aborts the request:

1. check_csrf        - state-changing methods only; no auth or store access
2. authenticate      - asks the identity provider for the session user
3. authorize*        - reads the caller's Profile and tests its role

Identity travels in an explicit RequestContext; there is no global
"current user". All checks are read-only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Tuple
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import CSRFError, ForbiddenError, UnauthorizedError
from core.permissions import Role, allowed_roles, Action, Resource
from models import Profile

logger = logging.getLogger(__name__)

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

Origin = Tuple[str, str, int]


@dataclass(frozen=True)
class RequestContext:
    """Everything the guard needs to know about one inbound request."""

    method: str
    server_origin: Optional[str] = None
    origin: Optional[str] = None
    referer: Optional[str] = None
    bearer_token: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_state_changing(self) -> bool:
        return self.method.upper() in STATE_CHANGING_METHODS


@dataclass(frozen=True)
class AuthUser:
    """Opaque authenticated-user handle issued by the identity provider."""

    id: UUID
    email: str


@dataclass(frozen=True)
class Actor:
    """An authenticated user together with the Profile that authorized them."""

    user: AuthUser
    profile: Profile

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def role(self) -> Role:
        return Role.parse(self.profile.role)


class SessionResolver(Protocol):
    def get_session_user(self, ctx: RequestContext) -> Optional[AuthUser]:
        ...


def parse_origin(url: Optional[str]) -> Optional[Origin]:
    """Normalize a URL to (scheme, host, port); None when it is not an origin."""
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
        port = parsed.port
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    scheme = parsed.scheme.lower()
    if port is None:
        port = 443 if scheme == "https" else 80
    return scheme, parsed.hostname.lower(), int(port)


def check_csrf(ctx: RequestContext, trusted_origins: Iterable[str] = ()) -> None:
    """
    Reject cross-site state-changing requests.

    The request's Origin (or, when absent, the origin of its Referer) must
    match the server's own origin or a configured trusted origin. A request
    carrying neither header is rejected.
    """
    if not ctx.is_state_changing:
        return

    declared = parse_origin(ctx.origin) if ctx.origin else parse_origin(ctx.referer)
    if declared is None:
        logger.warning(
            "CSRF check failed: missing or malformed origin",
            extra={"extra_fields": {"method": ctx.method, "client_ip": ctx.client_ip}},
        )
        raise CSRFError()

    allowed = {parse_origin(o) for o in trusted_origins}
    allowed.add(parse_origin(ctx.server_origin))
    allowed.discard(None)

    if declared not in allowed:
        logger.warning(
            "CSRF check failed: origin mismatch",
            extra={"extra_fields": {"method": ctx.method, "client_ip": ctx.client_ip, "origin": ctx.origin}},
        )
        raise CSRFError()


def authenticate(ctx: RequestContext, identity: SessionResolver) -> AuthUser:
    """Resolve the session user or fail with UNAUTHENTICATED."""
    user = identity.get_session_user(ctx)
    if user is None:
        raise UnauthorizedError()
    return user


def _normalize_roles(roles: Iterable) -> frozenset:
    # Invalid role names are a wiring bug; fail loudly instead of denying.
    try:
        return frozenset(Role.parse(r) for r in roles)
    except ValueError as e:
        raise ValueError(f"Invalid role configuration: {e}") from e


def load_active_profile(db: Session, user: AuthUser) -> Profile:
    profile = db.query(Profile).filter(Profile.id == user.id).first()
    if profile is None or not profile.is_active:
        raise ForbiddenError()
    return profile


def authorize(db: Session, user: AuthUser, roles: Iterable) -> Actor:
    """
    Re-read the caller's Profile and require its role in ``roles``.

    An empty role list means "any active profile".
    """
    allowed = _normalize_roles(roles)
    profile = load_active_profile(db, user)
    try:
        role = Role.parse(profile.role)
    except ValueError:
        raise ForbiddenError()
    if allowed and role not in allowed:
        raise ForbiddenError()
    return Actor(user=user, profile=profile)


def authorize_resource(db: Session, user: AuthUser, resource, action) -> Actor:
    """Authorize through the resource permission table."""
    roles = allowed_roles(Resource.parse(resource), Action.parse(action))
    if not roles:
        raise ForbiddenError()
    return authorize(db, user, roles)
