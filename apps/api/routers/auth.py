"""
Authentication API endpoints.

Provides:
- Login (bearer token from the identity provider)
- Current user with their staff profile, if any
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from core.auth import csrf_protect, get_current_user
from core.database import get_db
from core.exceptions import UnauthorizedError
from core.guard import AuthUser, RequestContext
from core.payload import json_body
from core.security import ACCESS_TOKEN_EXPIRE_MINUTES
from models import Profile
from schemas import CurrentUserResponse, LoginRequest, ProfileResponse, TokenResponse
from services.identity_provider import IdentityProvider, get_identity_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(
    ctx: RequestContext = Depends(csrf_protect),
    identity: IdentityProvider = Depends(get_identity_provider),
    credentials: LoginRequest = Depends(json_body(LoginRequest)),
):
    """
    Authenticate with email and password and return a bearer token.

    The same error is returned for unknown emails and wrong passwords.
    """
    user = identity.authenticate_password(credentials.email, credentials.password)
    if user is None:
        logger.warning("Failed login attempt", extra={"extra_fields": {"client_ip": ctx.client_ip}})
        raise UnauthorizedError("Invalid email or password")

    logger.info("User logged in", extra={"extra_fields": {"user_id": str(user.id)}})
    return TokenResponse(
        access_token=identity.issue_session_token(user),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=CurrentUserResponse)
def me(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    profile = db.query(Profile).filter(Profile.id == user.id).first()
    return CurrentUserResponse(
        id=user.id,
        email=user.email,
        profile=ProfileResponse.model_validate(profile) if profile else None,
    )
