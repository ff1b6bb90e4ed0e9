"""
Identity provider collaborator.

The core depends only on the IdentityProvider protocol: resolve the session
user, create/delete an account, check a password, issue a session token.
LocalIdentityProvider is the bundled implementation: bcrypt hashes in the
auth_accounts table and HS256 bearer tokens.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol
from uuid import UUID

from fastapi import Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.guard import AuthUser, RequestContext
from core.security import create_access_token, decode_access_token, get_password_hash, verify_password
from models import AuthAccount

logger = logging.getLogger(__name__)


class AccountExistsError(Exception):
    """The provider already holds an account for this email."""


class IdentityProvider(Protocol):
    def get_session_user(self, ctx: RequestContext) -> Optional[AuthUser]:
        ...

    def create_account(self, email: str, password: str) -> AuthUser:
        ...

    def delete_account(self, user_id: UUID) -> bool:
        ...

    def authenticate_password(self, email: str, password: str) -> Optional[AuthUser]:
        ...

    def issue_session_token(self, user: AuthUser) -> str:
        ...


class LocalIdentityProvider:
    """Accounts live in the same database; writes join the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db

    def get_session_user(self, ctx: RequestContext) -> Optional[AuthUser]:
        if not ctx.bearer_token:
            return None
        payload = decode_access_token(ctx.bearer_token)
        if not payload:
            return None
        subject = payload.get("sub")
        if not subject:
            return None
        try:
            user_id = UUID(str(subject))
        except ValueError:
            return None
        account = self.db.query(AuthAccount).filter(AuthAccount.id == user_id).first()
        if account is None:
            return None
        return AuthUser(id=account.id, email=account.email)

    def create_account(self, email: str, password: str) -> AuthUser:
        email = email.strip().lower()
        existing = self.db.query(AuthAccount.id).filter(AuthAccount.email == email).first()
        if existing is not None:
            raise AccountExistsError(email)
        account = AuthAccount(email=email, password_hash=get_password_hash(password))
        self.db.add(account)
        self.db.flush()  # ensures account.id
        return AuthUser(id=account.id, email=account.email)

    def delete_account(self, user_id: UUID) -> bool:
        deleted = self.db.query(AuthAccount).filter(AuthAccount.id == user_id).delete(synchronize_session=False)
        return bool(deleted)

    def authenticate_password(self, email: str, password: str) -> Optional[AuthUser]:
        account = self.db.query(AuthAccount).filter(AuthAccount.email == email.strip().lower()).first()
        if account is None or not verify_password(password, account.password_hash):
            return None
        return AuthUser(id=account.id, email=account.email)

    def issue_session_token(self, user: AuthUser) -> str:
        return create_access_token({"sub": str(user.id), "email": user.email})


def get_identity_provider(db: Session = Depends(get_db)) -> IdentityProvider:
    """FastAPI dependency; tests override it with a fake provider."""
    return LocalIdentityProvider(db)
