"""
Invitation lifecycle service.

Invitations are the only way a staff account gets provisioned after bootstrap:
- pending  -> accepted  (acceptance, exactly once)
- pending  -> expired   (derived from expires_at, never stored)
- pending  -> revoked   (row deleted)

Accepted and expired invitations are inert: no lookup or acceptance path ever
treats them as valid again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ProfileProvisioningError,
)
from core.guard import Actor
from core.permissions import can_invite_role
from core.sanitizers import api_error_from_store
from core.security import generate_invitation_token
from core.validators import DEFAULT_LOCALE
from models import Invitation, Profile, ensure_utc
from services.audit_log import record_audit_entry
from services.email_service import email_service
from services.identity_provider import AccountExistsError, IdentityProvider

logger = logging.getLogger(__name__)

INVITATION_STATUSES = ("pending", "accepted", "expired")

# One message for wrong, expired and consumed tokens alike.
_NOT_FOUND = "Invitation"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_accept_url(token: str, locale: Optional[str] = None) -> str:
    base = settings.APP_BASE_URL.rstrip("/")
    return f"{base}/{locale or DEFAULT_LOCALE}/login/accept-invitation?{urlencode({'token': token})}"


def _pending_for_email(db: Session, email: str, now: datetime) -> Optional[Invitation]:
    return (
        db.query(Invitation)
        .filter(
            Invitation.email == email,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at > now,
        )
        .first()
    )


def create_invitation(
    db: Session,
    *,
    actor: Actor,
    email: str,
    role: str,
) -> Invitation:
    """
    Persist a new pending invitation.

    The caller schedules delivery after this returns; a delivery failure never
    undoes the invitation.
    """
    if not can_invite_role(actor.role, role):
        raise ForbiddenError("You cannot invite users with this role")

    norm = normalize_email(email)
    now = _now()

    if db.query(Profile.id).filter(Profile.email == norm).first() is not None:
        raise ConflictError("A user with this email already exists")
    if _pending_for_email(db, norm, now) is not None:
        raise ConflictError("An active invitation already exists for this email")

    try:
        # Expired leftovers would collide with the one-unaccepted-per-email index.
        db.query(Invitation).filter(
            Invitation.email == norm,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at <= now,
        ).delete(synchronize_session=False)

        invitation = Invitation(
            email=norm,
            role=role,
            token=generate_invitation_token(),
            invited_by=actor.id,
            expires_at=now + timedelta(minutes=settings.INVITATION_TTL_MINUTES),
        )
        db.add(invitation)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e, conflict_message="An active invitation already exists for this email")

    db.refresh(invitation)
    logger.info(
        "Invitation created",
        extra={"extra_fields": {"invitation_id": str(invitation.id), "role": role, "invited_by": str(actor.id)}},
    )
    record_audit_entry(
        db,
        table_name="invitations",
        action="INSERT",
        record_id=invitation.id,
        user_id=actor.id,
        changes={"email": norm, "role": role, "expires_at": invitation.expires_at.isoformat()},
    )
    return invitation


def deliver_invitation(email: str, token: str, role: str, expires_at: datetime, locale: Optional[str] = None) -> bool:
    """
    Send the invitation link. Runs as a background task after the response.

    Never raises: the invitation is already committed and can be resent.
    """
    try:
        sent = email_service.send_invitation(
            to_email=email,
            accept_url=build_accept_url(token, locale),
            role=role,
            expires_at=ensure_utc(expires_at),
        )
    except Exception:
        logger.exception("Invitation delivery failed")
        return False
    if not sent:
        logger.warning("Invitation email not sent", extra={"extra_fields": {"role": role}})
    return sent


def get_pending_invitation_by_token(db: Session, token: str, now: Optional[datetime] = None) -> Invitation:
    now = now or _now()
    invitation = (
        db.query(Invitation)
        .filter(
            Invitation.token == token,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at > now,
        )
        .first()
    )
    if invitation is None:
        raise NotFoundError(_NOT_FOUND)
    return invitation


def get_pending_invitation(db: Session, invitation_id: UUID, now: Optional[datetime] = None) -> Invitation:
    now = now or _now()
    invitation = db.query(Invitation).filter(Invitation.id == invitation_id).first()
    if invitation is None or not invitation.is_pending(now):
        raise NotFoundError(_NOT_FOUND)
    return invitation


def _discard_account(identity: IdentityProvider, db: Session, user_id: UUID) -> None:
    try:
        identity.delete_account(user_id)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Could not remove account after failed profile provisioning")


def accept_invitation(
    db: Session,
    identity: IdentityProvider,
    *,
    token: str,
    password: str,
    full_name: str,
) -> Profile:
    """
    Consume a pending invitation and provision the account and its Profile.

    The claim is a single conditional UPDATE; of two concurrent acceptances
    exactly one sees rowcount 1. Claim, account and Profile commit together.
    """
    now = _now()
    invitation = get_pending_invitation_by_token(db, token, now)

    if db.query(Profile.id).filter(Profile.email == invitation.email).first() is not None:
        raise ConflictError("A user with this email already exists")

    claimed = (
        db.query(Invitation)
        .filter(
            Invitation.id == invitation.id,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at > now,
        )
        .update({Invitation.accepted_at: now}, synchronize_session=False)
    )
    if claimed != 1:
        db.rollback()
        raise NotFoundError(_NOT_FOUND)

    try:
        user = identity.create_account(invitation.email, password)
    except AccountExistsError:
        # An account left behind by an earlier failed acceptance of this same
        # pending invitation is reused only when the caller proves its password.
        user = identity.authenticate_password(invitation.email, password)
        if user is None:
            db.rollback()
            raise ConflictError("An account with this email already exists")
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e, conflict_message="An account with this email already exists")

    try:
        profile = Profile(
            id=user.id,
            email=invitation.email,
            full_name=full_name,
            role=invitation.role,
            invited_by=invitation.invited_by,
            is_active=True,
        )
        db.add(profile)
        db.query(Invitation).filter(Invitation.id == invitation.id).update(
            {Invitation.accepted_by: user.id}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Profile provisioning failed",
            extra={"extra_fields": {"invitation_id": str(invitation.id), "user_id": str(user.id)}},
        )
        _discard_account(identity, db, user.id)
        raise ProfileProvisioningError()

    db.refresh(profile)
    logger.info(
        "Invitation accepted",
        extra={"extra_fields": {"invitation_id": str(invitation.id), "user_id": str(user.id)}},
    )
    record_audit_entry(
        db,
        table_name="invitations",
        action="UPDATE",
        record_id=invitation.id,
        user_id=user.id,
        changes={"accepted_at": now.isoformat(), "accepted_by": str(user.id)},
    )
    record_audit_entry(
        db,
        table_name="profiles",
        action="INSERT",
        record_id=profile.id,
        user_id=user.id,
        changes={"email": profile.email, "role": profile.role, "invited_by": str(profile.invited_by)},
    )
    return profile


def revoke_invitation(db: Session, *, actor: Actor, invitation_id: UUID) -> None:
    """
    Delete an unaccepted invitation.

    Accepted invitations are reported as not found: revocation never touches
    the account that was provisioned from them.
    """
    invitation = db.query(Invitation).filter(Invitation.id == invitation_id).first()
    if invitation is None or invitation.accepted_at is not None:
        raise NotFoundError(_NOT_FOUND)
    if not can_invite_role(actor.role, invitation.role):
        raise ForbiddenError("You cannot revoke this invitation")

    email, role = invitation.email, invitation.role
    try:
        db.delete(invitation)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)

    logger.info(
        "Invitation revoked",
        extra={"extra_fields": {"invitation_id": str(invitation_id), "revoked_by": str(actor.id)}},
    )
    record_audit_entry(
        db,
        table_name="invitations",
        action="DELETE",
        record_id=invitation_id,
        user_id=actor.id,
        changes={"email": email, "role": role},
    )


def resend_invitation(db: Session, *, actor: Actor, invitation_id: UUID) -> Invitation:
    """Look up a pending invitation so its delivery can be scheduled again."""
    invitation = get_pending_invitation(db, invitation_id)
    if not can_invite_role(actor.role, invitation.role):
        raise ForbiddenError("You cannot resend this invitation")
    logger.info(
        "Invitation resend requested",
        extra={"extra_fields": {"invitation_id": str(invitation.id), "requested_by": str(actor.id)}},
    )
    return invitation


def list_invitations(
    db: Session,
    *,
    status: Optional[str] = None,
    limit: int,
    offset: int,
) -> Tuple[List[Invitation], int]:
    now = _now()
    q = db.query(Invitation)
    if status == "accepted":
        q = q.filter(Invitation.accepted_at.isnot(None))
    elif status == "pending":
        q = q.filter(Invitation.accepted_at.is_(None), Invitation.expires_at > now)
    elif status == "expired":
        q = q.filter(Invitation.accepted_at.is_(None), Invitation.expires_at <= now)
    total = q.count()
    rows = q.order_by(Invitation.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total
