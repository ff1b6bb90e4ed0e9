"""
Staff profile management.

Reads and writes re-load the authoritative Profile rows on every call; nothing
about a user's role is cached between requests.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import BusinessRuleError, ConflictError, ForbiddenError, NotFoundError
from core.guard import Actor, AuthUser
from core.permissions import Role, can_manage_role
from core.sanitizers import api_error_from_store
from models import HskExamSession, Invitation, Profile
from services.audit_log import record_audit_entry
from services.identity_provider import AccountExistsError, IdentityProvider

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("full_name", "role", "is_active")


def list_profiles(
    db: Session,
    *,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    limit: int,
    offset: int,
) -> Tuple[List[Profile], int]:
    q = db.query(Profile)
    if role:
        q = q.filter(Profile.role == role)
    if is_active is not None:
        q = q.filter(Profile.is_active.is_(is_active))
    total = q.count()
    rows = q.order_by(Profile.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total


def get_profile(db: Session, profile_id: UUID) -> Profile:
    profile = db.query(Profile).filter(Profile.id == profile_id).first()
    if profile is None:
        raise NotFoundError("User")
    return profile


def update_profile(db: Session, *, actor: Actor, profile_id: UUID, changes: Dict[str, Any]) -> Profile:
    """
    Apply an admin edit to another staff profile.

    Rules:
    - role and activity changes require outranking the target, and a new role
      must also be one the actor outranks
    - nobody changes their own role or deactivates themself
    """
    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}
    target = get_profile(db, profile_id)
    is_self = target.id == actor.id

    new_role = changes.get("role")
    if new_role is not None and new_role != target.role:
        if is_self:
            raise BusinessRuleError("You cannot change your own role")
        if not can_manage_role(actor.role, target.role) or not can_manage_role(actor.role, new_role):
            raise ForbiddenError("You cannot assign this role")

    if "is_active" in changes and changes["is_active"] != target.is_active:
        if is_self:
            raise BusinessRuleError("You cannot deactivate your own account")
        if not can_manage_role(actor.role, target.role):
            raise ForbiddenError("You cannot manage this user")

    if "full_name" in changes and not is_self and not can_manage_role(actor.role, target.role):
        raise ForbiddenError("You cannot manage this user")

    before = {field: getattr(target, field) for field in changes}
    applied = {field: value for field, value in changes.items() if before[field] != value}
    if not applied:
        return target

    try:
        for field, value in applied.items():
            setattr(target, field, value)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)

    db.refresh(target)
    logger.info(
        "User updated",
        extra={"extra_fields": {"user_id": str(target.id), "fields": sorted(applied), "updated_by": str(actor.id)}},
    )
    record_audit_entry(
        db,
        table_name="profiles",
        action="UPDATE",
        record_id=target.id,
        user_id=actor.id,
        changes={field: {"from": before[field], "to": value} for field, value in applied.items()},
    )
    return target


def delete_profile(db: Session, identity: IdentityProvider, *, actor: Actor, profile_id: UUID) -> None:
    """
    Hard-delete a staff profile (owner only, enforced by the route guard).

    Back-references from other rows are cleared first; the identity-provider
    account is removed afterwards on a best-effort basis.
    """
    if profile_id == actor.id:
        raise BusinessRuleError("You cannot delete your own account")

    target = get_profile(db, profile_id)
    snapshot = {"email": target.email, "role": target.role, "full_name": target.full_name}

    try:
        db.query(Profile).filter(Profile.invited_by == profile_id).update(
            {Profile.invited_by: None}, synchronize_session=False
        )
        db.query(Invitation).filter(Invitation.invited_by == profile_id).update(
            {Invitation.invited_by: None}, synchronize_session=False
        )
        db.query(HskExamSession).filter(HskExamSession.created_by == profile_id).update(
            {HskExamSession.created_by: None}, synchronize_session=False
        )
        db.delete(target)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)

    logger.info(
        "User deleted",
        extra={"extra_fields": {"user_id": str(profile_id), "deleted_by": str(actor.id)}},
    )
    record_audit_entry(
        db,
        table_name="profiles",
        action="DELETE",
        record_id=profile_id,
        user_id=actor.id,
        changes=snapshot,
    )

    try:
        if not identity.delete_account(profile_id):
            logger.warning("No identity account to delete", extra={"extra_fields": {"user_id": str(profile_id)}})
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Identity account deletion failed")


def upsert_own_profile(db: Session, *, user: AuthUser, profile_id: UUID, full_name: str) -> Profile:
    """
    Idempotent self-service profile write.

    Only ``full_name`` is writable and only on an existing, active profile.
    Profiles are created by invitation acceptance or the owner bootstrap,
    never here, so a deleted profile cannot be brought back by its user.
    """
    if profile_id != user.id:
        raise ForbiddenError("You can only update your own profile")

    profile = db.query(Profile).filter(Profile.id == user.id).first()
    if profile is None:
        raise ForbiddenError("No staff profile for this account")
    if not profile.is_active:
        raise ForbiddenError()
    if profile.full_name == full_name:
        return profile

    previous = profile.full_name
    try:
        profile.full_name = full_name
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)
    db.refresh(profile)
    record_audit_entry(
        db,
        table_name="profiles",
        action="UPDATE",
        record_id=profile.id,
        user_id=user.id,
        changes={"full_name": {"from": previous, "to": full_name}},
    )
    return profile


def bootstrap_owner(db: Session, identity: IdentityProvider, *, email: str, password: str, full_name: str) -> Profile:
    """
    Create the first owner account and profile (ops script only).

    Owners are never created through invitations, so this is the one place an
    owner profile comes from.
    """
    email = email.strip().lower()
    if db.query(Profile.id).filter(Profile.email == email).first() is not None:
        raise ConflictError("A user with this email already exists")

    try:
        user = identity.create_account(email, password)
    except AccountExistsError:
        db.rollback()
        raise ConflictError("An account with this email already exists")

    try:
        profile = Profile(id=user.id, email=email, full_name=full_name, role=Role.OWNER.value, is_active=True)
        db.add(profile)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e, conflict_message="A user with this email already exists")

    db.refresh(profile)
    logger.info("Owner bootstrapped", extra={"extra_fields": {"user_id": str(profile.id)}})
    record_audit_entry(
        db,
        table_name="profiles",
        action="INSERT",
        record_id=profile.id,
        user_id=None,
        changes={"email": email, "role": Role.OWNER.value, "source": "bootstrap"},
    )
    return profile
