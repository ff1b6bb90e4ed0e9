"""
Staff user management endpoints.

Access follows the resource table for "users": owner/admin view and edit,
only the owner deletes, and nobody deletes themself.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
import logging

from core.auth import require_resource_permission
from core.database import get_db
from core.exceptions import ValidationError
from core.guard import Actor
from core.payload import json_body, parse_choice_param, parse_id_param
from core.validators import VALID_ROLES, parse_pagination
from schemas import MessageResponse, PaginationMeta, ProfileListResponse, ProfileResponse, UserUpdateRequest
from services import user_service
from services.identity_provider import IdentityProvider, get_identity_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])


def _parse_bool(value: Optional[str], field: str) -> Optional[bool]:
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValidationError(f"Invalid {field}. Must be true or false", field=field)


@router.get("", response_model=ProfileListResponse)
def list_users(
    role: Optional[str] = None,
    is_active: Optional[str] = Query(None),
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    actor: Actor = Depends(require_resource_permission("users", "view")),
    db: Session = Depends(get_db),
):
    role = parse_choice_param(role, VALID_ROLES, "role")
    active = _parse_bool(is_active, "is_active")
    limit, offset = parse_pagination(limit, offset)
    rows, total = user_service.list_profiles(db, role=role, is_active=active, limit=limit, offset=offset)
    return ProfileListResponse(
        data=[ProfileResponse.model_validate(row) for row in rows],
        pagination=PaginationMeta(total=total, limit=limit, offset=offset),
    )


@router.get("/{user_id}", response_model=ProfileResponse)
def get_user(
    user_id: str,
    actor: Actor = Depends(require_resource_permission("users", "view")),
    db: Session = Depends(get_db),
):
    profile = user_service.get_profile(db, parse_id_param(user_id, "user_id"))
    return ProfileResponse.model_validate(profile)


@router.patch("/{user_id}", response_model=ProfileResponse)
def update_user(
    user_id: str,
    actor: Actor = Depends(require_resource_permission("users", "edit")),
    db: Session = Depends(get_db),
    body: UserUpdateRequest = Depends(json_body(UserUpdateRequest)),
):
    profile = user_service.update_profile(
        db,
        actor=actor,
        profile_id=parse_id_param(user_id, "user_id"),
        changes=body.model_dump(exclude_none=True),
    )
    return ProfileResponse.model_validate(profile)


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    actor: Actor = Depends(require_resource_permission("users", "delete")),
    identity: IdentityProvider = Depends(get_identity_provider),
    db: Session = Depends(get_db),
):
    user_service.delete_profile(db, identity, actor=actor, profile_id=parse_id_param(user_id, "user_id"))
    return MessageResponse(message="User deleted")
