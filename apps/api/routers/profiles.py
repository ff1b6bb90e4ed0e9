"""
Self-service profile endpoints.
"""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import NotFoundError
from core.guard import AuthUser
from core.payload import json_body
from models import Profile
from schemas import ProfileResponse, ProfileUpsertRequest
from services import user_service

router = APIRouter(prefix="/v1/profiles", tags=["profiles"])


@router.post("", response_model=ProfileResponse)
def upsert_profile(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    body: ProfileUpsertRequest = Depends(json_body(ProfileUpsertRequest)),
):
    """Create or update the caller's own profile. Only full_name is writable."""
    profile = user_service.upsert_own_profile(db, user=user, profile_id=UUID(body.id), full_name=body.full_name)
    return ProfileResponse.model_validate(profile)


@router.get("/me", response_model=ProfileResponse)
def get_own_profile(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    profile = db.query(Profile).filter(Profile.id == user.id).first()
    if profile is None:
        raise NotFoundError("Profile")
    return ProfileResponse.model_validate(profile)
