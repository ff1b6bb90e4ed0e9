from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Any, Dict

from core.sanitizers import sanitize_name, sanitize_text_input
from core.validators import (
    MAX_MESSAGE_LENGTH,
    MAX_NAME_LENGTH,
    MAX_TITLE_LENGTH,
    VALID_HSK_STATUSES,
    VALID_ROLES,
    validate_email_field,
    validate_future_date_field,
    validate_locale_field,
    validate_password_field,
    validate_phone_field,
    validate_role_field,
    validate_slots_field,
    validate_status_field,
    validate_text_field,
    validate_token_field,
    validate_uuid_field,
)
from models import ensure_utc

INVITABLE_ROLE_NAMES = ("admin", "officer")


def _clean_name(value, label: str = "Full name") -> str:
    value = validate_text_field(value, MAX_NAME_LENGTH, required=True, label=label)
    cleaned = sanitize_name(value)
    if not cleaned:
        raise ValueError(f"{label} is required")
    return cleaned


def _clean_text(value, max_length: int, label: str) -> Optional[str]:
    if value is None:
        return None
    value = validate_text_field(value, max_length, label=label)
    return sanitize_text_input(value) or None


class RequestModel(BaseModel):
    """Request bodies: unknown fields rejected, no type coercion."""
    model_config = ConfigDict(extra="forbid", strict=True)


class ResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, v):
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class LoginRequest(RequestModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        if not v or len(v) > 128:
            raise ValueError("Invalid password")
        return v


class InvitationCreateRequest(RequestModel):
    email: str
    role: str
    locale: Optional[str] = None  # language of the accept link

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return validate_email_field(v)

    @field_validator("role")
    @classmethod
    def _role(cls, v):
        return validate_role_field(v, INVITABLE_ROLE_NAMES)

    @field_validator("locale")
    @classmethod
    def _locale(cls, v):
        return validate_locale_field(v) if v is not None else None


class InvitationAcceptRequest(RequestModel):
    token: str
    password: str
    full_name: str

    @field_validator("token")
    @classmethod
    def _token(cls, v):
        return validate_token_field(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        return validate_password_field(v)

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, v):
        return _clean_name(v)


class ProfileUpsertRequest(RequestModel):
    id: str
    full_name: str

    @field_validator("id")
    @classmethod
    def _id(cls, v):
        return validate_uuid_field(v)

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, v):
        return _clean_name(v)


class UserUpdateRequest(RequestModel):
    """Admin edit of a staff profile. Email belongs to the identity provider."""
    full_name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, v):
        return _clean_name(v) if v is not None else None

    @field_validator("role")
    @classmethod
    def _role(cls, v):
        return validate_role_field(v, VALID_ROLES) if v is not None else None

    @model_validator(mode="after")
    def _not_empty(self):
        if self.full_name is None and self.role is None and self.is_active is None:
            raise ValueError("No fields to update")
        return self


class HskSessionCreateRequest(RequestModel):
    exam_date: datetime
    available_slots: int
    level: Optional[str] = None
    location: Optional[str] = None

    @field_validator("exam_date")
    @classmethod
    def _exam_date(cls, v):
        return validate_future_date_field(v)

    @field_validator("available_slots")
    @classmethod
    def _slots(cls, v):
        return validate_slots_field(v)

    @field_validator("level")
    @classmethod
    def _level(cls, v):
        return _clean_text(v, MAX_TITLE_LENGTH, "Level")

    @field_validator("location")
    @classmethod
    def _location(cls, v):
        return _clean_text(v, MAX_TITLE_LENGTH, "Location")


class HskRegistrationRequest(RequestModel):
    session_id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    message: Optional[str] = None
    locale: Optional[str] = None

    @field_validator("session_id")
    @classmethod
    def _session_id(cls, v):
        return validate_uuid_field(v)

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, v):
        return _clean_name(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return validate_email_field(v)

    @field_validator("phone")
    @classmethod
    def _phone(cls, v):
        return validate_phone_field(v) if v is not None else None

    @field_validator("message")
    @classmethod
    def _message(cls, v):
        return _clean_text(v, MAX_MESSAGE_LENGTH, "Message")

    @field_validator("locale")
    @classmethod
    def _locale(cls, v):
        return validate_locale_field(v) if v is not None else None


class HskRegistrationStatusUpdate(RequestModel):
    status: str

    @field_validator("status")
    @classmethod
    def _status(cls, v):
        return validate_status_field(v, VALID_HSK_STATUSES)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class CurrentUserResponse(ResponseModel):
    id: UUID
    email: str
    profile: Optional["ProfileResponse"] = None


class ProfileResponse(ResponseModel):
    id: UUID
    email: str
    full_name: str
    role: str
    is_active: bool
    invited_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class ProfileListResponse(BaseModel):
    data: List[ProfileResponse]
    pagination: PaginationMeta


class InvitationResponse(ResponseModel):
    id: UUID
    email: str
    role: str
    status: str
    invited_by: Optional[UUID] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime


class InvitationCreatedResponse(InvitationResponse):
    """Only the creator ever sees the token, once."""
    token: str
    accept_url: str


class InvitationPublicResponse(ResponseModel):
    """What the accept page may show to an unauthenticated visitor."""
    email: str
    role: str
    expires_at: datetime


class InvitationListResponse(BaseModel):
    data: List[InvitationResponse]
    pagination: PaginationMeta


class AuditLogResponse(ResponseModel):
    id: UUID
    table_name: str
    action: str
    record_id: str
    user_id: Optional[UUID] = None
    changes: Dict[str, Any]
    created_at: datetime


class AuditLogListResponse(BaseModel):
    data: List[AuditLogResponse]
    pagination: PaginationMeta


class HskSessionResponse(ResponseModel):
    id: UUID
    exam_date: datetime
    level: Optional[str] = None
    location: Optional[str] = None
    available_slots: int
    is_active: bool
    created_at: datetime


class HskSessionListResponse(BaseModel):
    data: List[HskSessionResponse]


class HskRegistrationResponse(ResponseModel):
    id: UUID
    session_id: UUID
    full_name: str
    email: str
    phone: Optional[str] = None
    message: Optional[str] = None
    locale: Optional[str] = None
    status: str
    created_at: datetime


class HskRegistrationListResponse(BaseModel):
    data: List[HskRegistrationResponse]
    pagination: PaginationMeta


class MessageResponse(BaseModel):
    message: str


CurrentUserResponse.model_rebuild()
