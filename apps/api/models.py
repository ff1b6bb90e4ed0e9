from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid
from typing import Optional
from datetime import datetime, timezone


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthAccount(Base):
    """
    Credential record owned by the bundled identity provider.

    The core never reads this table directly; it only sees the provider's
    opaque user handle (id + email).
    """

    __tablename__ = "auth_accounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False, index=True)  # stored lowercased
    password_hash = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Profile(Base):
    """
    A provisioned staff account.

    id is the identity-provider subject. Created by bootstrap or invitation
    acceptance; hard-deleted only by an owner, never by themself.
    """

    __tablename__ = "profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    email = Column(Text, unique=True, nullable=False, index=True)  # stored lowercased
    full_name = Column(Text, nullable=False, default="")
    role = Column(Text, nullable=False)
    invited_by = Column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('owner', 'admin', 'officer')", name="ck_profiles_role"),
    )


class Invitation(Base):
    """
    Pending grant of a role to an email address.

    Status is derived, never stored:
    - accepted: accepted_at is set (terminal)
    - expired: now >= expires_at and not accepted (terminal)
    - pending: otherwise
    Revocation deletes the row. At most one unaccepted row per email.
    """

    __tablename__ = "invitations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, index=True)  # stored lowercased
    role = Column(Text, nullable=False)
    token = Column(Text, unique=True, nullable=False)
    invited_by = Column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'officer')", name="ck_invitations_role"),
        Index(
            "uq_invitations_unaccepted_email",
            "email",
            unique=True,
            postgresql_where=accepted_at.is_(None),
            sqlite_where=accepted_at.is_(None),
        ),
    )

    def status(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        if self.accepted_at is not None:
            return "accepted"
        if now >= ensure_utc(self.expires_at):
            return "expired"
        return "pending"

    def is_pending(self, now: Optional[datetime] = None) -> bool:
        return self.status(now) == "pending"


class AuditLogEntry(Base):
    """
    Append-only audit log.

    Non-negotiable invariants:
    - write-only from the application (no update/delete in code paths)
    - user_id has no FK so entries outlive the profile they mention
    - bounded changes payload (no secrets, no tokens)
    """

    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    table_name = Column(Text, nullable=False, index=True)
    action = Column(Text, nullable=False, index=True)  # INSERT | UPDATE | DELETE
    record_id = Column(Text, nullable=False)
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    changes = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("action IN ('INSERT', 'UPDATE', 'DELETE')", name="ck_audit_logs_action"),
    )


class HskExamSession(Base):
    __tablename__ = "hsk_exam_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    exam_date = Column(DateTime(timezone=True), nullable=False)
    level = Column(Text, nullable=True)
    location = Column(Text, nullable=True)
    available_slots = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("available_slots >= 0", name="ck_hsk_exam_sessions_slots_non_negative"),
    )


class HskRegistration(Base):
    __tablename__ = "hsk_registrations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid(as_uuid=True), ForeignKey("hsk_exam_sessions.id"), nullable=False, index=True)
    full_name = Column(Text, nullable=False)
    email = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)
    message = Column(Text, nullable=True)
    locale = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled', 'completed')",
            name="ck_hsk_registrations_status",
        ),
    )
