"""
HSK exam sessions and public registrations.

Slot accounting is a single conditional UPDATE (decrement with a floor of
zero) in the same transaction as the registration insert: concurrent
registrations can never oversell a session.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, NotFoundError
from core.guard import Actor
from core.sanitizers import api_error_from_store
from models import HskExamSession, HskRegistration
from services.audit_log import record_audit_entry

logger = logging.getLogger(__name__)


def create_session(
    db: Session,
    *,
    actor: Actor,
    exam_date: datetime,
    available_slots: int,
    level: Optional[str] = None,
    location: Optional[str] = None,
) -> HskExamSession:
    session = HskExamSession(
        exam_date=exam_date,
        available_slots=available_slots,
        level=level or None,
        location=location or None,
        created_by=actor.id,
        is_active=True,
    )
    try:
        db.add(session)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)

    db.refresh(session)
    record_audit_entry(
        db,
        table_name="hsk_exam_sessions",
        action="INSERT",
        record_id=session.id,
        user_id=actor.id,
        changes={"exam_date": exam_date.isoformat(), "available_slots": available_slots},
    )
    return session


def list_sessions(db: Session) -> List[HskExamSession]:
    """Active sessions, soonest first."""
    return (
        db.query(HskExamSession)
        .filter(HskExamSession.is_active.is_(True))
        .order_by(HskExamSession.exam_date.asc())
        .all()
    )


def register_for_session(
    db: Session,
    *,
    session_id: UUID,
    full_name: str,
    email: str,
    phone: Optional[str] = None,
    message: Optional[str] = None,
    locale: Optional[str] = None,
) -> HskRegistration:
    taken = (
        db.query(HskExamSession)
        .filter(
            HskExamSession.id == session_id,
            HskExamSession.is_active.is_(True),
            HskExamSession.available_slots > 0,
        )
        .update(
            {HskExamSession.available_slots: HskExamSession.available_slots - 1},
            synchronize_session=False,
        )
    )
    if taken != 1:
        db.rollback()
        exists = (
            db.query(HskExamSession.id)
            .filter(HskExamSession.id == session_id, HskExamSession.is_active.is_(True))
            .first()
        )
        if exists is None:
            raise NotFoundError("Exam session")
        raise ConflictError("No slots available")

    registration = HskRegistration(
        session_id=session_id,
        full_name=full_name,
        email=email,
        phone=phone,
        message=message,
        locale=locale,
        status="pending",
    )
    try:
        db.add(registration)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)

    db.refresh(registration)
    logger.info(
        "HSK registration created",
        extra={"extra_fields": {"registration_id": str(registration.id), "session_id": str(session_id)}},
    )
    record_audit_entry(
        db,
        table_name="hsk_registrations",
        action="INSERT",
        record_id=registration.id,
        user_id=None,
        changes={"session_id": str(session_id)},
    )
    return registration


def list_registrations(
    db: Session,
    *,
    session_id: Optional[UUID] = None,
    limit: int,
    offset: int,
) -> Tuple[List[HskRegistration], int]:
    q = db.query(HskRegistration)
    if session_id:
        q = q.filter(HskRegistration.session_id == session_id)
    total = q.count()
    rows = q.order_by(HskRegistration.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total


def update_registration_status(db: Session, *, actor: Actor, registration_id: UUID, status: str) -> HskRegistration:
    registration = db.query(HskRegistration).filter(HskRegistration.id == registration_id).first()
    if registration is None:
        raise NotFoundError("Registration")
    previous = registration.status
    if previous == status:
        return registration

    try:
        registration.status = status
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise api_error_from_store(e)

    db.refresh(registration)
    record_audit_entry(
        db,
        table_name="hsk_registrations",
        action="UPDATE",
        record_id=registration.id,
        user_id=actor.id,
        changes={"status": {"from": previous, "to": status}},
    )
    return registration
