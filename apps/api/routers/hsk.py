"""
HSK exam session endpoints.

Public:
- list active sessions
- register for a session (CSRF-checked, no session required)

Staff (resource "hsk"):
- create sessions, list registrations, change registration status
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.auth import csrf_protect, require_resource_permission
from core.database import get_db
from core.guard import Actor, RequestContext
from core.payload import json_body, parse_id_param
from core.validators import parse_pagination
from schemas import (
    HskRegistrationListResponse,
    HskRegistrationRequest,
    HskRegistrationResponse,
    HskRegistrationStatusUpdate,
    HskSessionCreateRequest,
    HskSessionListResponse,
    HskSessionResponse,
    PaginationMeta,
)
from services import hsk_service

router = APIRouter(prefix="/v1/hsk", tags=["hsk"])


@router.get("/sessions", response_model=HskSessionListResponse)
def list_sessions(db: Session = Depends(get_db)):
    sessions = hsk_service.list_sessions(db)
    return HskSessionListResponse(data=[HskSessionResponse.model_validate(s) for s in sessions])


@router.post("/sessions", response_model=HskSessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    actor: Actor = Depends(require_resource_permission("hsk", "create")),
    db: Session = Depends(get_db),
    body: HskSessionCreateRequest = Depends(json_body(HskSessionCreateRequest)),
):
    session = hsk_service.create_session(
        db,
        actor=actor,
        exam_date=body.exam_date,
        available_slots=body.available_slots,
        level=body.level,
        location=body.location,
    )
    return HskSessionResponse.model_validate(session)


@router.post("/registrations", response_model=HskRegistrationResponse, status_code=status.HTTP_201_CREATED)
def register(
    ctx: RequestContext = Depends(csrf_protect),
    db: Session = Depends(get_db),
    body: HskRegistrationRequest = Depends(json_body(HskRegistrationRequest)),
):
    """Takes one slot atomically; 409 when the session is full."""
    registration = hsk_service.register_for_session(
        db,
        session_id=UUID(body.session_id),
        full_name=body.full_name,
        email=body.email,
        phone=body.phone,
        message=body.message,
        locale=body.locale,
    )
    return HskRegistrationResponse.model_validate(registration)


@router.get("/registrations", response_model=HskRegistrationListResponse)
def list_registrations(
    session_id: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    actor: Actor = Depends(require_resource_permission("hsk", "view")),
    db: Session = Depends(get_db),
):
    session_uuid = parse_id_param(session_id, "session_id") if session_id else None
    limit, offset = parse_pagination(limit, offset)
    rows, total = hsk_service.list_registrations(db, session_id=session_uuid, limit=limit, offset=offset)
    return HskRegistrationListResponse(
        data=[HskRegistrationResponse.model_validate(r) for r in rows],
        pagination=PaginationMeta(total=total, limit=limit, offset=offset),
    )


@router.patch("/registrations/{registration_id}", response_model=HskRegistrationResponse)
def update_registration_status(
    registration_id: str,
    actor: Actor = Depends(require_resource_permission("hsk", "edit")),
    db: Session = Depends(get_db),
    body: HskRegistrationStatusUpdate = Depends(json_body(HskRegistrationStatusUpdate)),
):
    registration = hsk_service.update_registration_status(
        db,
        actor=actor,
        registration_id=parse_id_param(registration_id, "registration_id"),
        status=body.status,
    )
    return HskRegistrationResponse.model_validate(registration)
