"""
Invitation API endpoints.

Staff accounts are provisioned only through here:
- owner/admin create, list, resend and revoke invitations
- the invitee looks the invitation up by token and accepts it (no session)
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session
import logging

from core.auth import csrf_protect, require_admin
from core.database import get_db
from core.exceptions import NotFoundError, ValidationError
from core.guard import Actor, RequestContext
from core.payload import json_body, parse_choice_param, parse_id_param
from core.validators import is_valid_token, parse_pagination, validate_locale_field
from models import Invitation
from schemas import (
    InvitationAcceptRequest,
    InvitationCreateRequest,
    InvitationCreatedResponse,
    InvitationListResponse,
    InvitationPublicResponse,
    InvitationResponse,
    MessageResponse,
    PaginationMeta,
    ProfileResponse,
)
from services import invitation_service
from services.identity_provider import IdentityProvider, get_identity_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/invitations", tags=["invitations"])


def _to_response(invitation: Invitation, now: Optional[datetime] = None) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status(now),
        invited_by=invitation.invited_by,
        expires_at=invitation.expires_at,
        accepted_at=invitation.accepted_at,
        created_at=invitation.created_at,
    )


@router.post("", response_model=InvitationCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_invitation(
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    body: InvitationCreateRequest = Depends(json_body(InvitationCreateRequest)),
):
    """
    Invite an email address to a staff role.

    Owner may invite admin or officer; admin may invite officer only.
    The email is sent after the response; a delivery failure leaves the
    invitation valid (it can be resent).
    """
    invitation = invitation_service.create_invitation(db, actor=actor, email=body.email, role=body.role)
    background_tasks.add_task(
        invitation_service.deliver_invitation,
        invitation.email,
        invitation.token,
        invitation.role,
        invitation.expires_at,
        body.locale,
    )
    return InvitationCreatedResponse(
        **_to_response(invitation).model_dump(),
        token=invitation.token,
        accept_url=invitation_service.build_accept_url(invitation.token, body.locale),
    )


@router.get("", response_model=InvitationListResponse)
def list_invitations(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    status_filter = parse_choice_param(status_filter, invitation_service.INVITATION_STATUSES, "status")
    limit, offset = parse_pagination(limit, offset)
    rows, total = invitation_service.list_invitations(db, status=status_filter, limit=limit, offset=offset)
    now = datetime.now(timezone.utc)
    return InvitationListResponse(
        data=[_to_response(row, now) for row in rows],
        pagination=PaginationMeta(total=total, limit=limit, offset=offset),
    )


@router.get("/token/{token}", response_model=InvitationPublicResponse)
def get_invitation_by_token(token: str, db: Session = Depends(get_db)):
    """Public lookup for the accept page. Wrong, expired and used tokens all 404."""
    if not is_valid_token(token):
        raise NotFoundError("Invitation")
    invitation = invitation_service.get_pending_invitation_by_token(db, token)
    return InvitationPublicResponse.model_validate(invitation)


@router.post("/accept", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
def accept_invitation(
    ctx: RequestContext = Depends(csrf_protect),
    identity: IdentityProvider = Depends(get_identity_provider),
    db: Session = Depends(get_db),
    body: InvitationAcceptRequest = Depends(json_body(InvitationAcceptRequest)),
):
    profile = invitation_service.accept_invitation(
        db,
        identity,
        token=body.token,
        password=body.password,
        full_name=body.full_name,
    )
    return ProfileResponse.model_validate(profile)


@router.post("/{invitation_id}/resend", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
def resend_invitation(
    invitation_id: str,
    background_tasks: BackgroundTasks,
    locale: Optional[str] = None,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    invitation_uuid = parse_id_param(invitation_id, "invitation_id")
    if locale is not None:
        try:
            locale = validate_locale_field(locale)
        except ValueError as e:
            raise ValidationError(str(e), field="locale")

    invitation = invitation_service.resend_invitation(db, actor=actor, invitation_id=invitation_uuid)
    background_tasks.add_task(
        invitation_service.deliver_invitation,
        invitation.email,
        invitation.token,
        invitation.role,
        invitation.expires_at,
        locale,
    )
    return MessageResponse(message="Invitation will be resent")


@router.delete("/{invitation_id}", response_model=MessageResponse)
def revoke_invitation(
    invitation_id: str,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    invitation_uuid = parse_id_param(invitation_id, "invitation_id")
    invitation_service.revoke_invitation(db, actor=actor, invitation_id=invitation_uuid)
    return MessageResponse(message="Invitation revoked")
