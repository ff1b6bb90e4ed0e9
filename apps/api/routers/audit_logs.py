"""
Audit log read endpoint (owner/admin).

Entries are append-only; there is no write, update or delete route.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import require_resource_permission
from core.database import get_db
from core.guard import Actor
from core.payload import parse_choice_param
from core.validators import VALID_AUDIT_ACTIONS, VALID_AUDIT_TABLES, parse_pagination
from schemas import AuditLogListResponse, AuditLogResponse, PaginationMeta
from services.audit_log import list_audit_entries

router = APIRouter(prefix="/v1/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogListResponse)
def list_audit_logs(
    table_name: Optional[str] = None,
    action: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    actor: Actor = Depends(require_resource_permission("auditLogs", "view")),
    db: Session = Depends(get_db),
):
    table_name = parse_choice_param(table_name, VALID_AUDIT_TABLES, "table_name")
    action = parse_choice_param(action, VALID_AUDIT_ACTIONS, "action")
    limit, offset = parse_pagination(limit, offset)
    rows, total = list_audit_entries(db, table_name=table_name, action=action, limit=limit, offset=offset)
    return AuditLogListResponse(
        data=[AuditLogResponse.model_validate(row) for row in rows],
        pagination=PaginationMeta(total=total, limit=limit, offset=offset),
    )
