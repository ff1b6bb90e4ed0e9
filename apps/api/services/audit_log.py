from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.validators import is_valid_audit_action, is_valid_audit_table
from models import AuditLogEntry

logger = logging.getLogger(__name__)

# Keys that must never be written into an audit payload.
_REDACTED_KEYS = frozenset({"token", "password", "password_hash"})


def _bounded(changes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {k: v for k, v in (changes or {}).items() if k not in _REDACTED_KEYS}


def record_audit_entry(
    db: Session,
    *,
    table_name: str,
    action: str,
    record_id,
    user_id: Optional[UUID],
    changes: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLogEntry]:
    """
    Best-effort append-only audit logging.

    Call after the primary mutation has been committed: the entry is written
    and committed in its own step.

    Safety:
    - Never throws (does not block or roll back the primary operation).
    - Payload is filtered of secrets.
    """
    try:
        if not is_valid_audit_table(table_name):
            raise ValueError(f"invalid audit table: {table_name}")
        if not is_valid_audit_action(action):
            raise ValueError(f"invalid audit action: {action}")

        entry = AuditLogEntry(
            table_name=table_name,
            action=action,
            record_id=str(record_id),
            user_id=user_id,
            changes=_bounded(changes),
        )
        db.add(entry)
        db.commit()
        return entry
    except Exception as e:
        # Never block the primary operation on audit logging, but do emit a server log.
        db.rollback()
        logger.exception("Audit logging failed: %s", str(e))
        return None


def list_audit_entries(
    db: Session,
    *,
    table_name: Optional[str] = None,
    action: Optional[str] = None,
    limit: int,
    offset: int,
) -> Tuple[List[AuditLogEntry], int]:
    q = db.query(AuditLogEntry)
    if table_name:
        q = q.filter(AuditLogEntry.table_name == table_name)
    if action:
        q = q.filter(AuditLogEntry.action == action)
    total = q.count()
    rows = q.order_by(AuditLogEntry.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total
