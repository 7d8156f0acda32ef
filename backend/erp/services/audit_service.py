# Overview: Append-only audit trail for administrative mutations.

from __future__ import annotations

import json
from typing import Any, Optional

from ..extensions import db
from ..models import AuditLog
"""
Audit trail invariants

- Append-only: no updates or deletes of existing rows.
- Written inside the same DB transaction as the change it records, so a
  rolled-back mutation leaves no audit row behind.
- No business logic here.
"""


def append_audit_event(
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    user_id: int | None = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details, default=str, sort_keys=True) if details else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_audit_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    limit = min(max(limit, 1), 500)
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
