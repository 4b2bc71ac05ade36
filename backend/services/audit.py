from __future__ import annotations

import json
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from backend.models.entities import AuditLog
from backend.observability import is_sensitive_key


def _audit_payload(payload: Optional[dict[str, Any]]) -> Optional[str]:
    kept = {
        key: value
        for key, value in (payload or {}).items()
        if not is_sensitive_key(key)
    }
    if not kept:
        return None
    return json.dumps(kept, separators=(",", ":"), default=str)


def write_audit(
    session: Session,
    *,
    household_id: Optional[UUID],
    actor_user_id: Optional[UUID],
    event_type: str,
    target_type: Optional[str] = None,
    target_id: Optional[UUID] = None,
    payload: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction; it commits or rolls back with it.

    ``event_type`` is ``"<entity>.<action>"``, e.g. ``"member.role_change"``.
    """
    entity, _, action = event_type.partition(".")
    entry = AuditLog(
        household_id=household_id,
        actor_user_id=actor_user_id,
        entity=entity,
        action=action or entity,
        target_type=target_type,
        target_id=target_id,
        payload_json=_audit_payload(payload),
    )
    session.add(entry)
    return entry
