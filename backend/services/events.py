from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.db.base import ensure_utc
from backend.errors import InvalidOperation
from backend.models.entities import Event, MovementHistory
from backend.permissions import PERM_INVENTORY_READ, HouseholdContext
from backend.services.tree_store import TreeStore


def emit_event(
    session: Session,
    household_id: UUID,
    kind: str,
    message: str,
    *,
    actor_user_id: Optional[UUID] = None,
    payload: Optional[dict[str, Any]] = None,
) -> Event:
    details = json.dumps(payload or {}, separators=(",", ":"), default=str)
    event = Event(
        household_id=household_id,
        kind=kind,
        message=message,
        details=details,
        actor_user_id=actor_user_id,
    )
    session.add(event)
    return event


def record_item_movement(
    session: Session,
    household_id: UUID,
    item_id: UUID,
    from_location_id: UUID,
    to_location_id: UUID,
    *,
    moved_by_user_id: Optional[UUID] = None,
    source: str = "api.items.patch",
) -> Optional[MovementHistory]:
    if from_location_id == to_location_id:
        return None
    entry = MovementHistory(
        household_id=household_id,
        item_id=item_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        moved_by_user_id=moved_by_user_id,
        source=source,
    )
    session.add(entry)
    return entry


def parse_event_time(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidOperation("Invalid datetime filter", {"value": value}) from exc
    return ensure_utc(parsed).astimezone(timezone.utc)


def event_payload(event: Event) -> dict[str, Any]:
    if not event.details:
        return {}
    try:
        payload = json.loads(event.details)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def query_timeline(
    store: TreeStore,
    ctx: HouseholdContext,
    *,
    kind: Optional[str] = None,
    item_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Event], int]:
    """Household events, newest first, with the timeline filters applied."""
    ctx.require(PERM_INVENTORY_READ)
    filters: List[Any] = [Event.household_id == store.household_id]
    if kind:
        filters.append(Event.kind == kind)
    start = parse_event_time(date_from) if date_from else None
    end = parse_event_time(date_to) if date_to else None
    if start and end and start > end:
        raise InvalidOperation("date_from must not be after date_to")
    if start:
        filters.append(Event.ts >= start)
    if end:
        filters.append(Event.ts <= end)
    # payloads are compact JSON, so id filters match on the serialized key
    if item_id:
        store.get_item(item_id)
        filters.append(Event.details.contains(f'"item_id":"{item_id}"'))
    if location_id:
        store.get_location(location_id)
        filters.append(Event.details.contains(f'"location_id":"{location_id}"'))

    session = store.session
    total = session.execute(select(func.count()).select_from(Event).where(*filters)).scalar_one()
    rows = session.execute(
        select(Event).where(*filters).order_by(Event.ts.desc(), Event.id).limit(limit).offset(offset)
    ).scalars()
    return list(rows), total
