from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from backend.api.v1.deps.auth import get_tree_store, require_household_access
from backend.permissions import HouseholdContext
from backend.services.events import event_payload, query_timeline
from backend.services.tree_store import TreeStore

router = APIRouter()


class EventOut(BaseModel):
    id: UUID
    household_id: UUID
    kind: str
    message: str
    payload: dict[str, Any]
    actor_user_id: Optional[UUID]
    timestamp: datetime


class EventsListOut(BaseModel):
    items: list[EventOut]
    total: int
    limit: int
    offset: int


@router.get("/households/{household_id}/events", response_model=EventsListOut)
def list_events(
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
    item_id: Optional[UUID] = Query(None),
    location_id: Optional[UUID] = Query(None),
    type_filter: Optional[str] = Query(None, alias="type", max_length=64),
    date_from: Optional[str] = Query(None, max_length=64),
    date_to: Optional[str] = Query(None, max_length=64),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> EventsListOut:
    rows, total = query_timeline(
        store,
        ctx,
        kind=type_filter,
        item_id=item_id,
        location_id=location_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return EventsListOut(
        items=[
            EventOut(
                id=event.id,
                household_id=event.household_id,
                kind=event.kind,
                message=event.message,
                payload=event_payload(event),
                actor_user_id=event.actor_user_id,
                timestamp=event.ts,
            )
            for event in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )
