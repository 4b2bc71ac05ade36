from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select

from backend.errors import InvalidOperation, NotFound
from backend.models.entities import Item, MovementHistory
from backend.permissions import (
    PERM_ITEM_CREATE,
    PERM_ITEM_DELETE,
    PERM_ITEM_UPDATE,
    HouseholdContext,
)
from backend.services.events import emit_event, record_item_movement
from backend.services.hierarchy import clean_name, clean_optional_text
from backend.services.tree_store import TreeStore, atomic


def normalize_keywords(values: Optional[Iterable[str]]) -> List[str]:
    """Trim, drop blanks and de-duplicate case-insensitively, keeping first-seen order."""
    keywords: List[str] = []
    seen: set[str] = set()
    for value in values or ():
        keyword = (value or "").strip()
        if not keyword:
            continue
        key = keyword.lower()
        if key in seen:
            continue
        seen.add(key)
        keywords.append(keyword)
    return keywords


def clean_quantity(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidOperation("quantity must be a non-negative integer or null", {"quantity": value})
    return value


def _require_location(store: TreeStore, location_id: Optional[UUID]) -> UUID:
    if location_id is None:
        raise InvalidOperation("location_id is required")
    if store.find_location(location_id) is None:
        raise NotFound("Location not found")
    return location_id


def create_item(
    store: TreeStore,
    ctx: HouseholdContext,
    *,
    name: Optional[str],
    location_id: Optional[UUID],
    description: Optional[str] = None,
    keywords: Optional[Iterable[str]] = None,
    image_url: Optional[str] = None,
    quantity: Optional[int] = None,
) -> Item:
    ctx.require(PERM_ITEM_CREATE)
    session = store.session
    with atomic(session):
        store.lock()
        item = Item(
            household_id=store.household_id,
            name=clean_name(name),
            location_id=_require_location(store, location_id),
            description=clean_optional_text(description),
            keywords=normalize_keywords(keywords),
            image_url=clean_optional_text(image_url),
            quantity=clean_quantity(quantity),
        )
        session.add(item)
        session.flush()
        emit_event(
            session,
            store.household_id,
            "item.created",
            "Item created",
            actor_user_id=ctx.user_id,
            payload={"item_id": str(item.id), "name": item.name, "location_id": str(item.location_id)},
        )
    session.refresh(item)
    return item


def update_item(
    store: TreeStore,
    ctx: HouseholdContext,
    item_id: UUID,
    changes: Dict[str, Any],
) -> Item:
    ctx.require(PERM_ITEM_UPDATE)
    if not changes:
        raise InvalidOperation("No valid fields provided")
    session = store.session
    with atomic(session):
        store.lock()
        item = store.get_item(item_id)
        previous_location = item.location_id
        changed_fields: list[str] = []

        if "name" in changes:
            name = clean_name(changes["name"])
            if name != item.name:
                item.name = name
                changed_fields.append("name")
        for field_name in ("description", "image_url"):
            if field_name in changes:
                value = clean_optional_text(changes[field_name])
                if value != getattr(item, field_name):
                    setattr(item, field_name, value)
                    changed_fields.append(field_name)
        if "keywords" in changes:
            keywords = normalize_keywords(changes["keywords"])
            if keywords != list(item.keywords or []):
                item.keywords = keywords
                changed_fields.append("keywords")
        if "quantity" in changes:
            quantity = clean_quantity(changes["quantity"])
            if quantity != item.quantity:
                item.quantity = quantity
                changed_fields.append("quantity")
        if "location_id" in changes:
            target = _require_location(store, changes["location_id"])
            if target != previous_location:
                item.location_id = target
                changed_fields.append("location_id")

        session.flush()
        if "location_id" in changed_fields:
            record_item_movement(
                session,
                store.household_id,
                item.id,
                previous_location,
                item.location_id,
                moved_by_user_id=ctx.user_id,
            )
            emit_event(
                session,
                store.household_id,
                "item.moved",
                "Item moved",
                actor_user_id=ctx.user_id,
                payload={
                    "item_id": str(item.id),
                    "from_location_id": str(previous_location),
                    "to_location_id": str(item.location_id),
                },
            )
        other_fields = [name for name in changed_fields if name != "location_id"]
        if other_fields:
            emit_event(
                session,
                store.household_id,
                "item.updated",
                "Item updated",
                actor_user_id=ctx.user_id,
                payload={"item_id": str(item.id), "fields_changed": other_fields},
            )
    session.refresh(item)
    return item


def delete_item(store: TreeStore, ctx: HouseholdContext, item_id: UUID) -> None:
    ctx.require(PERM_ITEM_DELETE)
    session = store.session
    with atomic(session):
        store.lock()
        item = store.get_item(item_id)
        name = item.name
        session.delete(item)
        emit_event(
            session,
            store.household_id,
            "item.deleted",
            "Item deleted",
            actor_user_id=ctx.user_id,
            payload={"item_id": str(item_id), "name": name},
        )


def item_movements(store: TreeStore, item_id: UUID, limit: int = 50) -> List[MovementHistory]:
    store.get_item(item_id)
    return list(
        store.session.execute(
            select(MovementHistory)
            .where(
                MovementHistory.household_id == store.household_id,
                MovementHistory.item_id == item_id,
            )
            .order_by(MovementHistory.created_at.desc(), MovementHistory.id)
            .limit(limit)
        ).scalars()
    )
