"""Structural validation and location mutations.

Every create, rename, reparent and delete of a location passes through
:class:`HierarchyInvariantEngine` inside the household's write transaction
before anything is written.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from backend.errors import Conflict, InvalidOperation, NotFound
from backend.models.entities import Location
from backend.observability import log_structured
from backend.permissions import (
    PERM_LOCATION_CREATE,
    PERM_LOCATION_DELETE,
    PERM_LOCATION_MOVE,
    PERM_LOCATION_UPDATE,
    HouseholdContext,
)
from backend.services.arena import LocationArena
from backend.services.events import emit_event
from backend.services.qr_codes import drop_qr_code, ensure_qr_codes
from backend.services.tree_store import TreeStore, atomic

OPTIONAL_TEXT_FIELDS = ("code", "type", "description", "image_url")


def clean_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise InvalidOperation("name cannot be empty")
    return name


def clean_optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text or None


class HierarchyInvariantEngine:
    def __init__(self, store: TreeStore) -> None:
        self.store = store

    def check_create(self, name: Optional[str], parent_id: Optional[UUID]) -> str:
        cleaned = clean_name(name)
        if parent_id is not None and self.store.find_location(parent_id) is None:
            raise NotFound("Parent location not found")
        return cleaned

    def check_rename(self, name: Optional[str]) -> str:
        return clean_name(name)

    def check_reparent(
        self, arena: LocationArena, location_id: UUID, new_parent_id: Optional[UUID]
    ) -> None:
        if location_id not in arena:
            raise NotFound("Location not found")
        if new_parent_id is None:
            return
        if new_parent_id == location_id:
            raise InvalidOperation("location cannot be its own parent")
        if new_parent_id not in arena:
            raise NotFound("Parent location not found")
        if arena.would_create_cycle(location_id, new_parent_id):
            raise InvalidOperation(
                "Invalid move: would create a cycle",
                {"location_id": str(location_id), "parent_id": str(new_parent_id)},
            )

    def check_delete(self, location_id: UUID) -> Location:
        location = self.store.get_location(location_id)
        has_children = self.store.has_children(location_id)
        has_items = self.store.has_items(location_id)
        if has_children or has_items:
            raise Conflict(
                "location has dependents",
                {"has_children": has_children, "has_items": has_items},
            )
        return location


def create_location(
    store: TreeStore,
    ctx: HouseholdContext,
    *,
    name: Optional[str],
    parent_id: Optional[UUID] = None,
    code: Optional[str] = None,
    type: Optional[str] = None,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Location:
    ctx.require(PERM_LOCATION_CREATE)
    engine = HierarchyInvariantEngine(store)
    session = store.session
    with atomic(session):
        store.lock()
        cleaned = engine.check_create(name, parent_id)
        location = Location(
            household_id=store.household_id,
            parent_id=parent_id,
            name=cleaned,
            code=clean_optional_text(code),
            type=clean_optional_text(type),
            description=clean_optional_text(description),
            image_url=clean_optional_text(image_url),
        )
        session.add(location)
        session.flush()
        location.path_cache = store.arena().render_path(location.id)
        ensure_qr_codes(session, store.household_id, [location.id])
        emit_event(
            session,
            store.household_id,
            "location.created",
            "Location created",
            actor_user_id=ctx.user_id,
            payload={
                "location_id": str(location.id),
                "name": location.name,
                "parent_id": str(parent_id) if parent_id else None,
            },
        )
    session.refresh(location)
    return location


def update_location(
    store: TreeStore,
    ctx: HouseholdContext,
    location_id: UUID,
    changes: Dict[str, Any],
) -> Location:
    """Apply a partial update; a ``parent_id`` key reparents through the move executor."""
    from backend.services.move_executor import apply_move

    ctx.require(PERM_LOCATION_UPDATE)
    if "parent_id" in changes:
        ctx.require(PERM_LOCATION_MOVE)
    if not changes:
        raise InvalidOperation("No valid fields provided")

    engine = HierarchyInvariantEngine(store)
    session = store.session
    with atomic(session):
        store.lock()
        location = store.get_location(location_id)
        changed_fields: list[str] = []
        if "name" in changes:
            name = engine.check_rename(changes["name"])
            if name != location.name:
                location.name = name
                changed_fields.append("name")
        for field_name in OPTIONAL_TEXT_FIELDS:
            if field_name in changes:
                value = clean_optional_text(changes[field_name])
                if value != getattr(location, field_name):
                    setattr(location, field_name, value)
                    changed_fields.append(field_name)

        moved = False
        if "parent_id" in changes and changes["parent_id"] != location.parent_id:
            result = apply_move(store, ctx, location_id, changes["parent_id"], stale_as_conflict=False)
            moved = result.moved
            if moved:
                changed_fields.append("parent_id")
        if "name" in changed_fields and not moved:
            session.flush()
            store.refresh_paths(store.arena(), location.id)

        if changed_fields:
            emit_event(
                session,
                store.household_id,
                "location.updated",
                "Location updated",
                actor_user_id=ctx.user_id,
                payload={"location_id": str(location.id), "fields_changed": changed_fields},
            )
    session.refresh(location)
    return location


def delete_location(store: TreeStore, ctx: HouseholdContext, location_id: UUID) -> None:
    ctx.require(PERM_LOCATION_DELETE)
    engine = HierarchyInvariantEngine(store)
    session = store.session
    with atomic(session):
        store.lock()
        location = engine.check_delete(location_id)
        drop_qr_code(session, location_id)
        session.delete(location)
        emit_event(
            session,
            store.household_id,
            "location.deleted",
            "Location deleted",
            actor_user_id=ctx.user_id,
            payload={"location_id": str(location_id), "name": location.name},
        )
    log_structured(
        logging.INFO,
        "location_deleted",
        household_id=str(store.household_id),
        location_id=str(location_id),
    )
