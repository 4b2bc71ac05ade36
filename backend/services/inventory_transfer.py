"""Household inventory export and import.

An export is a flat list of locations and items. Importing one either
replaces the household's tree wholesale, keeping the ids from the payload,
or merges it in under freshly generated ids (``remap_ids``).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select

from backend.errors import Conflict, InvalidOperation
from backend.models.entities import Item, Location, LocationQRCode, MovePreview
from backend.observability import log_structured
from backend.permissions import PERM_INVENTORY_IMPORT, PERM_INVENTORY_READ, HouseholdContext
from backend.services.arena import LocationArena
from backend.services.events import emit_event
from backend.services.hierarchy import clean_name, clean_optional_text
from backend.services.items import clean_quantity, normalize_keywords
from backend.services.qr_codes import ensure_qr_codes
from backend.services.tree_store import TreeStore, atomic

EXPORT_VERSION = 1

MODE_REPLACE = "replace"
MODE_MERGE_REMAP = "merge-remap"


@dataclass
class LocationRecord:
    id: UUID
    name: str
    parent_id: Optional[UUID] = None
    code: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ItemRecord:
    id: UUID
    name: str
    location_id: UUID
    description: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    quantity: Optional[int] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class InventorySnapshot:
    locations: List[Location]
    items: List[Item]


@dataclass(frozen=True)
class ImportResult:
    mode: str
    locations: int
    items: int
    imported: bool


def export_inventory(store: TreeStore, ctx: HouseholdContext) -> InventorySnapshot:
    ctx.require(PERM_INVENTORY_READ)
    session = store.session
    locations = session.execute(
        select(Location)
        .where(Location.household_id == store.household_id)
        .order_by(Location.created_at, Location.id)
    ).scalars()
    items = session.execute(
        select(Item).where(Item.household_id == store.household_id).order_by(Item.created_at, Item.id)
    ).scalars()
    return InventorySnapshot(locations=list(locations), items=list(items))


def import_order(locations: Sequence[LocationRecord]) -> List[LocationRecord]:
    """Parents before children; raises when the payload's hierarchy is not a forest."""
    by_id = {record.id: record for record in locations}
    arena = LocationArena.from_rows((record.id, record.name, record.parent_id) for record in locations)
    ordered: List[LocationRecord] = []
    for root in arena.roots():
        ordered.extend(by_id[location_id] for location_id in arena.descendants(root.id))
    if len(ordered) != len(locations):
        raise InvalidOperation("Location hierarchy contains a cycle or invalid parent references")
    return ordered


def check_payload(locations: Sequence[LocationRecord], items: Sequence[ItemRecord]) -> List[LocationRecord]:
    """Validate an import payload and return its locations in insert order."""
    location_ids = {record.id for record in locations}
    if len(location_ids) != len(locations):
        raise Conflict("Duplicate location ids in import payload")
    if len({record.id for record in items}) != len(items):
        raise Conflict("Duplicate item ids in import payload")

    for record in locations:
        clean_name(record.name)
        if record.parent_id is not None and record.parent_id not in location_ids:
            raise InvalidOperation(
                f"Location parent_id {record.parent_id} does not exist in payload",
                {"location_id": str(record.id)},
            )
    for record in items:
        clean_name(record.name)
        clean_quantity(record.quantity)
        if record.location_id not in location_ids:
            raise InvalidOperation(
                f"Item location_id {record.location_id} does not exist in payload",
                {"item_id": str(record.id)},
            )
    return import_order(locations)


def _remap(
    locations: Sequence[LocationRecord], items: Sequence[ItemRecord]
) -> tuple[List[LocationRecord], List[ItemRecord]]:
    new_ids: Dict[UUID, UUID] = {record.id: uuid.uuid4() for record in locations}
    remapped_locations = [
        LocationRecord(
            **{
                **vars(record),
                "id": new_ids[record.id],
                "parent_id": new_ids[record.parent_id] if record.parent_id else None,
            }
        )
        for record in locations
    ]
    remapped_items = [
        ItemRecord(**{**vars(record), "id": uuid.uuid4(), "location_id": new_ids[record.location_id]})
        for record in items
    ]
    return remapped_locations, remapped_items


def _claimed_elsewhere(store: TreeStore, model: Any, ids: Sequence[UUID]) -> bool:
    if not ids:
        return False
    return (
        store.session.execute(
            select(model.id).where(model.id.in_(ids), model.household_id != store.household_id).limit(1)
        ).first()
        is not None
    )


def _clear_tree(store: TreeStore) -> None:
    session = store.session
    for model in (MovePreview, LocationQRCode, Item, Location):
        session.execute(
            delete(model)
            .where(model.household_id == store.household_id)
            .execution_options(synchronize_session=False)
        )
    # the bulk deletes bypassed the identity map; drop the stale instances
    # so rows re-imported under the same ids do not collide with them
    session.expunge_all()


def _timestamps(record: Any) -> Dict[str, datetime]:
    stamps = {}
    if record.created_at is not None:
        stamps["created_at"] = record.created_at
    if record.updated_at is not None:
        stamps["updated_at"] = record.updated_at
    return stamps


def _insert(store: TreeStore, locations: Sequence[LocationRecord], items: Sequence[ItemRecord]) -> None:
    session = store.session
    arena = LocationArena.from_rows((record.id, clean_name(record.name), record.parent_id) for record in locations)
    for record in locations:
        session.add(
            Location(
                id=record.id,
                household_id=store.household_id,
                parent_id=record.parent_id,
                name=clean_name(record.name),
                path_cache=arena.render_path(record.id),
                code=clean_optional_text(record.code),
                type=clean_optional_text(record.type),
                description=clean_optional_text(record.description),
                image_url=clean_optional_text(record.image_url),
                **_timestamps(record),
            )
        )
        # parents must exist before their children reference them
        session.flush()
    for record in items:
        session.add(
            Item(
                id=record.id,
                household_id=store.household_id,
                location_id=record.location_id,
                name=clean_name(record.name),
                description=clean_optional_text(record.description),
                keywords=normalize_keywords(record.keywords),
                quantity=clean_quantity(record.quantity),
                image_url=clean_optional_text(record.image_url),
                **_timestamps(record),
            )
        )
    session.flush()
    ensure_qr_codes(session, store.household_id, [record.id for record in locations])


def import_inventory(
    store: TreeStore,
    ctx: HouseholdContext,
    locations: Sequence[LocationRecord],
    items: Sequence[ItemRecord],
    *,
    validate_only: bool = False,
    remap_ids: bool = False,
) -> ImportResult:
    mode = MODE_MERGE_REMAP if remap_ids else MODE_REPLACE
    if validate_only:
        ctx.require(PERM_INVENTORY_READ)
        check_payload(locations, items)
        return ImportResult(
            mode="validate-remap" if remap_ids else "validate-replace",
            locations=len(locations),
            items=len(items),
            imported=False,
        )

    ctx.require(PERM_INVENTORY_IMPORT)
    ordered = check_payload(locations, items)
    session = store.session
    with atomic(session):
        store.lock()
        if remap_ids:
            ordered, items = _remap(ordered, items)
        else:
            if _claimed_elsewhere(store, Location, [record.id for record in ordered]) or _claimed_elsewhere(
                store, Item, [record.id for record in items]
            ):
                raise Conflict("Import ids already belong to another household; retry with remap_ids")
            _clear_tree(store)
        _insert(store, ordered, items)
        emit_event(
            session,
            store.household_id,
            "inventory.imported",
            "Inventory imported",
            actor_user_id=ctx.user_id,
            payload={"mode": mode, "locations": len(ordered), "items": len(items)},
        )
    log_structured(
        logging.INFO,
        "inventory_imported",
        household_id=str(store.household_id),
        mode=mode,
        locations=len(ordered),
        items=len(items),
    )
    return ImportResult(mode=mode, locations=len(ordered), items=len(items), imported=True)
