from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from backend.errors import Conflict, InvalidOperation, NotFound
from backend.observability import log_structured
from backend.permissions import PERM_LOCATION_MOVE, HouseholdContext
from backend.services.events import emit_event
from backend.services.hierarchy import HierarchyInvariantEngine
from backend.services.move_impact import find_preview, is_expired
from backend.services.tree_store import TreeStore, atomic


@dataclass(frozen=True)
class MoveResult:
    location_id: UUID
    from_parent_id: Optional[UUID]
    to_parent_id: Optional[UUID]
    affected_locations: int
    affected_items: int
    moved: bool


def apply_move(
    store: TreeStore,
    ctx: HouseholdContext,
    location_id: UUID,
    new_parent_id: Optional[UUID],
    *,
    stale_as_conflict: bool,
) -> MoveResult:
    """Reparent inside an already locked transaction.

    Validation runs before any write, so a raised error leaves the session
    untouched.
    """
    arena = store.arena()
    try:
        HierarchyInvariantEngine(store).check_reparent(arena, location_id, new_parent_id)
    except (NotFound, InvalidOperation) as exc:
        if stale_as_conflict:
            raise Conflict(
                "Move is no longer valid; request a new preview",
                {"reason": exc.message},
            ) from exc
        raise

    location = store.get_location(location_id)
    previous_parent_id = location.parent_id
    if previous_parent_id == new_parent_id:
        return MoveResult(location_id, previous_parent_id, new_parent_id, 0, 0, moved=False)

    subtree = arena.descendants(location_id)
    affected_items = store.count_items_in(subtree)
    location.parent_id = new_parent_id
    arena.reparent(location_id, new_parent_id)
    store.refresh_paths(arena, location_id)
    emit_event(
        store.session,
        store.household_id,
        "location.moved",
        "Location moved",
        actor_user_id=ctx.user_id,
        payload={
            "location_id": str(location_id),
            "from_parent_id": str(previous_parent_id) if previous_parent_id else None,
            "to_parent_id": str(new_parent_id) if new_parent_id else None,
            "affected_locations": len(subtree),
            "affected_items": affected_items,
        },
    )
    return MoveResult(
        location_id,
        previous_parent_id,
        new_parent_id,
        len(subtree),
        affected_items,
        moved=True,
    )


def _log_move(store: TreeStore, result: MoveResult, **extra) -> None:
    if not result.moved:
        return
    log_structured(
        logging.INFO,
        "location_moved",
        household_id=str(store.household_id),
        location_id=str(result.location_id),
        to_parent_id=str(result.to_parent_id) if result.to_parent_id else None,
        affected_locations=result.affected_locations,
        affected_items=result.affected_items,
        **extra,
    )


def commit_move(
    store: TreeStore,
    ctx: HouseholdContext,
    location_id: UUID,
    new_parent_id: Optional[UUID],
    *,
    stale_as_conflict: bool = False,
) -> MoveResult:
    ctx.require(PERM_LOCATION_MOVE)
    with atomic(store.session):
        store.lock()
        result = apply_move(
            store, ctx, location_id, new_parent_id, stale_as_conflict=stale_as_conflict
        )
    _log_move(store, result)
    return result


def confirm_preview(store: TreeStore, ctx: HouseholdContext, preview_id: UUID) -> MoveResult:
    """Commit a previewed move. The token is consumed whether or not the move applies."""
    ctx.require(PERM_LOCATION_MOVE)
    session = store.session
    rejected: Optional[Conflict] = None
    result: Optional[MoveResult] = None
    with atomic(session):
        store.lock()
        preview = find_preview(store, preview_id)
        location_id, new_parent_id = preview.location_id, preview.new_parent_id
        expired = is_expired(preview)
        session.delete(preview)
        if expired:
            rejected = Conflict("Move preview expired; request a new preview")
        else:
            # apply_move validates before writing, so a stale move leaves only
            # the token deletion to commit
            try:
                result = apply_move(store, ctx, location_id, new_parent_id, stale_as_conflict=True)
            except Conflict as exc:
                rejected = exc
    if rejected is not None:
        raise rejected
    _log_move(store, result, preview_id=str(preview_id))
    return result
