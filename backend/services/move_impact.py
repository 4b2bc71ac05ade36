"""Dry-run analysis of a location move and the preview tokens that gate it."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select

from backend.db.base import ensure_utc, utcnow
from backend.errors import NotFound
from backend.models.entities import MovePreview
from backend.observability import log_structured
from backend.permissions import PERM_LOCATION_MOVE, HouseholdContext
from backend.services.hierarchy import HierarchyInvariantEngine
from backend.services.tree_store import TreeStore, atomic, item_path

MOVE_PREVIEW_TTL_SECONDS = int(os.getenv("MOVE_PREVIEW_TTL_SECONDS", "300"))
MOVE_PREVIEW_SAMPLE_LIMIT = int(os.getenv("MOVE_PREVIEW_SAMPLE_LIMIT", "20"))


@dataclass(frozen=True)
class ImpactSample:
    item_id: UUID
    item_name: str
    before_path: str
    after_path: str


@dataclass
class MoveImpact:
    location_id: UUID
    current_parent_id: Optional[UUID]
    new_parent_id: Optional[UUID]
    affected_locations: int = 0
    affected_items: int = 0
    sample: List[ImpactSample] = field(default_factory=list)
    sample_truncated: bool = False
    is_noop: bool = False


def analyze_move(
    store: TreeStore,
    location_id: UUID,
    new_parent_id: Optional[UUID],
    sample_limit: int = MOVE_PREVIEW_SAMPLE_LIMIT,
) -> MoveImpact:
    """Report what reparenting ``location_id`` under ``new_parent_id`` would touch.

    Nothing is written: after-paths come from the in-memory arena with the
    subtree re-attached hypothetically.
    """
    arena = store.arena()
    HierarchyInvariantEngine(store).check_reparent(arena, location_id, new_parent_id)
    current_parent_id = arena.node(location_id).parent_id
    if current_parent_id == new_parent_id:
        return MoveImpact(
            location_id=location_id,
            current_parent_id=current_parent_id,
            new_parent_id=new_parent_id,
            is_noop=True,
        )

    subtree = arena.descendants(location_id)
    affected_items = store.count_items_in(subtree)
    sampled = store.items_in(subtree, limit=sample_limit) if sample_limit > 0 else []
    sample = [
        ImpactSample(
            item_id=item.id,
            item_name=item.name,
            before_path=item_path(arena.render_path(item.location_id), item.name),
            after_path=item_path(
                arena.render_path(item.location_id, location_id, new_parent_id), item.name
            ),
        )
        for item in sampled
    ]
    return MoveImpact(
        location_id=location_id,
        current_parent_id=current_parent_id,
        new_parent_id=new_parent_id,
        affected_locations=len(subtree),
        affected_items=affected_items,
        sample=sample,
        sample_truncated=affected_items > len(sample),
    )


def issue_preview_token(
    store: TreeStore,
    ctx: HouseholdContext,
    impact: MoveImpact,
    ttl_seconds: int = MOVE_PREVIEW_TTL_SECONDS,
) -> MovePreview:
    """Persist a preview token, replacing any earlier one for the same location."""
    session = store.session
    now = utcnow()
    with atomic(session):
        session.execute(
            delete(MovePreview).where(
                MovePreview.household_id == store.household_id,
                (MovePreview.location_id == impact.location_id) | (MovePreview.expires_at < now),
            )
        )
        preview = MovePreview(
            household_id=store.household_id,
            location_id=impact.location_id,
            new_parent_id=impact.new_parent_id,
            issued_by_user_id=ctx.user_id,
            affected_locations=impact.affected_locations,
            affected_items=impact.affected_items,
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        session.add(preview)
    session.refresh(preview)
    return preview


def request_preview(
    store: TreeStore,
    ctx: HouseholdContext,
    location_id: UUID,
    new_parent_id: Optional[UUID],
    *,
    sample_limit: int = MOVE_PREVIEW_SAMPLE_LIMIT,
    ttl_seconds: int = MOVE_PREVIEW_TTL_SECONDS,
) -> tuple[MoveImpact, Optional[MovePreview]]:
    ctx.require(PERM_LOCATION_MOVE)
    impact = analyze_move(store, location_id, new_parent_id, sample_limit)
    if impact.is_noop:
        return impact, None
    preview = issue_preview_token(store, ctx, impact, ttl_seconds)
    log_structured(
        logging.INFO,
        "move_previewed",
        household_id=str(store.household_id),
        location_id=str(location_id),
        preview_id=str(preview.id),
        affected_locations=impact.affected_locations,
        affected_items=impact.affected_items,
    )
    return impact, preview


def find_preview(store: TreeStore, preview_id: UUID) -> MovePreview:
    preview = store.session.execute(
        select(MovePreview).where(
            MovePreview.id == preview_id, MovePreview.household_id == store.household_id
        )
    ).scalar_one_or_none()
    if preview is None:
        raise NotFound("Move preview not found")
    return preview


def is_expired(preview: MovePreview) -> bool:
    return ensure_utc(preview.expires_at) <= utcnow()


def cancel_preview(store: TreeStore, ctx: HouseholdContext, preview_id: UUID) -> None:
    ctx.require(PERM_LOCATION_MOVE)
    session = store.session
    with atomic(session):
        preview = find_preview(store, preview_id)
        session.delete(preview)
