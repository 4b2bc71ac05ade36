from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.db.session import begin_write
from backend.errors import NotFound
from backend.models.entities import Household, Item, Location
from backend.services.arena import LocationArena, render_path


@dataclass(frozen=True)
class ItemDocument:
    """Searchable projection of an item, detached from any session."""

    id: UUID
    household_id: UUID
    name: str
    description: Optional[str]
    keywords: Tuple[str, ...]
    location_id: Optional[UUID] = None
    image_url: Optional[str] = None

    @property
    def text(self) -> str:
        return " ".join([self.name, self.description or "", " ".join(self.keywords)]).strip()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run one write transaction: commit on success, roll back everything on any failure."""
    begin_write(session)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


class TreeStore:
    """Household-scoped access to location and item rows.

    Every lookup filters on ``household_id``; a row from another household
    is indistinguishable from a missing one.
    """

    def __init__(self, session: Session, household_id: UUID) -> None:
        self.session = session
        self.household_id = household_id

    def lock(self) -> Household:
        """Lock the household row for the rest of the write transaction.

        SQLite ignores ``FOR UPDATE``; there the transaction opened by
        :func:`atomic` already holds the database write lock.
        """
        household = self.session.execute(
            select(Household).where(Household.id == self.household_id).with_for_update()
        ).scalar_one_or_none()
        if household is None:
            raise NotFound("Household not found")
        return household

    def find_location(self, location_id: UUID) -> Optional[Location]:
        return self.session.execute(
            select(Location).where(Location.id == location_id, Location.household_id == self.household_id)
        ).scalar_one_or_none()

    def get_location(self, location_id: UUID) -> Location:
        location = self.find_location(location_id)
        if location is None:
            raise NotFound("Location not found")
        return location

    def get_item(self, item_id: UUID) -> Item:
        item = self.session.execute(
            select(Item).where(Item.id == item_id, Item.household_id == self.household_id)
        ).scalar_one_or_none()
        if item is None:
            raise NotFound("Item not found")
        return item

    def arena(self) -> LocationArena:
        rows = self.session.execute(
            select(Location.id, Location.name, Location.parent_id).where(
                Location.household_id == self.household_id
            )
        ).all()
        return LocationArena.from_rows((row.id, row.name, row.parent_id) for row in rows)

    def list_locations(self, limit: int, offset: int) -> Tuple[List[Location], int]:
        filters = [Location.household_id == self.household_id]
        total = self.session.execute(select(func.count()).select_from(Location).where(*filters)).scalar_one()
        rows = self.session.execute(
            select(Location).where(*filters).order_by(Location.path_cache, Location.id).limit(limit).offset(offset)
        ).scalars().all()
        return list(rows), total

    def all_locations(self) -> List[Location]:
        return list(
            self.session.execute(
                select(Location).where(Location.household_id == self.household_id).order_by(Location.name)
            ).scalars()
        )

    def list_items(
        self, limit: int, offset: int, location_id: Optional[UUID] = None
    ) -> Tuple[List[Item], int]:
        filters: List[Any] = [Item.household_id == self.household_id]
        if location_id is not None:
            filters.append(Item.location_id == location_id)
        total = self.session.execute(select(func.count()).select_from(Item).where(*filters)).scalar_one()
        rows = self.session.execute(
            select(Item).where(*filters).order_by(Item.name, Item.id).limit(limit).offset(offset)
        ).scalars().all()
        return list(rows), total

    def all_items(self) -> List[Item]:
        return list(
            self.session.execute(
                select(Item).where(Item.household_id == self.household_id).order_by(Item.name, Item.id)
            ).scalars()
        )

    def has_children(self, location_id: UUID) -> bool:
        return (
            self.session.execute(
                select(Location.id)
                .where(Location.household_id == self.household_id, Location.parent_id == location_id)
                .limit(1)
            ).first()
            is not None
        )

    def has_items(self, location_id: UUID) -> bool:
        return (
            self.session.execute(
                select(Item.id)
                .where(Item.household_id == self.household_id, Item.location_id == location_id)
                .limit(1)
            ).first()
            is not None
        )

    def count_items_in(self, location_ids: Sequence[UUID]) -> int:
        if not location_ids:
            return 0
        return self.session.execute(
            select(func.count())
            .select_from(Item)
            .where(Item.household_id == self.household_id, Item.location_id.in_(location_ids))
        ).scalar_one()

    def items_in(self, location_ids: Sequence[UUID], limit: Optional[int] = None) -> List[Item]:
        if not location_ids:
            return []
        query = (
            select(Item)
            .where(Item.household_id == self.household_id, Item.location_id.in_(location_ids))
            .order_by(Item.name, Item.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars())

    def item_documents(self) -> List[ItemDocument]:
        rows = self.session.execute(
            select(Item.id, Item.name, Item.description, Item.keywords, Item.location_id, Item.image_url).where(
                Item.household_id == self.household_id
            )
        ).all()
        return [
            ItemDocument(
                id=row.id,
                household_id=self.household_id,
                name=row.name,
                description=row.description,
                keywords=tuple(row.keywords or ()),
                location_id=row.location_id,
                image_url=row.image_url,
            )
            for row in rows
        ]

    def location_path(self, location_id: UUID, arena: Optional[LocationArena] = None) -> str:
        tree = arena if arena is not None else self.arena()
        if location_id not in tree:
            raise NotFound("Location not found")
        return tree.render_path(location_id)

    def refresh_paths(self, arena: LocationArena, root_id: UUID) -> int:
        """Rewrite ``path_cache`` for ``root_id`` and its whole subtree."""
        subtree = arena.descendants(root_id)
        if not subtree:
            return 0
        rows = self.session.execute(
            select(Location).where(Location.household_id == self.household_id, Location.id.in_(subtree))
        ).scalars()
        for location in rows:
            location.path_cache = arena.render_path(location.id)
        self.session.flush()
        return len(subtree)


def item_path(location_path: str, item_name: str) -> str:
    return render_path([location_path, item_name]) if location_path else item_name
