"""In-memory view of one household's location forest.

Nodes are kept in a dict keyed by id with explicit ``parent_id`` and
``children`` fields; every structural question (ancestors, descendant
closure, cycle test, path rendering) is answered with id lookups and set
membership instead of object graphs.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

PATH_SEPARATOR = " > "

_UNSET = object()


@dataclass
class LocationNode:
    id: UUID
    name: str
    parent_id: Optional[UUID]
    children: List[UUID] = field(default_factory=list)


class LocationArena:
    def __init__(self, nodes: Iterable[LocationNode]) -> None:
        self._nodes: Dict[UUID, LocationNode] = {}
        for node in nodes:
            self._nodes[node.id] = LocationNode(node.id, node.name, node.parent_id)
        for node in self._nodes.values():
            if node.parent_id is not None and node.parent_id in self._nodes:
                self._nodes[node.parent_id].children.append(node.id)

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[UUID, str, Optional[UUID]]]) -> "LocationArena":
        return cls(LocationNode(row_id, name, parent_id) for row_id, name, parent_id in rows)

    def __contains__(self, location_id: object) -> bool:
        return location_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, location_id: UUID) -> Optional[LocationNode]:
        return self._nodes.get(location_id)

    def node(self, location_id: UUID) -> LocationNode:
        return self._nodes[location_id]

    def roots(self) -> List[LocationNode]:
        return [
            node
            for node in self._nodes.values()
            if node.parent_id is None or node.parent_id not in self._nodes
        ]

    def ancestors(self, location_id: UUID) -> List[UUID]:
        """Ids from the direct parent up to the root, nearest first."""
        chain: List[UUID] = []
        seen: Set[UUID] = {location_id}
        cursor = self._nodes[location_id].parent_id if location_id in self._nodes else None
        while cursor is not None and cursor in self._nodes and cursor not in seen:
            chain.append(cursor)
            seen.add(cursor)
            cursor = self._nodes[cursor].parent_id
        return chain

    def descendants(self, location_id: UUID) -> List[UUID]:
        """Breadth-first closure of ``location_id``, the node itself first."""
        if location_id not in self._nodes:
            return []
        order: List[UUID] = []
        visited: Set[UUID] = set()
        queue = deque([location_id])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            order.append(current)
            for child_id in self._nodes[current].children:
                if child_id not in visited:
                    queue.append(child_id)
        return order

    def would_create_cycle(self, location_id: UUID, new_parent_id: Optional[UUID]) -> bool:
        if new_parent_id is None:
            return False
        if new_parent_id == location_id:
            return True
        return location_id in self.ancestors(new_parent_id)

    def path_ids(
        self,
        location_id: UUID,
        moved_id: Optional[UUID] = None,
        moved_parent_id: object = _UNSET,
    ) -> List[UUID]:
        """Root-first ids leading to ``location_id``.

        When ``moved_id`` is given, the walk treats that node as if its parent
        were ``moved_parent_id`` (``None`` for root) without touching the arena.
        """
        chain: List[UUID] = []
        seen: Set[UUID] = set()
        cursor: Optional[UUID] = location_id
        while cursor is not None and cursor in self._nodes and cursor not in seen:
            seen.add(cursor)
            chain.append(cursor)
            if moved_id is not None and cursor == moved_id and moved_parent_id is not _UNSET:
                cursor = moved_parent_id  # type: ignore[assignment]
            else:
                cursor = self._nodes[cursor].parent_id
        chain.reverse()
        return chain

    def path_names(
        self,
        location_id: UUID,
        moved_id: Optional[UUID] = None,
        moved_parent_id: object = _UNSET,
    ) -> List[str]:
        return [self._nodes[i].name for i in self.path_ids(location_id, moved_id, moved_parent_id)]

    def render_path(
        self,
        location_id: UUID,
        moved_id: Optional[UUID] = None,
        moved_parent_id: object = _UNSET,
    ) -> str:
        return render_path(self.path_names(location_id, moved_id, moved_parent_id))

    def reparent(self, location_id: UUID, new_parent_id: Optional[UUID]) -> None:
        node = self._nodes[location_id]
        if node.parent_id is not None and node.parent_id in self._nodes:
            self._nodes[node.parent_id].children.remove(location_id)
        node.parent_id = new_parent_id
        if new_parent_id is not None and new_parent_id in self._nodes:
            self._nodes[new_parent_id].children.append(location_id)


def render_path(names: Iterable[str]) -> str:
    return PATH_SEPARATOR.join(names)
