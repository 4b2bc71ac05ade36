from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from backend.errors import InvalidOperation, NotFound
from backend.models.entities import Item, Location
from backend.services.tree_store import TreeStore

MAX_TREE_DEPTH = 100


@dataclass
class TreeNode:
    location: Location
    children: List["TreeNode"] = field(default_factory=list)
    items: List[Item] = field(default_factory=list)


@dataclass
class ChecklistEntry:
    item: Item
    location_path: str


def _sort_key(location: Location):
    return (location.name.lower(), str(location.id))


def build_tree(
    store: TreeStore,
    *,
    root_id: Optional[UUID] = None,
    max_depth: Optional[int] = None,
    with_items: bool = False,
) -> List[TreeNode]:
    """Nested locations sorted by name; ``max_depth`` counts the root level as 1."""
    if max_depth is not None and not 1 <= max_depth <= MAX_TREE_DEPTH:
        raise InvalidOperation(f"max_depth must be between 1 and {MAX_TREE_DEPTH}")
    locations = store.all_locations()
    by_id: Dict[UUID, Location] = {location.id: location for location in locations}
    children: Dict[Optional[UUID], List[Location]] = {}
    for location in locations:
        children.setdefault(location.parent_id, []).append(location)
    for siblings in children.values():
        siblings.sort(key=_sort_key)

    items_by_location: Dict[UUID, List[Item]] = {}
    if with_items:
        for item in store.all_items():
            items_by_location.setdefault(item.location_id, []).append(item)

    if root_id is not None:
        if root_id not in by_id:
            raise NotFound("Location not found")
        starts = [by_id[root_id]]
    else:
        starts = children.get(None, [])

    def expand(location: Location, depth: int) -> TreeNode:
        node = TreeNode(location=location, items=items_by_location.get(location.id, []))
        if max_depth is None or depth < max_depth:
            node.children = [expand(child, depth + 1) for child in children.get(location.id, [])]
        return node

    return [expand(location, 1) for location in starts]


def count_nodes(nodes: List[TreeNode]) -> tuple[int, int]:
    locations = 0
    items = 0
    stack = list(nodes)
    while stack:
        node = stack.pop()
        locations += 1
        items += len(node.items)
        stack.extend(node.children)
    return locations, items


def checklist(store: TreeStore, location_id: UUID) -> List[ChecklistEntry]:
    arena = store.arena()
    if location_id not in arena:
        raise NotFound("Location not found")
    subtree = arena.descendants(location_id)
    entries = [
        ChecklistEntry(item=item, location_path=arena.render_path(item.location_id))
        for item in store.items_in(subtree)
    ]
    entries.sort(key=lambda entry: (entry.location_path.lower(), entry.item.name.lower(), str(entry.item.id)))
    return entries
