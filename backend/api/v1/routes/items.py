from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from backend.api.v1.deps.auth import get_tree_store, require_household_access
from backend.permissions import HouseholdContext
from backend.schemas.base import ItemOut, LocationOut
from backend.services import items as item_service
from backend.services import tree_views
from backend.services.tree_store import TreeStore

router = APIRouter()


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    location_id: UUID
    description: Optional[str] = Field(None, max_length=2000)
    keywords: list[str] = Field(default_factory=list, max_length=50)
    quantity: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = Field(None, max_length=1024)


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    location_id: Optional[UUID] = None
    description: Optional[str] = Field(None, max_length=2000)
    keywords: Optional[list[str]] = Field(None, max_length=50)
    quantity: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = Field(None, max_length=1024)


class ItemListOut(BaseModel):
    items: list[ItemOut]
    total: int
    limit: int
    offset: int


class MovementOut(BaseModel):
    id: UUID
    item_id: UUID
    from_location_id: UUID
    to_location_id: UUID
    moved_by_user_id: Optional[UUID]
    source: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MovementsListOut(BaseModel):
    movements: list[MovementOut]


class InventoryNodeOut(BaseModel):
    location: LocationOut
    items: list[ItemOut]
    children: list["InventoryNodeOut"]


class InventoryTreeOut(BaseModel):
    nodes: list[InventoryNodeOut]
    total_locations: int
    total_items: int


def _inventory_out(nodes: list[tree_views.TreeNode]) -> list[InventoryNodeOut]:
    return [
        InventoryNodeOut(
            location=LocationOut.model_validate(node.location),
            items=[
                ItemOut.model_validate(item)
                for item in sorted(node.items, key=lambda entry: (entry.name.lower(), str(entry.id)))
            ],
            children=_inventory_out(node.children),
        )
        for node in nodes
    ]


@router.post("/households/{household_id}/items", response_model=ItemOut, status_code=status.HTTP_201_CREATED)
def create_item(
    payload: ItemCreate,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
):
    return item_service.create_item(
        store,
        ctx,
        name=payload.name,
        location_id=payload.location_id,
        description=payload.description,
        keywords=payload.keywords,
        image_url=payload.image_url,
        quantity=payload.quantity,
    )


@router.get("/households/{household_id}/items", response_model=ItemListOut)
def list_items(
    store: TreeStore = Depends(get_tree_store),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    location_id: Optional[UUID] = Query(None),
) -> ItemListOut:
    if location_id is not None:
        store.get_location(location_id)
    rows, total = store.list_items(limit, offset, location_id)
    return ItemListOut(
        items=[ItemOut.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/households/{household_id}/inventory/tree", response_model=InventoryTreeOut)
def get_inventory_tree(store: TreeStore = Depends(get_tree_store)) -> InventoryTreeOut:
    nodes = tree_views.build_tree(store, with_items=True)
    total_locations, total_items = tree_views.count_nodes(nodes)
    return InventoryTreeOut(
        nodes=_inventory_out(nodes),
        total_locations=total_locations,
        total_items=total_items,
    )


@router.get("/households/{household_id}/items/{item_id}", response_model=ItemOut)
def get_item(item_id: UUID, store: TreeStore = Depends(get_tree_store)):
    return store.get_item(item_id)


@router.patch("/households/{household_id}/items/{item_id}", response_model=ItemOut)
def update_item(
    item_id: UUID,
    payload: ItemUpdate,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
):
    return item_service.update_item(store, ctx, item_id, payload.model_dump(exclude_unset=True))


@router.delete("/households/{household_id}/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(
    item_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> Response:
    item_service.delete_item(store, ctx, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/households/{household_id}/items/{item_id}/movements", response_model=MovementsListOut)
def list_item_movements(
    item_id: UUID,
    store: TreeStore = Depends(get_tree_store),
    limit: int = Query(50, ge=1, le=100),
) -> MovementsListOut:
    rows = item_service.item_movements(store, item_id, limit)
    return MovementsListOut(movements=[MovementOut.model_validate(row) for row in rows])
