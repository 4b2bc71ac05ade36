from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from backend.api.v1.deps.auth import get_tree_store, require_household_access
from backend.db.base import utcnow
from backend.permissions import HouseholdContext
from backend.services import inventory_transfer
from backend.services.tree_store import TreeStore

router = APIRouter()


class LocationExportRecord(BaseModel):
    id: UUID
    name: str = Field(..., min_length=1, max_length=128)
    parent_id: Optional[UUID] = None
    code: Optional[str] = Field(None, max_length=64)
    type: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=512)
    image_url: Optional[str] = Field(None, max_length=1024)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ItemExportRecord(BaseModel):
    id: UUID
    name: str = Field(..., min_length=1, max_length=128)
    location_id: UUID
    description: Optional[str] = Field(None, max_length=2000)
    keywords: list[str] = Field(default_factory=list)
    quantity: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = Field(None, max_length=1024)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransferCounts(BaseModel):
    locations: int
    items: int


class InventoryExportOut(BaseModel):
    exported_at: datetime
    version: int
    counts: TransferCounts
    locations: list[LocationExportRecord]
    items: list[ItemExportRecord]


class InventoryImportIn(BaseModel):
    locations: list[LocationExportRecord]
    items: list[ItemExportRecord]


class InventoryImportOut(BaseModel):
    valid: bool = True
    imported: bool
    mode: str
    counts: TransferCounts


@router.get("/households/{household_id}/export/inventory", response_model=InventoryExportOut)
def export_inventory(
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> InventoryExportOut:
    snapshot = inventory_transfer.export_inventory(store, ctx)
    return InventoryExportOut(
        exported_at=utcnow(),
        version=inventory_transfer.EXPORT_VERSION,
        counts=TransferCounts(locations=len(snapshot.locations), items=len(snapshot.items)),
        locations=[LocationExportRecord.model_validate(row) for row in snapshot.locations],
        items=[ItemExportRecord.model_validate(row) for row in snapshot.items],
    )


@router.post("/households/{household_id}/import/inventory", response_model=InventoryImportOut)
def import_inventory(
    payload: InventoryImportIn,
    validate_only: bool = Query(False),
    remap_ids: bool = Query(False),
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> InventoryImportOut:
    result = inventory_transfer.import_inventory(
        store,
        ctx,
        [inventory_transfer.LocationRecord(**record.model_dump()) for record in payload.locations],
        [inventory_transfer.ItemRecord(**record.model_dump()) for record in payload.items],
        validate_only=validate_only,
        remap_ids=remap_ids,
    )
    return InventoryImportOut(
        imported=result.imported,
        mode=result.mode,
        counts=TransferCounts(locations=result.locations, items=result.items),
    )
