from __future__ import annotations

from datetime import datetime
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from backend.api.v1.deps.auth import get_tree_store, require_household_access
from backend.permissions import HouseholdContext
from backend.schemas.base import ItemOut, LocationOut
from backend.services import hierarchy, move_executor, move_impact, qr_codes, tree_views
from backend.services.tree_store import TreeStore

router = APIRouter()


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    parent_id: Optional[UUID] = None
    code: Optional[str] = Field(None, max_length=64)
    type: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=512)
    image_url: Optional[str] = Field(None, max_length=1024)


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    parent_id: Optional[UUID] = None
    code: Optional[str] = Field(None, max_length=64)
    type: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=512)
    image_url: Optional[str] = Field(None, max_length=1024)


class LocationListOut(BaseModel):
    items: list[LocationOut]
    total: int
    limit: int
    offset: int


class LocationTreeNodeOut(BaseModel):
    location: LocationOut
    children: list["LocationTreeNodeOut"]


class LocationTreeOut(BaseModel):
    nodes: list[LocationTreeNodeOut]


class LocationPathOut(BaseModel):
    id: UUID
    name: str
    path: str


class ChecklistEntryOut(BaseModel):
    item: ItemOut
    location_path: str


class ChecklistOut(BaseModel):
    location_id: UUID
    location_path: str
    expected_count: int
    entries: list[ChecklistEntryOut]


class MoveImpactIn(BaseModel):
    parent_id: Optional[UUID] = None


class ImpactSampleOut(BaseModel):
    item_id: UUID
    item_name: str
    before_path: str
    after_path: str


class MovePreviewOut(BaseModel):
    preview_id: Optional[UUID]
    expires_at: Optional[datetime]
    location_id: UUID
    current_parent_id: Optional[UUID]
    new_parent_id: Optional[UUID]
    affected_locations: int
    affected_items: int
    sample: list[ImpactSampleOut]
    sample_truncated: bool
    is_noop: bool


class MoveResultOut(BaseModel):
    location: LocationOut
    from_parent_id: Optional[UUID]
    to_parent_id: Optional[UUID]
    affected_locations: int
    affected_items: int


class LocationQROut(BaseModel):
    location_id: UUID
    location_name: str
    qr_code: UUID
    scan_path: str
    scan_url: str
    payload: str
    created_at: datetime
    updated_at: datetime


class LocationScanOut(BaseModel):
    qr_code: UUID
    location_id: UUID
    location_name: str
    path: str
    scan_path: str
    scan_url: str


def _tree_out(nodes: list[tree_views.TreeNode]) -> list[LocationTreeNodeOut]:
    return [
        LocationTreeNodeOut(
            location=LocationOut.model_validate(node.location),
            children=_tree_out(node.children),
        )
        for node in nodes
    ]


@router.post(
    "/households/{household_id}/locations",
    response_model=LocationOut,
    status_code=status.HTTP_201_CREATED,
)
def create_location(
    payload: LocationCreate,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
):
    return hierarchy.create_location(
        store,
        ctx,
        name=payload.name,
        parent_id=payload.parent_id,
        code=payload.code,
        type=payload.type,
        description=payload.description,
        image_url=payload.image_url,
    )


@router.get("/households/{household_id}/locations", response_model=LocationListOut)
def list_locations(
    store: TreeStore = Depends(get_tree_store),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> LocationListOut:
    rows, total = store.list_locations(limit, offset)
    return LocationListOut(
        items=[LocationOut.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/households/{household_id}/locations/tree", response_model=LocationTreeOut)
def get_location_tree(
    store: TreeStore = Depends(get_tree_store),
    root_id: Optional[UUID] = Query(None),
    max_depth: Optional[int] = Query(None, ge=1, le=tree_views.MAX_TREE_DEPTH),
) -> LocationTreeOut:
    nodes = tree_views.build_tree(store, root_id=root_id, max_depth=max_depth)
    return LocationTreeOut(nodes=_tree_out(nodes))


@router.get("/households/{household_id}/locations/{location_id}", response_model=LocationOut)
def get_location(location_id: UUID, store: TreeStore = Depends(get_tree_store)):
    return store.get_location(location_id)


@router.patch("/households/{household_id}/locations/{location_id}", response_model=LocationOut)
def update_location(
    location_id: UUID,
    payload: LocationUpdate,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
):
    changes = payload.model_dump(exclude_unset=True)
    return hierarchy.update_location(store, ctx, location_id, changes)


@router.delete(
    "/households/{household_id}/locations/{location_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_location(
    location_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> Response:
    hierarchy.delete_location(store, ctx, location_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/households/{household_id}/locations/{location_id}/path", response_model=LocationPathOut)
def get_location_path(location_id: UUID, store: TreeStore = Depends(get_tree_store)) -> LocationPathOut:
    location = store.get_location(location_id)
    return LocationPathOut(id=location.id, name=location.name, path=store.location_path(location_id))


@router.get("/households/{household_id}/locations/{location_id}/checklist", response_model=ChecklistOut)
def get_location_checklist(location_id: UUID, store: TreeStore = Depends(get_tree_store)) -> ChecklistOut:
    entries = tree_views.checklist(store, location_id)
    return ChecklistOut(
        location_id=location_id,
        location_path=store.location_path(location_id),
        expected_count=len(entries),
        entries=[
            ChecklistEntryOut(item=ItemOut.model_validate(entry.item), location_path=entry.location_path)
            for entry in entries
        ],
    )


@router.post(
    "/households/{household_id}/locations/{location_id}/move-impact",
    response_model=MovePreviewOut,
)
def preview_move(
    location_id: UUID,
    payload: MoveImpactIn,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> MovePreviewOut:
    impact, preview = move_impact.request_preview(store, ctx, location_id, payload.parent_id)
    return MovePreviewOut(
        preview_id=preview.id if preview else None,
        expires_at=preview.expires_at if preview else None,
        location_id=impact.location_id,
        current_parent_id=impact.current_parent_id,
        new_parent_id=impact.new_parent_id,
        affected_locations=impact.affected_locations,
        affected_items=impact.affected_items,
        sample=[ImpactSampleOut(**vars(entry)) for entry in impact.sample],
        sample_truncated=impact.sample_truncated,
        is_noop=impact.is_noop,
    )


@router.post(
    "/households/{household_id}/move-previews/{preview_id}/confirm",
    response_model=MoveResultOut,
)
def confirm_move(
    preview_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> MoveResultOut:
    result = move_executor.confirm_preview(store, ctx, preview_id)
    location = store.get_location(result.location_id)
    return MoveResultOut(
        location=LocationOut.model_validate(location),
        from_parent_id=result.from_parent_id,
        to_parent_id=result.to_parent_id,
        affected_locations=result.affected_locations,
        affected_items=result.affected_items,
    )


@router.delete(
    "/households/{household_id}/move-previews/{preview_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def cancel_move(
    preview_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> Response:
    move_impact.cancel_preview(store, ctx, preview_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/households/{household_id}/locations/{location_id}/qr", response_model=LocationQROut)
def get_location_qr(
    location_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
) -> LocationQROut:
    location, qr_code = qr_codes.location_qr(store, ctx, location_id)
    link = qr_codes.scan_link(store.household_id, qr_code.code)
    return LocationQROut(
        location_id=location.id,
        location_name=location.name,
        qr_code=qr_code.code,
        scan_path=link.scan_path,
        scan_url=link.scan_url,
        payload=link.scan_url,
        created_at=qr_code.created_at,
        updated_at=qr_code.updated_at,
    )


@router.get(
    "/households/{household_id}/scan/location/{code}",
    response_model=LocationScanOut,
    responses={status.HTTP_302_FOUND: {"description": "Redirect to the app with the scanned location"}},
)
def scan_location(
    code: UUID,
    response_format: str = Query("json", alias="format", pattern="^(json|redirect)$"),
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
):
    location, _ = qr_codes.resolve_scan(store, ctx, code)
    if response_format == "redirect":
        query = urlencode({"location_id": str(location.id), "scan_code": str(code)})
        return RedirectResponse(f"{qr_codes.normalized_base_url()}/?{query}", status_code=status.HTTP_302_FOUND)
    link = qr_codes.scan_link(store.household_id, code)
    return LocationScanOut(
        qr_code=code,
        location_id=location.id,
        location_name=location.name,
        path=store.location_path(location.id),
        scan_path=link.scan_path,
        scan_url=link.scan_url,
    )
