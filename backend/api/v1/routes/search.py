from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from backend.api.v1.deps.auth import get_tree_store, require_household_access
from backend.permissions import HouseholdContext
from backend.services.ranker import MODE_HYBRID, HybridRanker, get_ranker
from backend.services.tree_store import TreeStore

router = APIRouter()


class SearchResultOut(BaseModel):
    id: UUID
    name: str
    image_url: Optional[str]
    location_id: Optional[UUID]
    location_path: str
    score: float
    lexical_score: float
    semantic_score: float


class SearchOut(BaseModel):
    query: str
    mode: str
    results: list[SearchResultOut]
    total: int
    limit: int
    offset: int
    degraded: bool
    failed_signals: list[str]


@router.get("/households/{household_id}/search", response_model=SearchOut)
def search_items(
    q: str = Query(..., min_length=1, max_length=256),
    mode: str = Query(MODE_HYBRID, pattern="^(hybrid|semantic|lexical)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: HouseholdContext = Depends(require_household_access),
    store: TreeStore = Depends(get_tree_store),
    ranker: HybridRanker = Depends(get_ranker),
) -> SearchOut:
    page = ranker.search(store, ctx, q, mode=mode, limit=limit, offset=offset)
    return SearchOut(
        query=q,
        mode=page.mode,
        results=[SearchResultOut(**vars(result)) for result in page.results],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        degraded=page.degraded,
        failed_signals=page.failed_signals,
    )
