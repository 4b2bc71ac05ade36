from fastapi import APIRouter

from backend.api.v1.routes import (
    events as events_routes,
    households as households_routes,
    items as items_routes,
    locations as locations_routes,
    meta as meta_routes,
    search as search_routes,
    transfer as transfer_routes,
)

api_v1_router = APIRouter()

api_v1_router.include_router(meta_routes.router, tags=["meta"])
api_v1_router.include_router(households_routes.router, tags=["households"])
api_v1_router.include_router(locations_routes.router, tags=["locations"])
api_v1_router.include_router(items_routes.router, tags=["items"])
api_v1_router.include_router(search_routes.router, tags=["search"])
api_v1_router.include_router(events_routes.router, tags=["events"])
api_v1_router.include_router(transfer_routes.router, tags=["transfer"])
