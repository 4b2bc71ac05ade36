import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from backend.api.v1.router import api_v1_router
from backend.db.base import Base
from backend.db.session import engine
from backend.exception_handlers import register_exception_handlers
from backend.observability import (
    configure_logging,
    log_structured,
    reset_active_request_id,
    set_active_request_id,
)

HOMESTASH_ENV = os.getenv("HOMESTASH_ENV", "dev").strip().lower()
SERVICE_VERSION = os.getenv("APP_VERSION") or "dev"
AUTO_CREATE_SCHEMA = os.getenv("AUTO_CREATE_SCHEMA", "0" if HOMESTASH_ENV == "prod" else "1").strip() == "1"

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    log_structured(logging.INFO, "startup", message="HomeStash backend initializing", env=HOMESTASH_ENV)
    if AUTO_CREATE_SCHEMA:
        import backend.models  # noqa: F401  registers every table on Base.metadata

        Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        log_structured(logging.INFO, "shutdown", message="HomeStash backend closing", env=HOMESTASH_ENV)


app = FastAPI(
    title="HomeStash Backend",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "meta", "description": "Metadata and discovery endpoints"},
        {"name": "households", "description": "Households, members and invitations"},
        {"name": "locations", "description": "Location hierarchy, paths and moves"},
        {"name": "items", "description": "Items and the inventory tree"},
        {"name": "search", "description": "Hybrid lexical and semantic item search"},
        {"name": "events", "description": "Household timeline"},
    ],
)


def _build_allowed_origins() -> List[str]:
    env_origins = [
        origin.strip()
        for origin in os.getenv("ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
    if env_origins:
        if any(origin == "*" for origin in env_origins):
            raise ValueError("ALLOWED_ORIGINS cannot contain '*' when allow_credentials=True")
        return list(dict.fromkeys(env_origins))
    return list(DEFAULT_ALLOWED_ORIGINS)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_build_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
    expose_headers=["X-Request-Id"],
)

register_exception_handlers(app)
app.include_router(api_v1_router, prefix="/api/v1")


@app.middleware("http")
async def request_logger(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    token = set_active_request_id(request_id)
    request.state.request_id = request_id
    start = time.perf_counter()
    status_code = 500
    error_type: Optional[str] = None
    response = None

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        error_type = type(exc).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        level = logging.INFO
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        fields: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "env": HOMESTASH_ENV,
        }
        if error_type:
            fields["error_type"] = error_type
        log_structured(level, "request", **fields)
        reset_active_request_id(token)

    response.headers["X-Request-Id"] = request_id
    return response


class HealthzResponse(BaseModel):
    status: str
    version: str


@app.get(
    "/healthz",
    response_model=HealthzResponse,
    summary="Service health check",
    description="Returns the current health and service version.",
)
def healthz() -> HealthzResponse:
    return HealthzResponse(status="ok", version=SERVICE_VERSION)


@app.get("/api/v1/healthz", response_model=HealthzResponse, include_in_schema=False)
def healthz_v1() -> HealthzResponse:
    return healthz()
