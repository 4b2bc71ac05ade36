import os

from fastapi import APIRouter

router = APIRouter()

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")


@router.get("/meta")
async def meta():
    return {"service": "HomeStash", "api": "v1", "version": APP_VERSION, "status": "ok"}


_env = os.getenv("HOMESTASH_ENV", "dev").strip().lower()
_enable_test_routes = _env != "prod"


if _enable_test_routes:
    @router.get("/_test/validation")
    async def validation_test(value: int):
        return {"received": value}
