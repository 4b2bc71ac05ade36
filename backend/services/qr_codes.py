"""Printable scan codes for locations.

Each location gets one random code when it is created. Scanning the code
resolves it back to the location inside the caller's household.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from backend.errors import NotFound, ServiceUnavailable
from backend.models.entities import Location, LocationQRCode
from backend.observability import log_structured
from backend.permissions import PERM_INVENTORY_READ, PERM_LOCATION_UPDATE, HouseholdContext
from backend.services.tree_store import TreeStore, atomic

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000")
API_PREFIX = "/api/v1"

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def normalized_base_url(raw: Optional[str] = None) -> str:
    value = (raw if raw is not None else APP_BASE_URL).strip() or "http://localhost:8000"
    if not _SCHEME.match(value):
        value = f"https://{value}"
    return value.rstrip("/")


@dataclass(frozen=True)
class ScanLink:
    scan_path: str
    scan_url: str


def scan_link(household_id: UUID, code: UUID) -> ScanLink:
    scan_path = f"{API_PREFIX}/households/{household_id}/scan/location/{code}"
    return ScanLink(scan_path=scan_path, scan_url=f"{normalized_base_url()}{scan_path}")


def find_qr_code(session: Session, location_id: UUID) -> Optional[LocationQRCode]:
    return session.execute(
        select(LocationQRCode).where(LocationQRCode.location_id == location_id)
    ).scalar_one_or_none()


def ensure_qr_codes(session: Session, household_id: UUID, location_ids: Iterable[UUID]) -> int:
    """Stage a code for every listed location that has none; runs inside the caller's transaction."""
    wanted = list(location_ids)
    if not wanted:
        return 0
    present = set(
        session.execute(
            select(LocationQRCode.location_id).where(LocationQRCode.location_id.in_(wanted))
        ).scalars()
    )
    created = 0
    for location_id in wanted:
        if location_id in present:
            continue
        session.add(LocationQRCode(location_id=location_id, household_id=household_id))
        created += 1
    return created


def location_qr(store: TreeStore, ctx: HouseholdContext, location_id: UUID) -> Tuple[Location, LocationQRCode]:
    """Return the location and its code, issuing a missing code for members who may edit."""
    ctx.require(PERM_INVENTORY_READ)
    location = store.get_location(location_id)
    qr_code = find_qr_code(store.session, location_id)
    if qr_code is not None:
        return location, qr_code
    if not ctx.can(PERM_LOCATION_UPDATE):
        raise ServiceUnavailable("QR reference not initialized for this location")

    session = store.session
    with atomic(session):
        store.lock()
        location = store.get_location(location_id)
        ensure_qr_codes(session, store.household_id, [location_id])
    qr_code = find_qr_code(session, location_id)
    log_structured(
        logging.INFO,
        "location_qr_issued",
        household_id=str(store.household_id),
        location_id=str(location_id),
    )
    return location, qr_code


def resolve_scan(store: TreeStore, ctx: HouseholdContext, code: UUID) -> Tuple[Location, LocationQRCode]:
    ctx.require(PERM_INVENTORY_READ)
    row = store.session.execute(
        select(Location, LocationQRCode)
        .join(LocationQRCode, LocationQRCode.location_id == Location.id)
        .where(LocationQRCode.code == code, Location.household_id == store.household_id)
    ).first()
    if row is None:
        raise NotFound("Scanned location not found")
    return row[0], row[1]


def drop_qr_code(session: Session, location_id: UUID) -> None:
    session.execute(
        delete(LocationQRCode)
        .where(LocationQRCode.location_id == location_id)
        .execution_options(synchronize_session=False)
    )
