from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set
from uuid import UUID

from backend.errors import Forbidden
from backend.observability import log_structured

ROLE_OWNER = "owner"
ROLE_EDITOR = "editor"
ROLE_VIEWER = "viewer"

ROLES = (ROLE_OWNER, ROLE_EDITOR, ROLE_VIEWER)
ROLE_RANK = {ROLE_OWNER: 0, ROLE_EDITOR: 1, ROLE_VIEWER: 2}

PERM_INVENTORY_READ = "INVENTORY_READ"
PERM_LOCATION_CREATE = "LOCATION_CREATE"
PERM_LOCATION_UPDATE = "LOCATION_UPDATE"
PERM_LOCATION_MOVE = "LOCATION_MOVE"
PERM_LOCATION_DELETE = "LOCATION_DELETE"
PERM_ITEM_CREATE = "ITEM_CREATE"
PERM_ITEM_UPDATE = "ITEM_UPDATE"
PERM_ITEM_DELETE = "ITEM_DELETE"
PERM_INVENTORY_IMPORT = "INVENTORY_IMPORT"
PERM_MEMBER_VIEW = "HOUSEHOLD_MEMBER_VIEW"
PERM_MEMBER_ROLE_CHANGE = "HOUSEHOLD_MEMBER_ROLE_CHANGE"
PERM_MEMBER_REMOVE = "HOUSEHOLD_MEMBER_REMOVE"
PERM_INVITE_CREATE = "HOUSEHOLD_INVITE_CREATE"
PERM_INVITE_VIEW = "HOUSEHOLD_INVITE_VIEW"
PERM_INVITE_REVOKE = "HOUSEHOLD_INVITE_REVOKE"

_READ_PERMISSIONS = {PERM_INVENTORY_READ, PERM_MEMBER_VIEW}
_WRITE_PERMISSIONS = {
    PERM_LOCATION_CREATE,
    PERM_LOCATION_UPDATE,
    PERM_LOCATION_MOVE,
    PERM_LOCATION_DELETE,
    PERM_ITEM_CREATE,
    PERM_ITEM_UPDATE,
    PERM_ITEM_DELETE,
    PERM_INVENTORY_IMPORT,
}
_ADMIN_PERMISSIONS = {
    PERM_MEMBER_ROLE_CHANGE,
    PERM_MEMBER_REMOVE,
    PERM_INVITE_CREATE,
    PERM_INVITE_VIEW,
    PERM_INVITE_REVOKE,
}

ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    ROLE_OWNER: _READ_PERMISSIONS | _WRITE_PERMISSIONS | _ADMIN_PERMISSIONS,
    ROLE_EDITOR: _READ_PERMISSIONS | _WRITE_PERMISSIONS,
    ROLE_VIEWER: set(_READ_PERMISSIONS),
}


@dataclass(frozen=True)
class HouseholdContext:
    """Resolved caller identity for one household: who, where, and with which role."""

    user_id: UUID
    household_id: UUID
    role: str

    def require(self, permission: str) -> str:
        return require_permission(
            self.role, permission, household_id=self.household_id, user_id=self.user_id
        )

    def can(self, permission: str) -> bool:
        return has_permission(self.role, permission)


def normalize_role(role: Optional[str]) -> str:
    if not role:
        return ""
    return role.strip().lower()


def has_permission(role: Optional[str], permission: str) -> bool:
    allowed = ROLE_PERMISSIONS.get(normalize_role(role), set())
    return permission in allowed


def require_permission(
    role: Optional[str],
    permission: str,
    *,
    household_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
) -> str:
    if has_permission(role, permission):
        return normalize_role(role)

    log_structured(
        logging.WARNING,
        "authz_deny",
        permission=permission,
        role=normalize_role(role),
        household_id=str(household_id) if household_id else None,
        user_id=str(user_id) if user_id else None,
    )
    raise Forbidden("Household role does not allow this operation", {"permission": permission})
