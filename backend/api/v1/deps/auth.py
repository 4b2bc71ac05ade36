from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.orm import Session

from backend.db.session import get_session
from backend.models.entities import User
from backend.permissions import HouseholdContext
from backend.security.jwt import decode_token
from backend.services.households import resolve_context
from backend.services.tree_store import TreeStore

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    try:
        payload = decode_token(credentials.credentials)
    except PyJWTError as exc:
        raise _unauthorized("Invalid authentication token") from exc
    if payload.get("token_type") != "access":
        raise _unauthorized("Access tokens only")
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise _unauthorized("Token missing subject") from exc
    user = session.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user


def require_household_access(
    household_id: UUID,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> HouseholdContext:
    return resolve_context(session, household_id, user.id)


def get_tree_store(
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> TreeStore:
    return TreeStore(session, ctx.household_id)
