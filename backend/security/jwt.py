from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALG", "HS256")
JWT_ISSUER = os.getenv("JWT_ISSUER", "homestash")
ACCESS_TOKEN_TTL_MIN = int(os.getenv("ACCESS_TOKEN_TTL_MIN", "15"))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _build_payload(user_id: str, token_type: str, expires_delta: timedelta) -> Dict[str, Any]:
    now = _now()
    return {
        "sub": user_id,
        "iss": JWT_ISSUER,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "token_type": token_type,
    }


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> Tuple[str, int]:
    """Mint an access token the way the identity provider does (used by tooling and tests)."""
    delta = expires_delta if expires_delta is not None else timedelta(minutes=ACCESS_TOKEN_TTL_MIN)
    payload = _build_payload(user_id, "access", delta)
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token, int(delta.total_seconds())


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        issuer=JWT_ISSUER,
        options={"require": ["sub", "exp"]},
    )
