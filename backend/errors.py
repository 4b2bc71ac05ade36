from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError

ERROR_CODES = {
    "validation": "VALIDATION_ERROR",
    "http": "HTTP_ERROR",
    "internal": "INTERNAL_ERROR",
    "not_found": "NOT_FOUND",
    "invalid_operation": "INVALID_OPERATION",
    "conflict": "CONFLICT",
    "forbidden": "FORBIDDEN",
    "unavailable": "SERVICE_UNAVAILABLE",
}


class DomainError(Exception):
    """Base class for failures the request boundary reports with their kind intact."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        return ERROR_CODES[self.kind]


class NotFound(DomainError):
    """Referenced row is missing or belongs to another household."""

    kind = "not_found"
    status_code = 404


class InvalidOperation(DomainError):
    """The mutation would break a structural invariant (cycle, empty name)."""

    kind = "invalid_operation"
    status_code = 422


class Conflict(DomainError):
    """Dependents exist, state went stale since a preview, or last-owner violation."""

    kind = "conflict"
    status_code = 409


class Forbidden(DomainError):
    kind = "forbidden"
    status_code = 403


class ServiceUnavailable(DomainError):
    kind = "unavailable"
    status_code = 503


def make_error_payload(code: str, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        }
    }


def format_validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    formatted: List[Dict[str, Any]] = []
    for err in exc.errors():
        formatted.append(
            {
                "loc": err.get("loc"),
                "msg": err.get("msg"),
                "type": err.get("type"),
            }
        )
    return formatted


def http_error_payload(exc: HTTPException) -> Dict[str, Any]:
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    return make_error_payload(
        ERROR_CODES["http"],
        message,
        {"status_code": exc.status_code},
    )


def domain_error_payload(exc: DomainError) -> Dict[str, Any]:
    return make_error_payload(exc.code, exc.message, exc.details)
