from .entities import (
    AuditLog,
    Event,
    Household,
    Invitation,
    Item,
    Location,
    LocationQRCode,
    Membership,
    MovementHistory,
    MovePreview,
    User,
)

__all__ = [
    "AuditLog",
    "Event",
    "Household",
    "Invitation",
    "Item",
    "Location",
    "LocationQRCode",
    "Membership",
    "MovementHistory",
    "MovePreview",
    "User",
]
