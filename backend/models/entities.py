from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.db.base import Base, TimestampMixin, UUIDMixin, utcnow


class User(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(192), default=None)

    memberships: Mapped[List[Membership]] = relationship(
        "Membership",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="Membership.user_id",
    )


class Household(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "households"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    members: Mapped[List[Membership]] = relationship(
        "Membership", back_populates="household", cascade="all, delete-orphan"
    )
    locations: Mapped[List[Location]] = relationship(
        "Location", back_populates="household", cascade="all, delete-orphan"
    )
    items: Mapped[List[Item]] = relationship(
        "Item", back_populates="household", cascade="all, delete-orphan"
    )


class Membership(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "household_members"
    __table_args__ = (UniqueConstraint("household_id", "user_id"),)

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="viewer")
    invited_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    household: Mapped[Household] = relationship("Household", back_populates="members")
    user: Mapped[User] = relationship("User", back_populates="memberships", foreign_keys=[user_id])


class Invitation(UUIDMixin, Base):
    __tablename__ = "household_invitations"

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(254), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    invited_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Location(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "locations"
    __table_args__ = (Index("ix_locations_household_parent", "household_id", "parent_id"),)

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    type: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    description: Mapped[Optional[str]] = mapped_column(String(512), default=None)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), default=None)
    path_cache: Mapped[str] = mapped_column(Text, nullable=False, default="")

    household: Mapped[Household] = relationship("Household", back_populates="locations")
    items: Mapped[List[Item]] = relationship("Item", back_populates="location")


class Item(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "items"
    __table_args__ = (
        Index("ix_items_household_location", "household_id", "location_id"),
        CheckConstraint("quantity IS NULL OR quantity >= 0", name="ck_items_quantity_nonnegative"),
    )

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, default=None)
    keywords: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    quantity: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), default=None)

    household: Mapped[Household] = relationship("Household", back_populates="items")
    location: Mapped[Location] = relationship("Location", back_populates="items")


class LocationQRCode(UUIDMixin, TimestampMixin, Base):
    """Stable scan code printed on a location's label; one per location."""

    __tablename__ = "location_qr_codes"
    __table_args__ = (Index("ix_location_qr_codes_household_created", "household_id", "created_at"),)

    location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True, default=uuid.uuid4)


class MovePreview(UUIDMixin, Base):
    __tablename__ = "move_previews"
    __table_args__ = (Index("ix_move_previews_household_location", "household_id", "location_id"),)

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    new_parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    issued_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    affected_locations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    affected_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MovementHistory(UUIDMixin, Base):
    __tablename__ = "movement_history"
    __table_args__ = (Index("ix_movement_history_item_created", "item_id", "created_at"),)

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    from_location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    to_location_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    moved_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    source: Mapped[str] = mapped_column(String(64), nullable=False, default="api.items.patch")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Event(UUIDMixin, Base):
    __tablename__ = "events"

    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, default=None)
    actor_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    actor: Mapped[Optional[User]] = relationship("User", foreign_keys=[actor_user_id])


class AuditLog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "audit_log"

    household_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=True
    )
    actor_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    entity: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    target_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    payload_json: Mapped[Optional[str]] = mapped_column(Text, default=None)
