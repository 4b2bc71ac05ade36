from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TimestampedSchema(BaseModel):
    created_at: datetime
    updated_at: datetime


class LocationOut(TimestampedSchema):
    id: UUID
    household_id: UUID
    parent_id: Optional[UUID]
    name: str
    code: Optional[str]
    type: Optional[str]
    description: Optional[str]
    image_url: Optional[str]
    path: str = Field(..., validation_alias="path_cache", description="Ancestor names joined by ' > '")

    model_config = ConfigDict(from_attributes=True)


class ItemOut(TimestampedSchema):
    id: UUID
    household_id: UUID
    location_id: UUID
    name: str
    description: Optional[str]
    keywords: list[str]
    quantity: Optional[int] = None
    image_url: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int
