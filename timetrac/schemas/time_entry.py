"""Request and response bodies for the /api/tracks endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EntryStart(BaseModel):
    model_config = ConfigDict(extra="ignore")

    project: Optional[str] = None
    tags: Optional[list[str]] = None
    note: Optional[str] = None
    color: Optional[str] = None
    location_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    location_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    location_addr: Optional[str] = None
    photo_data: Optional[str] = None


class EntryStop(BaseModel):
    id: Optional[UUID] = None


class EntryUpdate(BaseModel):
    """Partial update. Use ``model_dump(exclude_unset=True)`` so that absent
    fields stay absent and an explicit ``null`` still reaches the ledger."""

    model_config = ConfigDict(extra="forbid")

    project: Optional[str] = None
    tags: Optional[list[str]] = None
    note: Optional[str] = None
    color: Optional[str] = None


class EntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project: str
    tags: list[str] = Field(default_factory=list)
    note: str
    color: str
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_addr: Optional[str] = None
    photo_data: Optional[str] = None
    start_at: datetime
    end_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    running: bool
    duration_seconds: int


class DeleteResponse(BaseModel):
    status: str = "deleted"
