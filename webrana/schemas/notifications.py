from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from webrana.schemas.common import PageMeta


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListOut(BaseModel):
    data: list[NotificationOut]
    meta: PageMeta


class UnreadCountOut(BaseModel):
    count: int


class MarkAllReadOut(BaseModel):
    updated: int
