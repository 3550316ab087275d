from __future__ import annotations

from pydantic import BaseModel


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class MessageOut(BaseModel):
    message: str
