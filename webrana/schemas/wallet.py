from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from webrana.schemas.common import PageMeta


class BalanceOut(BaseModel):
    user_id: int
    balance: int
    currency: str = "IDR"


class TransactionOut(BaseModel):
    id: int
    user_id: int
    type: str
    amount: int
    balance_before: int
    balance_after: int
    reference_type: str
    reference_id: str | None = None
    description: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionListOut(BaseModel):
    data: list[TransactionOut]
    meta: PageMeta


class AdminAdjustIn(BaseModel):
    user_id: int
    # positive credits, negative debits
    amount: int
    note: str | None = Field(default=None, max_length=500)
