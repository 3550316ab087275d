from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from webrana.schemas.common import PageMeta


class PromoCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    type: Literal["DEPOSIT_BONUS", "WELCOME_BONUS"]
    bonus_type: Literal["PERCENTAGE", "FIXED"]
    bonus_value: int = Field(..., gt=0)
    min_deposit: int | None = Field(default=None, ge=0)
    max_bonus: int | None = Field(default=None, gt=0)
    start_at: datetime
    end_at: datetime
    max_total_uses: int | None = Field(default=None, gt=0)
    max_uses_per_user: int = Field(default=1, gt=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check(self):
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        if self.bonus_type == "PERCENTAGE" and self.bonus_value > 100:
            raise ValueError("percentage bonus cannot exceed 100")
        return self


class PromoUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    bonus_value: int | None = Field(default=None, gt=0)
    min_deposit: int | None = Field(default=None, ge=0)
    max_bonus: int | None = Field(default=None, gt=0)
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_total_uses: int | None = Field(default=None, gt=0)
    max_uses_per_user: int | None = Field(default=None, gt=0)
    is_active: bool | None = None


class PromoOut(BaseModel):
    id: int
    code: str
    name: str
    description: str | None
    type: str
    bonus_type: str
    bonus_value: int
    min_deposit: int | None
    max_bonus: int | None
    start_at: datetime
    end_at: datetime
    max_total_uses: int | None
    max_uses_per_user: int
    current_uses: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PromoListOut(BaseModel):
    data: list[PromoOut]
    meta: PageMeta


class PromoStatsOut(BaseModel):
    id: int
    code: str
    name: str
    total_redemptions: int
    total_bonus_given: int
    unique_users: int
    remaining_uses: int | None = None
    is_active: bool
    days_remaining: int


class PromoValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    deposit_amount: int = Field(..., gt=0)


class PromoSummary(BaseModel):
    id: int
    code: str
    name: str
    bonus_type: str
    bonus_value: int

    class Config:
        from_attributes = True


class PromoValidateOut(BaseModel):
    valid: bool
    promo: PromoSummary
    bonus_amount: int
    total_credit: int


class WelcomeBonusStatusOut(BaseModel):
    eligible: bool
    bonus_amount: int | None = None
    promo_name: str | None = None


class WelcomeBonusClaimOut(BaseModel):
    success: bool
    bonus_amount: int
    message: str
