from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    discount_type: Literal["PERCENT", "FIXED"]
    discount_value: int = Field(..., gt=0)
    min_order_amount: int | None = Field(default=None, ge=0)
    max_discount_amount: int | None = Field(default=None, gt=0)
    max_total_redemptions: int | None = Field(default=None, gt=0)
    max_redemptions_per_user: int = Field(default=1, gt=0)
    start_at: datetime
    end_at: datetime
    is_active: bool = True
    plan_ids: list[int] = Field(default_factory=list)
    user_ids: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check(self):
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        if self.discount_type == "PERCENT" and self.discount_value > 100:
            raise ValueError("percent discount cannot exceed 100")
        return self


class CouponUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    discount_value: int | None = Field(default=None, gt=0)
    min_order_amount: int | None = Field(default=None, ge=0)
    max_discount_amount: int | None = Field(default=None, gt=0)
    max_total_redemptions: int | None = Field(default=None, gt=0)
    max_redemptions_per_user: int | None = Field(default=None, gt=0)
    start_at: datetime | None = None
    end_at: datetime | None = None
    is_active: bool | None = None
    plan_ids: list[int] | None = None
    user_ids: list[int] | None = None


class CouponOut(BaseModel):
    id: int
    code: str
    name: str
    description: str | None
    discount_type: str
    discount_value: int
    min_order_amount: int | None
    max_discount_amount: int | None
    max_total_redemptions: int | None
    max_redemptions_per_user: int
    start_at: datetime
    end_at: datetime
    is_active: bool
    plan_ids: list[int]
    user_ids: list[int]
    created_at: datetime

    class Config:
        from_attributes = True


class CouponValidateIn(BaseModel):
    code: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)
    plan_id: int | None = None


class CouponValidateOut(BaseModel):
    valid: bool
    reason: str | None = None
    message: str | None = None
    discount_amount: int = 0
    final_price: int = 0
    code: str | None = None


class CouponStatsOut(BaseModel):
    coupon_id: int
    redemptions: int
    total_discount: int
