# webrana/schemas/plans.py
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

Duration = Literal["DAILY", "MONTHLY", "YEARLY"]
DiscountType = Literal["PERCENT", "FIXED"]


class PricingIn(BaseModel):
    duration: Duration
    price: int = Field(..., gt=0)
    cost: int = Field(default=0, ge=0)
    is_active: bool = True


class PromoIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    discount_type: DiscountType
    discount_value: int = Field(..., gt=0)
    start_date: datetime
    end_date: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if self.discount_type == "PERCENT" and self.discount_value > 100:
            raise ValueError("percent discount cannot exceed 100")
        return self


class PromoUpdate(BaseModel):
    name: str | None = None
    discount_type: DiscountType | None = None
    discount_value: int | None = Field(default=None, gt=0)
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool | None = None


class PlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    cpu: int = Field(..., ge=1)
    memory_mb: int = Field(..., ge=256)
    disk_gb: int = Field(..., ge=10)
    bandwidth_tb: float = Field(default=1.0, gt=0)
    provider: str = "digitalocean"
    provider_size_slug: str = Field(..., min_length=1)
    is_active: bool = True
    sort_order: int = 0
    tags: list[str] = Field(default_factory=list)

    pricings: list[PricingIn] = Field(default_factory=list)
    promos: list[PromoIn] = Field(default_factory=list)


class PlanUpdate(BaseModel):
    display_name: str | None = None
    description: str | None = None
    cpu: int | None = Field(default=None, ge=1)
    memory_mb: int | None = Field(default=None, ge=256)
    disk_gb: int | None = Field(default=None, ge=10)
    bandwidth_tb: float | None = Field(default=None, gt=0)
    provider_size_slug: str | None = None
    is_active: bool | None = None
    sort_order: int | None = None
    tags: list[str] | None = None


class PlanActiveIn(BaseModel):
    is_active: bool


class PricingOut(BaseModel):
    id: int
    duration: str
    price: int
    cost: int
    is_active: bool

    class Config:
        from_attributes = True


class PromoOut(BaseModel):
    id: int
    name: str
    discount_type: str
    discount_value: int
    start_date: datetime
    end_date: datetime
    is_active: bool

    class Config:
        from_attributes = True


class PlanOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: str | None
    cpu: int
    memory_mb: int
    disk_gb: int
    bandwidth_tb: float
    provider: str
    provider_size_slug: str
    is_active: bool
    sort_order: int
    tags: list[str]
    created_at: datetime
    pricings: list[PricingOut]
    promos: list[PromoOut]

    class Config:
        from_attributes = True


class PublicPricingOut(BaseModel):
    duration: str
    price: int
    price_after_promo: int
    active_promo: PromoOut | None = None


class PublicPlanOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: str | None
    cpu: int
    memory_mb: int
    disk_gb: int
    bandwidth_tb: float
    tags: list[str]
    pricings: list[PublicPricingOut]


class ImageCreate(BaseModel):
    provider: str = "digitalocean"
    provider_slug: str = Field(..., min_length=1, max_length=128)
    display_name: str = Field(..., min_length=1, max_length=255)
    distribution: str = Field(..., min_length=1, max_length=64)
    version: str | None = None
    is_active: bool = True
    sort_order: int = 0


class ImageUpdate(BaseModel):
    display_name: str | None = None
    distribution: str | None = None
    version: str | None = None
    is_active: bool | None = None
    sort_order: int | None = None


class ImageOut(BaseModel):
    id: int
    provider: str
    provider_slug: str
    display_name: str
    distribution: str
    version: str | None
    is_active: bool
    sort_order: int

    class Config:
        from_attributes = True
