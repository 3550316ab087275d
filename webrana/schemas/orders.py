from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from webrana.schemas.common import PageMeta


class OrderCreate(BaseModel):
    plan_id: int
    image_id: int
    billing_period: Literal["DAILY", "MONTHLY", "YEARLY"] = "MONTHLY"
    coupon_code: str | None = Field(default=None, max_length=64)
    auto_renew: bool = True


class OrderOut(BaseModel):
    id: int
    user_id: int
    plan_id: int
    plan_name: str
    image_id: int
    image_name: str
    billing_period: str
    base_price: int
    promo_discount: int
    coupon_code: str | None = None
    coupon_discount: int
    final_price: int
    currency: str
    status: str
    auto_renew: bool
    version: int
    paid_at: datetime | None = None
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    suspended_at: datetime | None = None
    terminated_at: datetime | None = None
    termination_reason: str | None = None
    last_renewal_at: datetime | None = None
    renewal_fail_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderItemOut(BaseModel):
    id: int
    item_type: str
    reference_id: str
    description: str
    unit_price: int
    quantity: int
    total_price: int

    class Config:
        from_attributes = True


class StatusHistoryOut(BaseModel):
    id: int
    previous_status: str
    new_status: str
    actor: str
    reason: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    class Config:
        from_attributes = True


class ProvisioningTaskOut(BaseModel):
    id: int
    status: str
    do_account_id: int | None = None
    droplet_id: str | None = None
    droplet_name: str | None = None
    droplet_status: str | None = None
    ipv4_public: str | None = None
    ipv4_private: str | None = None
    do_region: str
    do_size: str
    do_image: str
    attempts: int
    error_code: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class OrderDetailOut(BaseModel):
    order: OrderOut
    items: list[OrderItemOut] = Field(default_factory=list)
    provisioning_task: ProvisioningTaskOut | None = None
    status_history: list[StatusHistoryOut] = Field(default_factory=list)


class OrderListOut(BaseModel):
    data: list[OrderOut]
    meta: PageMeta


class OrderStatusUpdate(BaseModel):
    status: str
    reason: str | None = Field(default=None, max_length=500)
    meta: dict[str, Any] | None = None


class InternalStatusUpdate(OrderStatusUpdate):
    actor: str = Field(..., min_length=1, max_length=64)


class RenewalOut(BaseModel):
    success: bool
    reason: str | None = None
    order: OrderOut


class RenewalHistoryOut(BaseModel):
    id: int
    renewal_type: str
    amount: int
    previous_expiry: datetime | None = None
    new_expiry: datetime | None = None
    success: bool
    fail_reason: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True
