from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from webrana.schemas.common import PageMeta


class DepositIn(BaseModel):
    amount: int = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=32)
    return_url: str | None = None
    promo_code: str | None = Field(default=None, max_length=64)


class InvoiceOut(BaseModel):
    id: int
    invoice_number: str
    merchant_ref: str
    user_id: int
    amount: int
    fee: int
    total_credit: int
    promo_code: str | None = None
    bonus_amount: int = 0
    status: str
    payment_method: str
    payment_name: str | None = None
    payment_code: str | None = None
    payment_url: str | None = None
    tripay_reference: str | None = None
    expires_at: datetime
    paid_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceListOut(BaseModel):
    data: list[InvoiceOut]
    meta: PageMeta


class PaymentChannelOut(BaseModel):
    code: str
    name: str
    group: str | None = None
    fee_merchant: dict | None = None
    fee_customer: dict | None = None
    total_fee: dict | None = None
    minimum_fee: int | None = None
    maximum_fee: int | None = None
    icon_url: str | None = None
    active: bool = True


class CallbackAck(BaseModel):
    success: bool = True
