from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.coupons import CouponValidateIn, CouponValidateOut
from webrana.services import coupons as coupon_service

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("/validate", response_model=CouponValidateOut)
async def validate_coupon(
    body: CouponValidateIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CouponValidateOut:
    check = await coupon_service.validate(
        db,
        body.code,
        amount=body.amount,
        plan_id=body.plan_id,
        user_id=current_user.id,
    )
    return CouponValidateOut(
        valid=check.valid,
        reason=check.reason,
        message=check.message,
        discount_amount=check.discount_amount,
        final_price=check.final_price,
        code=check.coupon.code if check.coupon else None,
    )
