from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.models.coupon import Coupon, CouponRedemption
from webrana.services.plans import discount_for

NOT_FOUND = "NOT_FOUND"
INACTIVE = "INACTIVE"
BEFORE_START = "BEFORE_START"
EXPIRED = "EXPIRED"
LIMIT_GLOBAL_REACHED = "LIMIT_GLOBAL_REACHED"
LIMIT_PER_USER_REACHED = "LIMIT_PER_USER_REACHED"
PLAN_NOT_ALLOWED = "PLAN_NOT_ALLOWED"
USER_NOT_ALLOWED = "USER_NOT_ALLOWED"
MIN_AMOUNT_NOT_MET = "MIN_AMOUNT_NOT_MET"

_REASON_MESSAGES = {
    NOT_FOUND: "Coupon not found",
    INACTIVE: "Coupon is not active",
    BEFORE_START: "Coupon is not valid yet",
    EXPIRED: "Coupon has expired",
    LIMIT_GLOBAL_REACHED: "Coupon usage limit reached",
    LIMIT_PER_USER_REACHED: "You have already used this coupon",
    PLAN_NOT_ALLOWED: "Coupon is not valid for this plan",
    USER_NOT_ALLOWED: "Coupon is not valid for this account",
    MIN_AMOUNT_NOT_MET: "Order amount is below the coupon minimum",
}


class CouponError(AppError):
    code = "COUPON_ERROR"
    status_code = 400


class InvalidCoupon(CouponError):
    code = "INVALID_COUPON"
    message = "Invalid coupon"

    def __init__(self, reason: str):
        super().__init__(_REASON_MESSAGES.get(reason, "Invalid coupon"), details={"reason": reason})
        self.reason = reason


class CouponNotFound(CouponError):
    code = "COUPON_NOT_FOUND"
    status_code = 404
    message = "Coupon not found"


class DuplicateCoupon(CouponError):
    code = "DUPLICATE_ENTRY"
    status_code = 409
    message = "Coupon code already exists"


@dataclass
class CouponCheck:
    valid: bool
    reason: str | None = None
    discount_amount: int = 0
    final_price: int = 0
    coupon: Coupon | None = None

    @property
    def message(self) -> str | None:
        return _REASON_MESSAGES.get(self.reason) if self.reason else None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def coupon_discount(coupon: Coupon, amount: int) -> int:
    discount = discount_for(coupon.discount_type, int(coupon.discount_value), amount)
    if coupon.max_discount_amount is not None:
        discount = min(discount, int(coupon.max_discount_amount))
    return min(discount, amount)


async def _redemption_count(db: AsyncSession, coupon_id: int, user_id: int | None = None) -> int:
    stmt = select(func.count()).select_from(CouponRedemption).where(CouponRedemption.coupon_id == coupon_id)
    if user_id is not None:
        stmt = stmt.where(CouponRedemption.user_id == user_id)
    res = await db.execute(stmt)
    return int(res.scalar_one())


async def validate(
    db: AsyncSession,
    code: str,
    *,
    amount: int,
    plan_id: int | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> CouponCheck:
    now = now or utcnow()

    res = await db.execute(select(Coupon).where(Coupon.code == normalize_code(code)))
    coupon = res.scalar_one_or_none()
    if coupon is None:
        return CouponCheck(valid=False, reason=NOT_FOUND)
    if not coupon.is_active:
        return CouponCheck(valid=False, reason=INACTIVE)
    if now < coupon.start_at:
        return CouponCheck(valid=False, reason=BEFORE_START)
    if now > coupon.end_at:
        return CouponCheck(valid=False, reason=EXPIRED)

    if coupon.max_total_redemptions is not None:
        if await _redemption_count(db, coupon.id) >= coupon.max_total_redemptions:
            return CouponCheck(valid=False, reason=LIMIT_GLOBAL_REACHED)

    if user_id is not None:
        if await _redemption_count(db, coupon.id, user_id) >= coupon.max_redemptions_per_user:
            return CouponCheck(valid=False, reason=LIMIT_PER_USER_REACHED)

    if coupon.plan_ids and plan_id is not None and plan_id not in coupon.plan_ids:
        return CouponCheck(valid=False, reason=PLAN_NOT_ALLOWED)
    if coupon.user_ids and user_id is not None and user_id not in coupon.user_ids:
        return CouponCheck(valid=False, reason=USER_NOT_ALLOWED)

    if coupon.min_order_amount is not None and amount < coupon.min_order_amount:
        return CouponCheck(valid=False, reason=MIN_AMOUNT_NOT_MET)

    discount = coupon_discount(coupon, amount)
    return CouponCheck(
        valid=True,
        discount_amount=discount,
        final_price=max(0, amount - discount),
        coupon=coupon,
    )


async def validate_or_raise(db: AsyncSession, code: str, **kwargs) -> CouponCheck:
    check = await validate(db, code, **kwargs)
    if not check.valid:
        raise InvalidCoupon(check.reason or NOT_FOUND)
    return check


def redeem(db: AsyncSession, coupon: Coupon, *, user_id: int, order_id: int, amount: int) -> CouponRedemption:
    """Records a redemption in the caller's transaction."""
    row = CouponRedemption(coupon_id=coupon.id, user_id=user_id, order_id=order_id, amount=amount)
    db.add(row)
    return row


# -------------------------
# Admin CRUD
# -------------------------
async def list_coupons(db: AsyncSession, *, is_active: bool | None = None) -> list[Coupon]:
    stmt = select(Coupon)
    if is_active is not None:
        stmt = stmt.where(Coupon.is_active == is_active)
    res = await db.execute(stmt.order_by(Coupon.created_at.desc(), Coupon.id.desc()))
    return list(res.scalars().all())


async def get_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None:
        raise CouponNotFound()
    return coupon


async def create_coupon(db: AsyncSession, data) -> Coupon:
    payload = data.model_dump()
    payload["code"] = normalize_code(payload["code"])
    coupon = Coupon(**payload)
    db.add(coupon)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateCoupon(f"Coupon code {payload['code']} already exists")
    return coupon


async def update_coupon(db: AsyncSession, coupon_id: int, data) -> Coupon:
    coupon = await get_coupon(db, coupon_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(coupon, field, value)
    await db.commit()
    return coupon


async def deactivate_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await get_coupon(db, coupon_id)
    coupon.is_active = False
    await db.commit()
    return coupon


async def delete_coupon(db: AsyncSession, coupon_id: int) -> None:
    coupon = await get_coupon(db, coupon_id)
    await db.delete(coupon)
    await db.commit()


async def redemption_stats(db: AsyncSession, coupon_id: int) -> dict:
    await get_coupon(db, coupon_id)
    res = await db.execute(
        select(func.count(), func.coalesce(func.sum(CouponRedemption.amount), 0)).where(
            CouponRedemption.coupon_id == coupon_id
        )
    )
    count, total = res.one()
    return {"coupon_id": coupon_id, "redemptions": int(count), "total_discount": int(total)}
