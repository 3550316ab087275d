from __future__ import annotations

import logging
import math
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.models.promo import DepositPromo, DepositPromoRedemption
from webrana.services import wallet
from webrana.services.coupons import normalize_code

logger = logging.getLogger(__name__)

DEPOSIT_BONUS = "DEPOSIT_BONUS"
WELCOME_BONUS = "WELCOME_BONUS"

PERCENTAGE = "PERCENTAGE"
FIXED = "FIXED"


class PromoError(AppError):
    code = "PROMO_ERROR"
    status_code = 400


class PromoNotFound(PromoError):
    code = "PROMO_NOT_FOUND"
    status_code = 404
    message = "Promo code not found"


class PromoInactive(PromoError):
    code = "PROMO_INACTIVE"
    message = "Promo code is not active"


class PromoExpired(PromoError):
    code = "PROMO_EXPIRED"
    message = "Promo code is not valid at this time"


class PromoExhausted(PromoError):
    code = "PROMO_EXHAUSTED"
    message = "Promo code usage limit reached"


class PromoAlreadyUsed(PromoError):
    code = "PROMO_ALREADY_USED"
    message = "You have already used this promo code"


class PromoMinDepositNotMet(PromoError):
    code = "PROMO_MIN_DEPOSIT_NOT_MET"
    message = "Deposit amount is below the promo minimum"


class PromoIdNotFound(PromoError):
    code = "PROMO_ID_NOT_FOUND"
    status_code = 404
    message = "Promo not found"


class PromoCodeAlreadyExists(PromoError):
    code = "PROMO_CODE_ALREADY_EXISTS"
    status_code = 409
    message = "Promo code already exists"


class WelcomeBonusNotAvailable(PromoError):
    code = "WELCOME_BONUS_NOT_AVAILABLE"
    message = "Welcome bonus is not available or already claimed"


def bonus_for(promo: DepositPromo, deposit_amount: int) -> int:
    if promo.bonus_type == PERCENTAGE:
        bonus = math.floor(deposit_amount * int(promo.bonus_value) / 100)
        if promo.max_bonus:
            bonus = min(bonus, int(promo.max_bonus))
        return bonus
    return int(promo.bonus_value)


async def _user_redemptions(db: AsyncSession, promo_id: int, user_id: int) -> int:
    res = await db.execute(
        select(func.count())
        .select_from(DepositPromoRedemption)
        .where(DepositPromoRedemption.promo_id == promo_id, DepositPromoRedemption.user_id == user_id)
    )
    return int(res.scalar_one())


async def validate_promo(
    db: AsyncSession,
    code: str,
    *,
    user_id: int,
    deposit_amount: int,
    now: datetime | None = None,
) -> dict:
    """Checks a deposit promo for a user and prices the bonus.

    Raises the first failing check: not found, inactive, outside its window,
    exhausted, already used by this user, minimum deposit not met.
    """
    now = now or utcnow()
    code = normalize_code(code)

    res = await db.execute(select(DepositPromo).where(DepositPromo.code == code))
    promo = res.scalar_one_or_none()
    if promo is None:
        raise PromoNotFound(details={"code": code})
    if not promo.is_active:
        raise PromoInactive(details={"code": code})
    if now < promo.start_at or now > promo.end_at:
        raise PromoExpired(details={"code": code})
    if promo.max_total_uses and promo.current_uses >= promo.max_total_uses:
        raise PromoExhausted(details={"code": code})
    if await _user_redemptions(db, promo.id, user_id) >= promo.max_uses_per_user:
        raise PromoAlreadyUsed(details={"code": code})
    if promo.min_deposit and deposit_amount < promo.min_deposit:
        raise PromoMinDepositNotMet(
            f"Minimum deposit for this promo is {promo.min_deposit}",
            details={"code": code, "min_deposit": int(promo.min_deposit)},
        )

    bonus = bonus_for(promo, deposit_amount)
    logger.info("promo validated", extra={"code": code, "user_id": user_id, "bonus_amount": bonus})
    return {
        "valid": True,
        "promo": promo,
        "bonus_amount": bonus,
        "total_credit": deposit_amount + bonus,
    }


async def calculate_deposit_bonus(
    db: AsyncSession, user_id: int, deposit_amount: int, promo_code: str | None
) -> tuple[int, DepositPromo | None]:
    """Bonus for a paid deposit. An unusable code yields no bonus instead of failing the deposit."""
    if not promo_code:
        return 0, None
    try:
        result = await validate_promo(db, promo_code, user_id=user_id, deposit_amount=deposit_amount)
    except PromoError as e:
        logger.warning("promo not applied", extra={"code": promo_code, "user_id": user_id, "reason": e.code})
        return 0, None
    return result["bonus_amount"], result["promo"]


async def apply_promo(
    db: AsyncSession,
    promo: DepositPromo,
    *,
    user_id: int,
    invoice_id: int | None,
    deposit_amount: int,
    bonus_amount: int,
) -> DepositPromoRedemption:
    """Counts a use and records the redemption in the caller's transaction."""
    await db.execute(
        update(DepositPromo)
        .where(DepositPromo.id == promo.id)
        .values(current_uses=DepositPromo.current_uses + 1)
    )
    row = DepositPromoRedemption(
        promo_id=promo.id,
        user_id=user_id,
        invoice_id=invoice_id,
        deposit_amount=deposit_amount,
        bonus_amount=bonus_amount,
    )
    db.add(row)
    await db.flush()
    await db.refresh(promo, ["current_uses"])
    return row


# -------------------------
# Welcome bonus
# -------------------------
async def check_welcome_bonus(db: AsyncSession, user_id: int, now: datetime | None = None) -> DepositPromo | None:
    now = now or utcnow()
    res = await db.execute(
        select(DepositPromo)
        .where(
            DepositPromo.type == WELCOME_BONUS,
            DepositPromo.is_active.is_(True),
            DepositPromo.start_at <= now,
            DepositPromo.end_at >= now,
        )
        .order_by(DepositPromo.created_at, DepositPromo.id)
        .limit(1)
    )
    promo = res.scalar_one_or_none()
    if promo is None:
        return None
    if await _user_redemptions(db, promo.id, user_id) > 0:
        return None
    if promo.max_total_uses and promo.current_uses >= promo.max_total_uses:
        return None
    return promo


async def get_welcome_bonus_status(db: AsyncSession, user_id: int) -> dict:
    promo = await check_welcome_bonus(db, user_id)
    if promo is None:
        return {"eligible": False}
    return {"eligible": True, "bonus_amount": int(promo.bonus_value), "promo_name": promo.name}


async def claim_welcome_bonus(db: AsyncSession, user_id: int) -> dict:
    promo = await check_welcome_bonus(db, user_id)
    if promo is None:
        raise WelcomeBonusNotAvailable()

    bonus = int(promo.bonus_value)
    try:
        await wallet.apply_credit(
            db,
            user_id,
            bonus,
            reference_type=wallet.WELCOME_BONUS,
            reference_id=str(promo.id),
            description=f"Welcome bonus: {promo.name}",
        )
        # the wallet row lock serializes claims by the same user
        if await _user_redemptions(db, promo.id, user_id) > 0:
            raise WelcomeBonusNotAvailable()
        await apply_promo(db, promo, user_id=user_id, invoice_id=None, deposit_amount=0, bonus_amount=bonus)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("welcome bonus claimed", extra={"user_id": user_id, "bonus_amount": bonus})
    return {"success": True, "bonus_amount": bonus, "message": f"Welcome bonus of {bonus} credited"}


# -------------------------
# Admin CRUD
# -------------------------
async def get_promo(db: AsyncSession, promo_id: int) -> DepositPromo:
    promo = await db.get(DepositPromo, promo_id)
    if promo is None:
        raise PromoIdNotFound(details={"id": promo_id})
    return promo


async def list_promos(
    db: AsyncSession,
    *,
    type: str | None = None,
    is_active: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filters = []
    if type:
        filters.append(DepositPromo.type == type)
    if is_active is not None:
        filters.append(DepositPromo.is_active == is_active)

    total_res = await db.execute(select(func.count()).select_from(DepositPromo).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(DepositPromo)
        .where(*filters)
        .order_by(DepositPromo.created_at.desc(), DepositPromo.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return {"data": res.scalars().all(), "meta": page_meta(page, limit, total)}


async def create_promo(db: AsyncSession, data) -> DepositPromo:
    payload = data.model_dump()
    payload["code"] = normalize_code(payload["code"])

    existing = await db.execute(select(DepositPromo.id).where(DepositPromo.code == payload["code"]))
    if existing.scalar_one_or_none() is not None:
        raise PromoCodeAlreadyExists(details={"code": payload["code"]})

    promo = DepositPromo(**payload)
    db.add(promo)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise PromoCodeAlreadyExists(details={"code": payload["code"]})
    logger.info("promo created", extra={"code": promo.code, "type": promo.type})
    return promo


async def update_promo(db: AsyncSession, promo_id: int, data) -> DepositPromo:
    promo = await get_promo(db, promo_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(promo, field, value)
    await db.commit()
    return promo


async def delete_promo(db: AsyncSession, promo_id: int) -> bool:
    """Hard-deletes an unused promo; one with redemptions is only deactivated. Returns True when deleted."""
    promo = await get_promo(db, promo_id)
    res = await db.execute(
        select(func.count()).select_from(DepositPromoRedemption).where(DepositPromoRedemption.promo_id == promo_id)
    )
    if int(res.scalar_one()) > 0:
        promo.is_active = False
        await db.commit()
        logger.info("promo deactivated", extra={"promo_id": promo_id})
        return False

    await db.delete(promo)
    await db.commit()
    logger.info("promo deleted", extra={"promo_id": promo_id})
    return True


async def get_promo_stats(db: AsyncSession, promo_id: int, now: datetime | None = None) -> dict:
    promo = await get_promo(db, promo_id)
    now = now or utcnow()
    res = await db.execute(
        select(
            func.coalesce(func.sum(DepositPromoRedemption.bonus_amount), 0),
            func.count(func.distinct(DepositPromoRedemption.user_id)),
        ).where(DepositPromoRedemption.promo_id == promo_id)
    )
    total_bonus, unique_users = res.one()
    seconds_left = (promo.end_at - now).total_seconds()
    return {
        "id": promo.id,
        "code": promo.code,
        "name": promo.name,
        "total_redemptions": int(promo.current_uses),
        "total_bonus_given": int(total_bonus),
        "unique_users": int(unique_users),
        "remaining_uses": promo.max_total_uses - promo.current_uses if promo.max_total_uses else None,
        "is_active": promo.is_active,
        "days_remaining": max(0, math.ceil(seconds_left / 86400)),
    }
