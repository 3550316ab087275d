from __future__ import annotations

import math
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.models.order import Order
from webrana.models.plan import PlanPricing, PlanPromo, VpsImage, VpsPlan

DAILY = "DAILY"
MONTHLY = "MONTHLY"
YEARLY = "YEARLY"
BILLING_PERIODS = (DAILY, MONTHLY, YEARLY)

# a daily price derived from a monthly one divides by 28 and rounds up
DAYS_PER_MONTH_DIVISOR = 28


class CatalogError(AppError):
    code = "CATALOG_ERROR"
    status_code = 400


class PlanNotFound(CatalogError):
    code = "PLAN_NOT_FOUND"
    status_code = 404
    message = "Plan not found"


class ImageNotFound(CatalogError):
    code = "IMAGE_NOT_FOUND"
    status_code = 404
    message = "Image not found"


class PromoNotFound(CatalogError):
    code = "PROMO_NOT_FOUND"
    status_code = 404
    message = "Promo not found"


class PricingNotFound(CatalogError):
    code = "PRICING_NOT_FOUND"
    status_code = 404
    message = "Pricing not found"


class DuplicateEntry(CatalogError):
    code = "DUPLICATE_ENTRY"
    status_code = 409
    message = "An entry with the same unique key already exists"


class PlanInUse(CatalogError):
    code = "PLAN_IN_USE"
    status_code = 409
    message = "Plan is referenced by existing orders"


class ResolvedPrice(NamedTuple):
    price: int
    cost: int


# -------------------------
# Pricing rules
# -------------------------
def _active_pricing(plan: VpsPlan, duration: str) -> PlanPricing | None:
    for p in plan.pricings:
        if p.duration == duration and p.is_active:
            return p
    return None


def resolve_pricing(plan: VpsPlan, period: str) -> ResolvedPrice | None:
    found = _active_pricing(plan, period)
    if found is not None:
        return ResolvedPrice(int(found.price), int(found.cost))

    monthly = _active_pricing(plan, MONTHLY)
    if monthly is None:
        return None

    if period == DAILY:
        return ResolvedPrice(
            math.ceil(monthly.price / DAYS_PER_MONTH_DIVISOR),
            math.ceil(monthly.cost / DAYS_PER_MONTH_DIVISOR),
        )
    return ResolvedPrice(int(monthly.price), int(monthly.cost))


def live_promo(plan: VpsPlan, now: datetime | None = None) -> PlanPromo | None:
    now = now or utcnow()
    for promo in plan.promos:
        if promo.is_active and promo.start_date <= now <= promo.end_date:
            return promo
    return None


def discount_for(discount_type: str, value: int, base: int) -> int:
    if discount_type == "PERCENT":
        return round(base * value / 100)
    return int(value)


def promo_discount(plan: VpsPlan, base_price: int, now: datetime | None = None) -> int:
    promo = live_promo(plan, now)
    if promo is None:
        return 0
    return min(base_price, discount_for(promo.discount_type, promo.discount_value, base_price))


def public_plan_view(plan: VpsPlan, now: datetime | None = None) -> dict:
    promo = live_promo(plan, now)
    pricings = []
    for p in plan.pricings:
        if not p.is_active:
            continue
        discount = promo_discount(plan, int(p.price), now)
        pricings.append(
            {
                "duration": p.duration,
                "price": int(p.price),
                "price_after_promo": max(0, int(p.price) - discount),
                "active_promo": promo,
            }
        )
    return {
        "id": plan.id,
        "name": plan.name,
        "display_name": plan.display_name,
        "description": plan.description,
        "cpu": plan.cpu,
        "memory_mb": plan.memory_mb,
        "disk_gb": plan.disk_gb,
        "bandwidth_tb": plan.bandwidth_tb,
        "tags": plan.tags or [],
        "pricings": pricings,
    }


def plan_description(plan: VpsPlan) -> str:
    return f"{plan.display_name} - {plan.cpu} vCPU, {plan.memory_mb} MB RAM, {plan.disk_gb} GB SSD"


# -------------------------
# Plans
# -------------------------
async def get_plan(db: AsyncSession, plan_id: int, *, active_only: bool = False) -> VpsPlan:
    stmt = select(VpsPlan).where(VpsPlan.id == plan_id).execution_options(populate_existing=True)
    if active_only:
        stmt = stmt.where(VpsPlan.is_active.is_(True))
    res = await db.execute(stmt)
    plan = res.scalar_one_or_none()
    if not plan:
        raise PlanNotFound()
    return plan


async def list_plans(db: AsyncSession, *, is_active: bool | None = None) -> list[VpsPlan]:
    stmt = select(VpsPlan).execution_options(populate_existing=True)
    if is_active is not None:
        stmt = stmt.where(VpsPlan.is_active == is_active)
    stmt = stmt.order_by(VpsPlan.sort_order.asc(), VpsPlan.id.asc())
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def create_plan(db: AsyncSession, data) -> VpsPlan:
    plan = VpsPlan(
        name=data.name,
        display_name=data.display_name,
        description=data.description,
        cpu=data.cpu,
        memory_mb=data.memory_mb,
        disk_gb=data.disk_gb,
        bandwidth_tb=data.bandwidth_tb,
        provider=data.provider,
        provider_size_slug=data.provider_size_slug,
        is_active=data.is_active,
        sort_order=data.sort_order,
        tags=list(data.tags),
        pricings=[PlanPricing(**p.model_dump()) for p in data.pricings],
        promos=[PlanPromo(**p.model_dump()) for p in data.promos],
    )
    db.add(plan)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateEntry(f"Plan name {data.name!r} already exists")
    return await get_plan(db, plan.id)


async def update_plan(db: AsyncSession, plan_id: int, data) -> VpsPlan:
    plan = await get_plan(db, plan_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(plan, field, value)
    await db.commit()
    return await get_plan(db, plan_id)


async def set_plan_active(db: AsyncSession, plan_id: int, is_active: bool) -> VpsPlan:
    plan = await get_plan(db, plan_id)
    plan.is_active = is_active
    await db.commit()
    return await get_plan(db, plan_id)


async def delete_plan(db: AsyncSession, plan_id: int) -> None:
    plan = await get_plan(db, plan_id)
    res = await db.execute(select(func.count()).select_from(Order).where(Order.plan_id == plan_id))
    if int(res.scalar_one()) > 0:
        raise PlanInUse()
    await db.delete(plan)
    await db.commit()


async def upsert_pricing(db: AsyncSession, plan_id: int, data) -> VpsPlan:
    await get_plan(db, plan_id)
    res = await db.execute(
        select(PlanPricing).where(PlanPricing.plan_id == plan_id, PlanPricing.duration == data.duration)
    )
    pricing = res.scalar_one_or_none()
    if pricing is None:
        db.add(PlanPricing(plan_id=plan_id, **data.model_dump()))
    else:
        pricing.price = data.price
        pricing.cost = data.cost
        pricing.is_active = data.is_active
    await db.commit()
    return await get_plan(db, plan_id)


async def delete_pricing(db: AsyncSession, plan_id: int, duration: str) -> VpsPlan:
    res = await db.execute(
        delete(PlanPricing).where(PlanPricing.plan_id == plan_id, PlanPricing.duration == duration)
    )
    if not res.rowcount:
        await db.rollback()
        raise PricingNotFound()
    await db.commit()
    return await get_plan(db, plan_id)


async def add_promo(db: AsyncSession, plan_id: int, data) -> VpsPlan:
    await get_plan(db, plan_id)
    db.add(PlanPromo(plan_id=plan_id, **data.model_dump()))
    await db.commit()
    return await get_plan(db, plan_id)


async def _get_promo(db: AsyncSession, plan_id: int, promo_id: int) -> PlanPromo:
    res = await db.execute(select(PlanPromo).where(PlanPromo.id == promo_id, PlanPromo.plan_id == plan_id))
    promo = res.scalar_one_or_none()
    if promo is None:
        raise PromoNotFound()
    return promo


async def update_promo(db: AsyncSession, plan_id: int, promo_id: int, data) -> VpsPlan:
    promo = await _get_promo(db, plan_id, promo_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(promo, field, value)
    await db.commit()
    return await get_plan(db, plan_id)


async def delete_promo(db: AsyncSession, plan_id: int, promo_id: int) -> VpsPlan:
    promo = await _get_promo(db, plan_id, promo_id)
    await db.delete(promo)
    await db.commit()
    return await get_plan(db, plan_id)


# -------------------------
# Images
# -------------------------
async def get_image(db: AsyncSession, image_id: int, *, active_only: bool = False) -> VpsImage:
    stmt = select(VpsImage).where(VpsImage.id == image_id)
    if active_only:
        stmt = stmt.where(VpsImage.is_active.is_(True))
    res = await db.execute(stmt)
    image = res.scalar_one_or_none()
    if image is None:
        raise ImageNotFound()
    return image


async def list_images(db: AsyncSession, *, is_active: bool | None = None) -> list[VpsImage]:
    stmt = select(VpsImage)
    if is_active is not None:
        stmt = stmt.where(VpsImage.is_active == is_active)
    res = await db.execute(stmt.order_by(VpsImage.sort_order.asc(), VpsImage.id.asc()))
    return list(res.scalars().all())


async def create_image(db: AsyncSession, data) -> VpsImage:
    image = VpsImage(**data.model_dump())
    db.add(image)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateEntry(f"Image slug {data.provider_slug!r} already exists")
    return image


async def update_image(db: AsyncSession, image_id: int, data) -> VpsImage:
    image = await get_image(db, image_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(image, field, value)
    await db.commit()
    return image


async def delete_image(db: AsyncSession, image_id: int) -> None:
    image = await get_image(db, image_id)
    res = await db.execute(select(func.count()).select_from(Order).where(Order.image_id == image_id))
    if int(res.scalar_one()) > 0:
        # keep history intact; hide it from the catalog instead
        image.is_active = False
    else:
        await db.delete(image)
    await db.commit()
