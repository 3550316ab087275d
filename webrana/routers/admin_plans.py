from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.schemas.plans import (
    Duration,
    PlanActiveIn,
    PlanCreate,
    PlanOut,
    PlanUpdate,
    PricingIn,
    PromoIn,
    PromoUpdate,
)
from webrana.services import plans as plan_service

router = APIRouter(prefix="/admin/plans", tags=["Admin - Plans"])


@router.post("", response_model=PlanOut, status_code=201)
async def create_plan(
    body: PlanCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.create_plan(db, body)


@router.get("", response_model=list[PlanOut])
async def list_plans(
    is_active: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.list_plans(db, is_active=is_active)


@router.get("/{plan_id}", response_model=PlanOut)
async def get_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.get_plan(db, plan_id)


@router.patch("/{plan_id}", response_model=PlanOut)
async def update_plan(
    plan_id: int,
    body: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.update_plan(db, plan_id, body)


@router.patch("/{plan_id}/active", response_model=PlanOut)
async def set_plan_active(
    plan_id: int,
    body: PlanActiveIn,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.set_plan_active(db, plan_id, body.is_active)


@router.delete("/{plan_id}", status_code=204)
async def delete_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    await plan_service.delete_plan(db, plan_id)
    return Response(status_code=204)


# -------------------------
# Pricing
# -------------------------
@router.put("/{plan_id}/pricing", response_model=PlanOut)
async def upsert_pricing(
    plan_id: int,
    body: PricingIn,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.upsert_pricing(db, plan_id, body)


@router.delete("/{plan_id}/pricing/{duration}", response_model=PlanOut)
async def delete_pricing(
    plan_id: int,
    duration: Duration,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.delete_pricing(db, plan_id, duration)


# -------------------------
# Promos
# -------------------------
@router.post("/{plan_id}/promos", response_model=PlanOut, status_code=201)
async def add_promo(
    plan_id: int,
    body: PromoIn,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.add_promo(db, plan_id, body)


@router.patch("/{plan_id}/promos/{promo_id}", response_model=PlanOut)
async def update_promo(
    plan_id: int,
    promo_id: int,
    body: PromoUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.update_promo(db, plan_id, promo_id, body)


@router.delete("/{plan_id}/promos/{promo_id}", response_model=PlanOut)
async def delete_promo(
    plan_id: int,
    promo_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.delete_promo(db, plan_id, promo_id)
