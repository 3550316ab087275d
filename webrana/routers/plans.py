from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db, utcnow
from webrana.schemas.plans import ImageOut, PublicPlanOut
from webrana.services import plans as plan_service

router = APIRouter(tags=["Catalog"])


@router.get("/plans", response_model=list[PublicPlanOut])
async def list_public_plans(db: AsyncSession = Depends(get_db)):
    now = utcnow()
    return [plan_service.public_plan_view(p, now) for p in await plan_service.list_plans(db, is_active=True)]


@router.get("/plans/{plan_id}", response_model=PublicPlanOut)
async def get_public_plan(plan_id: int, db: AsyncSession = Depends(get_db)):
    plan = await plan_service.get_plan(db, plan_id, active_only=True)
    return plan_service.public_plan_view(plan)


@router.get("/images", response_model=list[ImageOut])
async def list_public_images(db: AsyncSession = Depends(get_db)):
    return await plan_service.list_images(db, is_active=True)
