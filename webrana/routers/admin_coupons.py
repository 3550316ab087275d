from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.schemas.coupons import CouponCreate, CouponOut, CouponStatsOut, CouponUpdate
from webrana.services import coupons as coupon_service

router = APIRouter(prefix="/admin/coupons", tags=["Admin - Coupons"])


@router.post("", response_model=CouponOut, status_code=201)
async def create_coupon(
    body: CouponCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.create_coupon(db, body)


@router.get("", response_model=list[CouponOut])
async def list_coupons(
    is_active: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.list_coupons(db, is_active=is_active)


@router.get("/{coupon_id}", response_model=CouponOut)
async def get_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.get_coupon(db, coupon_id)


@router.patch("/{coupon_id}", response_model=CouponOut)
async def update_coupon(
    coupon_id: int,
    body: CouponUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.update_coupon(db, coupon_id, body)


@router.post("/{coupon_id}/deactivate", response_model=CouponOut)
async def deactivate_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.deactivate_coupon(db, coupon_id)


@router.delete("/{coupon_id}", status_code=204)
async def delete_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    await coupon_service.delete_coupon(db, coupon_id)
    return Response(status_code=204)


@router.get("/{coupon_id}/stats", response_model=CouponStatsOut)
async def coupon_stats(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.redemption_stats(db, coupon_id)
