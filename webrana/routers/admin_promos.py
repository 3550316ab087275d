from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.schemas.promos import PromoCreate, PromoListOut, PromoOut, PromoStatsOut, PromoUpdate
from webrana.services import promos as promo_service

router = APIRouter(prefix="/admin/promos", tags=["Admin - Promos"])


@router.post("", response_model=PromoOut, status_code=201)
async def create_promo(
    body: PromoCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await promo_service.create_promo(db, body)


@router.get("", response_model=PromoListOut)
async def list_promos(
    type: Optional[Literal["DEPOSIT_BONUS", "WELCOME_BONUS"]] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await promo_service.list_promos(db, type=type, is_active=is_active, page=page, limit=limit)


@router.get("/{promo_id}", response_model=PromoOut)
async def get_promo(
    promo_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await promo_service.get_promo(db, promo_id)


@router.patch("/{promo_id}", response_model=PromoOut)
async def update_promo(
    promo_id: int,
    body: PromoUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await promo_service.update_promo(db, promo_id, body)


@router.delete("/{promo_id}", status_code=204)
async def delete_promo(
    promo_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    await promo_service.delete_promo(db, promo_id)
    return Response(status_code=204)


@router.get("/{promo_id}/stats", response_model=PromoStatsOut)
async def promo_stats(
    promo_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await promo_service.get_promo_stats(db, promo_id)
