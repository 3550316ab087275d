from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.promos import (
    PromoValidateIn,
    PromoValidateOut,
    WelcomeBonusClaimOut,
    WelcomeBonusStatusOut,
)
from webrana.services import promos as promo_service

router = APIRouter(prefix="/promo", tags=["Promo"])


@router.post("/validate", response_model=PromoValidateOut)
async def validate_promo(
    body: PromoValidateIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await promo_service.validate_promo(
        db, body.code, user_id=current_user.id, deposit_amount=body.deposit_amount
    )


@router.get("/welcome-bonus", response_model=WelcomeBonusStatusOut)
async def welcome_bonus_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await promo_service.get_welcome_bonus_status(db, current_user.id)


@router.post("/welcome-bonus/claim", response_model=WelcomeBonusClaimOut)
async def claim_welcome_bonus(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await promo_service.claim_welcome_bonus(db, current_user.id)
