from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.auth import MeOut, ProfileUpdate
from webrana.services import auth as auth_service

router = APIRouter(tags=["Me"])


@router.get("/me", response_model=MeOut)
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await auth_service.get_profile(db, current_user)


@router.patch("/me", response_model=MeOut)
async def update_me(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = await auth_service.update_profile(db, current_user, body)
    return await auth_service.get_profile(db, user)
