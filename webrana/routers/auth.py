from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.auth import ChangePasswordIn, LoginIn, RefreshIn, RegisterIn, TokenOut, UserOut
from webrana.schemas.common import MessageOut
from webrana.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["Auth"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/register", response_model=UserOut, status_code=201)
async def register(body: RegisterIn, db: AsyncSession = Depends(get_db)):
    return await auth_service.register(
        db,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        phone=body.phone,
    )


@router.post("/login", response_model=TokenOut)
async def login(body: LoginIn, request: Request, db: AsyncSession = Depends(get_db)):
    return await auth_service.login(
        db,
        email=body.email,
        password=body.password,
        device_info=body.device_info or request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )


@router.post("/refresh", response_model=TokenOut)
async def refresh(body: RefreshIn, request: Request, db: AsyncSession = Depends(get_db)):
    return await auth_service.refresh(
        db,
        body.refresh_token,
        device_info=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )


@router.post("/logout", response_model=MessageOut)
async def logout(body: RefreshIn, db: AsyncSession = Depends(get_db)):
    await auth_service.logout(db, body.refresh_token)
    return MessageOut(message="Logged out")


@router.post("/logout-all", response_model=MessageOut)
async def logout_all(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    count = await auth_service.logout_all(db, current_user)
    return MessageOut(message=f"Revoked {count} sessions")


@router.post("/change-password", response_model=MessageOut)
async def change_password(
    body: ChangePasswordIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await auth_service.change_password(
        db,
        current_user,
        current_password=body.current_password,
        new_password=body.new_password,
    )
    return MessageOut(message="Password changed")
