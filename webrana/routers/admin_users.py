from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.schemas.auth import AdminUserUpdate, UserListOut, UserOut
from webrana.services import auth as auth_service

router = APIRouter(prefix="/admin/users", tags=["Admin - Users"])


@router.get("", response_model=UserListOut)
async def list_users(
    email: Optional[str] = Query(default=None),
    role: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await auth_service.list_users(db, email=email, role=role, status=status, page=page, limit=limit)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await auth_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int,
    body: AdminUserUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await auth_service.admin_update_user(db, user_id, status=body.status, role=body.role)
