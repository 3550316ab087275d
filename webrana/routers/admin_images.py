from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.schemas.plans import ImageCreate, ImageOut, ImageUpdate
from webrana.services import plans as plan_service

router = APIRouter(prefix="/admin/images", tags=["Admin - Images"])


@router.post("", response_model=ImageOut, status_code=201)
async def create_image(
    body: ImageCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.create_image(db, body)


@router.get("", response_model=list[ImageOut])
async def list_images(
    is_active: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.list_images(db, is_active=is_active)


@router.patch("/{image_id}", response_model=ImageOut)
async def update_image(
    image_id: int,
    body: ImageUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await plan_service.update_image(db, image_id, body)


@router.delete("/{image_id}", status_code=204)
async def delete_image(
    image_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    await plan_service.delete_image(db, image_id)
    return Response(status_code=204)
