from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.instances import (
    ConsoleOut,
    InstanceActionIn,
    InstanceActionOut,
    InstanceListOut,
    InstanceOut,
)
from webrana.schemas.orders import RenewalOut
from webrana.services import instances as instance_service

router = APIRouter(prefix="/instances", tags=["Instances"])


@router.get("", response_model=InstanceListOut)
async def list_instances(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await instance_service.list_instances(db, current_user, page=page, limit=limit)


@router.get("/{order_id}", response_model=InstanceOut)
async def get_instance(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await instance_service.get_instance(db, current_user, order_id)


@router.post("/{order_id}/actions", response_model=InstanceActionOut)
async def trigger_action(
    order_id: int,
    body: InstanceActionIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    action = await instance_service.trigger_action(db, current_user, order_id, body.action)
    return InstanceActionOut.from_do(action)


@router.get("/{order_id}/console", response_model=ConsoleOut)
async def get_console(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await instance_service.get_console(db, current_user, order_id)


@router.post("/{order_id}/renew", response_model=RenewalOut)
async def renew_instance(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await instance_service.renew(db, current_user, order_id)
