from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.orders import OrderCreate, OrderDetailOut, OrderListOut, OrderOut
from webrana.services import orders as order_service
from webrana.services.provisioning import provision_order

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", response_model=OrderOut, status_code=201)
async def create_order(
    body: OrderCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = await order_service.create_order(
        db,
        current_user,
        plan_id=body.plan_id,
        image_id=body.image_id,
        billing_period=body.billing_period,
        coupon_code=body.coupon_code,
        auto_renew=body.auto_renew,
    )
    if settings.PROVISIONING_AUTOSTART:
        background_tasks.add_task(provision_order, order.id)
    return order


@router.get("", response_model=OrderListOut)
async def my_orders(
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await order_service.list_orders(db, user_id=current_user.id, status=status, page=page, limit=limit)


@router.get("/{order_id}", response_model=OrderDetailOut)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await order_service.get_order_detail(db, order_id, current_user)


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await order_service.cancel_order(db, current_user, order_id)
