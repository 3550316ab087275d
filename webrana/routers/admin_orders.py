from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.models.user import User
from webrana.schemas.orders import (
    OrderDetailOut,
    OrderListOut,
    OrderOut,
    OrderStatusUpdate,
    RenewalHistoryOut,
    RenewalOut,
)
from webrana.services import lifecycle
from webrana.services import orders as order_service
from webrana.services.provisioning import provision_order

router = APIRouter(prefix="/admin/orders", tags=["Admin - Orders"])


@router.get("", response_model=OrderListOut)
async def admin_list_orders(
    user_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await order_service.list_orders(db, user_id=user_id, status=status, page=page, limit=limit)


@router.get("/{order_id}", response_model=OrderDetailOut)
async def admin_get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await order_service.get_order_detail(db, order_id)


@router.patch("/{order_id}/status", response_model=OrderOut)
async def admin_update_status(
    order_id: int,
    body: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await order_service.update_order_status(
        db,
        order_id,
        body.status,
        actor=order_service.user_actor(admin_user),
        reason=body.reason,
        meta=body.meta,
    )


@router.post("/{order_id}/retry-provisioning", response_model=OrderOut)
async def admin_retry_provisioning(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    order = await order_service.retry_provisioning(db, admin_user, order_id)
    if settings.PROVISIONING_AUTOSTART:
        background_tasks.add_task(provision_order, order.id)
    return order


@router.post("/{order_id}/restore", response_model=RenewalOut)
async def admin_restore_suspended(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await lifecycle.restore_suspended(db, order_id, actor=order_service.user_actor(admin_user))


@router.post("/{order_id}/terminate", response_model=OrderOut)
async def admin_terminate(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    order = await order_service.get_order(db, order_id)
    await lifecycle.terminate(db, order, "ADMIN_TERMINATED", actor=order_service.user_actor(admin_user))
    return await order_service.get_order(db, order_id)


@router.get("/{order_id}/renewals", response_model=list[RenewalHistoryOut])
async def admin_renewal_history(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    await order_service.get_order(db, order_id)
    return await lifecycle.get_renewal_history(db, order_id)
