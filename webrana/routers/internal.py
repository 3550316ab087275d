from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_api_key
from webrana.schemas.orders import InternalStatusUpdate, OrderDetailOut, OrderListOut, OrderOut
from webrana.services import orders as order_service

router = APIRouter(prefix="/internal", tags=["Internal"], dependencies=[Depends(require_api_key)])


@router.get("/orders", response_model=OrderListOut)
async def internal_list_orders(
    status: str = Query(...),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await order_service.list_orders(db, status=status, page=page, limit=limit)


@router.get("/orders/{order_id}", response_model=OrderDetailOut)
async def internal_get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return await order_service.get_order_detail(db, order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
async def internal_update_status(
    order_id: int,
    body: InternalStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await order_service.update_order_status(
        db,
        order_id,
        body.status,
        actor=body.actor,
        reason=body.reason,
        meta=body.meta,
    )
