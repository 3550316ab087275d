from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.models.user import User
from webrana.schemas.wallet import AdminAdjustIn, BalanceOut, TransactionListOut, TransactionOut
from webrana.services import wallet as wallet_service

router = APIRouter(prefix="/admin/wallet", tags=["Admin - Wallet"])


@router.get("/balance/{user_id}", response_model=BalanceOut)
async def admin_get_user_balance(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
) -> BalanceOut:
    wa = await wallet_service.get_wallet(db, user_id)
    return BalanceOut(user_id=wa.user_id, balance=int(wa.balance), currency=wa.currency)


@router.post("/adjust", response_model=TransactionOut)
async def admin_adjust(
    body: AdminAdjustIn,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await wallet_service.admin_adjust_balance(db, admin_user, body.user_id, body.amount, body.note)


@router.get("/transactions", response_model=TransactionListOut)
async def admin_list_transactions(
    user_id: Optional[int] = Query(default=None),
    type: Optional[str] = Query(default=None),
    reference_type: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    return await wallet_service.list_transactions(
        db,
        user_id,
        tx_type=type,
        reference_type=reference_type,
        page=page,
        limit=limit,
    )
