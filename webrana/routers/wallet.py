from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user
from webrana.models.user import User
from webrana.schemas.wallet import BalanceOut, TransactionListOut
from webrana.services import wallet as wallet_service

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/balance", response_model=BalanceOut)
async def my_balance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BalanceOut:
    wa = await wallet_service.get_wallet(db, current_user.id)
    return BalanceOut(user_id=wa.user_id, balance=int(wa.balance), currency=wa.currency)


@router.get("/transactions", response_model=TransactionListOut)
async def my_transactions(
    type: Optional[str] = Query(default=None),
    reference_type: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await wallet_service.list_transactions(
        db,
        current_user.id,
        tx_type=type,
        reference_type=reference_type,
        page=page,
        limit=limit,
    )
