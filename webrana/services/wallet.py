from __future__ import annotations

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.models.user import User
from webrana.models.wallet import Wallet, WalletTransaction


CREDIT = "CREDIT"
DEBIT = "DEBIT"

# reference types
DEPOSIT = "DEPOSIT"
DEPOSIT_BONUS = "DEPOSIT_BONUS"
VPS_ORDER = "VPS_ORDER"
VPS_RENEWAL = "VPS_RENEWAL"
PROVISION_FAILED_REFUND = "PROVISION_FAILED_REFUND"
ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
WELCOME_BONUS = "WELCOME_BONUS"

REFERENCE_TYPES = {
    DEPOSIT,
    DEPOSIT_BONUS,
    WELCOME_BONUS,
    VPS_ORDER,
    VPS_RENEWAL,
    PROVISION_FAILED_REFUND,
    ADMIN_ADJUSTMENT,
}


class WalletError(AppError):
    code = "WALLET_ERROR"
    status_code = 400
    message = "Wallet operation failed"


class InvalidAmount(WalletError):
    code = "INVALID_AMOUNT"
    message = "Amount must be greater than 0"


class InsufficientBalance(WalletError):
    code = "INSUFFICIENT_BALANCE"
    status_code = 402
    message = "Insufficient balance"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient balance: required {required}, available {available}",
            details={"required": required, "available": available},
        )


class WalletUserNotFound(WalletError):
    code = "USER_NOT_FOUND"
    status_code = 404
    message = "User not found"


async def _ensure_wallet(db: AsyncSession, user_id: int) -> None:
    # make sure user exists first (prevents FK crash)
    res_u = await db.execute(select(User.id).where(User.id == user_id))
    if res_u.scalar_one_or_none() is None:
        raise WalletUserNotFound(f"User {user_id} not found")

    res = await db.execute(select(Wallet.user_id).where(Wallet.user_id == user_id))
    if res.scalar_one_or_none() is not None:
        return

    try:
        db.add(Wallet(user_id=user_id, balance=0, currency=settings.CURRENCY))
        await db.flush()
    except IntegrityError as e:
        raise WalletError(f"Wallet for user {user_id} could not be created") from e


async def _lock_wallet(db: AsyncSession, user_id: int) -> Wallet:
    """Lock the wallet row FOR UPDATE, creating it first when missing."""
    await _ensure_wallet(db, user_id)
    res = await db.execute(
        select(Wallet)
        .where(Wallet.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one()


async def get_wallet(db: AsyncSession, user_id: int) -> Wallet:
    await _ensure_wallet(db, user_id)
    res = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
    return res.scalar_one()


async def get_balance(db: AsyncSession, user_id: int) -> int:
    res = await db.execute(select(Wallet.balance).where(Wallet.user_id == user_id))
    balance = res.scalar_one_or_none()
    return int(balance or 0)


async def has_sufficient_balance(db: AsyncSession, user_id: int, amount: int) -> bool:
    return await get_balance(db, user_id) >= amount


async def _apply(
    db: AsyncSession,
    *,
    user_id: int,
    tx_type: str,
    amount: int,
    reference_type: str,
    reference_id: str | None,
    description: str | None,
    meta: dict[str, Any] | None,
) -> WalletTransaction:
    if amount <= 0:
        raise InvalidAmount()

    wallet = await _lock_wallet(db, user_id)
    before = int(wallet.balance)

    if tx_type == DEBIT:
        if before < amount:
            raise InsufficientBalance(required=amount, available=before)
        after = before - amount
        signed = -amount
    else:
        after = before + amount
        signed = amount

    await db.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .values(balance=after, version=Wallet.version + 1, updated_at=utcnow())
    )

    entry = WalletTransaction(
        user_id=user_id,
        type=tx_type,
        amount=signed,
        balance_before=before,
        balance_after=after,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        meta=meta or {},
    )
    db.add(entry)
    await db.flush()
    return entry


async def apply_credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    *,
    reference_type: str,
    reference_id: str | None = None,
    description: str | None = None,
    meta: dict[str, Any] | None = None,
) -> WalletTransaction:
    """Credit inside the caller's transaction; the caller commits."""
    return await _apply(
        db,
        user_id=user_id,
        tx_type=CREDIT,
        amount=amount,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        meta=meta,
    )


async def apply_debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    *,
    reference_type: str,
    reference_id: str | None = None,
    description: str | None = None,
    meta: dict[str, Any] | None = None,
) -> WalletTransaction:
    """Debit inside the caller's transaction; the caller commits."""
    return await _apply(
        db,
        user_id=user_id,
        tx_type=DEBIT,
        amount=amount,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        meta=meta,
    )


async def add_balance(db: AsyncSession, user_id: int, amount: int, **kwargs: Any) -> WalletTransaction:
    try:
        entry = await apply_credit(db, user_id, amount, **kwargs)
        await db.commit()
        return entry
    except Exception:
        await db.rollback()
        raise


async def deduct_balance(db: AsyncSession, user_id: int, amount: int, **kwargs: Any) -> WalletTransaction:
    try:
        entry = await apply_debit(db, user_id, amount, **kwargs)
        await db.commit()
        return entry
    except Exception:
        await db.rollback()
        raise


async def find_transaction(
    db: AsyncSession,
    *,
    user_id: int,
    reference_type: str,
    reference_id: str,
) -> WalletTransaction | None:
    res = await db.execute(
        select(WalletTransaction)
        .where(
            WalletTransaction.user_id == user_id,
            WalletTransaction.reference_type == reference_type,
            WalletTransaction.reference_id == reference_id,
        )
        .order_by(WalletTransaction.id.desc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def apply_refund(db: AsyncSession, original: WalletTransaction, reason: str) -> WalletTransaction:
    return await apply_credit(
        db,
        original.user_id,
        abs(int(original.amount)),
        reference_type=PROVISION_FAILED_REFUND,
        reference_id=original.reference_id,
        description=reason,
        meta={"original_transaction_id": original.id},
    )


async def list_transactions(
    db: AsyncSession,
    user_id: int | None = None,
    *,
    tx_type: str | None = None,
    reference_type: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filters = []
    if user_id is not None:
        filters.append(WalletTransaction.user_id == user_id)
    if tx_type:
        filters.append(WalletTransaction.type == tx_type)
    if reference_type:
        filters.append(WalletTransaction.reference_type == reference_type)

    total_res = await db.execute(select(func.count()).select_from(WalletTransaction).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(WalletTransaction)
        .where(*filters)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return {"data": res.scalars().all(), "meta": page_meta(page, limit, total)}


async def admin_adjust_balance(
    db: AsyncSession,
    admin_user: User,
    target_user_id: int,
    amount: int,
    note: str | None,
) -> WalletTransaction:
    """
    Admin adjusts a user's balance:
    - amount > 0: credit
    - amount < 0: debit, refused when the balance would go negative
    """
    if amount == 0:
        raise InvalidAmount("Amount cannot be 0")

    meta = {"by_admin_user_id": admin_user.id}
    if amount > 0:
        return await add_balance(
            db,
            target_user_id,
            amount,
            reference_type=ADMIN_ADJUSTMENT,
            reference_id=str(admin_user.id),
            description=note,
            meta=meta,
        )
    return await deduct_balance(
        db,
        target_user_id,
        -amount,
        reference_type=ADMIN_ADJUSTMENT,
        reference_id=str(admin_user.id),
        description=note,
        meta=meta,
    )
