from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import utcnow
from webrana.models.invoice import Invoice
from webrana.models.order import Order
from webrana.models.user import User
from webrana.models.wallet import WalletTransaction
from webrana.services import do_accounts, invoices, wallet
from webrana.services.order_state import ACTIVE, EXPIRING_SOON

REVENUE_TYPES = (wallet.VPS_ORDER, wallet.VPS_RENEWAL)


def _revenue_filter(date_from: datetime | None = None):
    filters = [
        WalletTransaction.type == wallet.DEBIT,
        WalletTransaction.reference_type.in_(REVENUE_TYPES),
    ]
    if date_from is not None:
        filters.append(WalletTransaction.created_at >= date_from)
    return filters


async def revenue(db: AsyncSession, date_from: datetime | None = None) -> int:
    # debits are stored negative
    res = await db.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(*_revenue_filter(date_from))
    )
    return -int(res.scalar_one())


async def revenue_by_day(db: AsyncSession, *, days: int = 30, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    start = (now - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    day = func.date(WalletTransaction.created_at)

    res = await db.execute(
        select(day.label("day"), func.sum(WalletTransaction.amount), func.count())
        .where(*_revenue_filter(start))
        .group_by(day)
        .order_by(day)
    )
    by_day = {str(d): (-int(total or 0), int(count)) for d, total, count in res.all()}

    rows = []
    for i in range(days):
        key = (start + timedelta(days=i)).date().isoformat()
        total, count = by_day.get(key, (0, 0))
        rows.append({"date": key, "revenue": total, "transactions": count})
    return rows


async def get_stats(db: AsyncSession, *, days: int = 30) -> dict:
    now = utcnow()

    users_res = await db.execute(select(func.count()).select_from(User))
    status_res = await db.execute(select(Order.status, func.count()).group_by(Order.status))
    orders_by_status = {status: int(count) for status, count in status_res.all()}

    pending_res = await db.execute(
        select(func.count(), func.coalesce(func.sum(Invoice.amount), 0)).where(Invoice.status == invoices.PENDING)
    )
    pending_count, pending_amount = pending_res.one()

    return {
        "users": int(users_res.scalar_one()),
        "orders": {
            "total": sum(orders_by_status.values()),
            "by_status": orders_by_status,
        },
        "active_instances": orders_by_status.get(ACTIVE, 0) + orders_by_status.get(EXPIRING_SOON, 0),
        "revenue": {
            "total": await revenue(db),
            "last_30_days": await revenue(db, now - timedelta(days=30)),
        },
        "pending_invoices": {"count": int(pending_count), "amount": int(pending_amount)},
        "do_accounts": await do_accounts.get_overall_stats(db),
        "revenue_by_day": await revenue_by_day(db, days=days, now=now),
    }
