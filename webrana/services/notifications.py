from __future__ import annotations

import html
import logging
from typing import Any

import httpx
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.integrations.telegram import TelegramClient, TelegramError
from webrana.models.notification import Notification
from webrana.models.user import User

logger = logging.getLogger(__name__)


ORDER_CREATED = "ORDER_CREATED"
PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
VPS_ACTIVE = "VPS_ACTIVE"
PROVISIONING_FAILED = "PROVISIONING_FAILED"
VPS_EXPIRING_SOON = "VPS_EXPIRING_SOON"
VPS_SUSPENDED = "VPS_SUSPENDED"
VPS_DESTROYED = "VPS_DESTROYED"
RENEWAL_SUCCESS = "RENEWAL_SUCCESS"
RENEWAL_FAILED_NO_BALANCE = "RENEWAL_FAILED_NO_BALANCE"

TEMPLATES: dict[str, tuple[str, str]] = {
    ORDER_CREATED: (
        "Order received",
        "Order #{order_id} for {plan_name} was paid ({amount} {currency}). Your VPS is being prepared.",
    ),
    PAYMENT_CONFIRMED: (
        "Deposit confirmed",
        "Deposit {invoice_number} of {amount} {currency} was credited to your balance.",
    ),
    VPS_ACTIVE: (
        "VPS is ready",
        "Your VPS for order #{order_id} ({plan_name}) is active at {ip_address}. Valid until {expires_at}.",
    ),
    PROVISIONING_FAILED: (
        "Provisioning failed",
        "We could not create the VPS for order #{order_id}: {error_message}. Your balance has been refunded.",
    ),
    VPS_EXPIRING_SOON: (
        "VPS expiring soon",
        "Your VPS for order #{order_id} ({plan_name}) expires in {hours_remaining} hours, at {expires_at}.",
    ),
    VPS_SUSPENDED: (
        "VPS suspended",
        "Your VPS for order #{order_id} was suspended after expiry. "
        "Renew within {grace_hours} hours to keep your data.",
    ),
    VPS_DESTROYED: (
        "VPS terminated",
        "Your VPS for order #{order_id} was terminated ({reason}).",
    ),
    RENEWAL_SUCCESS: (
        "Renewal successful",
        "Order #{order_id} was renewed for {amount} {currency}. New expiry: {expires_at}.",
    ),
    RENEWAL_FAILED_NO_BALANCE: (
        "Renewal failed",
        "Order #{order_id} could not be renewed: balance {balance} is below the required {required}. "
        "Top up before {expires_at}.",
    ),
}


class NotificationNotFound(AppError):
    code = "NOTIFICATION_NOT_FOUND"
    status_code = 404
    message = "Notification not found"


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return "-"


def render(event: str, data: dict[str, Any]) -> tuple[str, str]:
    title, body = TEMPLATES.get(event, (event.replace("_", " ").title(), "{message}"))
    return title, body.format_map(_Defaults(data))


async def _send_telegram(chat_id: str, title: str, message: str) -> None:
    client = TelegramClient()
    if not client.enabled:
        return
    text = f"<b>{html.escape(title)}</b>\n\n{html.escape(message)}"
    try:
        await client.send_message(chat_id, text)
    except (TelegramError, httpx.HTTPError) as e:
        logger.warning("telegram delivery failed", extra={"chat_id": chat_id, "error": str(e)})


async def notify(
    db: AsyncSession,
    user_id: int,
    event: str,
    data: dict[str, Any] | None = None,
) -> Notification | None:
    """Stores the in-app notification and pushes it to Telegram.

    Callers have already committed their own work, so a storage failure is
    logged and reported as None instead of raised. The insert runs in a
    savepoint, leaving the caller's loaded objects usable when it fails.
    """
    data = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in (data or {}).items()}
    title, message = render(event, data)

    row = Notification(user_id=user_id, type=event, title=title, message=message, data=data)
    try:
        async with db.begin_nested():
            db.add(row)
    except SQLAlchemyError:
        logger.exception("notification not stored", extra={"user_id": user_id, "event": event})
        return None
    await db.commit()

    res = await db.execute(select(User.telegram_chat_id).where(User.id == user_id))
    chat_id = res.scalar_one_or_none()
    if chat_id:
        await _send_telegram(chat_id, title, message)

    logger.info("notification sent", extra={"user_id": user_id, "event": event})
    return row


async def list_notifications(
    db: AsyncSession,
    user_id: int,
    *,
    unread_only: bool = False,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filters = [Notification.user_id == user_id]
    if unread_only:
        filters.append(Notification.is_read.is_(False))

    total_res = await db.execute(select(func.count()).select_from(Notification).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return {
        "data": res.scalars().all(),
        "meta": page_meta(page, limit, total),
    }


async def unread_count(db: AsyncSession, user_id: int) -> int:
    res = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return int(res.scalar_one())


async def _get_owned(db: AsyncSession, user_id: int, notification_id: int) -> Notification:
    res = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    row = res.scalar_one_or_none()
    if row is None:
        raise NotificationNotFound()
    return row


async def mark_read(db: AsyncSession, user_id: int, notification_id: int) -> Notification:
    row = await _get_owned(db, user_id, notification_id)
    if not row.is_read:
        row.is_read = True
        row.read_at = utcnow()
        await db.commit()
    return row


async def mark_all_read(db: AsyncSession, user_id: int) -> int:
    try:
        res = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=utcnow())
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return int(res.rowcount or 0)


async def delete_notification(db: AsyncSession, user_id: int, notification_id: int) -> None:
    await _get_owned(db, user_id, notification_id)
    await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    await db.commit()

