from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.integrations.digitalocean import DigitalOceanError
from webrana.models.order import Order, RenewalHistory, StatusHistory
from webrana.models.user import User
from webrana.services import do_accounts, notifications, orders, plans, provisioning, wallet
from webrana.services.order_state import (
    ACTIVE,
    EXPIRED,
    EXPIRING_SOON,
    SUSPENDED,
    TERMINATED,
)

logger = logging.getLogger(__name__)

GRACE_HOURS = {plans.DAILY: 0, plans.MONTHLY: 24, plans.YEARLY: 72}
WARNING_THRESHOLDS_HOURS = {
    plans.DAILY: (8,),
    plans.MONTHLY: (168, 72, 24, 8),
    plans.YEARLY: (168, 72, 24, 8),
}
AUTO_RENEW_WINDOW_HOURS = 24

AUTO = "AUTO"
MANUAL = "MANUAL"

INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
SYSTEM_ERROR = "SYSTEM_ERROR"

RENEWABLE = (ACTIVE, EXPIRING_SOON, EXPIRED, SUSPENDED)


class OrderTerminated(AppError):
    code = "ORDER_TERMINATED"
    status_code = 409
    message = "Order has been terminated and cannot be renewed"


def grace_hours(period: str) -> int:
    return GRACE_HOURS.get(period, GRACE_HOURS[plans.MONTHLY])


def suspends_before_termination(period: str) -> bool:
    return period != plans.DAILY


def _new_stats() -> dict[str, Any]:
    return {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0, "errors": []}


def _record_failure(stats: dict[str, Any], order_id: int, error: Exception) -> None:
    stats["failed"] += 1
    stats["errors"].append({"order_id": order_id, "error": str(error)})
    logger.exception("lifecycle step failed", extra={"order_id": order_id})


async def _best_effort_action(db: AsyncSession, order_id: int, action: str) -> bool:
    target = await provisioning.droplet_client(db, order_id)
    if target is None:
        return False
    task, client = target
    try:
        await client.perform_droplet_action(task.droplet_id, action)
    except DigitalOceanError as e:
        logger.warning(
            "droplet action failed",
            extra={"order_id": order_id, "action": action, "error": str(e)},
        )
        return False
    return True


# -------------------------
# Expiry warnings
# -------------------------
async def _warned_thresholds(db: AsyncSession, order: Order) -> set[int]:
    """Thresholds already warned about for the order's current expiry."""
    cycle = order.expires_at.isoformat()
    res = await db.execute(
        select(StatusHistory.meta).where(
            StatusHistory.order_id == order.id,
            StatusHistory.new_status == EXPIRING_SOON,
        )
    )
    warned = set()
    for meta in res.scalars().all():
        meta = meta or {}
        if meta.get("threshold") is not None and meta.get("expires_at") == cycle:
            warned.add(int(meta["threshold"]))
    return warned


async def warn_expiring(db: AsyncSession, order: Order, threshold: int, now: datetime) -> None:
    meta = {"threshold": threshold, "expires_at": order.expires_at.isoformat()}
    reason = f"VPS expires within {threshold} hours"
    try:
        if order.status == ACTIVE:
            await orders.transition_atomic(db, order, EXPIRING_SOON, reason=reason, meta=meta)
        else:
            orders.add_history(db, order.id, order.status, EXPIRING_SOON, actor=orders.SYSTEM_ACTOR, reason=reason, meta=meta)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    hours_remaining = max(0, int((order.expires_at - now).total_seconds() // 3600))
    await notifications.notify(
        db,
        order.user_id,
        notifications.VPS_EXPIRING_SOON,
        {
            "order_id": order.id,
            "plan_name": order.plan_name,
            "hours_remaining": hours_remaining,
            "expires_at": order.expires_at,
        },
    )


async def process_expiring(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    """
    Sends one warning per threshold as an order approaches expiry.

    Thresholds are walked from the tightest up, so an order already warned at
    a tighter threshold is not warned again at a looser one. Warnings count
    per expiry date: a renewal moves expires_at and starts a fresh set.
    """
    now = now or utcnow()
    stats = _new_stats()
    seen: set[int] = set()

    for period, thresholds in WARNING_THRESHOLDS_HOURS.items():
        for threshold in sorted(thresholds):
            res = await db.execute(
                select(Order.id).where(
                    Order.billing_period == period,
                    Order.status.in_((ACTIVE, EXPIRING_SOON)),
                    Order.expires_at >= now,
                    Order.expires_at <= now + timedelta(hours=threshold),
                )
            )
            for order_id in res.scalars().all():
                if order_id in seen:
                    continue
                seen.add(order_id)
                stats["processed"] += 1

                try:
                    order = await orders.get_order(db, order_id)
                    if threshold in await _warned_thresholds(db, order):
                        stats["skipped"] += 1
                        continue
                    await warn_expiring(db, order, threshold, now)
                    stats["succeeded"] += 1
                except Exception as e:
                    _record_failure(stats, order_id, e)

    return stats


# -------------------------
# Renewal
# -------------------------
async def renewal_price(db: AsyncSession, order: Order) -> int:
    plan = await plans.get_plan(db, order.plan_id)
    priced = plans.resolve_pricing(plan, order.billing_period)
    return priced.price if priced is not None else int(order.base_price)


async def _set_fail_reason(db: AsyncSession, order_id: int, reason: str) -> None:
    await db.execute(update(Order).where(Order.id == order_id).values(renewal_fail_reason=reason, updated_at=utcnow()))


async def renew_order(
    db: AsyncSession,
    order: Order,
    *,
    renewal_type: str = AUTO,
    actor: str = orders.SYSTEM_ACTOR,
    now: datetime | None = None,
) -> tuple[bool, str | None]:
    """Charges one more billing period. Returns (success, fail_reason)."""
    now = now or utcnow()
    order_id = order.id
    user_id = order.user_id
    previous_expiry = order.expires_at

    try:
        amount = await renewal_price(db, order)
        balance = await wallet.get_balance(db, user_id)
        if balance < amount:
            await _set_fail_reason(db, order_id, INSUFFICIENT_BALANCE)
            db.add(
                RenewalHistory(
                    order_id=order_id,
                    renewal_type=renewal_type,
                    amount=amount,
                    previous_expiry=previous_expiry,
                    new_expiry=None,
                    success=False,
                    fail_reason=INSUFFICIENT_BALANCE,
                )
            )
            await db.commit()
        else:
            new_expiry = orders.calculate_expiry(max(previous_expiry or now, now), order.billing_period)
            await wallet.apply_debit(
                db,
                user_id,
                amount,
                reference_type=wallet.VPS_RENEWAL,
                reference_id=str(order_id),
                description=f"VPS renewal #{order_id} ({order.billing_period})",
                meta={"renewal_type": renewal_type},
            )

            fields = {
                "expires_at": new_expiry,
                "last_renewal_at": now,
                "renewal_fail_reason": None,
                "suspended_at": None,
            }
            if order.status == ACTIVE:
                await _extend_active(db, order, actor=actor, **fields)
            else:
                await orders.transition_atomic(
                    db, order, ACTIVE, actor=actor, reason="VPS renewed", meta={"renewal_type": renewal_type}, **fields
                )

            db.add(
                RenewalHistory(
                    order_id=order_id,
                    renewal_type=renewal_type,
                    amount=amount,
                    previous_expiry=previous_expiry,
                    new_expiry=new_expiry,
                    success=True,
                )
            )
            await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("renewal failed", extra={"order_id": order_id})
        await _set_fail_reason(db, order_id, SYSTEM_ERROR)
        await db.commit()
        return False, SYSTEM_ERROR

    if balance < amount:
        logger.info("renewal skipped, balance too low", extra={"order_id": order_id, "required": amount})
        await notifications.notify(
            db,
            user_id,
            notifications.RENEWAL_FAILED_NO_BALANCE,
            {"order_id": order_id, "balance": balance, "required": amount, "expires_at": previous_expiry},
        )
        return False, INSUFFICIENT_BALANCE

    logger.info("order renewed", extra={"order_id": order_id, "renewal_type": renewal_type})
    await notifications.notify(
        db,
        user_id,
        notifications.RENEWAL_SUCCESS,
        {"order_id": order_id, "amount": amount, "currency": settings.CURRENCY, "expires_at": new_expiry},
    )
    return True, None


async def _extend_active(db: AsyncSession, order: Order, *, actor: str, **fields: Any) -> None:
    # ACTIVE -> ACTIVE is not a state change; still guarded on version
    res = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == ACTIVE, Order.version == order.version)
        .values(version=Order.version + 1, updated_at=utcnow(), **fields)
    )
    if res.rowcount == 0:
        raise orders.StateTransitionConflict(order.id, ACTIVE, ACTIVE)
    await db.refresh(order)
    orders.add_history(db, order.id, ACTIVE, ACTIVE, actor=actor, reason="VPS renewed")


async def process_auto_renewals(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    stats = _new_stats()
    res = await db.execute(
        select(Order.id).where(
            Order.status.in_((EXPIRING_SOON, EXPIRED)),
            Order.auto_renew.is_(True),
            Order.expires_at <= now + timedelta(hours=AUTO_RENEW_WINDOW_HOURS),
            Order.renewal_fail_reason.is_(None),
        )
    )
    for order_id in res.scalars().all():
        stats["processed"] += 1
        try:
            order = await orders.get_order(db, order_id)
            ok, _ = await renew_order(db, order, renewal_type=AUTO, now=now)
        except Exception as e:
            _record_failure(stats, order_id, e)
            continue
        stats["succeeded" if ok else "failed"] += 1
    return stats


# -------------------------
# Suspension and termination
# -------------------------
async def _mark_expired(db: AsyncSession, order: Order) -> Order:
    if order.status == EXPIRING_SOON:
        await orders.transition_atomic(db, order, EXPIRED, reason="VPS expired")
    return order


async def suspend(db: AsyncSession, order: Order, now: datetime | None = None) -> Order:
    now = now or utcnow()
    grace = grace_hours(order.billing_period)
    try:
        await _mark_expired(db, order)
        await orders.transition_atomic(
            db,
            order,
            SUSPENDED,
            reason="VPS suspended after expiry",
            meta={"grace_hours": grace},
            suspended_at=now,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await _best_effort_action(db, order.id, "power_off")
    await notifications.notify(
        db,
        order.user_id,
        notifications.VPS_SUSPENDED,
        {"order_id": order.id, "grace_hours": grace},
    )
    return order


async def _destroy_droplet(db: AsyncSession, order_id: int) -> bool:
    target = await provisioning.droplet_client(db, order_id)
    if target is None:
        return False
    task, client = target
    if task.droplet_status == "destroyed":
        return True
    try:
        await client.delete_droplet(task.droplet_id)
    except DigitalOceanError as e:
        logger.warning("droplet destroy failed", extra={"order_id": order_id, "error": str(e)})
        return False

    await do_accounts.decrement_active_count(db, task.do_account_id)
    task.droplet_status = "destroyed"
    return True


async def terminate(
    db: AsyncSession,
    order: Order,
    reason: str,
    *,
    actor: str = orders.SYSTEM_ACTOR,
    now: datetime | None = None,
) -> Order:
    now = now or utcnow()
    if order.status != TERMINATED:
        try:
            await _mark_expired(db, order)
            await orders.transition_atomic(
                db,
                order,
                TERMINATED,
                actor=actor,
                reason=f"VPS terminated: {reason}",
                meta={"termination_reason": reason},
                terminated_at=now,
                termination_reason=reason,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    destroyed = await _destroy_droplet(db, order.id)
    res = await db.execute(
        select(StatusHistory)
        .where(StatusHistory.order_id == order.id, StatusHistory.new_status == TERMINATED)
        .order_by(StatusHistory.id.desc())
        .limit(1)
    )
    row = res.scalar_one_or_none()
    if row is not None:
        row.meta = {**(row.meta or {}), "droplet_destroyed": destroyed}
    await db.commit()

    await notifications.notify(
        db,
        order.user_id,
        notifications.VPS_DESTROYED,
        {"order_id": order.id, "reason": reason},
    )
    return order


async def process_expired(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    stats = _new_stats()
    res = await db.execute(
        select(Order.id).where(
            Order.status.in_((ACTIVE, EXPIRING_SOON)),
            Order.expires_at < now,
        )
    )
    for order_id in res.scalars().all():
        stats["processed"] += 1
        try:
            order = await orders.get_order(db, order_id)
            if suspends_before_termination(order.billing_period):
                await suspend(db, order, now)
            else:
                await terminate(db, order, "EXPIRED", now=now)
            stats["succeeded"] += 1
        except Exception as e:
            _record_failure(stats, order_id, e)
    return stats


async def process_suspended(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    stats = _new_stats()
    res = await db.execute(select(Order.id).where(Order.status == SUSPENDED))
    for order_id in res.scalars().all():
        stats["processed"] += 1
        try:
            order = await orders.get_order(db, order_id)
            if order.suspended_at is None:
                stats["skipped"] += 1
                continue
            if now < order.suspended_at + timedelta(hours=grace_hours(order.billing_period)):
                stats["skipped"] += 1
                continue
            await terminate(db, order, "GRACE_PERIOD_EXPIRED", now=now)
            stats["succeeded"] += 1
        except Exception as e:
            _record_failure(stats, order_id, e)
    return stats


# -------------------------
# Customer and admin entry points
# -------------------------
async def restore_suspended(db: AsyncSession, order_id: int, *, actor: str = orders.SYSTEM_ACTOR) -> dict[str, Any]:
    order = await orders.get_order(db, order_id)
    if order.status != SUSPENDED:
        raise orders.InvalidStatusTransition(order.status, ACTIVE)

    ok, reason = await renew_order(db, order, renewal_type=MANUAL, actor=actor)
    if ok:
        await _best_effort_action(db, order_id, "power_on")
    return {"success": ok, "reason": reason, "order": await orders.get_order(db, order_id)}


async def manual_renewal(db: AsyncSession, user: User, order_id: int) -> dict[str, Any]:
    order = await orders.get_order(db, order_id, user)
    if order.status == TERMINATED:
        raise OrderTerminated(details={"order_id": order_id})
    if order.status not in RENEWABLE:
        raise orders.InvalidStatusTransition(order.status, ACTIVE)

    actor = orders.user_actor(user)
    if order.status == SUSPENDED:
        return await restore_suspended(db, order_id, actor=actor)

    ok, reason = await renew_order(db, order, renewal_type=MANUAL, actor=actor)
    return {"success": ok, "reason": reason, "order": await orders.get_order(db, order_id)}


async def get_renewal_history(db: AsyncSession, order_id: int) -> list[RenewalHistory]:
    res = await db.execute(
        select(RenewalHistory)
        .where(RenewalHistory.order_id == order_id)
        .order_by(RenewalHistory.created_at.desc(), RenewalHistory.id.desc())
    )
    return list(res.scalars().all())
