from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.models.order import Order, OrderItem, ProvisioningTask, StatusHistory
from webrana.models.user import User
from webrana.models.wallet import WalletTransaction
from webrana.services import coupons, notifications, order_state, plans, wallet
from webrana.services.order_state import (
    CANCELED,
    FAILED,
    PAID,
    PENDING,
    PENDING_PAYMENT,
    PROCESSING,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class OrderError(AppError):
    code = "ORDER_ERROR"
    status_code = 400


class OrderNotFound(OrderError):
    code = "ORDER_NOT_FOUND"
    status_code = 404
    message = "Order not found"


class OrderAccessDenied(OrderError):
    code = "ORDER_ACCESS_DENIED"
    status_code = 403
    message = "You do not have access to this order"


class InvalidPlan(OrderError):
    code = "INVALID_PLAN"
    message = "Plan not found or inactive"


class InvalidImage(OrderError):
    code = "INVALID_IMAGE"
    message = "Image not found or inactive"


class InvalidBillingPeriod(OrderError):
    code = "INVALID_BILLING_PERIOD"
    message = "No pricing available for the requested billing period"


class InvalidStatusTransition(OrderError):
    code = "PAYMENT_STATUS_CONFLICT"
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change order status from {current} to {requested}",
            details={
                "current_status": current,
                "requested_status": requested,
                "allowed": order_state.valid_next_states(current),
            },
        )


class StateTransitionConflict(OrderError):
    code = "STATE_TRANSITION_CONFLICT"
    status_code = 409

    def __init__(self, order_id: int, expected: str, target: str):
        super().__init__(
            f"Order {order_id} changed concurrently; expected {expected} before moving to {target}",
            details={"order_id": order_id, "expected_status": expected, "target_status": target},
        )


def user_actor(user: User) -> str:
    return f"{'admin' if user.role == 'admin' else 'user'}:{user.id}"


def calculate_expiry(start: datetime, period: str) -> datetime:
    if period == plans.DAILY:
        return start + timedelta(days=1)
    if period == plans.YEARLY:
        year = start.year + 1
        day = min(start.day, calendar.monthrange(year, start.month)[1])
        return start.replace(year=year, day=day)

    month = start.month % 12 + 1
    year = start.year + (1 if start.month == 12 else 0)
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_history(
    db: AsyncSession,
    order_id: int,
    previous_status: str,
    new_status: str,
    *,
    actor: str,
    reason: str | None = None,
    meta: dict[str, Any] | None = None,
) -> StatusHistory:
    row = StatusHistory(
        order_id=order_id,
        previous_status=previous_status,
        new_status=new_status,
        actor=actor,
        reason=reason or order_state.describe_transition(previous_status, new_status),
        meta=meta or {},
    )
    db.add(row)
    return row


async def transition_atomic(
    db: AsyncSession,
    order: Order,
    to_status: str,
    *,
    actor: str = SYSTEM_ACTOR,
    reason: str | None = None,
    meta: dict[str, Any] | None = None,
    **fields: Any,
) -> Order:
    """
    Compare-and-set on (status, version). The caller commits.

    Raises InvalidStatusTransition when the state machine forbids the move and
    StateTransitionConflict when another writer changed the order first.
    """
    from_status = order.status
    if not order_state.is_valid_transition(from_status, to_status):
        raise InvalidStatusTransition(from_status, to_status)

    res = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == from_status, Order.version == order.version)
        .values(status=to_status, version=Order.version + 1, updated_at=utcnow(), **fields)
    )
    if res.rowcount == 0:
        raise StateTransitionConflict(order.id, from_status, to_status)
    await db.refresh(order)

    add_history(db, order.id, from_status, to_status, actor=actor, reason=reason, meta=meta)
    await db.flush()
    logger.info(
        "order status changed",
        extra={"order_id": order.id, "from": from_status, "to": to_status, "actor": actor},
    )
    return order


async def get_order(db: AsyncSession, order_id: int, user: User | None = None) -> Order:
    order = await db.get(Order, order_id, populate_existing=True)
    if order is None:
        raise OrderNotFound()
    if user is not None and order.user_id != user.id:
        raise OrderAccessDenied()
    return order


async def get_provisioning_task(db: AsyncSession, order_id: int) -> ProvisioningTask | None:
    res = await db.execute(select(ProvisioningTask).where(ProvisioningTask.order_id == order_id))
    return res.scalar_one_or_none()


async def get_history(db: AsyncSession, order_id: int) -> list[StatusHistory]:
    res = await db.execute(
        select(StatusHistory)
        .where(StatusHistory.order_id == order_id)
        .order_by(StatusHistory.created_at.asc(), StatusHistory.id.asc())
    )
    return list(res.scalars().all())


async def get_order_detail(db: AsyncSession, order_id: int, user: User | None = None) -> dict:
    order = await get_order(db, order_id, user)
    items_res = await db.execute(select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id))
    return {
        "order": order,
        "items": list(items_res.scalars().all()),
        "provisioning_task": await get_provisioning_task(db, order.id),
        "status_history": await get_history(db, order.id),
    }


async def list_orders(
    db: AsyncSession,
    *,
    user_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filters = []
    if user_id is not None:
        filters.append(Order.user_id == user_id)
    if status:
        filters.append(Order.status == status)

    total_res = await db.execute(select(func.count()).select_from(Order).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return {"data": res.scalars().all(), "meta": page_meta(page, limit, total)}


async def create_order(
    db: AsyncSession,
    user: User,
    *,
    plan_id: int,
    image_id: int,
    billing_period: str = plans.MONTHLY,
    coupon_code: str | None = None,
    auto_renew: bool = True,
) -> Order:
    now = utcnow()

    try:
        plan = await plans.get_plan(db, plan_id, active_only=True)
    except plans.PlanNotFound:
        raise InvalidPlan(details={"plan_id": plan_id})
    try:
        image = await plans.get_image(db, image_id, active_only=True)
    except plans.ImageNotFound:
        raise InvalidImage(details={"image_id": image_id})

    priced = plans.resolve_pricing(plan, billing_period)
    if priced is None:
        raise InvalidBillingPeriod(details={"billing_period": billing_period})

    base_price = priced.price
    promo_discount = plans.promo_discount(plan, base_price, now)
    after_promo = base_price - promo_discount

    check = None
    coupon_discount = 0
    if coupon_code:
        check = await coupons.validate_or_raise(
            db, coupon_code, amount=after_promo, plan_id=plan.id, user_id=user.id, now=now
        )
        coupon_discount = check.discount_amount

    final_price = max(0, round(after_promo - coupon_discount))

    available = await wallet.get_balance(db, user.id)
    if available < final_price:
        raise wallet.InsufficientBalance(required=final_price, available=available)

    actor = user_actor(user)
    try:
        order = Order(
            user_id=user.id,
            plan_id=plan.id,
            plan_name=plan.display_name,
            image_id=image.id,
            image_name=image.display_name,
            billing_period=billing_period,
            base_price=base_price,
            promo_discount=promo_discount,
            coupon_code=check.coupon.code if check else None,
            coupon_discount=coupon_discount,
            final_price=final_price,
            currency=settings.CURRENCY,
            status=PENDING,
            auto_renew=auto_renew,
            version=0,
        )
        db.add(order)
        await db.flush()

        db.add(
            OrderItem(
                order_id=order.id,
                item_type="PLAN",
                reference_id=str(plan.id),
                description=plans.plan_description(plan),
                unit_price=base_price,
                quantity=1,
                total_price=base_price,
            )
        )
        add_history(db, order.id, "", PENDING, actor=actor, reason="Order created")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    order_id = order.id
    try:
        if final_price > 0:
            await wallet.apply_debit(
                db,
                user.id,
                final_price,
                reference_type=wallet.VPS_ORDER,
                reference_id=str(order_id),
                description=f"VPS order #{order_id} ({plan.display_name}, {billing_period})",
            )
        if check is not None:
            coupons.redeem(db, check.coupon, user_id=user.id, order_id=order_id, amount=coupon_discount)
        await transition_atomic(db, order, PROCESSING, actor=actor, paid_at=now)
        await db.commit()
    except Exception as e:
        await db.rollback()
        await _fail_pending_order(db, order_id, str(e))
        raise

    logger.info("order created", extra={"order_id": order_id, "user_id": user.id, "final_price": final_price})
    await notifications.notify(
        db,
        user.id,
        notifications.ORDER_CREATED,
        {
            "order_id": order_id,
            "plan_name": plan.display_name,
            "amount": final_price,
            "currency": settings.CURRENCY,
        },
    )
    return await get_order(db, order_id)


async def _fail_pending_order(db: AsyncSession, order_id: int, error: str) -> None:
    order = await get_order(db, order_id)
    if order.status != PENDING:
        return
    try:
        await transition_atomic(
            db,
            order,
            FAILED,
            actor=SYSTEM_ACTOR,
            reason="Balance deduction failed",
            meta={"error": error},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("could not mark order failed", extra={"order_id": order_id})


async def update_order_status(
    db: AsyncSession,
    order_id: int,
    new_status: str,
    *,
    actor: str,
    reason: str | None = None,
    meta: dict[str, Any] | None = None,
) -> Order:
    order = await get_order(db, order_id)
    fields: dict[str, Any] = {}
    if new_status in (PAID, PROCESSING) and order.paid_at is None:
        fields["paid_at"] = utcnow()
    try:
        await transition_atomic(db, order, new_status, actor=actor, reason=reason, meta=meta, **fields)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return await get_order(db, order_id)


async def cancel_order(db: AsyncSession, user: User, order_id: int) -> Order:
    order = await get_order(db, order_id, user)
    if order.status not in (PENDING, PENDING_PAYMENT):
        raise InvalidStatusTransition(order.status, CANCELED)
    return await update_order_status(db, order_id, CANCELED, actor=user_actor(user), reason="Order canceled by user")


async def net_charged(db: AsyncSession, order: Order) -> int:
    """What the customer currently pays for the initial order: debits minus refunds, as a positive number."""
    res = await db.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.user_id == order.user_id,
            WalletTransaction.reference_id == str(order.id),
            WalletTransaction.reference_type.in_((wallet.VPS_ORDER, wallet.PROVISION_FAILED_REFUND)),
        )
    )
    return -int(res.scalar_one())


async def refund_order(db: AsyncSession, order: Order, reason: str) -> WalletTransaction | None:
    """Refunds the outstanding order charge in the caller's transaction. No-op once refunded."""
    outstanding = await net_charged(db, order)
    if outstanding <= 0:
        return None
    return await wallet.apply_credit(
        db,
        order.user_id,
        outstanding,
        reference_type=wallet.PROVISION_FAILED_REFUND,
        reference_id=str(order.id),
        description=reason,
    )


async def handle_provisioning_failed(
    db: AsyncSession,
    order_id: int,
    *,
    error_code: str,
    error_message: str,
) -> Order:
    """Moves the order to FAILED (when it is not already), refunds it and tells the customer."""
    order = await get_order(db, order_id)
    try:
        if order.status != FAILED:
            await transition_atomic(
                db,
                order,
                FAILED,
                actor=SYSTEM_ACTOR,
                reason=f"Provisioning failed: {error_message}",
                meta={"error_code": error_code},
            )
        refund = await refund_order(db, order, f"Refund for failed provisioning of order #{order.id}")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.warning(
        "provisioning failed",
        extra={"order_id": order_id, "error_code": error_code, "refunded": refund is not None},
    )
    await notifications.notify(
        db,
        order.user_id,
        notifications.PROVISIONING_FAILED,
        {"order_id": order.id, "plan_name": order.plan_name, "error_message": error_message},
    )
    return await get_order(db, order_id)


async def retry_provisioning(db: AsyncSession, admin_user: User, order_id: int) -> Order:
    """FAILED -> PROCESSING; charges the order again when it was refunded."""
    order = await get_order(db, order_id)
    if order.status != FAILED:
        raise InvalidStatusTransition(order.status, PROCESSING)

    try:
        if order.final_price > 0 and await net_charged(db, order) < order.final_price:
            await wallet.apply_debit(
                db,
                order.user_id,
                int(order.final_price),
                reference_type=wallet.VPS_ORDER,
                reference_id=str(order.id),
                description=f"VPS order #{order.id} (provisioning retry)",
            )
        await transition_atomic(db, order, PROCESSING, actor=user_actor(admin_user), reason="Provisioning retried by admin")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return await get_order(db, order_id)
