from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.integrations.digitalocean import DigitalOceanError
from webrana.models.order import Order, ProvisioningTask
from webrana.models.user import User
from webrana.services import lifecycle, orders, provisioning
from webrana.services.order_state import (
    ACTIVE,
    EXPIRED,
    EXPIRING_SOON,
    PROVISIONING,
    SUSPENDED,
)

logger = logging.getLogger(__name__)

INSTANCE_STATUSES = (PROVISIONING, ACTIVE, EXPIRING_SOON, EXPIRED, SUSPENDED)
ACTIONABLE_STATUSES = (ACTIVE, EXPIRING_SOON)
ALLOWED_ACTIONS = ("reboot", "power_on", "power_off")
CONSOLE_TTL_MINUTES = 10


class InstanceError(AppError):
    code = "INSTANCE_ERROR"
    status_code = 400


class InstanceNotFound(InstanceError):
    code = "INSTANCE_NOT_FOUND"
    status_code = 404
    message = "Instance not found"


class InstanceNotActive(InstanceError):
    code = "INSTANCE_NOT_ACTIVE"
    status_code = 409
    message = "Instance is not running"


class InvalidAction(InstanceError):
    code = "INVALID_ACTION"


class InstanceActionFailed(InstanceError):
    code = "DIGITALOCEAN_UNAVAILABLE"
    status_code = 502
    message = "DigitalOcean request failed"


def instance_view(order: Order, task: ProvisioningTask | None) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "status": order.status,
        "plan_name": order.plan_name,
        "image_name": order.image_name,
        "billing_period": order.billing_period,
        "auto_renew": order.auto_renew,
        "activated_at": order.activated_at,
        "expires_at": order.expires_at,
        "droplet_id": task.droplet_id if task else None,
        "droplet_name": task.droplet_name if task else None,
        "droplet_status": task.droplet_status if task else None,
        "ip_address": task.ipv4_public if task else None,
        "private_ip_address": task.ipv4_private if task else None,
        "region": task.do_region if task else None,
        "size": task.do_size if task else None,
        "image": task.do_image if task else None,
    }


async def list_instances(db: AsyncSession, user: User, *, page: int = 1, limit: int = 20) -> dict:
    filters = [Order.user_id == user.id, Order.status.in_(INSTANCE_STATUSES)]

    total_res = await db.execute(select(func.count()).select_from(Order).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(Order, ProvisioningTask)
        .outerjoin(ProvisioningTask, ProvisioningTask.order_id == Order.id)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    data = [instance_view(order, task) for order, task in res.all()]
    return {"data": data, "meta": page_meta(page, limit, total)}


async def _owned_instance(db: AsyncSession, user: User, order_id: int) -> tuple[Order, ProvisioningTask]:
    order = await db.get(Order, order_id, populate_existing=True)
    if order is None or order.user_id != user.id:
        raise InstanceNotFound()
    task = await orders.get_provisioning_task(db, order_id)
    if task is None or not task.droplet_id:
        raise InstanceNotFound()
    return order, task


async def get_instance(db: AsyncSession, user: User, order_id: int) -> dict[str, Any]:
    order, task = await _owned_instance(db, user, order_id)
    return instance_view(order, task)


async def _client(db: AsyncSession, order_id: int):
    target = await provisioning.droplet_client(db, order_id)
    if target is None:
        raise InstanceNotFound()
    return target[1]


async def trigger_action(db: AsyncSession, user: User, order_id: int, action: str) -> dict:
    if action not in ALLOWED_ACTIONS:
        raise InvalidAction(
            f"Unsupported action '{action}'",
            details={"allowed": list(ALLOWED_ACTIONS)},
        )
    order, task = await _owned_instance(db, user, order_id)
    if order.status not in ACTIONABLE_STATUSES:
        raise InstanceNotActive(details={"status": order.status})

    client = await _client(db, order_id)
    try:
        result = await client.perform_droplet_action(task.droplet_id, action)
    except DigitalOceanError as e:
        raise InstanceActionFailed(str(e), details={"operation": e.operation})

    logger.info("instance action", extra={"order_id": order_id, "action": action, "user_id": user.id})
    return result


async def get_console(db: AsyncSession, user: User, order_id: int) -> dict[str, Any]:
    order, task = await _owned_instance(db, user, order_id)
    if order.status not in ACTIONABLE_STATUSES:
        raise InstanceNotActive(details={"status": order.status})

    client = await _client(db, order_id)
    try:
        console = await client.get_droplet_console(task.droplet_id)
    except DigitalOceanError as e:
        raise InstanceActionFailed(str(e), details={"operation": e.operation})

    return {
        "url": console.get("url"),
        "expires_at": utcnow() + timedelta(minutes=CONSOLE_TTL_MINUTES),
    }


async def renew(db: AsyncSession, user: User, order_id: int) -> dict[str, Any]:
    return await lifecycle.manual_renewal(db, user, order_id)
