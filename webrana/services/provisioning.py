from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.crypto import DecryptionError
from webrana.core.db import SessionLocal, utcnow
from webrana.integrations.digitalocean import (
    DigitalOceanAuthError,
    DigitalOceanError,
    extract_private_ipv4,
    extract_public_ipv4,
)
from webrana.models.do_account import DoAccount
from webrana.models.order import ProvisioningTask
from webrana.services import do_accounts, notifications, orders, plans
from webrana.services.order_state import ACTIVE, PAID, PROCESSING, PROVISIONING

logger = logging.getLogger(__name__)

TASK_PENDING = "PENDING"
TASK_IN_PROGRESS = "IN_PROGRESS"
TASK_SUCCESS = "SUCCESS"
TASK_FAILED = "FAILED"

NO_DO_ACCOUNT = "NO_DO_ACCOUNT"
DROPLET_CREATION_FAILED = "DROPLET_CREATION_FAILED"
DROPLET_ERRORED = "DROPLET_ERRORED"
POLLING_ERROR = "POLLING_ERROR"
PROVISIONING_TIMEOUT = "PROVISIONING_TIMEOUT"

Sleeper = Callable[[float], Awaitable[None]]


def droplet_name(order_id: int) -> str:
    return f"vps-{order_id}"


async def start_provisioning(
    db: AsyncSession,
    order_id: int,
    *,
    strategy: str | None = None,
) -> ProvisioningTask | None:
    """
    Picks a DO account and moves the order into PROVISIONING.

    Returns None when no account could take the droplet; the order is then
    failed and refunded.
    """
    order = await orders.get_order(db, order_id)
    if order.status not in (PROCESSING, PAID):
        raise orders.InvalidStatusTransition(order.status, PROVISIONING)

    try:
        selected = await do_accounts.select_available_account(db, strategy)
    except (do_accounts.NoAvailableDoAccount, do_accounts.AllDoAccountsFull) as e:
        await orders.handle_provisioning_failed(
            db, order_id, error_code=NO_DO_ACCOUNT, error_message=e.message
        )
        return None

    plan = await plans.get_plan(db, order.plan_id)
    image = await plans.get_image(db, order.image_id)
    now = utcnow()

    try:
        task = await orders.get_provisioning_task(db, order_id)
        if task is None:
            task = ProvisioningTask(order_id=order_id)
            db.add(task)
        task.status = TASK_PENDING
        task.do_account_id = selected.id
        task.do_region = settings.DIGITALOCEAN_DEFAULT_REGION
        task.do_size = plan.provider_size_slug
        task.do_image = image.provider_slug
        task.droplet_id = None
        task.droplet_name = None
        task.droplet_status = None
        task.ipv4_public = None
        task.ipv4_private = None
        task.attempts = 0
        task.error_code = None
        task.error_message = None
        task.started_at = now
        task.completed_at = None

        await orders.transition_atomic(
            db,
            order,
            PROVISIONING,
            reason="VPS provisioning started",
            meta={"do_account_id": selected.id},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("provisioning started", extra={"order_id": order_id, "do_account_id": selected.id})
    return task


async def _fail(db: AsyncSession, task: ProvisioningTask, error_code: str, error_message: str) -> ProvisioningTask:
    task.status = TASK_FAILED
    task.error_code = error_code
    task.error_message = error_message
    task.completed_at = utcnow()
    await db.commit()

    await orders.handle_provisioning_failed(
        db, task.order_id, error_code=error_code, error_message=error_message
    )
    return task


async def _succeed(db: AsyncSession, task: ProvisioningTask) -> ProvisioningTask:
    order = await orders.get_order(db, task.order_id)
    now = utcnow()
    expires_at = orders.calculate_expiry(now, order.billing_period)

    try:
        task.status = TASK_SUCCESS
        task.completed_at = now
        await orders.transition_atomic(
            db,
            order,
            ACTIVE,
            reason="VPS provisioned successfully",
            meta={"droplet_id": task.droplet_id, "ip_address": task.ipv4_public},
            activated_at=now,
            expires_at=expires_at,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "provisioning succeeded",
        extra={"order_id": order.id, "droplet_id": task.droplet_id, "attempts": task.attempts},
    )
    await notifications.notify(
        db,
        order.user_id,
        notifications.VPS_ACTIVE,
        {
            "order_id": order.id,
            "plan_name": order.plan_name,
            "ip_address": task.ipv4_public,
            "expires_at": expires_at,
        },
    )
    return task


def _record_droplet(task: ProvisioningTask, droplet: dict) -> None:
    task.droplet_status = droplet.get("status")
    task.ipv4_public = extract_public_ipv4(droplet) or task.ipv4_public
    task.ipv4_private = extract_private_ipv4(droplet) or task.ipv4_private


async def execute_provisioning(
    db: AsyncSession,
    task_id: int,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> ProvisioningTask:
    """Creates the droplet and polls it until it is active, errored or out of attempts."""
    task = await db.get(ProvisioningTask, task_id, populate_existing=True)
    if task is None:
        raise ValueError(f"provisioning task {task_id} not found")

    account = await db.get(DoAccount, task.do_account_id)
    if account is None:
        return await _fail(db, task, NO_DO_ACCOUNT, "DigitalOcean account no longer exists")
    try:
        client = do_accounts.client_for(account)
    except DecryptionError as e:
        await do_accounts.mark_unhealthy(db, account, str(e))
        return await _fail(db, task, NO_DO_ACCOUNT, str(e))

    name = droplet_name(task.order_id)
    try:
        droplet = await client.create_droplet(
            name=name,
            region=task.do_region,
            size=task.do_size,
            image=task.do_image,
            tags=["webrana", f"order-{task.order_id}"],
            monitoring=True,
        )
    except DigitalOceanError as e:
        return await _fail(db, task, DROPLET_CREATION_FAILED, str(e))

    task.status = TASK_IN_PROGRESS
    task.droplet_id = str(droplet["id"])
    task.droplet_name = droplet.get("name") or name
    _record_droplet(task, droplet)
    await do_accounts.increment_active_count(db, account.id)
    await db.commit()

    logger.info("droplet created", extra={"order_id": task.order_id, "droplet_id": task.droplet_id})

    for attempt in range(1, settings.PROVISIONING_MAX_ATTEMPTS + 1):
        if attempt > 1:
            await sleep(settings.PROVISIONING_POLL_INTERVAL_SECONDS)

        task.attempts = attempt
        try:
            droplet = await client.get_droplet(task.droplet_id)
        except DigitalOceanAuthError as e:
            return await _fail(db, task, POLLING_ERROR, str(e))
        except DigitalOceanError as e:
            logger.warning(
                "droplet poll failed",
                extra={"order_id": task.order_id, "attempt": attempt, "error": str(e)},
            )
            await db.commit()
            continue

        _record_droplet(task, droplet)
        await db.commit()

        if task.droplet_status == "active":
            return await _succeed(db, task)
        if task.droplet_status == "errored":
            return await _fail(db, task, DROPLET_ERRORED, f"Droplet {task.droplet_id} entered errored state")

    return await _fail(
        db,
        task,
        PROVISIONING_TIMEOUT,
        f"Droplet not active after {settings.PROVISIONING_MAX_ATTEMPTS} attempts",
    )


async def provision_order(order_id: int) -> None:
    """Background entry point: start and run provisioning in its own session."""
    async with SessionLocal() as db:
        try:
            task = await start_provisioning(db, order_id)
            if task is not None:
                await execute_provisioning(db, task.id)
        except Exception:
            await db.rollback()
            logger.exception("provisioning crashed", extra={"order_id": order_id})


async def droplet_client(db: AsyncSession, order_id: int):
    """(task, client) for the order's droplet, or None when it never got one."""
    task = await orders.get_provisioning_task(db, order_id)
    if task is None or not task.droplet_id or task.do_account_id is None:
        return None
    account = await db.get(DoAccount, task.do_account_id)
    if account is None:
        return None
    return task, do_accounts.client_for(account)
