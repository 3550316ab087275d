from __future__ import annotations

import itertools
import logging
import random
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.crypto import DecryptionError, decrypt_value, encrypt_value
from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.integrations.digitalocean import DigitalOceanClient, DigitalOceanError
from webrana.models.do_account import DoAccount
from webrana.models.order import ProvisioningTask

logger = logging.getLogger(__name__)

HEALTHY = "HEALTHY"
DEGRADED = "DEGRADED"
UNHEALTHY = "UNHEALTHY"
UNKNOWN = "UNKNOWN"

LEAST_USED = "LEAST_USED"
ROUND_ROBIN = "ROUND_ROBIN"
RANDOM = "RANDOM"
PRIMARY_FIRST = "PRIMARY_FIRST"
STRATEGIES = (LEAST_USED, ROUND_ROBIN, RANDOM, PRIMARY_FIRST)

# below this many remaining API calls an account is DEGRADED
RATE_LIMIT_DEGRADED_THRESHOLD = 100

_round_robin_index = itertools.count()


class DoAccountError(AppError):
    code = "DO_ACCOUNT_ERROR"
    status_code = 400


class DoAccountNotFound(DoAccountError):
    code = "DO_ACCOUNT_NOT_FOUND"
    status_code = 404
    message = "DigitalOcean account not found"


class InvalidDoToken(DoAccountError):
    code = "INVALID_DO_TOKEN"
    message = "DigitalOcean access token is invalid"


class AccountHasActiveTasks(DoAccountError):
    code = "ACCOUNT_HAS_ACTIVE_TASKS"
    message = "Account has provisioning tasks in progress"


class DuplicateDoAccount(DoAccountError):
    code = "DUPLICATE_ENTRY"
    status_code = 409
    message = "An account with this name already exists"


class NoAvailableDoAccount(DoAccountError):
    code = "NO_AVAILABLE_DO_ACCOUNT"
    status_code = 503
    message = "No active DigitalOcean account is available"


class AllDoAccountsFull(DoAccountError):
    code = "ALL_DO_ACCOUNTS_FULL"
    status_code = 503
    message = "All DigitalOcean accounts are at their droplet limit"


class DoApiUnavailable(DoAccountError):
    code = "DIGITALOCEAN_UNAVAILABLE"
    status_code = 503
    message = "DigitalOcean API is unavailable"


@dataclass
class SelectedAccount:
    account: DoAccount
    token: str
    droplet_limit: int
    active_droplets: int

    @property
    def id(self) -> int:
        return self.account.id


def get_token(account: DoAccount) -> str:
    return decrypt_value(account.access_token)


def client_for(account: DoAccount) -> DigitalOceanClient:
    return DigitalOceanClient(get_token(account))


# -------------------------
# CRUD
# -------------------------
async def list_accounts(db: AsyncSession) -> list[DoAccount]:
    res = await db.execute(select(DoAccount).order_by(DoAccount.is_primary.desc(), DoAccount.name.asc()))
    return list(res.scalars().all())


async def get_account(db: AsyncSession, account_id: int) -> DoAccount:
    account = await db.get(DoAccount, account_id)
    if account is None:
        raise DoAccountNotFound()
    return account


async def _fetch_token_account(token: str) -> dict:
    client = DigitalOceanClient(token)
    try:
        if not await client.validate_token():
            raise InvalidDoToken()
        info = await client.get_account_info()
        info["active_droplets"] = await client.get_droplet_count()
    except DigitalOceanError as e:
        raise DoApiUnavailable(str(e), details={"operation": e.operation})
    return info


async def _clear_other_primaries(db: AsyncSession, keep_id: int) -> None:
    await db.execute(
        update(DoAccount)
        .where(DoAccount.id != keep_id, DoAccount.is_primary.is_(True))
        .values(is_primary=False)
    )


async def create_account(db: AsyncSession, data) -> DoAccount:
    info = await _fetch_token_account(data.access_token)

    account = DoAccount(
        name=data.name,
        email=data.email or info["email"],
        access_token=encrypt_value(data.access_token),
        droplet_limit=int(info["droplet_limit"]),
        active_droplets=int(info["active_droplets"]),
        is_active=data.is_active,
        is_primary=data.is_primary,
        health_status=HEALTHY,
        last_health_check=utcnow(),
    )
    try:
        db.add(account)
        await db.flush()
        if account.is_primary:
            await _clear_other_primaries(db, account.id)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateDoAccount()

    logger.info("do account created", extra={"account_id": account.id, "droplet_limit": account.droplet_limit})
    return account


async def update_account(db: AsyncSession, account_id: int, data) -> DoAccount:
    account = await get_account(db, account_id)
    changes = data.model_dump(exclude_unset=True)

    token = changes.pop("access_token", None)
    if token:
        info = await _fetch_token_account(token)
        account.access_token = encrypt_value(token)
        account.droplet_limit = int(info["droplet_limit"])
        account.active_droplets = int(info["active_droplets"])
        account.health_status = HEALTHY
        account.last_health_check = utcnow()

    for field, value in changes.items():
        setattr(account, field, value)

    try:
        if account.is_primary:
            await _clear_other_primaries(db, account.id)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateDoAccount()
    return await get_account(db, account_id)


async def delete_account(db: AsyncSession, account_id: int) -> None:
    account = await get_account(db, account_id)
    res = await db.execute(
        select(func.count())
        .select_from(ProvisioningTask)
        .where(
            ProvisioningTask.do_account_id == account_id,
            ProvisioningTask.status.in_(("PENDING", "IN_PROGRESS")),
        )
    )
    active = int(res.scalar_one())
    if active:
        raise AccountHasActiveTasks(details={"active_tasks": active})
    await db.delete(account)
    await db.commit()


# -------------------------
# Selection
# -------------------------
async def get_active_accounts(db: AsyncSession) -> list[DoAccount]:
    res = await db.execute(
        select(DoAccount)
        .where(DoAccount.is_active.is_(True), DoAccount.health_status.in_((HEALTHY, UNKNOWN)))
        .order_by(DoAccount.is_primary.desc(), DoAccount.active_droplets.asc(), DoAccount.id.asc())
    )
    return list(res.scalars().all())


def order_candidates(accounts: list[DoAccount], strategy: str) -> list[DoAccount]:
    accounts = list(accounts)
    if not accounts:
        return accounts
    if strategy == ROUND_ROBIN:
        start = next(_round_robin_index) % len(accounts)
        return accounts[start:] + accounts[:start]
    if strategy == RANDOM:
        random.shuffle(accounts)
        return accounts
    # LEAST_USED and PRIMARY_FIRST keep the base ordering
    return accounts


async def get_account_capacity(account: DoAccount) -> tuple[int, int]:
    client = client_for(account)
    info = await client.get_account_info()
    active = await client.get_droplet_count()
    return int(info["droplet_limit"]), int(active)


async def mark_healthy(
    db: AsyncSession,
    account: DoAccount,
    *,
    droplet_limit: int | None = None,
    active_droplets: int | None = None,
    status: str = HEALTHY,
) -> None:
    if droplet_limit is not None:
        account.droplet_limit = droplet_limit
    if active_droplets is not None:
        account.active_droplets = active_droplets
    account.health_status = status
    account.last_health_check = utcnow()
    await db.commit()


async def mark_unhealthy(db: AsyncSession, account: DoAccount, reason: str) -> None:
    account.health_status = UNHEALTHY
    account.last_health_check = utcnow()
    await db.commit()
    logger.warning("do account unhealthy", extra={"account_id": account.id, "reason": reason})


async def select_available_account(db: AsyncSession, strategy: str | None = None) -> SelectedAccount:
    strategy = (strategy or settings.DO_ACCOUNT_SELECTION_STRATEGY).upper()
    candidates = order_candidates(await get_active_accounts(db), strategy)
    if not candidates:
        raise NoAvailableDoAccount()

    for account in candidates:
        try:
            limit, active = await get_account_capacity(account)
        except (DigitalOceanError, DecryptionError) as e:
            await mark_unhealthy(db, account, str(e))
            continue

        await mark_healthy(db, account, droplet_limit=limit, active_droplets=active)
        if active < limit:
            logger.info(
                "do account selected",
                extra={"account_id": account.id, "strategy": strategy, "active": active, "limit": limit},
            )
            return SelectedAccount(account=account, token=get_token(account), droplet_limit=limit, active_droplets=active)

    raise AllDoAccountsFull(details={"checked": len(candidates)})


async def increment_active_count(db: AsyncSession, account_id: int) -> None:
    await db.execute(
        update(DoAccount)
        .where(DoAccount.id == account_id)
        .values(active_droplets=DoAccount.active_droplets + 1, updated_at=utcnow())
    )


async def decrement_active_count(db: AsyncSession, account_id: int) -> None:
    await db.execute(
        update(DoAccount)
        .where(DoAccount.id == account_id, DoAccount.active_droplets > 0)
        .values(active_droplets=DoAccount.active_droplets - 1, updated_at=utcnow())
    )


# -------------------------
# Sync and health
# -------------------------
async def sync_account_limits(db: AsyncSession, account_id: int) -> DoAccount:
    account = await get_account(db, account_id)
    try:
        limit, active = await get_account_capacity(account)
    except (DigitalOceanError, DecryptionError) as e:
        await mark_unhealthy(db, account, str(e))
        raise DoApiUnavailable(str(e), details={"account_id": account_id})
    await mark_healthy(db, account, droplet_limit=limit, active_droplets=active)
    return account


async def sync_all_accounts(db: AsyncSession) -> dict:
    res = await db.execute(select(DoAccount.id).where(DoAccount.is_active.is_(True)).order_by(DoAccount.id))
    result = {"synced": 0, "failed": 0, "errors": []}
    for account_id in res.scalars().all():
        try:
            await sync_account_limits(db, account_id)
            result["synced"] += 1
        except AppError as e:
            result["failed"] += 1
            result["errors"].append({"account_id": account_id, "error": e.message})
    logger.info("do accounts synced", extra={"synced": result["synced"], "failed": result["failed"]})
    return result


async def health_check(db: AsyncSession, account_id: int) -> DoAccount:
    account = await get_account(db, account_id)
    try:
        client = client_for(account)
        if not await client.validate_token():
            await mark_unhealthy(db, account, "token rejected")
            return account
        rate = await client.get_rate_limit_info()
        status = DEGRADED if rate and rate["remaining"] < RATE_LIMIT_DEGRADED_THRESHOLD else HEALTHY
        await mark_healthy(db, account, status=status)
    except Exception as e:
        logger.exception("do account health check failed", extra={"account_id": account_id})
        await mark_unhealthy(db, account, str(e))
    return account


async def get_stats(db: AsyncSession) -> dict:
    accounts = await list_accounts(db)
    active = [a for a in accounts if a.is_active]
    total_limit = sum(a.droplet_limit for a in active)
    total_active = sum(a.active_droplets for a in active)
    return {
        "total_accounts": len(accounts),
        "active_accounts": len(active),
        "healthy_accounts": sum(1 for a in active if a.health_status == HEALTHY),
        "total_droplet_limit": total_limit,
        "total_active_droplets": total_active,
        "available_capacity": sum(a.available_capacity for a in active),
    }


async def get_overall_stats(db: AsyncSession) -> dict:
    stats = await get_stats(db)
    accounts = [a for a in await list_accounts(db) if a.is_active]
    stats["unhealthy_accounts"] = sum(1 for a in accounts if a.health_status == UNHEALTHY)
    stats["full_accounts"] = sum(1 for a in accounts if a.active_droplets >= a.droplet_limit)
    total_limit = stats["total_droplet_limit"]
    stats["utilization_percent"] = (
        round(stats["total_active_droplets"] / total_limit * 100, 2) if total_limit else 0
    )
    return stats


async def catalog_lookup(db: AsyncSession, kind: str) -> list[dict]:
    """Sizes, regions or images as seen by the first usable account."""
    accounts = await get_active_accounts(db)
    if not accounts:
        raise NoAvailableDoAccount()
    client = client_for(accounts[0])
    lookups = {
        "sizes": client.get_sizes,
        "regions": client.get_regions,
        "images": client.get_images,
    }
    try:
        return await lookups[kind]()
    except DigitalOceanError as e:
        raise DoApiUnavailable(str(e), details={"operation": e.operation})
