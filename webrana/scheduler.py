from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import SessionLocal
from webrana.services import do_accounts, invoices, lifecycle

logger = logging.getLogger(__name__)

Job = Callable[[AsyncSession], Awaitable[Any]]

LIFECYCLE_JOBS: list[tuple[str, Job]] = [
    ("process_expiring", lifecycle.process_expiring),
    ("process_auto_renewals", lifecycle.process_auto_renewals),
    ("process_expired", lifecycle.process_expired),
    ("process_suspended", lifecycle.process_suspended),
    ("expire_stale_invoices", invoices.expire_stale_invoices),
]
HEALTH_JOBS: list[tuple[str, Job]] = [
    ("sync_do_accounts", do_accounts.sync_all_accounts),
]


async def run_job(name: str, job: Job) -> Any:
    """Runs one job in its own session. Errors are logged, never raised."""
    started = time.monotonic()
    async with SessionLocal() as db:
        try:
            result = await job(db)
        except Exception:
            await db.rollback()
            logger.exception("scheduled job failed", extra={"job": name})
            return None

    logger.info(
        "scheduled job finished",
        extra={"job": name, "result": result, "duration_ms": int((time.monotonic() - started) * 1000)},
    )
    return result


async def run_lifecycle_jobs() -> dict[str, Any]:
    return {name: await run_job(name, job) for name, job in LIFECYCLE_JOBS}


async def run_health_jobs() -> dict[str, Any]:
    return {name: await run_job(name, job) for name, job in HEALTH_JOBS}


class Scheduler:
    """Two periodic loops on the running event loop: lifecycle jobs and DO account sync."""

    def __init__(
        self,
        interval: float | None = None,
        health_interval: float | None = None,
    ):
        self.interval = interval or settings.SCHEDULER_INTERVAL_SECONDS
        self.health_interval = health_interval or settings.DO_HEALTH_INTERVAL_SECONDS
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def _loop(self, name: str, interval: float, runner: Callable[[], Awaitable[Any]]) -> None:
        logger.info("scheduler loop started", extra={"loop": name, "interval": interval})
        while True:
            await runner()
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._loop("lifecycle", self.interval, run_lifecycle_jobs)),
            asyncio.create_task(self._loop("do_health", self.health_interval, run_health_jobs)),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("scheduler stopped")
