from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# registers every table on Base.metadata
import webrana.models  # noqa: F401
from webrana.core.config import settings
from webrana.core.errors import register_error_handlers
from webrana.core.logging import setup_logging
from webrana.routers.admin_coupons import router as admin_coupons_router
from webrana.routers.admin_dashboard import router as admin_dashboard_router
from webrana.routers.admin_do_accounts import router as admin_do_accounts_router
from webrana.routers.admin_images import router as admin_images_router
from webrana.routers.admin_orders import router as admin_orders_router
from webrana.routers.admin_plans import router as admin_plans_router
from webrana.routers.admin_promos import router as admin_promos_router
from webrana.routers.admin_users import router as admin_users_router
from webrana.routers.admin_wallet import router as admin_wallet_router
from webrana.routers.auth import router as auth_router
from webrana.routers.coupons import router as coupons_router
from webrana.routers.instances import router as instances_router
from webrana.routers.internal import router as internal_router
from webrana.routers.invoices import router as invoices_router
from webrana.routers.me import router as me_router
from webrana.routers.notifications import router as notifications_router
from webrana.routers.orders import router as orders_router
from webrana.routers.plans import router as plans_router
from webrana.routers.promos import router as promos_router
from webrana.routers.wallet import router as wallet_router
from webrana.routers.webhooks import router as webhooks_router
from webrana.scheduler import Scheduler

setup_logging()
logger = logging.getLogger("webrana.http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = Scheduler()
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    app.state.scheduler = scheduler
    logger.info("application started", extra={"scheduler": settings.SCHEDULER_ENABLED})
    try:
        yield
    finally:
        await scheduler.stop()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Auth & users
app.include_router(auth_router)
app.include_router(me_router)
app.include_router(admin_users_router)

# Catalog
app.include_router(plans_router)
app.include_router(admin_plans_router)
app.include_router(admin_images_router)

# Coupons
app.include_router(coupons_router)
app.include_router(admin_coupons_router)

# Wallet & deposits
app.include_router(wallet_router)
app.include_router(admin_wallet_router)
app.include_router(invoices_router)
app.include_router(webhooks_router)
app.include_router(promos_router)
app.include_router(admin_promos_router)

# Orders & instances
app.include_router(orders_router)
app.include_router(admin_orders_router)
app.include_router(instances_router)
app.include_router(internal_router)

# DigitalOcean pool
app.include_router(admin_do_accounts_router)

app.include_router(notifications_router)
app.include_router(admin_dashboard_router)
