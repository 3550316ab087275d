from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.schemas.do_accounts import (
    DoAccountCreate,
    DoAccountOut,
    DoAccountStatsOut,
    DoAccountUpdate,
    SyncResultOut,
)
from webrana.services import do_accounts as do_service

router = APIRouter(prefix="/admin/do-accounts", tags=["Admin - DigitalOcean Accounts"])


@router.get("", response_model=list[DoAccountOut])
async def list_accounts(
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.list_accounts(db)


@router.post("", response_model=DoAccountOut, status_code=201)
async def create_account(
    body: DoAccountCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.create_account(db, body)


@router.get("/stats", response_model=DoAccountStatsOut)
async def account_stats(
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.get_overall_stats(db)


@router.post("/sync", response_model=SyncResultOut)
async def sync_all(
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.sync_all_accounts(db)


@router.get("/catalog/{kind}", response_model=list[dict])
async def catalog_lookup(
    kind: Literal["sizes", "regions", "images"],
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.catalog_lookup(db, kind)


@router.get("/{account_id}", response_model=DoAccountOut)
async def get_account(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.get_account(db, account_id)


@router.patch("/{account_id}", response_model=DoAccountOut)
async def update_account(
    account_id: int,
    body: DoAccountUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.update_account(db, account_id, body)


@router.delete("/{account_id}", status_code=204)
async def delete_account(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    await do_service.delete_account(db, account_id)
    return Response(status_code=204)


@router.post("/{account_id}/sync", response_model=DoAccountOut)
async def sync_account(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.sync_account_limits(db, account_id)


@router.post("/{account_id}/health-check", response_model=DoAccountOut)
async def health_check(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await do_service.health_check(db, account_id)
