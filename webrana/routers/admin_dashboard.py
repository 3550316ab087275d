from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import require_admin
from webrana.models.user import User
from webrana.schemas.dashboard import DashboardStatsOut
from webrana.services import dashboard as dashboard_service

router = APIRouter(prefix="/admin/dashboard", tags=["Admin Dashboard"])


@router.get("/stats", response_model=DashboardStatsOut)
async def admin_dashboard_stats(
    days: int = Query(default=30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> DashboardStatsOut:
    data = await dashboard_service.get_stats(db, days=days)
    return DashboardStatsOut(**data)
