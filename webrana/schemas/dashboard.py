from __future__ import annotations

from pydantic import BaseModel, Field

from webrana.schemas.do_accounts import DoAccountStatsOut


class OrderCountsOut(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)


class RevenueOut(BaseModel):
    total: int = 0
    last_30_days: int = 0


class PendingInvoicesOut(BaseModel):
    count: int = 0
    amount: int = 0


class RevenueDayOut(BaseModel):
    date: str
    revenue: int = 0
    transactions: int = 0


class DashboardStatsOut(BaseModel):
    users: int = 0
    orders: OrderCountsOut = Field(default_factory=OrderCountsOut)
    active_instances: int = 0
    revenue: RevenueOut = Field(default_factory=RevenueOut)
    pending_invoices: PendingInvoicesOut = Field(default_factory=PendingInvoicesOut)
    do_accounts: DoAccountStatsOut
    revenue_by_day: list[RevenueDayOut] = Field(default_factory=list)
