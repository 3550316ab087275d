from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class DoAccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    access_token: str = Field(..., min_length=1)
    is_active: bool = True
    is_primary: bool = False


class DoAccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    access_token: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None
    is_primary: bool | None = None


class DoAccountOut(BaseModel):
    # never carries the token
    id: int
    name: str
    email: str
    droplet_limit: int
    active_droplets: int
    available_capacity: int
    is_active: bool
    is_primary: bool
    health_status: str
    last_health_check: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DoAccountStatsOut(BaseModel):
    total_accounts: int
    active_accounts: int
    healthy_accounts: int
    total_droplet_limit: int
    total_active_droplets: int
    available_capacity: int
    unhealthy_accounts: int = 0
    full_accounts: int = 0
    utilization_percent: float = 0


class SyncError(BaseModel):
    account_id: int
    error: str


class SyncResultOut(BaseModel):
    synced: int
    failed: int
    errors: list[SyncError] = Field(default_factory=list)
