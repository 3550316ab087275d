from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from webrana.schemas.common import PageMeta


class InstanceOut(BaseModel):
    order_id: int
    status: str
    plan_name: str
    image_name: str
    billing_period: str
    auto_renew: bool
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    droplet_id: str | None = None
    droplet_name: str | None = None
    droplet_status: str | None = None
    ip_address: str | None = None
    private_ip_address: str | None = None
    region: str | None = None
    size: str | None = None
    image: str | None = None


class InstanceListOut(BaseModel):
    data: list[InstanceOut]
    meta: PageMeta


class InstanceActionIn(BaseModel):
    action: Literal["reboot", "power_on", "power_off"]


class InstanceActionOut(BaseModel):
    id: int | None = None
    status: str | None = None
    type: str | None = None
    started_at: str | None = None

    @classmethod
    def from_do(cls, action: dict[str, Any]) -> "InstanceActionOut":
        return cls(
            id=action.get("id"),
            status=action.get("status"),
            type=action.get("type"),
            started_at=action.get("started_at"),
        )


class ConsoleOut(BaseModel):
    url: str | None = None
    expires_at: datetime
