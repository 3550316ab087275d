from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webrana.core.db import Base, BigIntPK, utcnow


class DoAccount(Base):
    __tablename__ = "do_accounts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    # Fernet ciphertext, never the raw token
    access_token: Mapped[str] = mapped_column(Text, nullable=False)

    droplet_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=25)
    active_droplets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    health_status: Mapped[str] = mapped_column(String(16), nullable=False, default="UNKNOWN")
    last_health_check: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def available_capacity(self) -> int:
        return max(0, self.droplet_limit - self.active_droplets)
