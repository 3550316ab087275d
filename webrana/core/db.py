from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from webrana.core.config import settings

# BIGSERIAL on postgres, plain INTEGER rowid on sqlite so autoincrement works there too
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_unix(value: datetime) -> int:
    """Epoch seconds for a naive UTC datetime, independent of the host timezone."""
    return calendar.timegm(value.utctimetuple())


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
