from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webrana.core.db import Base, BigIntPK, JSONType, utcnow


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)  # PERCENT/FIXED
    discount_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    min_order_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    max_discount_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    max_total_redemptions: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_redemptions_per_user: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # empty list = no restriction
    plan_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    user_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    coupon_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # discount granted

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


Index("ix_coupon_redemptions_coupon_user", CouponRedemption.coupon_id, CouponRedemption.user_id)
