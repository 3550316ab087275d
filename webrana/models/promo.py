from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webrana.core.db import Base, BigIntPK, utcnow


class DepositPromo(Base):
    """Balance bonus granted on a deposit (DEPOSIT_BONUS) or once per user (WELCOME_BONUS)."""

    __tablename__ = "deposit_promos"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    type: Mapped[str] = mapped_column(String(32), nullable=False)  # DEPOSIT_BONUS/WELCOME_BONUS
    bonus_type: Mapped[str] = mapped_column(String(16), nullable=False)  # PERCENTAGE/FIXED
    bonus_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    min_deposit: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    max_bonus: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    max_total_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_uses_per_user: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class DepositPromoRedemption(Base):
    __tablename__ = "deposit_promo_redemptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    promo_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("deposit_promos.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # null for welcome bonuses
    invoice_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    deposit_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    bonus_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    redeemed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


Index("ix_deposit_promo_redemptions_promo_user", DepositPromoRedemption.promo_id, DepositPromoRedemption.user_id)
