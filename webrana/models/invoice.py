from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webrana.core.db import Base, BigIntPK, utcnow


class Invoice(Base):
    """Wallet top-up paid through the payment gateway."""

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    merchant_ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_credit: Mapped[int] = mapped_column(BigInteger, nullable=False)
    promo_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    bonus_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    payment_code: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tripay_reference: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


Index("ix_invoices_user_created", Invoice.user_id, Invoice.created_at.desc())
Index("ix_invoices_status_expires", Invoice.status, Invoice.expires_at)
