from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webrana.core.db import Base, BigIntPK, JSONType, utcnow


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    plan_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("vps_plans.id", ondelete="RESTRICT"), nullable=False)
    plan_name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("vps_images.id", ondelete="RESTRICT"), nullable=False)
    image_name: Mapped[str] = mapped_column(String(255), nullable=False)
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False, default="MONTHLY")

    base_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    promo_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    coupon_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    final_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="IDR")

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # bumped on every guarded status change
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    suspended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    terminated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    termination_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_renewal_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    renewal_fail_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    item_type: Mapped[str] = mapped_column(String(16), nullable=False)  # PLAN/IMAGE/ADDON
    reference_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_price: Mapped[int] = mapped_column(BigInteger, nullable=False)


class StatusHistory(Base):
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    previous_status: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)  # user:<id> / admin:<id> / system
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ProvisioningTask(Base):
    __tablename__ = "provisioning_tasks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    do_account_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("do_accounts.id", ondelete="SET NULL"), nullable=True
    )

    droplet_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    droplet_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    droplet_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ipv4_public: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    ipv4_private: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    do_region: Mapped[str] = mapped_column(String(32), nullable=False)
    do_size: Mapped[str] = mapped_column(String(64), nullable=False)
    do_image: Mapped[str] = mapped_column(String(128), nullable=False)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class RenewalHistory(Base):
    __tablename__ = "order_renewal_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    renewal_type: Mapped[str] = mapped_column(String(16), nullable=False)  # AUTO/MANUAL
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    previous_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    new_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    fail_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


Index("ix_orders_user_created", Order.user_id, Order.created_at.desc())
Index("ix_orders_status_expires", Order.status, Order.expires_at)
Index("ix_order_status_history_order", StatusHistory.order_id, StatusHistory.created_at)
