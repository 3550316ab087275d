from __future__ import annotations

import json
import logging
import secrets
import string
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import to_unix, utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.integrations.tripay import TripayChannelNotFound, TripayClient, TripayError, calculate_fee
from webrana.models.invoice import Invoice
from webrana.models.user import User
from webrana.services import notifications, promos, wallet

logger = logging.getLogger(__name__)

PENDING = "PENDING"
PAID = "PAID"
EXPIRED = "EXPIRED"
FAILED = "FAILED"

DEPOSIT_PREFIX = "DEP-"


class InvoiceError(AppError):
    code = "INVOICE_ERROR"
    status_code = 400


class InvalidDepositAmount(InvoiceError):
    code = "INVALID_DEPOSIT_AMOUNT"


class PaymentChannelNotFound(InvoiceError):
    code = "PAYMENT_CHANNEL_NOT_FOUND"
    message = "Payment channel not available"


class PaymentGatewayError(InvoiceError):
    code = "PAYMENT_GATEWAY_ERROR"
    status_code = 502
    message = "Payment gateway request failed"


class InvoiceNotFound(InvoiceError):
    code = "INVOICE_NOT_FOUND"
    status_code = 404
    message = "Invoice not found"


class InvoiceAccessDenied(InvoiceError):
    code = "INVOICE_ACCESS_DENIED"
    status_code = 403
    message = "You do not have access to this invoice"


class InvalidCallbackSignature(InvoiceError):
    code = "INVALID_SIGNATURE"
    message = "Invalid callback signature"


def generate_invoice_number(now: datetime | None = None) -> str:
    now = now or utcnow()
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"INV-{now:%Y%m%d}-{suffix}"


def generate_merchant_ref() -> str:
    return f"{DEPOSIT_PREFIX}{secrets.token_hex(4).upper()}"


async def list_payment_channels(client: TripayClient | None = None) -> list[dict]:
    client = client or TripayClient()
    try:
        return await client.get_payment_channels()
    except TripayError as e:
        raise PaymentGatewayError(str(e))


async def create_deposit(
    db: AsyncSession,
    user: User,
    *,
    amount: int,
    payment_method: str,
    return_url: str | None = None,
    promo_code: str | None = None,
    client: TripayClient | None = None,
) -> Invoice:
    if amount < settings.MIN_DEPOSIT_AMOUNT:
        raise InvalidDepositAmount(
            f"Minimum deposit is {settings.MIN_DEPOSIT_AMOUNT}",
            details={"minimum": settings.MIN_DEPOSIT_AMOUNT, "amount": amount},
        )

    bonus = 0
    if promo_code:
        # rejected up front; re-checked when the payment lands
        checked = await promos.validate_promo(db, promo_code, user_id=user.id, deposit_amount=amount)
        promo_code = checked["promo"].code
        bonus = checked["bonus_amount"]

    client = client or TripayClient()
    try:
        channel = await client.get_payment_channel(payment_method)
    except TripayChannelNotFound:
        raise PaymentChannelNotFound(details={"payment_method": payment_method})
    except TripayError as e:
        raise PaymentGatewayError(str(e))

    now = utcnow()
    expires_at = now + timedelta(hours=settings.DEPOSIT_EXPIRY_HOURS)
    invoice = Invoice(
        invoice_number=generate_invoice_number(now),
        merchant_ref=generate_merchant_ref(),
        user_id=user.id,
        amount=amount,
        fee=calculate_fee(channel, amount),
        total_credit=amount + bonus,
        promo_code=promo_code,
        bonus_amount=bonus,
        status=PENDING,
        payment_method=payment_method,
        payment_name=channel.get("name"),
        expires_at=expires_at,
    )
    try:
        db.add(invoice)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    try:
        tx = await client.create_transaction(
            method=payment_method,
            merchant_ref=invoice.merchant_ref,
            amount=amount,
            customer_name=user.full_name,
            customer_email=user.email,
            customer_phone=user.phone,
            order_items=[
                {
                    "sku": "DEPOSIT",
                    "name": f"Balance top-up {invoice.invoice_number}",
                    "price": amount,
                    "quantity": 1,
                }
            ],
            return_url=return_url,
            expired_time=to_unix(expires_at),
        )
    except TripayError as e:
        await db.execute(delete(Invoice).where(Invoice.id == invoice.id))
        await db.commit()
        logger.warning("deposit creation failed", extra={"user_id": user.id, "error": str(e)})
        raise PaymentGatewayError(str(e))

    invoice.tripay_reference = tx.get("reference")
    invoice.payment_code = tx.get("pay_code")
    invoice.payment_url = tx.get("checkout_url")
    invoice.payment_name = tx.get("payment_name") or invoice.payment_name
    await db.commit()

    logger.info("deposit created", extra={"invoice_number": invoice.invoice_number, "amount": amount})
    return invoice


async def get_invoice(db: AsyncSession, invoice_id: int, user: User | None = None) -> Invoice:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound()
    if user is not None and invoice.user_id != user.id:
        raise InvoiceAccessDenied()
    return invoice


async def list_invoices(
    db: AsyncSession,
    *,
    user_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filters = []
    if user_id is not None:
        filters.append(Invoice.user_id == user_id)
    if status:
        filters.append(Invoice.status == status)

    total_res = await db.execute(select(func.count()).select_from(Invoice).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(Invoice)
        .where(*filters)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return {"data": res.scalars().all(), "meta": page_meta(page, limit, total)}


async def process_paid(db: AsyncSession, tripay_reference: str) -> bool:
    """Credits a paid deposit exactly once. Returns False when the reference is unknown."""
    res = await db.execute(select(Invoice).where(Invoice.tripay_reference == tripay_reference))
    invoice = res.scalar_one_or_none()
    if invoice is None:
        logger.warning("paid callback for unknown reference", extra={"reference": tripay_reference})
        return False
    if invoice.processed_at is not None:
        return True

    now = utcnow()
    try:
        claimed = await db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.processed_at.is_(None))
            .values(status=PAID, paid_at=now, processed_at=now)
        )
        if claimed.rowcount == 0:
            await db.rollback()
            return True

        amount = int(invoice.amount)
        await wallet.apply_credit(
            db,
            invoice.user_id,
            amount,
            reference_type=wallet.DEPOSIT,
            reference_id=invoice.invoice_number,
            description=f"Deposit {invoice.invoice_number}",
            meta={"tripay_reference": tripay_reference, "fee": int(invoice.fee)},
        )

        bonus, promo = await promos.calculate_deposit_bonus(db, invoice.user_id, amount, invoice.promo_code)
        if bonus > 0:
            await wallet.apply_credit(
                db,
                invoice.user_id,
                bonus,
                reference_type=wallet.DEPOSIT_BONUS,
                reference_id=invoice.invoice_number,
                description=f"Deposit bonus {promo.code}",
                meta={"promo_id": promo.id},
            )
            await promos.apply_promo(
                db, promo, user_id=invoice.user_id, invoice_id=invoice.id, deposit_amount=amount, bonus_amount=bonus
            )
        invoice.bonus_amount = bonus
        invoice.total_credit = amount + bonus
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("deposit credited", extra={"invoice_number": invoice.invoice_number})
    await notifications.notify(
        db,
        invoice.user_id,
        notifications.PAYMENT_CONFIRMED,
        {
            "invoice_number": invoice.invoice_number,
            "amount": int(invoice.total_credit),
            "currency": settings.CURRENCY,
        },
    )
    return True


async def _mark_closed(db: AsyncSession, merchant_ref: str, status: str) -> bool:
    res = await db.execute(
        update(Invoice)
        .where(Invoice.merchant_ref == merchant_ref, Invoice.status == PENDING)
        .values(status=status)
    )
    await db.commit()
    return bool(res.rowcount)


async def handle_callback(
    db: AsyncSession,
    raw_body: bytes,
    signature: str | None,
    client: TripayClient | None = None,
) -> dict:
    client = client or TripayClient()
    if not client.verify_callback_signature(raw_body, signature):
        logger.warning("tripay callback signature mismatch")
        raise InvalidCallbackSignature()

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise InvoiceError("Malformed callback payload", code="INVALID_PAYLOAD")

    merchant_ref = str(payload.get("merchant_ref") or "")
    status = str(payload.get("status") or "").upper()
    reference = payload.get("reference")

    if not merchant_ref.startswith(DEPOSIT_PREFIX):
        logger.info("ignoring callback for non-deposit ref", extra={"merchant_ref": merchant_ref})
        return {"success": True}

    if status == PAID and reference:
        await process_paid(db, reference)
    elif status in (EXPIRED, FAILED):
        await _mark_closed(db, merchant_ref, status)

    return {"success": True}


async def expire_stale_invoices(db: AsyncSession, now: datetime | None = None) -> int:
    now = now or utcnow()
    res = await db.execute(
        update(Invoice)
        .where(Invoice.status == PENDING, Invoice.expires_at < now)
        .values(status=EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    count = int(res.rowcount or 0)
    if count:
        logger.info("stale invoices expired", extra={"count": count})
    return count
