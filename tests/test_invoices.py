import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from webrana.core.config import settings
from webrana.core.db import to_unix, utcnow
from webrana.integrations.tripay import TripayClient, TripayError, calculate_fee
from webrana.models.invoice import Invoice
from webrana.services import invoices, wallet

PRIVATE_KEY = "tripay-private"

CHANNEL = {
    "code": "BRIVA",
    "name": "BRI Virtual Account",
    "active": True,
    "total_fee": {"flat": 4250, "percent": "0.00"},
}


def _sign(body: bytes, key: str = PRIVATE_KEY) -> str:
    return hmac.new(key.encode(), body, hashlib.sha256).hexdigest()


def test_fee_is_flat_plus_percent_within_bounds():
    channel = {"total_fee": {"flat": 750, "percent": 0.7}, "minimum_fee": 1000, "maximum_fee": 5000}
    assert calculate_fee(channel, 100_000) == 1_450
    assert calculate_fee(channel, 10_000) == 1_000
    assert calculate_fee(channel, 10_000_000) == 5_000


def test_transaction_signature_matches_merchant_ref_and_amount():
    client = TripayClient(api_key="k", private_key=PRIVATE_KEY, merchant_code="T1234")
    expected = hmac.new(PRIVATE_KEY.encode(), b"T1234DEP-ABCD50000", hashlib.sha256).hexdigest()
    assert client.generate_signature("DEP-ABCD", 50_000) == expected


def test_callback_signature_verification():
    client = TripayClient(api_key="k", private_key=PRIVATE_KEY, merchant_code="T1234")
    body = b'{"merchant_ref":"DEP-1","status":"PAID"}'
    assert client.verify_callback_signature(body, _sign(body))
    assert not client.verify_callback_signature(body, _sign(body, "other"))
    assert not client.verify_callback_signature(body, None)


def _gateway(reference="T-REF-1"):
    client = MagicMock(spec=TripayClient)
    client.get_payment_channel = AsyncMock(return_value=CHANNEL)
    client.create_transaction = AsyncMock(
        return_value={
            "reference": reference,
            "pay_code": "8888123",
            "checkout_url": "https://tripay.example/checkout/T-REF-1",
            "payment_name": "BRI Virtual Account",
        }
    )
    return client


async def test_create_deposit_stores_gateway_reference(db, customer):
    gateway = _gateway()
    invoice = await invoices.create_deposit(db, customer, amount=50_000, payment_method="BRIVA", client=gateway)

    assert invoice.status == invoices.PENDING
    assert invoice.merchant_ref.startswith("DEP-")
    assert invoice.invoice_number.startswith("INV-")
    assert (invoice.fee, invoice.total_credit) == (4_250, 50_000)
    assert invoice.tripay_reference == "T-REF-1"
    kwargs = gateway.create_transaction.await_args.kwargs
    assert kwargs["merchant_ref"] == invoice.merchant_ref
    assert kwargs["amount"] == 50_000


async def test_deposit_below_minimum(db, customer):
    with pytest.raises(invoices.InvalidDepositAmount):
        await invoices.create_deposit(db, customer, amount=500, payment_method="BRIVA", client=_gateway())


async def test_gateway_failure_leaves_no_invoice(db, customer):
    gateway = _gateway()
    gateway.create_transaction = AsyncMock(side_effect=TripayError("maintenance"))

    with pytest.raises(invoices.PaymentGatewayError):
        await invoices.create_deposit(db, customer, amount=50_000, payment_method="BRIVA", client=gateway)
    listing = await invoices.list_invoices(db, user_id=customer.id)
    assert listing["meta"]["total"] == 0


async def test_paid_callback_credits_once(client, db, customer, monkeypatch):
    monkeypatch.setattr(settings, "TRIPAY_PRIVATE_KEY", PRIVATE_KEY)
    invoice = await invoices.create_deposit(db, customer, amount=75_000, payment_method="BRIVA", client=_gateway())

    body = json.dumps(
        {"reference": "T-REF-1", "merchant_ref": invoice.merchant_ref, "status": "PAID", "total_amount": 79_250}
    ).encode()
    headers = {"X-Callback-Signature": _sign(body), "Content-Type": "application/json"}

    for _ in range(2):
        r = await client.post("/webhooks/tripay", content=body, headers=headers)
        assert r.status_code == 200
        assert r.json() == {"success": True}

    assert await wallet.get_balance(db, customer.id) == 75_000
    deposits = await wallet.list_transactions(db, customer.id, reference_type=wallet.DEPOSIT)
    assert deposits["meta"]["total"] == 1

    paid = await invoices.get_invoice(db, invoice.id)
    await db.refresh(paid)
    assert paid.status == invoices.PAID
    assert paid.processed_at is not None


async def test_callback_with_bad_signature_is_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "TRIPAY_PRIVATE_KEY", PRIVATE_KEY)
    body = b'{"merchant_ref":"DEP-1","status":"PAID","reference":"x"}'
    r = await client.post("/webhooks/tripay", content=body, headers={"X-Callback-Signature": "deadbeef"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_SIGNATURE"


async def test_expired_callback_closes_invoice(db, customer):
    invoice = await invoices.create_deposit(db, customer, amount=20_000, payment_method="BRIVA", client=_gateway())
    gateway = TripayClient(api_key="k", private_key=PRIVATE_KEY, merchant_code="T1234")
    body = json.dumps({"merchant_ref": invoice.merchant_ref, "status": "EXPIRED"}).encode()

    await invoices.handle_callback(db, body, _sign(body), client=gateway)

    await db.refresh(invoice)
    assert invoice.status == invoices.EXPIRED
    assert await wallet.get_balance(db, customer.id) == 0


async def test_stale_pending_invoices_expire(db, customer):
    past = utcnow() - timedelta(hours=1)
    db.add(
        Invoice(
            invoice_number="INV-20240101-AAAAAA",
            merchant_ref="DEP-STALE",
            user_id=customer.id,
            amount=10_000,
            fee=0,
            total_credit=10_000,
            status=invoices.PENDING,
            payment_method="BRIVA",
            expires_at=past,
        )
    )
    await db.commit()

    assert await invoices.expire_stale_invoices(db) == 1
    assert await invoices.expire_stale_invoices(db) == 0


@pytest.fixture
def jakarta_tz(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("needs time.tzset")
    monkeypatch.setenv("TZ", "Asia/Jakarta")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_epoch_conversion_ignores_host_timezone(jakarta_tz):
    assert to_unix(datetime(2025, 1, 1, 12)) == 1735732800


async def test_gateway_expiry_is_sent_as_utc_epoch(db, customer, jakarta_tz):
    gateway = _gateway()
    invoice = await invoices.create_deposit(db, customer, amount=50_000, payment_method="BRIVA", client=gateway)

    sent = gateway.create_transaction.await_args.kwargs["expired_time"]
    expected = invoice.expires_at.replace(tzinfo=timezone.utc).timestamp()
    assert sent == int(expected)
