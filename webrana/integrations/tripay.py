from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import httpx

from webrana.core.config import settings

logger = logging.getLogger(__name__)


class TripayError(Exception):
    pass


class TripayChannelNotFound(TripayError):
    pass


def _hmac_sha256(key: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def calculate_fee(channel: dict, amount: int) -> int:
    total_fee = channel.get("total_fee") or {}
    flat = int(total_fee.get("flat") or 0)
    percent = float(total_fee.get("percent") or 0)
    fee = flat + round(amount * percent / 100)

    minimum = channel.get("minimum_fee")
    maximum = channel.get("maximum_fee")
    if minimum and fee < minimum:
        fee = int(minimum)
    if maximum and fee > maximum:
        fee = int(maximum)
    return int(fee)


class TripayClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        private_key: str | None = None,
        merchant_code: str | None = None,
        timeout: float = 15,
    ):
        self.base_url = (base_url or settings.TRIPAY_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.TRIPAY_API_KEY
        self.private_key = private_key if private_key is not None else settings.TRIPAY_PRIVATE_KEY
        self.merchant_code = merchant_code if merchant_code is not None else settings.TRIPAY_MERCHANT_CODE
        self.timeout = timeout

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise TripayError(f"Tripay unreachable: {e}") from e

        try:
            body = r.json()
        except ValueError as e:
            raise TripayError(f"Tripay error {r.status_code}: {r.text}") from e

        if r.status_code != 200 or not body.get("success"):
            raise TripayError(body.get("message") or f"Tripay error {r.status_code}")
        return body["data"]

    async def get_payment_channels(self) -> list[dict]:
        channels = await self._call("GET", "/merchant/payment-channel")
        return [c for c in channels if c.get("active")]

    async def get_payment_channel(self, code: str) -> dict:
        for channel in await self.get_payment_channels():
            if channel.get("code") == code:
                return channel
        raise TripayChannelNotFound(f"Payment channel {code} not available")

    def generate_signature(self, merchant_ref: str, amount: int) -> str:
        return _hmac_sha256(self.private_key, f"{self.merchant_code}{merchant_ref}{amount}")

    def verify_callback_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        expected = _hmac_sha256(self.private_key, raw_body)
        return hmac.compare_digest(expected, signature)

    async def create_transaction(
        self,
        *,
        method: str,
        merchant_ref: str,
        amount: int,
        customer_name: str,
        customer_email: str,
        customer_phone: str | None,
        order_items: list[dict],
        return_url: str | None,
        expired_time: int,
    ) -> dict:
        payload = {
            "method": method,
            "merchant_ref": merchant_ref,
            "amount": amount,
            "customer_name": customer_name,
            "customer_email": customer_email,
            "customer_phone": customer_phone or "",
            "order_items": order_items,
            "callback_url": settings.TRIPAY_CALLBACK_URL,
            "return_url": return_url or "",
            "expired_time": expired_time,
            "signature": self.generate_signature(merchant_ref, amount),
        }
        data = await self._call("POST", "/transaction/create", json=payload)
        logger.info("tripay transaction created", extra={"merchant_ref": merchant_ref, "reference": data.get("reference")})
        return data

    async def get_transaction_detail(self, reference: str) -> dict:
        return await self._call("GET", "/transaction/detail", params={"reference": reference})
