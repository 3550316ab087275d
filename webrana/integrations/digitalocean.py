from __future__ import annotations

import logging
from typing import Any

import httpx

from webrana.core.config import settings

logger = logging.getLogger(__name__)


class DigitalOceanError(Exception):
    def __init__(self, message: str, *, operation: str, status_code: int | None = None):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class DigitalOceanAuthError(DigitalOceanError):
    pass


class DigitalOceanRateLimited(DigitalOceanError):
    def __init__(self, message: str, *, operation: str, retry_after: int | None = None):
        super().__init__(message, operation=operation, status_code=429)
        self.retry_after = retry_after


class DigitalOceanUnavailable(DigitalOceanError):
    pass


class DigitalOceanClient:
    """Thin async wrapper over the DigitalOcean v2 API, bound to one account token."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.DIGITALOCEAN_BASE_URL).rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.warning("digitalocean request failed", extra={"operation": operation, "error": str(e)})
            raise DigitalOceanUnavailable(f"DigitalOcean unreachable: {e}", operation=operation) from e

        if r.status_code == 401:
            raise DigitalOceanAuthError("Invalid DigitalOcean token", operation=operation, status_code=401)
        if r.status_code == 429:
            retry_after = r.headers.get("retry-after")
            raise DigitalOceanRateLimited(
                "DigitalOcean rate limit exceeded",
                operation=operation,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if r.status_code >= 500:
            raise DigitalOceanUnavailable(
                f"DigitalOcean error {r.status_code}", operation=operation, status_code=r.status_code
            )
        if r.status_code >= 400:
            raise DigitalOceanError(
                f"DigitalOcean API error {r.status_code}: {r.text}",
                operation=operation,
                status_code=r.status_code,
            )
        return r

    # -------------------------
    # Account
    # -------------------------
    async def get_account_info(self) -> dict:
        r = await self._request("GET", "/account", "get_account_info")
        account = r.json()["account"]
        return {
            "droplet_limit": account["droplet_limit"],
            "email": account["email"],
            "status": account["status"],
            "uuid": account["uuid"],
        }

    async def get_droplet_count(self) -> int:
        r = await self._request("GET", "/droplets", "get_droplet_count", params={"per_page": 1})
        return int(r.json().get("meta", {}).get("total", 0))

    async def validate_token(self) -> bool:
        try:
            await self._request("GET", "/account", "validate_token")
        except DigitalOceanAuthError:
            return False
        return True

    async def get_rate_limit_info(self) -> dict | None:
        try:
            r = await self._request("GET", "/account", "get_rate_limit_info")
        except DigitalOceanError as e:
            logger.warning("rate limit lookup failed", extra={"error": str(e)})
            return None
        return {
            "limit": int(r.headers.get("ratelimit-limit", 0)),
            "remaining": int(r.headers.get("ratelimit-remaining", 0)),
            "reset": int(r.headers.get("ratelimit-reset", 0)),
        }

    # -------------------------
    # Droplets
    # -------------------------
    async def create_droplet(
        self,
        *,
        name: str,
        region: str,
        size: str,
        image: str,
        tags: list[str] | None = None,
        ssh_keys: list[str] | None = None,
        backups: bool = False,
        ipv6: bool = False,
        monitoring: bool = True,
    ) -> dict:
        payload = {
            "name": name,
            "region": region,
            "size": size,
            "image": image,
            "tags": tags or [],
            "ssh_keys": ssh_keys or [],
            "backups": backups,
            "ipv6": ipv6,
            "monitoring": monitoring,
        }
        r = await self._request("POST", "/droplets", "create_droplet", json=payload)
        return r.json()["droplet"]

    async def get_droplet(self, droplet_id: str | int) -> dict:
        r = await self._request("GET", f"/droplets/{droplet_id}", "get_droplet")
        return r.json()["droplet"]

    async def delete_droplet(self, droplet_id: str | int) -> None:
        await self._request("DELETE", f"/droplets/{droplet_id}", "delete_droplet")

    async def perform_droplet_action(self, droplet_id: str | int, action: str) -> dict:
        r = await self._request(
            "POST",
            f"/droplets/{droplet_id}/actions",
            "perform_droplet_action",
            json={"type": action},
        )
        return r.json()["action"]

    async def get_droplet_console(self, droplet_id: str | int) -> dict:
        r = await self._request("POST", f"/droplets/{droplet_id}/console", "get_droplet_console")
        return r.json()["console"]

    # -------------------------
    # Catalog lookups
    # -------------------------
    async def _paged(self, path: str, key: str, operation: str, **params: Any) -> list[dict]:
        out: list[dict] = []
        page = 1
        while True:
            r = await self._request("GET", path, operation, params={**params, "page": page, "per_page": 200})
            body = r.json()
            out.extend(body.get(key, []))
            if not body.get("links", {}).get("pages", {}).get("next"):
                return out
            page += 1

    async def get_sizes(self) -> list[dict]:
        return [s for s in await self._paged("/sizes", "sizes", "get_sizes") if s.get("available")]

    async def get_regions(self) -> list[dict]:
        return [r for r in await self._paged("/regions", "regions", "get_regions") if r.get("available")]

    async def get_images(self, image_type: str = "distribution") -> list[dict]:
        return await self._paged("/images", "images", "get_images", type=image_type)


def _extract_ipv4(droplet: dict, kind: str) -> str | None:
    for net in droplet.get("networks", {}).get("v4", []):
        if net.get("type") == kind:
            return net.get("ip_address")
    return None


def extract_public_ipv4(droplet: dict) -> str | None:
    return _extract_ipv4(droplet, "public")


def extract_private_ipv4(droplet: dict) -> str | None:
    return _extract_ipv4(droplet, "private")
