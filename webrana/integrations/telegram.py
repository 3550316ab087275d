import httpx

from webrana.core.config import settings


class TelegramError(Exception):
    pass


class TelegramClient:
    def __init__(self, token: str | None = None):
        self.base_url = settings.TELEGRAM_BASE_URL.rstrip("/")
        self.token = token or settings.TELEGRAM_BOT_TOKEN
        self.timeout = 10

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def send_message(self, chat_id: str, text: str) -> dict:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(f"{self.base_url}/bot{self.token}/sendMessage", json=payload)

        if r.status_code != 200:
            raise TelegramError(f"Telegram API error: {r.text}")

        return r.json()
