from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    APP_NAME: str = "webrana-cloud"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    DATABASE_URL: str

    # JWT: HS256 signs with JWT_SECRET, RS256 with the PEM key pair
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_PRIVATE_KEY: str | None = None
    JWT_PUBLIC_KEY: str | None = None
    JWT_ISSUER: str = "webrana-cloud"
    JWT_ACCESS_MINUTES: int = 15
    JWT_REFRESH_DAYS: int = 7

    INTERNAL_API_KEY: str | None = None
    ENCRYPTION_KEY: str = "change-me"

    CURRENCY: str = "IDR"
    MIN_DEPOSIT_AMOUNT: int = 10_000
    DEPOSIT_EXPIRY_HOURS: int = 24

    TRIPAY_BASE_URL: str = "https://tripay.co.id/api-sandbox"
    TRIPAY_API_KEY: str = ""
    TRIPAY_PRIVATE_KEY: str = ""
    TRIPAY_MERCHANT_CODE: str = ""
    TRIPAY_CALLBACK_URL: str = ""

    DIGITALOCEAN_BASE_URL: str = "https://api.digitalocean.com/v2"
    DIGITALOCEAN_DEFAULT_REGION: str = "sgp1"
    DO_ACCOUNT_SELECTION_STRATEGY: str = "LEAST_USED"

    PROVISIONING_AUTOSTART: bool = True
    PROVISIONING_POLL_INTERVAL_SECONDS: float = 5.0
    PROVISIONING_MAX_ATTEMPTS: int = 60

    SCHEDULER_ENABLED: bool = False
    SCHEDULER_INTERVAL_SECONDS: int = 300
    DO_HEALTH_INTERVAL_SECONDS: int = 900

    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_BASE_URL: str = "https://api.telegram.org"


settings = Settings()
