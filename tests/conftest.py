import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ["PROVISIONING_AUTOSTART"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from webrana.core.crypto import encrypt_value  # noqa: E402
from webrana.core.db import Base, get_db, utcnow  # noqa: E402
from webrana.core.security import create_access_token, hash_password  # noqa: E402
from webrana.main import app  # noqa: E402
from webrana.models.do_account import DoAccount  # noqa: E402
from webrana.models.plan import PlanPricing, VpsImage, VpsPlan  # noqa: E402
from webrana.models.user import User  # noqa: E402
from webrana.services import wallet  # noqa: E402

TEST_PASSWORD = "Passw0rd123"
# bcrypt is slow; hash once for every fixture user
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(db):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(db, email: str, role: str = "customer", **kwargs) -> User:
    user = User(
        email=email,
        password_hash=_PASSWORD_HASH,
        full_name=kwargs.pop("full_name", email.split("@")[0].title()),
        role=role,
        status=kwargs.pop("status", "active"),
        **kwargs,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def customer(db):
    return await _create_user(db, "customer@example.com")


@pytest.fixture
async def other_customer(db):
    return await _create_user(db, "other@example.com")


@pytest.fixture
async def admin(db):
    return await _create_user(db, "admin@example.com", role="admin")


def bearer(user: User) -> dict:
    token = create_access_token(user_id=user.id, email=user.email, role=user.role, status=user.status)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
async def plan(db):
    plan = VpsPlan(
        name="basic-1",
        display_name="Basic 1",
        description="Entry VPS",
        cpu=1,
        memory_mb=1024,
        disk_gb=25,
        bandwidth_tb=1.0,
        provider="digitalocean",
        provider_size_slug="s-1vcpu-1gb",
        is_active=True,
        sort_order=1,
        tags=[],
        pricings=[
            PlanPricing(duration="DAILY", price=5_000, cost=2_000),
            PlanPricing(duration="MONTHLY", price=100_000, cost=60_000),
            PlanPricing(duration="YEARLY", price=1_000_000, cost=600_000),
        ],
        promos=[],
    )
    db.add(plan)
    await db.commit()
    return plan


@pytest.fixture
async def image(db):
    image = VpsImage(
        provider="digitalocean",
        provider_slug="ubuntu-22-04-x64",
        display_name="Ubuntu 22.04",
        distribution="Ubuntu",
        version="22.04",
        is_active=True,
        sort_order=1,
    )
    db.add(image)
    await db.commit()
    return image


@pytest.fixture
def fund(db):
    async def _fund(user: User, amount: int):
        return await wallet.add_balance(db, user.id, amount, reference_type=wallet.DEPOSIT, reference_id="seed")

    return _fund


@pytest.fixture
def make_do_account(db):
    async def _make(name: str = "primary", **kwargs) -> DoAccount:
        account = DoAccount(
            name=name,
            email=f"{name}@do.example.com",
            access_token=encrypt_value(kwargs.pop("token", f"token-{name}")),
            droplet_limit=kwargs.pop("droplet_limit", 10),
            active_droplets=kwargs.pop("active_droplets", 0),
            is_active=kwargs.pop("is_active", True),
            is_primary=kwargs.pop("is_primary", False),
            health_status=kwargs.pop("health_status", "HEALTHY"),
            last_health_check=utcnow() - timedelta(minutes=5),
        )
        db.add(account)
        await db.commit()
        return account

    return _make


class FakeDigitalOcean:
    """Stands in for DigitalOceanClient; one shared script per test, keyed by token."""

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.droplet_statuses: list[str] = ["new", "active"]
        self.created: list[dict] = []
        self.deleted: list[str] = []
        self.actions: list[tuple[str, str]] = []
        self.fail_create = None
        self.fail_poll = None
        self.remaining = 5000

    def set_account(self, token: str, *, droplet_limit: int = 10, active: int = 0, fail=None):
        self.accounts[token] = {"droplet_limit": droplet_limit, "active": active, "fail": fail}

    def __call__(self, token: str, *args, **kwargs):
        return _FakeClient(self, token)


class _FakeClient:
    def __init__(self, script: FakeDigitalOcean, token: str):
        self.script = script
        self.token = token
        self._polls = 0

    def _account(self) -> dict:
        account = self.script.accounts.get(self.token) or {"droplet_limit": 10, "active": 0, "fail": None}
        if account["fail"] is not None:
            raise account["fail"]
        return account

    async def validate_token(self):
        return self.token in self.script.accounts

    async def get_account_info(self):
        account = self._account()
        return {
            "droplet_limit": account["droplet_limit"],
            "email": "owner@do.example.com",
            "status": "active",
            "uuid": "uuid-1",
        }

    async def get_droplet_count(self):
        return self._account()["active"]

    async def get_rate_limit_info(self):
        return {"limit": 5000, "remaining": self.script.remaining, "reset": 0}

    async def create_droplet(self, **payload):
        if self.script.fail_create is not None:
            raise self.script.fail_create
        self.script.created.append(payload)
        return {"id": 9001, "name": payload["name"], "status": "new", "networks": {"v4": []}}

    async def get_droplet(self, droplet_id):
        if self.script.fail_poll is not None:
            raise self.script.fail_poll
        statuses = self.script.droplet_statuses
        status = statuses[min(self._polls, len(statuses) - 1)]
        self._polls += 1
        networks = {"v4": []}
        if status == "active":
            networks["v4"] = [
                {"type": "public", "ip_address": "203.0.113.10"},
                {"type": "private", "ip_address": "10.0.0.5"},
            ]
        return {"id": int(droplet_id), "status": status, "networks": networks}

    async def delete_droplet(self, droplet_id):
        self.script.deleted.append(str(droplet_id))

    async def perform_droplet_action(self, droplet_id, action):
        self.script.actions.append((str(droplet_id), action))
        return {"id": 1, "status": "in-progress", "type": action}

    async def get_droplet_console(self, droplet_id):
        return {"url": f"https://console.example.com/{droplet_id}"}


@pytest.fixture
def fake_do(monkeypatch):
    script = FakeDigitalOcean()
    monkeypatch.setattr("webrana.services.do_accounts.DigitalOceanClient", script)
    return script


async def no_sleep(_seconds):
    return None


@pytest.fixture
def headers_for():
    return bearer


@pytest.fixture
def instant_sleep():
    return no_sleep
