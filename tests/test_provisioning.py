from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from webrana.core.config import settings
from webrana.core.crypto import encrypt_value
from webrana.integrations.digitalocean import DigitalOceanAuthError, DigitalOceanError
from webrana.models.notification import Notification
from webrana.services import do_accounts, orders, provisioning, wallet
from webrana.services.order_state import ACTIVE, FAILED, PROVISIONING


@pytest.fixture
async def paid_order(db, customer, plan, image, fund):
    await fund(customer, 100_000)
    return await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)


async def test_start_provisioning_assigns_account_and_task(db, paid_order, fake_do, make_do_account):
    account = await make_do_account("primary", is_primary=True)
    fake_do.set_account("token-primary")

    task = await provisioning.start_provisioning(db, paid_order.id)

    assert task.status == provisioning.TASK_PENDING
    assert task.do_account_id == account.id
    assert (task.do_region, task.do_size, task.do_image) == ("sgp1", "s-1vcpu-1gb", "ubuntu-22-04-x64")
    assert (await orders.get_order(db, paid_order.id)).status == PROVISIONING


async def test_successful_provisioning_activates_order(db, paid_order, fake_do, make_do_account, instant_sleep):
    account = await make_do_account("primary")
    fake_do.set_account("token-primary")
    fake_do.droplet_statuses = ["new", "new", "active"]

    task = await provisioning.start_provisioning(db, paid_order.id)
    task = await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    assert task.status == provisioning.TASK_SUCCESS
    assert task.attempts == 3
    assert (task.droplet_id, task.droplet_name) == ("9001", f"vps-{paid_order.id}")
    assert (task.ipv4_public, task.ipv4_private) == ("203.0.113.10", "10.0.0.5")
    assert fake_do.created[0]["tags"] == ["webrana", f"order-{paid_order.id}"]

    order = await orders.get_order(db, paid_order.id)
    assert order.status == ACTIVE
    assert order.activated_at is not None
    assert order.expires_at == orders.calculate_expiry(order.activated_at, "MONTHLY")

    await db.refresh(account)
    assert account.active_droplets == 1

    res = await db.execute(select(Notification.type).where(Notification.user_id == order.user_id))
    assert "VPS_ACTIVE" in res.scalars().all()


async def test_no_account_fails_and_refunds(db, paid_order, customer):
    task = await provisioning.start_provisioning(db, paid_order.id)

    assert task is None
    order = await orders.get_order(db, paid_order.id)
    assert order.status == FAILED
    assert await wallet.get_balance(db, customer.id) == 100_000
    history = await orders.get_history(db, order.id)
    assert history[-1].meta["error_code"] == provisioning.NO_DO_ACCOUNT


async def test_errored_droplet_fails_order(db, paid_order, customer, fake_do, make_do_account, instant_sleep):
    await make_do_account("primary")
    fake_do.set_account("token-primary")
    fake_do.droplet_statuses = ["new", "errored"]

    task = await provisioning.start_provisioning(db, paid_order.id)
    task = await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    assert (task.status, task.error_code) == (provisioning.TASK_FAILED, provisioning.DROPLET_ERRORED)
    assert (await orders.get_order(db, paid_order.id)).status == FAILED
    assert await wallet.get_balance(db, customer.id) == 100_000


async def test_polling_gives_up_after_max_attempts(db, paid_order, fake_do, make_do_account, monkeypatch):
    monkeypatch.setattr(settings, "PROVISIONING_MAX_ATTEMPTS", 3)
    await make_do_account("primary")
    fake_do.set_account("token-primary")
    fake_do.droplet_statuses = ["new"]
    sleep = AsyncMock()

    task = await provisioning.start_provisioning(db, paid_order.id)
    task = await provisioning.execute_provisioning(db, task.id, sleep=sleep)

    assert task.error_code == provisioning.PROVISIONING_TIMEOUT
    assert task.attempts == 3
    assert sleep.await_count == 2


async def test_transient_poll_errors_are_retried(db, paid_order, fake_do, make_do_account, monkeypatch, instant_sleep):
    monkeypatch.setattr(settings, "PROVISIONING_MAX_ATTEMPTS", 2)
    await make_do_account("primary")
    fake_do.set_account("token-primary")
    fake_do.fail_poll = DigitalOceanError("502", operation="get_droplet", status_code=502)

    task = await provisioning.start_provisioning(db, paid_order.id)
    task = await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    assert task.error_code == provisioning.PROVISIONING_TIMEOUT


async def test_auth_error_while_polling_stops_immediately(db, paid_order, fake_do, make_do_account, instant_sleep):
    await make_do_account("primary")
    fake_do.set_account("token-primary")
    fake_do.fail_poll = DigitalOceanAuthError("revoked", operation="get_droplet", status_code=401)

    task = await provisioning.start_provisioning(db, paid_order.id)
    task = await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    assert (task.error_code, task.attempts) == (provisioning.POLLING_ERROR, 1)


async def test_create_failure_does_not_touch_capacity(db, paid_order, fake_do, make_do_account, instant_sleep):
    account = await make_do_account("primary")
    fake_do.set_account("token-primary")
    fake_do.fail_create = DigitalOceanError("size unavailable", operation="create_droplet", status_code=422)

    task = await provisioning.start_provisioning(db, paid_order.id)
    task = await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    assert task.error_code == provisioning.DROPLET_CREATION_FAILED
    await db.refresh(account)
    assert account.active_droplets == 0


async def test_start_requires_processing_order(db, paid_order, fake_do, make_do_account, instant_sleep):
    await make_do_account("primary")
    fake_do.set_account("token-primary")
    task = await provisioning.start_provisioning(db, paid_order.id)
    await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    with pytest.raises(orders.InvalidStatusTransition):
        await provisioning.start_provisioning(db, paid_order.id)


async def test_background_entry_point_uses_its_own_session(
    db, session_factory, paid_order, fake_do, make_do_account, monkeypatch
):
    monkeypatch.setattr(provisioning, "SessionLocal", session_factory)
    monkeypatch.setattr(settings, "PROVISIONING_POLL_INTERVAL_SECONDS", 0)
    await make_do_account("primary")
    fake_do.set_account("token-primary")

    await provisioning.provision_order(paid_order.id)

    assert (await orders.get_order(db, paid_order.id)).status == ACTIVE
    assert [a.name for a in await do_accounts.list_accounts(db)] == ["primary"]


async def test_account_with_unreadable_token_is_skipped(db, paid_order, fake_do, make_do_account):
    stale = await make_do_account("stale", is_primary=True)
    stale.access_token = encrypt_value("token-stale", key="retired-key")
    await db.commit()
    backup = await make_do_account("backup")
    fake_do.set_account("token-backup")

    task = await provisioning.start_provisioning(db, paid_order.id)

    assert task.do_account_id == backup.id
    await db.refresh(stale)
    assert stale.health_status == do_accounts.UNHEALTHY


async def test_only_unreadable_tokens_fails_and_refunds(db, paid_order, customer, make_do_account):
    stale = await make_do_account("stale")
    stale.access_token = encrypt_value("token-stale", key="retired-key")
    await db.commit()

    assert await provisioning.start_provisioning(db, paid_order.id) is None

    order = await orders.get_order(db, paid_order.id)
    assert order.status == FAILED
    assert await wallet.get_balance(db, customer.id) == 100_000
    history = await orders.get_history(db, order.id)
    assert history[-1].meta["error_code"] == provisioning.NO_DO_ACCOUNT


async def test_token_unreadable_after_selection_fails_order(
    db, paid_order, customer, fake_do, make_do_account, instant_sleep
):
    account = await make_do_account("primary")
    fake_do.set_account("token-primary")
    task = await provisioning.start_provisioning(db, paid_order.id)

    account.access_token = encrypt_value("token-primary", key="retired-key")
    await db.commit()
    task = await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)

    assert (task.status, task.error_code) == (provisioning.TASK_FAILED, provisioning.NO_DO_ACCOUNT)
    assert fake_do.created == []
    assert (await orders.get_order(db, paid_order.id)).status == FAILED
    assert await wallet.get_balance(db, customer.id) == 100_000
