from types import SimpleNamespace

import pytest

from webrana.core.crypto import decrypt_value
from webrana.integrations.digitalocean import DigitalOceanUnavailable
from webrana.models.order import ProvisioningTask
from webrana.services import do_accounts


async def test_least_used_prefers_primary_then_fewest_droplets(db, fake_do, make_do_account):
    busy = await make_do_account("busy", active_droplets=8)
    idle = await make_do_account("idle", active_droplets=1)
    fake_do.set_account("token-busy", active=8)
    fake_do.set_account("token-idle", active=1)

    selected = await do_accounts.select_available_account(db, do_accounts.LEAST_USED)
    assert selected.id == idle.id
    assert selected.token == "token-idle"

    busy.is_primary = True
    await db.commit()
    selected = await do_accounts.select_available_account(db, do_accounts.PRIMARY_FIRST)
    assert selected.id == busy.id


async def test_full_account_is_skipped(db, fake_do, make_do_account):
    await make_do_account("full", is_primary=True)
    spare = await make_do_account("spare")
    fake_do.set_account("token-full", droplet_limit=3, active=3)
    fake_do.set_account("token-spare", droplet_limit=3, active=0)

    selected = await do_accounts.select_available_account(db)
    assert selected.id == spare.id
    assert selected.droplet_limit == 3


async def test_all_accounts_full(db, fake_do, make_do_account):
    await make_do_account("a")
    fake_do.set_account("token-a", droplet_limit=1, active=1)
    with pytest.raises(do_accounts.AllDoAccountsFull):
        await do_accounts.select_available_account(db)


async def test_no_accounts_at_all(db):
    with pytest.raises(do_accounts.NoAvailableDoAccount):
        await do_accounts.select_available_account(db)


async def test_unreachable_account_is_marked_unhealthy_and_skipped(db, fake_do, make_do_account):
    broken = await make_do_account("broken", is_primary=True)
    ok = await make_do_account("ok")
    fake_do.set_account("token-broken", fail=DigitalOceanUnavailable("down", operation="get_account_info"))
    fake_do.set_account("token-ok")

    selected = await do_accounts.select_available_account(db)
    assert selected.id == ok.id

    await db.refresh(broken)
    assert broken.health_status == do_accounts.UNHEALTHY
    assert [a.id for a in await do_accounts.get_active_accounts(db)] == [ok.id]


def test_round_robin_rotates_candidates():
    accounts = [SimpleNamespace(id=i) for i in range(3)]
    firsts = {do_accounts.order_candidates(accounts, do_accounts.ROUND_ROBIN)[0].id for _ in range(3)}
    assert firsts == {0, 1, 2}


def test_random_keeps_every_candidate():
    accounts = [SimpleNamespace(id=i) for i in range(5)]
    shuffled = do_accounts.order_candidates(accounts, do_accounts.RANDOM)
    assert sorted(a.id for a in shuffled) == [0, 1, 2, 3, 4]


async def test_active_count_never_goes_negative(db, make_do_account):
    account = await make_do_account("counter", active_droplets=0)
    await do_accounts.decrement_active_count(db, account.id)
    await do_accounts.increment_active_count(db, account.id)
    await do_accounts.increment_active_count(db, account.id)
    await do_accounts.decrement_active_count(db, account.id)
    await db.commit()
    await db.refresh(account)
    assert account.active_droplets == 1


async def test_health_check_marks_degraded_when_rate_limit_low(db, fake_do, make_do_account):
    account = await make_do_account("rl", health_status="UNKNOWN")
    fake_do.set_account("token-rl")
    fake_do.remaining = 10

    checked = await do_accounts.health_check(db, account.id)
    assert checked.health_status == do_accounts.DEGRADED


async def test_health_check_rejected_token(db, fake_do, make_do_account):
    account = await make_do_account("revoked")
    checked = await do_accounts.health_check(db, account.id)
    assert checked.health_status == do_accounts.UNHEALTHY


async def test_sync_all_reports_failures(db, fake_do, make_do_account):
    await make_do_account("good")
    await make_do_account("bad")
    fake_do.set_account("token-good", droplet_limit=25, active=4)
    fake_do.set_account("token-bad", fail=DigitalOceanUnavailable("down", operation="get_account_info"))

    result = await do_accounts.sync_all_accounts(db)
    assert result["synced"] == 1
    assert result["failed"] == 1

    stats = await do_accounts.get_overall_stats(db)
    assert stats["total_accounts"] == 2
    assert stats["unhealthy_accounts"] == 1


async def test_delete_refused_while_tasks_run(db, make_do_account):
    account = await make_do_account("in-use")
    db.add(
        ProvisioningTask(
            order_id=1,
            status="IN_PROGRESS",
            do_account_id=account.id,
            do_region="sgp1",
            do_size="s-1vcpu-1gb",
            do_image="ubuntu-22-04-x64",
        )
    )
    await db.commit()
    with pytest.raises(do_accounts.AccountHasActiveTasks):
        await do_accounts.delete_account(db, account.id)


async def test_admin_creates_account_with_encrypted_token(client, admin_headers, fake_do, db):
    fake_do.set_account("dop_v1_secret", droplet_limit=50, active=2)

    r = await client.post(
        "/admin/do-accounts",
        json={"name": "main", "access_token": "dop_v1_secret", "is_primary": True},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert "access_token" not in body
    assert (body["droplet_limit"], body["active_droplets"], body["health_status"]) == (50, 2, "HEALTHY")

    account = await do_accounts.get_account(db, body["id"])
    assert account.access_token != "dop_v1_secret"
    assert decrypt_value(account.access_token) == "dop_v1_secret"


async def test_admin_create_rejects_invalid_token(client, admin_headers, fake_do):
    r = await client.post(
        "/admin/do-accounts",
        json={"name": "bad", "access_token": "nope"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_DO_TOKEN"
