import httpx
import pytest

from webrana.integrations.digitalocean import DigitalOceanClient
from webrana.services import orders, provisioning


@pytest.fixture
async def running_instance(db, customer, plan, image, fund, fake_do, make_do_account, instant_sleep):
    await fund(customer, 100_000)
    order = await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)
    await make_do_account("primary")
    fake_do.set_account("token-primary")
    task = await provisioning.start_provisioning(db, order.id)
    await provisioning.execute_provisioning(db, task.id, sleep=instant_sleep)
    return order


async def test_list_and_get_instance(client, running_instance, customer_headers):
    r = await client.get("/instances", headers=customer_headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert len(data) == 1
    assert data[0]["ip_address"] == "203.0.113.10"
    assert data[0]["status"] == "ACTIVE"

    r = await client.get(f"/instances/{running_instance.id}", headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["droplet_id"] == "9001"


async def test_power_action_is_forwarded(client, running_instance, customer_headers, fake_do):
    r = await client.post(
        f"/instances/{running_instance.id}/actions",
        json={"action": "reboot"},
        headers=customer_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["type"] == "reboot"
    assert fake_do.actions == [("9001", "reboot")]


async def test_unknown_action_fails_validation(client, running_instance, customer_headers):
    r = await client.post(
        f"/instances/{running_instance.id}/actions",
        json={"action": "rebuild"},
        headers=customer_headers,
    )
    assert r.status_code == 422


async def test_console_url(client, running_instance, customer_headers):
    r = await client.get(f"/instances/{running_instance.id}/console", headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["url"] == "https://console.example.com/9001"


async def test_other_users_cannot_see_instance(client, running_instance, headers_for, other_customer):
    r = await client.get(f"/instances/{running_instance.id}", headers=headers_for(other_customer))
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "INSTANCE_NOT_FOUND"


async def test_order_without_droplet_is_not_an_instance(client, db, customer, plan, image, fund, customer_headers):
    await fund(customer, 100_000)
    order = await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)
    r = await client.get(f"/instances/{order.id}", headers=customer_headers)
    assert r.status_code == 404


async def test_console_url_from_digitalocean_response(client, running_instance, customer_headers, monkeypatch):
    def handler(request):
        assert request.url.path.endswith("/droplets/9001/console")
        return httpx.Response(200, json={"console": {"url": "https://cloud.digitalocean.com/droplets/9001/console"}})

    monkeypatch.setattr(
        "webrana.services.do_accounts.DigitalOceanClient",
        lambda token: DigitalOceanClient(token, transport=httpx.MockTransport(handler)),
    )

    r = await client.get(f"/instances/{running_instance.id}/console", headers=customer_headers)

    assert r.status_code == 200, r.text
    assert r.json()["url"] == "https://cloud.digitalocean.com/droplets/9001/console"
    assert r.json()["expires_at"] is not None
