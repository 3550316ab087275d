from datetime import datetime, timedelta

from webrana.core.db import utcnow
from webrana.models.plan import PlanPricing, PlanPromo, VpsPlan
from webrana.services import plans


def _plan(pricings, promos=()):
    return VpsPlan(
        name="p",
        display_name="P",
        cpu=1,
        memory_mb=1024,
        disk_gb=25,
        provider_size_slug="s-1vcpu-1gb",
        pricings=list(pricings),
        promos=list(promos),
    )


def test_exact_duration_pricing_wins():
    plan = _plan([PlanPricing(duration="DAILY", price=4_000, cost=1_000, is_active=True),
                  PlanPricing(duration="MONTHLY", price=100_000, cost=50_000, is_active=True)])
    assert plans.resolve_pricing(plan, "DAILY") == (4_000, 1_000)


def test_daily_falls_back_to_monthly_divided_and_rounded_up():
    plan = _plan([PlanPricing(duration="MONTHLY", price=100_000, cost=50_000, is_active=True)])
    assert plans.resolve_pricing(plan, "DAILY") == (3_572, 1_786)


def test_yearly_falls_back_to_monthly_price():
    plan = _plan([PlanPricing(duration="MONTHLY", price=100_000, cost=50_000, is_active=True)])
    assert plans.resolve_pricing(plan, "YEARLY") == (100_000, 50_000)


def test_inactive_pricing_is_ignored():
    plan = _plan([PlanPricing(duration="MONTHLY", price=100_000, cost=0, is_active=False)])
    assert plans.resolve_pricing(plan, "MONTHLY") is None


def test_percent_promo_in_window():
    now = datetime(2025, 5, 1, 12, 0)
    promo = PlanPromo(
        name="May",
        discount_type="PERCENT",
        discount_value=10,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=1),
        is_active=True,
    )
    plan = _plan([], [promo])
    assert plans.promo_discount(plan, 100_000, now) == 10_000
    assert plans.promo_discount(plan, 100_000, now + timedelta(days=2)) == 0


def test_fixed_promo_never_exceeds_price():
    now = utcnow()
    promo = PlanPromo(
        name="Big",
        discount_type="FIXED",
        discount_value=500_000,
        start_date=now - timedelta(hours=1),
        end_date=now + timedelta(hours=1),
        is_active=True,
    )
    assert plans.promo_discount(_plan([], [promo]), 100_000, now) == 100_000


async def test_public_catalog_lists_active_plans(client, plan, image):
    r = await client.get("/plans")
    assert r.status_code == 200
    body = r.json()
    assert [p["name"] for p in body] == ["basic-1"]
    monthly = next(p for p in body[0]["pricings"] if p["duration"] == "MONTHLY")
    assert monthly["price"] == 100_000
    assert monthly["price_after_promo"] == 100_000

    r = await client.get("/images")
    assert r.status_code == 200
    assert r.json()[0]["provider_slug"] == "ubuntu-22-04-x64"


async def test_admin_creates_plan_with_pricing(client, admin_headers):
    payload = {
        "name": "pro-2",
        "display_name": "Pro 2",
        "cpu": 2,
        "memory_mb": 2048,
        "disk_gb": 50,
        "provider_size_slug": "s-2vcpu-2gb",
        "pricings": [{"duration": "MONTHLY", "price": 200_000, "cost": 120_000}],
    }
    r = await client.post("/admin/plans", json=payload, headers=admin_headers)
    assert r.status_code == 201, r.text
    assert r.json()["pricings"][0]["price"] == 200_000

    r = await client.post("/admin/plans", json=payload, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "DUPLICATE_ENTRY"


async def test_admin_plan_routes_reject_customers(client, customer_headers):
    r = await client.get("/admin/plans", headers=customer_headers)
    assert r.status_code == 403
