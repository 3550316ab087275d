from webrana.core.db import utcnow
from webrana.services import dashboard, orders, wallet


async def test_revenue_counts_order_debits_only(db, customer, plan, image, fund):
    await fund(customer, 250_000)
    await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)
    # deposits are not revenue
    assert await dashboard.revenue(db) == 100_000

    await wallet.deduct_balance(db, customer.id, 1_000, reference_type=wallet.ADMIN_ADJUSTMENT)
    assert await dashboard.revenue(db) == 100_000


async def test_revenue_by_day_has_one_row_per_day(db, customer, plan, image, fund):
    await fund(customer, 100_000)
    await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)

    rows = await dashboard.revenue_by_day(db, days=7, now=utcnow())

    assert len(rows) == 7
    assert rows[-1] == {"date": utcnow().date().isoformat(), "revenue": 100_000, "transactions": 1}
    assert all(r["revenue"] == 0 for r in rows[:-1])


async def test_stats_endpoint(client, customer, plan, image, fund, db, admin_headers, make_do_account):
    await fund(customer, 100_000)
    await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)
    await make_do_account("primary", active_droplets=5)

    r = await client.get("/admin/dashboard/stats", params={"days": 3}, headers=admin_headers)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["users"] == 2
    assert body["orders"] == {"total": 1, "by_status": {"PROCESSING": 1}}
    assert body["revenue"]["total"] == 100_000
    assert body["do_accounts"]["utilization_percent"] == 50.0
    assert len(body["revenue_by_day"]) == 3


async def test_stats_requires_admin(client, customer_headers):
    r = await client.get("/admin/dashboard/stats", headers=customer_headers)
    assert r.status_code == 403
