from datetime import timedelta

import pytest

from webrana.core.db import utcnow
from webrana.models.coupon import Coupon
from webrana.services import coupons


@pytest.fixture
def make_coupon(db):
    async def _make(code="SAVE10", **kwargs):
        now = utcnow()
        coupon = Coupon(
            code=code,
            name=kwargs.pop("name", code),
            discount_type=kwargs.pop("discount_type", "PERCENT"),
            discount_value=kwargs.pop("discount_value", 10),
            start_at=kwargs.pop("start_at", now - timedelta(days=1)),
            end_at=kwargs.pop("end_at", now + timedelta(days=1)),
            plan_ids=kwargs.pop("plan_ids", []),
            user_ids=kwargs.pop("user_ids", []),
            **kwargs,
        )
        db.add(coupon)
        await db.commit()
        return coupon

    return _make


async def test_valid_percent_coupon(db, make_coupon, customer):
    await make_coupon()
    check = await coupons.validate(db, " save10 ", amount=100_000, user_id=customer.id)
    assert check.valid
    assert check.discount_amount == 10_000
    assert check.final_price == 90_000


async def test_max_discount_caps_percent(db, make_coupon):
    await make_coupon(discount_value=50, max_discount_amount=20_000)
    check = await coupons.validate(db, "SAVE10", amount=100_000)
    assert check.discount_amount == 20_000


async def test_fixed_discount_never_exceeds_amount(db, make_coupon):
    await make_coupon(discount_type="FIXED", discount_value=80_000)
    check = await coupons.validate(db, "SAVE10", amount=50_000)
    assert check.discount_amount == 50_000
    assert check.final_price == 0


@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"is_active": False}, coupons.INACTIVE),
        ({"start_at": utcnow() + timedelta(days=1), "end_at": utcnow() + timedelta(days=2)}, coupons.BEFORE_START),
        ({"start_at": utcnow() - timedelta(days=3), "end_at": utcnow() - timedelta(days=2)}, coupons.EXPIRED),
        ({"plan_ids": [999]}, coupons.PLAN_NOT_ALLOWED),
        ({"min_order_amount": 500_000}, coupons.MIN_AMOUNT_NOT_MET),
    ],
)
async def test_rejection_reasons(db, make_coupon, overrides, reason):
    await make_coupon(**overrides)
    check = await coupons.validate(db, "SAVE10", amount=100_000, plan_id=1)
    assert not check.valid
    assert check.reason == reason


async def test_unknown_code(db):
    check = await coupons.validate(db, "NOPE", amount=1_000)
    assert check.reason == coupons.NOT_FOUND


async def test_user_restriction(db, make_coupon, customer, other_customer):
    await make_coupon(user_ids=[customer.id])
    assert (await coupons.validate(db, "SAVE10", amount=10_000, user_id=customer.id)).valid
    check = await coupons.validate(db, "SAVE10", amount=10_000, user_id=other_customer.id)
    assert check.reason == coupons.USER_NOT_ALLOWED


async def test_redemption_limits(db, make_coupon, customer, other_customer):
    coupon = await make_coupon(max_total_redemptions=2, max_redemptions_per_user=1)
    coupons.redeem(db, coupon, user_id=customer.id, order_id=1, amount=1_000)
    await db.commit()

    check = await coupons.validate(db, "SAVE10", amount=10_000, user_id=customer.id)
    assert check.reason == coupons.LIMIT_PER_USER_REACHED

    coupons.redeem(db, coupon, user_id=other_customer.id, order_id=2, amount=1_000)
    await db.commit()
    check = await coupons.validate(db, "SAVE10", amount=10_000)
    assert check.reason == coupons.LIMIT_GLOBAL_REACHED

    stats = await coupons.redemption_stats(db, coupon.id)
    assert stats == {"coupon_id": coupon.id, "redemptions": 2, "total_discount": 2_000}


async def test_validate_endpoint(client, make_coupon, customer_headers):
    await make_coupon(code="WELCOME", discount_type="FIXED", discount_value=15_000)
    r = await client.post("/coupons/validate", json={"code": "welcome", "amount": 100_000}, headers=customer_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["valid"] is True
    assert body["code"] == "WELCOME"
    assert body["final_price"] == 85_000


async def test_admin_coupon_code_is_normalized_and_unique(client, admin_headers):
    now = utcnow()
    payload = {
        "code": "launch",
        "name": "Launch",
        "discount_type": "PERCENT",
        "discount_value": 20,
        "start_at": (now - timedelta(days=1)).isoformat(),
        "end_at": (now + timedelta(days=30)).isoformat(),
    }
    r = await client.post("/admin/coupons", json=payload, headers=admin_headers)
    assert r.status_code == 201, r.text
    assert r.json()["code"] == "LAUNCH"

    r = await client.post("/admin/coupons", json={**payload, "code": "LAUNCH"}, headers=admin_headers)
    assert r.status_code == 409
