from unittest.mock import AsyncMock

import pytest
from sqlalchemy import event, select
from sqlalchemy.exc import OperationalError

from webrana.models.notification import Notification
from webrana.services import notifications, orders, wallet
from webrana.services.order_state import PROCESSING


def test_render_fills_missing_fields_with_placeholder():
    title, message = notifications.render(notifications.VPS_DESTROYED, {"order_id": 7})
    assert title == "VPS terminated"
    assert message == "Your VPS for order #7 was terminated (-)."


def test_render_unknown_event_falls_back_to_message():
    title, message = notifications.render("SOMETHING_ELSE", {"message": "hello"})
    assert (title, message) == ("Something Else", "hello")


async def test_notify_stores_row_and_skips_telegram_without_chat_id(db, customer, monkeypatch):
    send = AsyncMock()
    monkeypatch.setattr(notifications, "_send_telegram", send)

    row = await notifications.notify(db, customer.id, notifications.ORDER_CREATED, {"order_id": 1, "amount": 5000})

    assert row.type == "ORDER_CREATED"
    assert row.data == {"order_id": 1, "amount": 5000}
    assert "Order #1" in row.message
    send.assert_not_awaited()


async def test_notify_delivers_to_linked_telegram_chat(db, customer, monkeypatch):
    customer.telegram_chat_id = "555"
    await db.commit()
    send = AsyncMock()
    monkeypatch.setattr(notifications, "_send_telegram", send)

    await notifications.notify(db, customer.id, notifications.RENEWAL_SUCCESS, {"order_id": 3})

    send.assert_awaited_once()
    assert send.await_args.args[0] == "555"


async def test_inbox_endpoints(client, db, customer, customer_headers):
    first = await notifications.notify(db, customer.id, notifications.ORDER_CREATED, {"order_id": 1})
    await notifications.notify(db, customer.id, notifications.VPS_ACTIVE, {"order_id": 1})

    r = await client.get("/notifications", headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["meta"]["total"] == 2

    r = await client.get("/notifications/unread-count", headers=customer_headers)
    assert r.json() == {"count": 2}

    r = await client.post(f"/notifications/{first.id}/read", headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["is_read"] is True
    assert r.json()["read_at"] is not None

    r = await client.get("/notifications", params={"unread_only": True}, headers=customer_headers)
    assert [n["type"] for n in r.json()["data"]] == ["VPS_ACTIVE"]

    r = await client.post("/notifications/read-all", headers=customer_headers)
    assert r.json() == {"updated": 1}

    r = await client.delete(f"/notifications/{first.id}", headers=customer_headers)
    assert r.status_code == 204
    r = await client.get("/notifications", headers=customer_headers)
    assert r.json()["meta"]["total"] == 1


async def test_other_users_notifications_are_hidden(client, db, customer, other_customer, headers_for):
    row = await notifications.notify(db, customer.id, notifications.ORDER_CREATED, {"order_id": 1})

    r = await client.post(f"/notifications/{row.id}/read", headers=headers_for(other_customer))
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOTIFICATION_NOT_FOUND"

    r = await client.delete(f"/notifications/{row.id}", headers=headers_for(other_customer))
    assert r.status_code == 404


@pytest.fixture
def failing_notification_insert():
    def fail(mapper, connection, target):
        raise OperationalError("INSERT INTO notifications", {}, Exception("disk full"))

    event.listen(Notification, "before_insert", fail)
    yield
    event.remove(Notification, "before_insert", fail)


async def test_storage_failure_is_logged_not_raised(db, customer, failing_notification_insert, caplog):
    with caplog.at_level("ERROR", logger="webrana.services.notifications"):
        row = await notifications.notify(db, customer.id, notifications.ORDER_CREATED, {"order_id": 1})

    assert row is None
    assert caplog.records[-1].event == notifications.ORDER_CREATED
    res = await db.execute(select(Notification).where(Notification.user_id == customer.id))
    assert res.scalars().all() == []


async def test_order_survives_notification_failure(db, customer, plan, image, fund, failing_notification_insert):
    await fund(customer, 100_000)

    order = await orders.create_order(db, customer, plan_id=plan.id, image_id=image.id)

    assert order.status == PROCESSING
    assert customer.email == "customer@example.com"
    assert await wallet.get_balance(db, customer.id) == 100_000 - order.final_price
