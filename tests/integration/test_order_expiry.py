from datetime import timedelta

from entro.application.order_service import OrderService
from entro.domain.clock import utc_now
from entro.infrastructure.db.models import Order
from entro.infrastructure.repositories.order_repository import OrderRepository
from entro.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

ORGANIZER = {"X-User-Id": "organizer-1"}


def _make_overdue(db, order_id):
    order = db.get(Order, order_id)
    order.expires_at = utc_now() - timedelta(minutes=1)
    db.commit()


def test_overdue_orders_expire_and_release_capacity(client, db, live_event, place_order, platform_admin):
    regular = live_event["ticket_types"]["Regular"]
    overdue = place_order([{"ticket_type_id": regular["id"], "quantity": 2}]).json()
    fresh = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()
    _make_overdue(db, overdue["id"])

    response = client.post("/platform/orders/expire", headers=platform_admin)

    assert response.status_code == 200
    assert response.json() == {"expired": 1}
    assert client.get(f"/checkout/orders/{overdue['id']}").json()["status"] == "EXPIRED"
    assert client.get(f"/checkout/orders/{fresh['id']}").json()["status"] == "PENDING"

    availability = client.get(f"/ticket-types/{regular['id']}/availability").json()
    assert availability["sold"] == 1

    outbox = client.get("/platform/outbox/events", headers=platform_admin).json()
    assert [item["event_type"] for item in outbox] == ["ORDER_EXPIRED"]


def test_failed_orders_expire_too(client, db, live_event, place_order, send_webhook, platform_admin):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()
    send_webhook(payment["payment_id"], "failed")
    _make_overdue(db, order["id"])

    response = client.post("/platform/orders/expire", headers=platform_admin)

    assert response.json() == {"expired": 1}
    assert client.get(f"/checkout/orders/{order['id']}").json()["status"] == "EXPIRED"


def test_expired_order_cannot_start_payment(client, db, live_event, place_order):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()
    _make_overdue(db, order["id"])

    response = client.post(f"/checkout/orders/{order['id']}/payment", json={})

    assert response.status_code == 400


def test_late_payment_for_expired_order_is_not_applied(
    client, db, live_event, place_order, send_webhook, platform_admin
):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()
    _make_overdue(db, order["id"])
    client.post("/platform/orders/expire", headers=platform_admin)

    response = send_webhook(payment["payment_id"], "paid")

    assert response.status_code == 200
    assert response.json()["status"] == "EXPIRED"
    tickets = client.get(f"/checkout/orders/{order['id']}/tickets")
    assert tickets.status_code == 400


def test_provider_cancel_closes_the_order(client, live_event, place_order, send_webhook):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 4}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()

    response = send_webhook(payment["payment_id"], "canceled")

    assert response.json()["status"] == "CANCELLED"
    availability = client.get(f"/ticket-types/{regular['id']}/availability").json()
    assert availability["sold"] == 0


def test_provider_expiry_expires_the_order(client, live_event, place_order, send_webhook, platform_admin):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 2}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()

    response = send_webhook(payment["payment_id"], "expired")

    assert response.json()["status"] == "EXPIRED"
    availability = client.get(f"/ticket-types/{regular['id']}/availability").json()
    assert availability["sold"] == 0
    outbox = client.get("/platform/outbox/events", headers=platform_admin).json()
    assert [item["event_type"] for item in outbox] == ["ORDER_EXPIRED"]


def test_expiry_requires_platform_admin(client):
    response = client.post("/platform/orders/expire", headers=ORGANIZER)

    assert response.status_code == 403


def test_failed_expiry_leaves_no_partial_release(
    client, db, monkeypatch, live_event, place_order, platform_admin
):
    regular = live_event["ticket_types"]["Regular"]
    free = live_event["ticket_types"]["Free entry"]
    held = place_order([{"ticket_type_id": regular["id"], "quantity": 3}]).json()
    overdue = place_order(
        [
            {"ticket_type_id": regular["id"], "quantity": 2},
            {"ticket_type_id": free["id"], "quantity": 1},
        ]
    ).json()
    _make_overdue(db, overdue["id"])

    release = TicketTypeRepository.decrement_sold_count
    calls = []

    def fail_on_second_line(self, ticket_type_id, quantity):
        calls.append(ticket_type_id)
        if len(calls) == 2:
            raise RuntimeError("database went away")
        return release(self, ticket_type_id, quantity)

    monkeypatch.setattr(TicketTypeRepository, "decrement_sold_count", fail_on_second_line)
    first = client.post("/platform/orders/expire", headers=platform_admin)

    assert first.json() == {"expired": 0}
    assert client.get(f"/checkout/orders/{overdue['id']}").json()["status"] == "PENDING"
    assert client.get(f"/ticket-types/{regular['id']}/availability").json()["sold"] == 5
    assert client.get(f"/ticket-types/{free['id']}/availability").json()["sold"] == 1

    monkeypatch.setattr(TicketTypeRepository, "decrement_sold_count", release)
    second = client.post("/platform/orders/expire", headers=platform_admin)

    assert second.json() == {"expired": 1}
    assert client.get(f"/checkout/orders/{held['id']}").json()["status"] == "PENDING"
    assert client.get(f"/ticket-types/{regular['id']}/availability").json()["sold"] == 3
    assert client.get(f"/ticket-types/{free['id']}/availability").json()["sold"] == 0


def test_expiry_skips_orders_paid_after_selection(
    client, db, monkeypatch, live_event, place_order, send_webhook
):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 2}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()
    _make_overdue(db, order["id"])

    selected = OrderRepository(db).find_expired_pending(utc_now())
    assert [item.id for item in selected] == [order["id"]]
    assert send_webhook(payment["payment_id"], "paid").json()["status"] == "PAID"

    monkeypatch.setattr(OrderRepository, "find_expired_pending", lambda self, now: selected)
    expired = OrderService(db).expire_pending_orders()
    db.commit()

    assert expired == 0
    assert client.get(f"/checkout/orders/{order['id']}").json()["status"] == "PAID"
    assert client.get(f"/ticket-types/{regular['id']}/availability").json()["sold"] == 2
