import inspect

from entro.api.routes.orders import payment_webhook

PLATFORM_ADMIN = {"X-User-Id": "platform-admin"}
ORGANIZER = {"X-User-Id": "organizer-1"}


def _availability(client, ticket_type_id):
    response = client.get(f"/ticket-types/{ticket_type_id}/availability")
    assert response.status_code == 200
    return response.json()


def test_checkout_summary_includes_service_fee(client, live_event):
    regular = live_event["ticket_types"]["Regular"]

    response = client.post(
        "/checkout/summary",
        json={
            "event_slug": live_event["slug"],
            "items": [{"ticket_type_id": regular["id"], "quantity": 2}],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ticket_total"] == 10000
    # 35 + 2% of 10000 = 235 excl. VAT, plus 49 VAT
    assert body["service_fee"] == 284
    assert body["payment_fee"] == 0
    assert body["total_amount"] == 10284
    assert body["lines"][0]["name"] == "Regular"


def test_payment_fee_is_added_when_passed_to_buyer(client, live_event):
    updated = client.patch(
        f"/events/{live_event['id']}",
        json={"pass_payment_fees_to_buyer": True},
        headers=ORGANIZER,
    )
    assert updated.status_code == 200

    regular = live_event["ticket_types"]["Regular"]
    response = client.post(
        "/checkout/summary",
        json={
            "event_slug": live_event["slug"],
            "items": [{"ticket_type_id": regular["id"], "quantity": 1}],
        },
    )

    body = response.json()
    assert body["service_fee"] == 163
    assert body["payment_fee"] == 39
    assert body["total_amount"] == 5202


def test_checkout_payment_and_ticket_issue(client, live_event, place_order, send_webhook, platform_admin):
    regular = live_event["ticket_types"]["Regular"]

    created = place_order([{"ticket_type_id": regular["id"], "quantity": 2}])
    assert created.status_code == 201
    order = created.json()
    assert order["status"] == "PENDING"
    assert order["total_amount"] == 10284
    assert order["expires_at"] is not None
    assert order["order_number"]

    # Capacity is held while the order waits for payment.
    assert _availability(client, regular["id"])["sold"] == 2

    unpaid_tickets = client.get(f"/checkout/orders/{order['id']}/tickets")
    assert unpaid_tickets.status_code == 400

    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={"payment_method": "ideal"})
    assert payment.status_code == 200
    payment = payment.json()
    assert payment["payment_id"].startswith("tr_")
    assert payment["amount"] == "102.84"
    assert payment["currency"] == "EUR"

    paid = send_webhook(payment["payment_id"], "paid")
    assert paid.status_code == 200
    assert paid.json() == {"order_id": order["id"], "status": "PAID"}

    fetched = client.get(f"/checkout/orders/{order['id']}").json()
    assert fetched["status"] == "PAID"
    assert fetched["paid_at"] is not None

    tickets = client.get(f"/checkout/orders/{order['id']}/tickets").json()
    assert len(tickets) == 2
    for ticket in tickets:
        assert ticket["status"] == "VALID"
        assert f"/scan/{ticket['id']}:" in ticket["qr_data"]

    outbox = client.get("/platform/outbox/events", headers=platform_admin).json()
    assert [item["event_type"] for item in outbox] == ["ORDER_PAID"]


def test_duplicate_paid_webhook_is_acknowledged_once(client, live_event, place_order, send_webhook):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()

    first = send_webhook(payment["payment_id"], "paid")
    second = send_webhook(payment["payment_id"], "paid")

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["status"] == "PAID"
    tickets = client.get(f"/checkout/orders/{order['id']}/tickets").json()
    assert len(tickets) == 1


def test_webhook_with_bad_signature_is_rejected(client, live_event, place_order, send_webhook):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()

    response = send_webhook(payment["payment_id"], "paid", signature="0" * 64)

    assert response.status_code == 401
    assert client.get(f"/checkout/orders/{order['id']}").json()["status"] == "PENDING"


def test_webhook_handler_is_synchronous():
    # Row locks taken while settling must not block the event loop.
    assert not inspect.iscoroutinefunction(payment_webhook)


def test_failed_payment_can_be_retried(client, live_event, place_order, send_webhook):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 1}]).json()

    first_payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()
    failed = send_webhook(first_payment["payment_id"], "failed")
    assert failed.json()["status"] == "FAILED"
    assert _availability(client, regular["id"])["sold"] == 1

    retry = client.post(f"/checkout/orders/{order['id']}/payment", json={})
    assert retry.status_code == 200
    retry = retry.json()
    assert retry["payment_id"] != first_payment["payment_id"]
    assert client.get(f"/checkout/orders/{order['id']}").json()["status"] == "PENDING"

    paid = send_webhook(retry["payment_id"], "paid")
    assert paid.json()["status"] == "PAID"


def test_free_order_is_paid_without_payment(client, live_event, place_order):
    free = live_event["ticket_types"]["Free entry"]

    created = place_order([{"ticket_type_id": free["id"], "quantity": 2}])

    assert created.status_code == 201
    order = created.json()
    assert order["status"] == "PAID"
    assert order["total_amount"] == 0
    assert order["service_fee"] == 0

    tickets = client.get(f"/checkout/orders/{order['id']}/tickets").json()
    assert len(tickets) == 2

    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={})
    assert payment.status_code == 400


def test_idempotency_key_replays_the_same_order(client, live_event, place_order):
    regular = live_event["ticket_types"]["Regular"]
    items = [{"ticket_type_id": regular["id"], "quantity": 1}]
    headers = {"Idempotency-Key": "checkout-abc123"}

    first = place_order(items, headers=headers)
    second = place_order(items, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["id"] == second.json()["id"]
    assert _availability(client, regular["id"])["sold"] == 1


def test_sold_out_ticket_type_returns_conflict(client, live_event, place_order):
    regular = live_event["ticket_types"]["Regular"]

    filled = place_order([{"ticket_type_id": regular["id"], "quantity": 10}])
    assert filled.status_code == 201

    response = place_order([{"ticket_type_id": regular["id"], "quantity": 1}])

    assert response.status_code == 409
    assert "Regular" in response.json()["detail"]
    assert _availability(client, regular["id"])["available"] == 0


def test_failed_multi_type_checkout_reserves_nothing(client, live_event, place_order):
    regular = live_event["ticket_types"]["Regular"]
    free = live_event["ticket_types"]["Free entry"]

    response = place_order(
        [
            {"ticket_type_id": regular["id"], "quantity": 2},
            {"ticket_type_id": free["id"], "quantity": 6},
        ]
    )

    assert response.status_code == 409
    assert _availability(client, regular["id"])["sold"] == 0
    assert _availability(client, free["id"])["sold"] == 0


def test_checkout_rejects_bad_input(live_event, place_order):
    regular = live_event["ticket_types"]["Regular"]

    bad_email = place_order([{"ticket_type_id": regular["id"], "quantity": 1}], email="not-an-email")
    nothing_selected = place_order([{"ticket_type_id": regular["id"], "quantity": 0}])
    unknown_type = place_order([{"ticket_type_id": "does-not-exist", "quantity": 1}])

    assert bad_email.status_code == 400
    assert nothing_selected.status_code == 400
    assert unknown_type.status_code == 400


def test_buyer_cancel_releases_capacity(client, live_event, place_order, platform_admin):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 3}]).json()

    cancelled = client.post(f"/checkout/orders/{order['id']}/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"
    assert _availability(client, regular["id"])["sold"] == 0

    again = client.post(f"/checkout/orders/{order['id']}/cancel")
    assert again.status_code == 400

    outbox = client.get("/platform/outbox/events", headers=platform_admin).json()
    assert [item["event_type"] for item in outbox] == ["ORDER_CANCELLED"]


def test_paid_order_cannot_be_cancelled(client, paid_order):
    response = client.post(f"/checkout/orders/{paid_order['id']}/cancel")

    assert response.status_code == 400


def test_organizer_order_listing_and_payout(client, organization, live_event, paid_order):
    orders = client.get(f"/organizations/{organization['id']}/orders", headers=ORGANIZER)
    assert orders.status_code == 200
    assert [item["id"] for item in orders.json()] == [paid_order["id"]]

    payout = client.get(f"/events/{live_event['id']}/payout", headers=ORGANIZER)
    assert payout.status_code == 200
    body = payout.json()
    assert body["gross_revenue"] == 10000
    assert body["platform_fee_bps"] == 200
    assert body["platform_fee"] == 200
    assert body["net_payout"] == 9800
    assert body["ticket_count"] == 2
