from sqlalchemy import select

from entro.application.plan_limits_service import month_bounds
from entro.domain.clock import utc_now
from entro.infrastructure.db.models import Order, UsageRecord

ORGANIZER = {"X-User-Id": "organizer-1"}


def _usage_this_month(db, organization_id):
    period_start, _ = month_bounds(utc_now())
    stmt = (
        select(UsageRecord)
        .where(UsageRecord.organization_id == organization_id)
        .where(UsageRecord.period_start == period_start)
    )
    return db.execute(stmt).scalar_one_or_none()


def _pay(client, send_webhook, order):
    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()
    response = send_webhook(payment["payment_id"], "paid")
    assert response.json()["status"] == "PAID"


def test_settlement_books_monthly_usage(client, db, organization, live_event, place_order, send_webhook):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 2}]).json()

    _pay(client, send_webhook, order)

    usage = _usage_this_month(db, organization["id"])
    assert usage.tickets_sold == 2
    assert usage.overage_tickets == 0
    assert usage.overage_fee == 0


def test_monthly_overage_is_charged_at_settlement(
    client, db, organization, live_event, place_order, send_webhook
):
    period_start, period_end = month_bounds(utc_now())
    db.add(
        UsageRecord(
            organization_id=organization["id"],
            period_start=period_start,
            period_end=period_end,
            tickets_sold=2999,
        )
    )
    db.commit()

    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 3}]).json()
    _pay(client, send_webhook, order)

    assert db.get(Order, order["id"]).overage_fee == 16
    usage = _usage_this_month(db, organization["id"])
    assert usage.tickets_sold == 3002
    assert usage.overage_tickets == 2
    assert usage.overage_fee == 16


def test_event_fee_overrides_flow_into_orders_and_payout(
    client, db, organization, live_event, place_order, send_webhook, platform_admin
):
    period_start, period_end = month_bounds(utc_now())
    db.add(
        UsageRecord(
            organization_id=organization["id"],
            period_start=period_start,
            period_end=period_end,
            tickets_sold=2999,
        )
    )
    db.commit()

    override = client.put(
        f"/platform/events/{live_event['id']}/fees",
        json={"platform_fee_bps": 100, "overage_fee": 25},
        headers=platform_admin,
    )
    assert override.status_code == 200

    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 2}]).json()
    _pay(client, send_webhook, order)

    assert db.get(Order, order["id"]).overage_fee == 25

    payout = client.get(f"/events/{live_event['id']}/payout", headers=ORGANIZER).json()
    assert payout["gross_revenue"] == 10000
    assert payout["platform_fee_bps"] == 100
    assert payout["platform_fee"] == 100
    assert payout["overage_fee"] == 25
    assert payout["net_payout"] == 9875


def test_fee_overrides_require_platform_admin(client, live_event):
    response = client.put(
        f"/platform/events/{live_event['id']}/fees",
        json={"platform_fee_bps": 0},
        headers=ORGANIZER,
    )

    assert response.status_code == 403
