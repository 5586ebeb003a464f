import hashlib
import hmac
import json
import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from entro.infrastructure.db.models import Base, PlatformAdmin
from entro.infrastructure.db.session import SessionLocal, engine
from entro.main import app

ORGANIZER = {"X-User-Id": "organizer-1"}
OTHER_ORGANIZER = {"X-User-Id": "organizer-2"}
SCANNER = {"X-User-Id": "scanner-1"}
PLATFORM_ADMIN = {"X-User-Id": "platform-admin"}


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def platform_admin(db):
    db.add(PlatformAdmin(user_id=PLATFORM_ADMIN["X-User-Id"], email="admin@example.nl"))
    db.commit()
    return PLATFORM_ADMIN


def _iso(dt: datetime) -> str:
    return dt.isoformat()


@pytest.fixture
def organization(client):
    response = client.post(
        "/organizations",
        json={"name": "Stichting Test", "slug": "stichting-test", "email": "info@test.nl"},
        headers=ORGANIZER,
    )
    assert response.status_code == 201
    body = response.json()

    connected = client.put(
        f"/organizations/{body['id']}/payment-provider",
        json={"connected": True},
        headers=ORGANIZER,
    )
    assert connected.status_code == 200
    return connected.json()


@pytest.fixture
def live_event(client, organization):
    starts_at = datetime.now(timezone.utc) + timedelta(days=7)
    response = client.post(
        "/events",
        json={
            "organization_id": organization["id"],
            "title": "Zomerfestival 2026!",
            "starts_at": _iso(starts_at),
            "ends_at": _iso(starts_at + timedelta(hours=6)),
            "location": "Vondelpark, Amsterdam",
        },
        headers=ORGANIZER,
    )
    assert response.status_code == 201
    event = response.json()

    ticket_types = []
    for name, price, capacity in (("Regular", 5000, 10), ("Free entry", 0, 5)):
        created = client.post(
            f"/events/{event['id']}/ticket-types",
            json={"name": name, "price": price, "capacity": capacity, "vat_rate": "REDUCED_9"},
            headers=ORGANIZER,
        )
        assert created.status_code == 201
        ticket_types.append(created.json())

    published = client.post(
        f"/events/{event['id']}/status",
        json={"status": "LIVE"},
        headers=ORGANIZER,
    )
    assert published.status_code == 200

    event = published.json()
    event["ticket_types"] = {item["name"]: item for item in ticket_types}
    return event


@pytest.fixture
def scanner(client, organization):
    response = client.post(
        f"/organizations/{organization['id']}/members",
        json={"user_id": SCANNER["X-User-Id"], "role": "SCANNER"},
        headers=ORGANIZER,
    )
    assert response.status_code == 201
    return SCANNER


@pytest.fixture
def place_order(client, live_event):
    def _place(items, email="koper@example.nl", headers=None, **extra):
        payload = {
            "event_slug": live_event["slug"],
            "buyer_email": email,
            "buyer_name": "Jan Koper",
            "items": items,
            **extra,
        }
        return client.post("/checkout/orders", json=payload, headers=headers or {})

    return _place


@pytest.fixture
def send_webhook(client):
    def _send(payment_id, payment_status, signature=None):
        body = json.dumps({"payment_id": payment_id, "status": payment_status}).encode()
        if signature is None:
            signature = hmac.new(
                os.environ["PAYMENT_WEBHOOK_SECRET"].encode(), body, hashlib.sha256
            ).hexdigest()
        return client.post(
            "/payments/webhook",
            content=body,
            headers={"X-Signature": signature, "Content-Type": "application/json"},
        )

    return _send


@pytest.fixture
def paid_order(client, live_event, place_order, send_webhook):
    regular = live_event["ticket_types"]["Regular"]
    order = place_order([{"ticket_type_id": regular["id"], "quantity": 2}]).json()

    payment = client.post(f"/checkout/orders/{order['id']}/payment", json={}).json()
    paid = send_webhook(payment["payment_id"], "paid")
    assert paid.status_code == 200
    assert paid.json()["status"] == "PAID"

    tickets = client.get(f"/checkout/orders/{order['id']}/tickets")
    assert tickets.status_code == 200
    order["tickets"] = tickets.json()
    return order
