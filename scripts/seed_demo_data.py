from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from entro.domain.permissions import Role
from entro.domain.plans import PricingPlan
from entro.domain.state_machine import EventStatus
from entro.domain.vat import VatRate
from entro.infrastructure.db.models import (
    Base,
    Event,
    Membership,
    Organization,
    PlatformAdmin,
    TicketType,
)
from entro.infrastructure.db.session import engine, get_db_session

DEMO_ORGANIZER_ID = "demo-organizer"
DEMO_SCANNER_ID = "demo-scanner"
DEMO_PLATFORM_ADMIN_ID = "demo-platform-admin"


def _dt(days_from_now: int, hour: int, minute: int = 0) -> datetime:
    cet = timezone(timedelta(hours=1))
    target = datetime.now(cet) + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_organization(db) -> Organization:
    organization = db.execute(
        select(Organization).where(Organization.slug == "stichting-demo")
    ).scalar_one_or_none()
    if organization is None:
        organization = Organization(
            name="Stichting Demo Evenementen",
            slug="stichting-demo",
            email="info@stichting-demo.nl",
        )
        db.add(organization)
        db.flush()

    organization.plan = PricingPlan.ORGANIZER
    organization.payment_provider_connected = True

    for user_id, role in ((DEMO_ORGANIZER_ID, Role.ADMIN), (DEMO_SCANNER_ID, Role.SCANNER)):
        membership = db.execute(
            select(Membership)
            .where(Membership.organization_id == organization.id)
            .where(Membership.user_id == user_id)
        ).scalar_one_or_none()
        if membership is None:
            db.add(Membership(organization_id=organization.id, user_id=user_id, role=role))

    if db.get(PlatformAdmin, DEMO_PLATFORM_ADMIN_ID) is None:
        db.add(PlatformAdmin(user_id=DEMO_PLATFORM_ADMIN_ID, email="admin@entro.example"))

    return organization


def seed_events(db, organization: Organization) -> None:
    event_defs = [
        {
            "title": "Koningsdag Festival Utrecht",
            "slug": "koningsdag-festival-utrecht",
            "starts_at": _dt(days_from_now=14, hour=12),
            "ends_at": _dt(days_from_now=14, hour=23),
            "location": "Griftpark, Utrecht",
            "ticket_types": [
                {"name": "Early Bird", "price": 2500, "capacity": 200},
                {"name": "Regulier", "price": 3500, "capacity": 800},
            ],
        },
        {
            "title": "Jazz in de Kerk",
            "slug": "jazz-in-de-kerk",
            "starts_at": _dt(days_from_now=30, hour=20),
            "ends_at": _dt(days_from_now=30, hour=23),
            "location": "Nieuwe Kerk, Den Haag",
            "ticket_types": [
                {"name": "Toegang", "price": 1800, "capacity": 250},
                {"name": "Gratis (kinderen)", "price": 0, "capacity": 50},
            ],
        },
    ]

    for item in event_defs:
        event = db.execute(
            select(Event)
            .where(Event.organization_id == organization.id)
            .where(Event.slug == item["slug"])
        ).scalar_one_or_none()
        if event is None:
            event = Event(organization_id=organization.id, slug=item["slug"], title=item["title"])
            db.add(event)

        event.starts_at = item["starts_at"]
        event.ends_at = item["ends_at"]
        event.location = item["location"]
        event.status = EventStatus.LIVE
        db.flush()

        for sort_order, ticket_def in enumerate(item["ticket_types"]):
            ticket_type = db.execute(
                select(TicketType)
                .where(TicketType.event_id == event.id)
                .where(TicketType.name == ticket_def["name"])
            ).scalar_one_or_none()
            if ticket_type is not None:
                ticket_type.price = ticket_def["price"]
                ticket_type.capacity = max(ticket_def["capacity"], ticket_type.sold_count)
                continue

            db.add(
                TicketType(
                    event_id=event.id,
                    name=ticket_def["name"],
                    price=ticket_def["price"],
                    vat_rate=VatRate.REDUCED_9,
                    capacity=ticket_def["capacity"],
                    sold_count=0,
                    sort_order=sort_order,
                )
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        organization = seed_organization(db)
        seed_events(db, organization)
    print(
        "Seed complete: Stichting Demo with Koningsdag Festival and Jazz in de Kerk. "
        f"Use X-User-Id: {DEMO_ORGANIZER_ID}"
    )


if __name__ == "__main__":
    main()
