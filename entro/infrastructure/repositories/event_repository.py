# entro/infrastructure/repositories/event_repository.py

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from entro.domain.state_machine import EventStatus
from entro.infrastructure.db.models import Event, Membership, Organization, TicketType


class EventRepository:
    """
    Event data access.
    Organizer-facing lookups are scoped through the caller's membership.
    """

    def __init__(self, db: Session):
        self.db = db

    def _scoped(self, user_id: str):
        return (
            select(Event)
            .join(Membership, Membership.organization_id == Event.organization_id)
            .where(Membership.user_id == user_id)
        )

    def create(self, organization_id: str, **fields) -> Event:
        event = Event(organization_id=organization_id, status=EventStatus.DRAFT, **fields)
        self.db.add(event)
        self.db.flush()
        return event

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_id_for_user(self, event_id: str, user_id: str) -> Event | None:
        stmt = self._scoped(user_id).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_organization(
        self,
        organization_id: str,
        user_id: str,
        status: EventStatus | None = None,
    ) -> list[Event]:
        stmt = self._scoped(user_id).where(Event.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(Event.status == status)
        stmt = stmt.order_by(Event.starts_at)
        return list(self.db.execute(stmt).scalars().all())

    def find_public_by_slug(
        self,
        slug: str,
        organization_slug: str | None = None,
    ) -> Event | None:
        stmt = (
            select(Event)
            .join(Organization, Organization.id == Event.organization_id)
            .where(Event.slug == slug)
            .where(Event.status == EventStatus.LIVE)
        )
        if organization_slug is not None:
            stmt = stmt.where(Organization.slug == organization_slug)
        stmt = stmt.order_by(Event.starts_at).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_public(self) -> list[Event]:
        stmt = (
            select(Event)
            .where(Event.status == EventStatus.LIVE)
            .order_by(Event.starts_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def is_slug_available(
        self,
        organization_id: str,
        slug: str,
        exclude_event_id: str | None = None,
    ) -> bool:
        stmt = (
            select(Event.id)
            .where(Event.organization_id == organization_id)
            .where(Event.slug == slug)
        )
        if exclude_event_id is not None:
            stmt = stmt.where(Event.id != exclude_event_id)
        return self.db.execute(stmt).first() is None

    def count_by_status(self, organization_id: str, status: EventStatus) -> int:
        stmt = (
            select(func.count())
            .select_from(Event)
            .where(Event.organization_id == organization_id)
            .where(Event.status == status)
        )
        return self.db.execute(stmt).scalar_one()

    def get_stats(self, event_id: str) -> dict:
        stmt = select(
            func.count(TicketType.id),
            func.coalesce(func.sum(TicketType.capacity), 0),
            func.coalesce(func.sum(TicketType.sold_count), 0),
        ).where(TicketType.event_id == event_id)
        count, capacity, sold = self.db.execute(stmt).one()
        return {
            "ticket_type_count": count,
            "total_capacity": capacity,
            "total_sold": sold,
        }

    def delete(self, event: Event) -> None:
        self.db.delete(event)
        self.db.flush()
