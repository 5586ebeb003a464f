# entro/infrastructure/repositories/ticket_type_repository.py

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from entro.infrastructure.db.models import Event, Membership, TicketType


class TicketTypeRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock(self, ticket_type_id: str) -> TicketType | None:
        """
        SELECT ... FOR UPDATE
        Serializes concurrent reservations on the same ticket type.
        """

        stmt = (
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, ticket_type_id: str) -> TicketType | None:
        stmt = select(TicketType).where(TicketType.id == ticket_type_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_id_for_user(self, ticket_type_id: str, user_id: str) -> TicketType | None:
        stmt = (
            select(TicketType)
            .join(Event, Event.id == TicketType.event_id)
            .join(Membership, Membership.organization_id == Event.organization_id)
            .where(TicketType.id == ticket_type_id)
            .where(Membership.user_id == user_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_event(self, event_id: str) -> list[TicketType]:
        stmt = (
            select(TicketType)
            .where(TicketType.event_id == event_id)
            .order_by(TicketType.sort_order, TicketType.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def next_sort_order(self, event_id: str) -> int:
        return len(self.find_by_event(event_id))

    def create(self, event_id: str, **fields) -> TicketType:
        ticket_type = TicketType(event_id=event_id, sold_count=0, **fields)
        self.db.add(ticket_type)
        self.db.flush()
        return ticket_type

    def delete(self, ticket_type: TicketType) -> None:
        self.db.delete(ticket_type)
        self.db.flush()

    def increment_sold_count(self, ticket_type_id: str, quantity: int) -> TicketType | None:
        """
        Reserve `quantity` tickets.
        Returns None when the ticket type is missing or capacity would be exceeded.
        """

        ticket_type = self.lock(ticket_type_id)
        if ticket_type is None:
            return None

        if ticket_type.sold_count + quantity > ticket_type.capacity:
            return None

        ticket_type.sold_count += quantity
        self.db.flush()
        return ticket_type

    def decrement_sold_count(self, ticket_type_id: str, quantity: int) -> TicketType | None:
        ticket_type = self.lock(ticket_type_id)
        if ticket_type is None:
            return None

        ticket_type.sold_count = max(0, ticket_type.sold_count - quantity)
        self.db.flush()
        return ticket_type

    def reorder(self, event_id: str, ordered_ids: list[str]) -> None:
        for index, ticket_type_id in enumerate(ordered_ids):
            self.db.execute(
                update(TicketType)
                .where(TicketType.id == ticket_type_id)
                .where(TicketType.event_id == event_id)
                .values(sort_order=index)
            )
        self.db.flush()
