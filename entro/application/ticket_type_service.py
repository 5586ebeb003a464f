import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from entro.application.event_service import EventService
from entro.application.organization_service import OrganizationService
from entro.domain.clock import as_utc, utc_now
from entro.domain.exceptions import NotFoundError, ValidationError
from entro.domain.permissions import Role
from entro.domain.state_machine import EventStatus
from entro.domain.vat import VatRate
from entro.infrastructure.db.models import Event, TicketType
from entro.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_PRICE = 1_000_000  # cents, EUR 10,000
MAX_CAPACITY = 100_000


@dataclass(frozen=True)
class Availability:
    ticket_type_id: str
    total: int
    sold: int
    available: int
    is_on_sale: bool


def is_on_sale(ticket_type: TicketType, event: Event, now: datetime | None = None) -> bool:
    """Event is LIVE and `now` falls inside the ticket type's sale window."""
    if event.status != EventStatus.LIVE:
        return False

    now = now or utc_now()
    sale_start = as_utc(ticket_type.sale_start)
    sale_end = as_utc(ticket_type.sale_end)
    if sale_start and now < sale_start:
        return False
    if sale_end and now > sale_end:
        return False
    return True


class TicketTypeService:

    def __init__(self, db: Session):
        self.db = db
        self.ticket_type_repository = TicketTypeRepository(db)
        self.event_service = EventService(db)
        self.organization_service = OrganizationService(db)

    def create_ticket_type(
        self,
        event_id: str,
        user_id: str,
        name: str,
        price: int,
        capacity: int,
        vat_rate: VatRate = VatRate.STANDARD_21,
        description: str | None = None,
        sale_start: datetime | None = None,
        sale_end: datetime | None = None,
    ) -> TicketType:
        event = self._get_editable_event(event_id, user_id)

        name = self._validate_name(name)
        self._validate_price(price)
        self._validate_capacity(capacity)
        self._validate_sale_window(sale_start, sale_end)

        ticket_type = self.ticket_type_repository.create(
            event.id,
            name=name,
            description=description,
            price=price,
            vat_rate=VatRate(vat_rate),
            capacity=capacity,
            sale_start=sale_start,
            sale_end=sale_end,
            sort_order=self.ticket_type_repository.next_sort_order(event.id),
        )
        logger.info("Ticket type created. ticket_type_id=%s event_id=%s", ticket_type.id, event.id)
        return ticket_type

    def get_ticket_type(self, ticket_type_id: str, user_id: str) -> TicketType:
        ticket_type = self.ticket_type_repository.find_by_id_for_user(ticket_type_id, user_id)
        if not ticket_type:
            raise NotFoundError("Ticket type not found")
        return ticket_type

    def list_ticket_types(self, event_id: str, user_id: str) -> list[TicketType]:
        event = self.event_service.get_event(event_id, user_id)
        return self.ticket_type_repository.find_by_event(event.id)

    def update_ticket_type(self, ticket_type_id: str, user_id: str, **changes) -> TicketType:
        ticket_type = self.get_ticket_type(ticket_type_id, user_id)
        self._get_editable_event(ticket_type.event_id, user_id)

        if changes.get("name") is not None:
            ticket_type.name = self._validate_name(changes["name"])
        if changes.get("description") is not None:
            ticket_type.description = changes["description"]
        if changes.get("price") is not None:
            self._validate_price(changes["price"])
            ticket_type.price = changes["price"]
        if changes.get("vat_rate") is not None:
            ticket_type.vat_rate = VatRate(changes["vat_rate"])
        if changes.get("capacity") is not None:
            capacity = changes["capacity"]
            self._validate_capacity(capacity)
            if capacity < ticket_type.sold_count:
                raise ValidationError(
                    f"Capacity cannot be lower than the number of tickets sold "
                    f"({ticket_type.sold_count})"
                )
            ticket_type.capacity = capacity

        sale_start = changes.get("sale_start", ticket_type.sale_start)
        sale_end = changes.get("sale_end", ticket_type.sale_end)
        self._validate_sale_window(sale_start, sale_end)
        ticket_type.sale_start = sale_start
        ticket_type.sale_end = sale_end

        self.db.flush()
        return ticket_type

    def delete_ticket_type(self, ticket_type_id: str, user_id: str) -> None:
        ticket_type = self.get_ticket_type(ticket_type_id, user_id)
        self._get_editable_event(ticket_type.event_id, user_id)

        if ticket_type.sold_count > 0:
            raise ValidationError("Ticket types with sold tickets cannot be deleted")
        self.ticket_type_repository.delete(ticket_type)

    def reorder_ticket_types(self, event_id: str, user_id: str, ordered_ids: list[str]) -> list[TicketType]:
        event = self._get_editable_event(event_id, user_id)

        existing = {ticket_type.id for ticket_type in self.ticket_type_repository.find_by_event(event.id)}
        if set(ordered_ids) != existing or len(ordered_ids) != len(existing):
            raise ValidationError("Reorder must list every ticket type of the event exactly once")

        self.ticket_type_repository.reorder(event.id, ordered_ids)
        self.db.expire_all()
        return self.ticket_type_repository.find_by_event(event.id)

    def get_availability(self, ticket_type_id: str, now: datetime | None = None) -> Availability:
        ticket_type = self.ticket_type_repository.get_by_id(ticket_type_id)
        if not ticket_type:
            raise NotFoundError("Ticket type not found")

        return Availability(
            ticket_type_id=ticket_type.id,
            total=ticket_type.capacity,
            sold=ticket_type.sold_count,
            available=max(0, ticket_type.capacity - ticket_type.sold_count),
            is_on_sale=is_on_sale(ticket_type, ticket_type.event, now),
        )

    def list_public_ticket_types(self, event: Event) -> list[TicketType]:
        if event.status != EventStatus.LIVE:
            raise NotFoundError("Event not found")
        return self.ticket_type_repository.find_by_event(event.id)

    def _get_editable_event(self, event_id: str, user_id: str) -> Event:
        event = self.event_service.get_event(event_id, user_id)
        self.organization_service.require_role(event.organization_id, user_id, Role.MEMBER)
        if event.status == EventStatus.ENDED:
            raise ValidationError("Ticket types of an ended event cannot be changed")
        return event

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
        return name

    def _validate_price(self, price: int) -> None:
        if price < 0:
            raise ValidationError("Price cannot be negative")
        if price > MAX_PRICE:
            raise ValidationError("Price cannot exceed EUR 10,000")

    def _validate_capacity(self, capacity: int) -> None:
        if capacity < 1:
            raise ValidationError("Capacity must be at least 1")
        if capacity > MAX_CAPACITY:
            raise ValidationError(f"Capacity cannot exceed {MAX_CAPACITY}")

    def _validate_sale_window(self, sale_start: datetime | None, sale_end: datetime | None) -> None:
        if sale_start and sale_end and as_utc(sale_start) >= as_utc(sale_end):
            raise ValidationError("Sale start must be before sale end")
