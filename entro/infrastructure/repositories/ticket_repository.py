# entro/infrastructure/repositories/ticket_repository.py

import secrets

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from entro.domain.state_machine import OrderStatus, TicketStatus
from entro.infrastructure.db.models import Order, Ticket

# No 0/O or 1/I, so codes survive being read aloud at the door.
TICKET_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CODE_ATTEMPTS = 5


def generate_ticket_code() -> str:
    """XXXX-XXXX"""
    chars = [secrets.choice(TICKET_CODE_ALPHABET) for _ in range(8)]
    return "".join(chars[:4]) + "-" + "".join(chars[4:])


def generate_secret_token() -> str:
    return secrets.token_hex(32)


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_code(self, code: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.code == code.strip().upper())
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_order(self, order_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.order_id == order_id)
            .order_by(Ticket.created_at, Ticket.code)
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_sold_for_event(self, event_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Ticket)
            .join(Order, Order.id == Ticket.order_id)
            .where(Ticket.event_id == event_id)
            .where(Order.status == OrderStatus.PAID)
        )
        return self.db.execute(stmt).scalar_one()

    def _unique_code(self) -> str:
        code = generate_ticket_code()
        for _ in range(_CODE_ATTEMPTS):
            if self.get_by_code(code) is None:
                break
            code = generate_ticket_code()
        return code

    def create_many(self, order: Order) -> list[Ticket]:
        tickets = []
        for item in order.items:
            for _ in range(item.quantity):
                ticket = Ticket(
                    order_id=order.id,
                    event_id=order.event_id,
                    ticket_type_id=item.ticket_type_id,
                    code=self._unique_code(),
                    secret_token=generate_secret_token(),
                    status=TicketStatus.VALID,
                )
                self.db.add(ticket)
                # Flush per ticket so the next code lookup sees this one.
                self.db.flush()
                tickets.append(ticket)
        return tickets

    def get_event_stats(self, event_id: str) -> dict[str, int]:
        stmt = (
            select(Ticket.status, func.count())
            .where(Ticket.event_id == event_id)
            .group_by(Ticket.status)
        )
        counts = {status: 0 for status in TicketStatus}
        for status, count in self.db.execute(stmt).all():
            counts[TicketStatus(status)] = count
        return {
            "total": sum(counts.values()),
            "valid": counts[TicketStatus.VALID],
            "used": counts[TicketStatus.USED],
            "refunded": counts[TicketStatus.REFUNDED],
        }
