import hashlib
import hmac
import logging
import os
import re
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from entro.application.organization_service import OrganizationService
from entro.domain.clock import utc_now
from entro.domain.exceptions import ConfigurationError, NotFoundError, ValidationError
from entro.domain.permissions import Role
from entro.domain.state_machine import OrderStatus, ScanResult, TicketStatus
from entro.domain.vat import round_half_up
from entro.infrastructure.db.models import Order, Ticket
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.order_repository import OrderRepository
from entro.infrastructure.repositories.outbox_repository import AuditLogRepository
from entro.infrastructure.repositories.scan_repository import ScanRepository
from entro.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 16
MANUAL_OVERRIDE_DEVICE = "manual-override"
DEV_SIGNING_SECRET = "dev-ticket-signing-secret"

_QR_PATTERN = re.compile(r"/scan/([^:/]+):([a-f0-9]+)", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedQr:
    ticket_id: str
    signature: str


def get_signing_secret() -> str:
    secret = os.getenv("TICKET_SIGNING_SECRET")
    if secret:
        return secret

    if os.getenv("ENTRO_ENV", "production") == "development":
        logger.warning("TICKET_SIGNING_SECRET not set; using the development secret")
        return DEV_SIGNING_SECRET

    raise ConfigurationError("TICKET_SIGNING_SECRET is not configured")


def get_public_base_url() -> str:
    return os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")


def sign_ticket(secret_token: str) -> str:
    """Full hex HMAC-SHA256 of the ticket's secret token."""
    return hmac.new(
        get_signing_secret().encode(),
        secret_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def generate_qr_data(ticket_id: str, secret_token: str, base_url: str | None = None) -> str:
    signature = sign_ticket(secret_token)[:SIGNATURE_LENGTH]
    base_url = (base_url or get_public_base_url()).rstrip("/")
    return f"{base_url}/scan/{ticket_id}:{signature}"


def parse_qr_data(qr_data: str) -> ParsedQr | None:
    """Accepts a full scan URL or just its `/scan/...` path."""
    if not qr_data:
        return None

    match = _QR_PATTERN.search(qr_data.strip())
    if not match:
        return None
    return ParsedQr(ticket_id=match.group(1), signature=match.group(2).lower())


def verify_qr_signature(secret_token: str, signature: str) -> bool:
    if len(signature) != SIGNATURE_LENGTH:
        return False
    expected = sign_ticket(secret_token)[:SIGNATURE_LENGTH]
    return hmac.compare_digest(expected, signature.lower())


def used_percentage(used: int, total: int) -> int:
    if not total:
        return 0
    return round_half_up(Decimal(used) * 100 / total)


class TicketService:

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)
        self.order_repository = OrderRepository(db)
        self.event_repository = EventRepository(db)
        self.scan_repository = ScanRepository(db)
        self.audit_repository = AuditLogRepository(db)
        self.organization_service = OrganizationService(db)

    def issue_tickets(self, order: Order) -> list[Ticket]:
        """One ticket per unit ordered. Re-issuing a paid order is a no-op."""
        if order.status != OrderStatus.PAID:
            raise ValidationError("Tickets can only be issued for paid orders")

        existing = self.ticket_repository.find_by_order(order.id)
        if existing:
            return existing

        tickets = self.ticket_repository.create_many(order)
        logger.info("Tickets issued. order_id=%s count=%s", order.id, len(tickets))
        return tickets

    def get_tickets_for_order(self, order_id: str) -> list[Ticket]:
        order = self.order_repository.get_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.status != OrderStatus.PAID:
            raise ValidationError("Order is not paid")
        return self.ticket_repository.find_by_order(order.id)

    def get_ticket_by_code(self, code: str, user_id: str) -> Ticket:
        ticket = self.ticket_repository.get_by_code(code)
        if not ticket:
            raise NotFoundError("Ticket not found")
        event = self.event_repository.find_by_id_for_user(ticket.event_id, user_id)
        if not event:
            raise NotFoundError("Ticket not found")
        return ticket

    def get_event_ticket_stats(self, event_id: str, user_id: str) -> dict:
        event = self.event_repository.find_by_id_for_user(event_id, user_id)
        if not event:
            raise NotFoundError("Event not found")

        stats = self.ticket_repository.get_event_stats(event.id)
        return {**stats, "used_percentage": used_percentage(stats["used"], stats["total"])}

    def override_status(
        self,
        ticket_id: str,
        user_id: str,
        new_status: TicketStatus,
        reason: str | None = None,
    ) -> Ticket:
        """
        Manually flip a ticket between VALID and USED, e.g. after a failed
        scan at the door. Refunded tickets stay refunded.
        """
        ticket = self.ticket_repository.lock(ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")

        event = self.event_repository.find_by_id_for_user(ticket.event_id, user_id)
        if not event:
            raise NotFoundError("Ticket not found")
        self.organization_service.require_role(event.organization_id, user_id, Role.ADMIN)

        new_status = TicketStatus(new_status)
        if ticket.status == TicketStatus.REFUNDED:
            raise ValidationError("Refunded tickets cannot be changed")
        if new_status not in (TicketStatus.VALID, TicketStatus.USED):
            raise ValidationError("Tickets can only be set to VALID or USED")
        if ticket.status == new_status:
            return ticket

        now = utc_now()
        previous = ticket.status
        ticket.status = new_status
        ticket.used_at = now if new_status == TicketStatus.USED else None

        self.scan_repository.create(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            scanned_by=user_id,
            device_id=MANUAL_OVERRIDE_DEVICE,
            result=ScanResult.VALID if new_status == TicketStatus.USED else ScanResult.INVALID,
            scanned_at=now,
        )
        self.audit_repository.add(
            organization_id=event.organization_id,
            user_id=user_id,
            action="ticket.override",
            entity_type="ticket",
            entity_id=ticket.id,
            details={"from": previous.value, "to": new_status.value, "reason": reason},
        )
        self.db.flush()
        logger.info(
            "Ticket status overridden. ticket_id=%s from=%s to=%s by=%s",
            ticket.id,
            previous.value,
            new_status.value,
            user_id,
        )
        return ticket
