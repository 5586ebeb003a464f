import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from entro.application.organization_service import OrganizationService
from entro.application.ticket_service import parse_qr_data, verify_qr_signature
from entro.domain.clock import as_utc, utc_now
from entro.domain.exceptions import NotFoundError
from entro.domain.permissions import Role
from entro.domain.state_machine import ScanResult, TicketStateMachine, TicketStatus
from entro.infrastructure.db.models import ScanLog, Ticket
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.scan_repository import ScanRepository
from entro.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

UNPARSEABLE_TICKET_ID = "unknown"


@dataclass
class ScanOutcome:
    result: ScanResult
    message: str
    ticket: Ticket | None = None
    first_scanned_at: datetime | None = None


class ScanService:
    """Door scanning. The first VALID scan of a ticket wins."""

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)
        self.scan_repository = ScanRepository(db)
        self.event_repository = EventRepository(db)
        self.organization_service = OrganizationService(db)

    def scan_ticket(
        self,
        qr_data: str,
        scanned_by: str,
        organization_id: str,
        device_id: str | None = None,
    ) -> ScanOutcome:
        self.organization_service.require_role(organization_id, scanned_by, Role.SCANNER)
        now = utc_now()

        parsed = parse_qr_data(qr_data)
        if parsed is None:
            self._log(UNPARSEABLE_TICKET_ID, None, scanned_by, device_id, ScanResult.INVALID, now)
            return ScanOutcome(ScanResult.INVALID, "Unreadable QR code")

        # Row lock serializes concurrent scans of the same ticket.
        ticket = self.ticket_repository.lock(parsed.ticket_id)
        if ticket is None:
            self._log(parsed.ticket_id[:64], None, scanned_by, device_id, ScanResult.INVALID, now)
            return ScanOutcome(ScanResult.INVALID, "Ticket not found")

        event = self.event_repository.get_by_id(ticket.event_id)
        if event is None or event.organization_id != organization_id:
            self._log(ticket.id, None, scanned_by, device_id, ScanResult.INVALID, now)
            logger.warning(
                "Cross-organization scan attempt. ticket_id=%s organization_id=%s",
                ticket.id,
                organization_id,
            )
            return ScanOutcome(ScanResult.INVALID, "Ticket does not belong to this organization")

        if not verify_qr_signature(ticket.secret_token, parsed.signature):
            self._log(ticket.id, ticket.event_id, scanned_by, device_id, ScanResult.INVALID, now)
            logger.warning("Invalid QR signature. ticket_id=%s", ticket.id)
            return ScanOutcome(ScanResult.INVALID, "Invalid signature")

        if ticket.status == TicketStatus.REFUNDED:
            self._log(ticket.id, ticket.event_id, scanned_by, device_id, ScanResult.REFUNDED, now)
            return ScanOutcome(ScanResult.REFUNDED, "Ticket has been refunded", ticket)

        if ticket.status == TicketStatus.USED:
            self._log(
                ticket.id, ticket.event_id, scanned_by, device_id, ScanResult.ALREADY_USED, now
            )
            first_scanned_at = as_utc(ticket.used_at)
            if first_scanned_at is None:
                first_scan = self.scan_repository.find_first_valid_scan(ticket.id)
                first_scanned_at = as_utc(first_scan.scanned_at) if first_scan else None
            return ScanOutcome(
                ScanResult.ALREADY_USED,
                "Ticket already used",
                ticket,
                first_scanned_at,
            )

        TicketStateMachine.validate_transition(ticket.status, TicketStatus.USED)
        ticket.status = TicketStatus.USED
        ticket.used_at = now
        self._log(ticket.id, ticket.event_id, scanned_by, device_id, ScanResult.VALID, now)
        logger.info("Ticket scanned. ticket_id=%s event_id=%s", ticket.id, ticket.event_id)
        return ScanOutcome(ScanResult.VALID, "Ticket valid", ticket, now)

    def get_scan_stats(self, event_id: str, user_id: str) -> dict[str, int]:
        event = self.event_repository.find_by_id_for_user(event_id, user_id)
        if not event:
            raise NotFoundError("Event not found")

        counts = self.scan_repository.count_by_result(event.id)
        return {result.value: count for result, count in counts.items()}

    def get_scan_history(self, ticket_id: str, user_id: str) -> list[ScanLog]:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket or not self.event_repository.find_by_id_for_user(ticket.event_id, user_id):
            raise NotFoundError("Ticket not found")
        return self.scan_repository.find_by_ticket(ticket.id)

    def _log(
        self,
        ticket_id: str,
        event_id: str | None,
        scanned_by: str,
        device_id: str | None,
        result: ScanResult,
        scanned_at: datetime,
    ) -> None:
        self.scan_repository.create(
            ticket_id=ticket_id,
            event_id=event_id,
            scanned_by=scanned_by,
            device_id=device_id,
            result=result,
            scanned_at=scanned_at,
        )
