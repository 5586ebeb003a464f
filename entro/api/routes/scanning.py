from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from entro.api.routes.dependencies import get_current_user_id, get_db, http_error
from entro.api.schemas.schemas import (
    ScanLogResponse,
    ScanRequest,
    ScanResponse,
    TicketOverrideRequest,
    TicketResponse,
    TicketStatsResponse,
)
from entro.application.scan_service import ScanService
from entro.application.ticket_service import TicketService
from entro.domain.exceptions import EntroError
from entro.infrastructure.db.models import Ticket

router = APIRouter(tags=["tickets"])


def _ticket_response(ticket: Ticket) -> TicketResponse:
    # Organizer views never expose the QR payload.
    return TicketResponse(
        id=ticket.id,
        code=ticket.code,
        status=ticket.status,
        event_id=ticket.event_id,
        ticket_type_id=ticket.ticket_type_id,
        used_at=ticket.used_at,
    )


@router.post("/scan", response_model=ScanResponse)
def scan_ticket(
    request: ScanRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        outcome = ScanService(db).scan_ticket(
            qr_data=request.qr_data,
            scanned_by=user_id,
            organization_id=request.organization_id,
            device_id=request.device_id,
        )
    except EntroError as exc:
        raise http_error(exc) from exc

    ticket = outcome.ticket
    return ScanResponse(
        result=outcome.result,
        message=outcome.message,
        ticket_id=ticket.id if ticket else None,
        ticket_code=ticket.code if ticket else None,
        ticket_type_name=ticket.ticket_type.name if ticket else None,
        first_scanned_at=outcome.first_scanned_at,
    )


@router.get("/tickets/code/{code}", response_model=TicketResponse)
def get_ticket_by_code(
    code: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket = TicketService(db).get_ticket_by_code(code, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return _ticket_response(ticket)


@router.post("/tickets/{ticket_id}/status", response_model=TicketResponse)
def override_ticket_status(
    ticket_id: str,
    request: TicketOverrideRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket = TicketService(db).override_status(
            ticket_id, user_id, request.status, request.reason
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return _ticket_response(ticket)


@router.get("/tickets/{ticket_id}/scans", response_model=list[ScanLogResponse])
def get_scan_history(
    ticket_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        scans = ScanService(db).get_scan_history(ticket_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return [ScanLogResponse.model_validate(scan) for scan in scans]


@router.get("/events/{event_id}/tickets/stats", response_model=TicketStatsResponse)
def get_ticket_stats(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        stats = TicketService(db).get_event_ticket_stats(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return TicketStatsResponse(**stats)


@router.get("/events/{event_id}/scans/stats", response_model=dict[str, int])
def get_scan_stats(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return ScanService(db).get_scan_stats(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
