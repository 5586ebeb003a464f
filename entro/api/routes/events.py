from dataclasses import asdict

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from entro.api.routes.dependencies import get_current_user_id, get_db, http_error
from entro.api.schemas.schemas import (
    AvailabilityResponse,
    EventCreate,
    EventResponse,
    EventStatsResponse,
    EventStatusUpdate,
    EventUpdate,
    PayoutResponse,
    PublicEventResponse,
    PublicTicketTypeResponse,
    TicketTypeCreate,
    TicketTypeReorderRequest,
    TicketTypeResponse,
    TicketTypeUpdate,
)
from entro.application.event_service import EventService
from entro.application.payout_service import PayoutService
from entro.application.ticket_type_service import TicketTypeService, is_on_sale
from entro.domain.exceptions import EntroError
from entro.domain.state_machine import EventStatus
from entro.domain.vat import VAT_RATE_LABELS, get_price_breakdown
from entro.infrastructure.db.models import Event

router = APIRouter(tags=["events"])


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    request: EventCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = EventService(db).create_event(
            organization_id=request.organization_id,
            user_id=user_id,
            title=request.title,
            starts_at=request.starts_at,
            ends_at=request.ends_at,
            description=request.description,
            location=request.location,
            pass_payment_fees_to_buyer=request.pass_payment_fees_to_buyer,
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.get("/events", response_model=list[EventResponse])
def list_events(
    organization_id: str,
    status_filter: EventStatus | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        events = EventService(db).list_events(organization_id, user_id, status_filter)
    except EntroError as exc:
        raise http_error(exc) from exc
    return [EventResponse.model_validate(event) for event in events]


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = EventService(db).get_event(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.patch("/events/{event_id}", response_model=EventResponse)
def update_event(
    event_id: str,
    request: EventUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = EventService(db).update_event(
            event_id, user_id, **request.model_dump(exclude_unset=True)
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.post("/events/{event_id}/status", response_model=EventResponse)
def update_event_status(
    event_id: str,
    request: EventStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = EventService(db).update_status(event_id, user_id, request.status)
    except EntroError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        EventService(db).delete_event(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc


@router.get("/events/{event_id}/stats", response_model=EventStatsResponse)
def get_event_stats(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        stats = EventService(db).get_stats(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return EventStatsResponse(**stats)


@router.get("/events/{event_id}/payout", response_model=PayoutResponse)
def get_event_payout(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        payout = PayoutService(db).get_event_payout(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return PayoutResponse(**asdict(payout))


@router.get("/events/{event_id}/ticket-types", response_model=list[TicketTypeResponse])
def list_ticket_types(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket_types = TicketTypeService(db).list_ticket_types(event_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return [TicketTypeResponse.model_validate(item) for item in ticket_types]


@router.post(
    "/events/{event_id}/ticket-types",
    response_model=TicketTypeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_ticket_type(
    event_id: str,
    request: TicketTypeCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket_type = TicketTypeService(db).create_ticket_type(
            event_id, user_id, **request.model_dump()
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return TicketTypeResponse.model_validate(ticket_type)


@router.put("/events/{event_id}/ticket-types/order", response_model=list[TicketTypeResponse])
def reorder_ticket_types(
    event_id: str,
    request: TicketTypeReorderRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket_types = TicketTypeService(db).reorder_ticket_types(
            event_id, user_id, request.ordered_ids
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return [TicketTypeResponse.model_validate(item) for item in ticket_types]


@router.patch("/ticket-types/{ticket_type_id}", response_model=TicketTypeResponse)
def update_ticket_type(
    ticket_type_id: str,
    request: TicketTypeUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ticket_type = TicketTypeService(db).update_ticket_type(
            ticket_type_id, user_id, **request.model_dump(exclude_unset=True)
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return TicketTypeResponse.model_validate(ticket_type)


@router.delete("/ticket-types/{ticket_type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ticket_type(
    ticket_type_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TicketTypeService(db).delete_ticket_type(ticket_type_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc


@router.get("/ticket-types/{ticket_type_id}/availability", response_model=AvailabilityResponse)
def get_availability(
    ticket_type_id: str,
    db: Session = Depends(get_db),
):
    try:
        availability = TicketTypeService(db).get_availability(ticket_type_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return AvailabilityResponse(**asdict(availability))


def _public_event_response(event: Event, db: Session) -> PublicEventResponse:
    ticket_types = TicketTypeService(db).list_public_ticket_types(event)
    items = []
    for ticket_type in ticket_types:
        breakdown = get_price_breakdown(ticket_type.price, ticket_type.vat_rate)
        items.append(
            PublicTicketTypeResponse(
                id=ticket_type.id,
                name=ticket_type.name,
                description=ticket_type.description,
                price=ticket_type.price,
                price_excl_vat=breakdown.price_excl_vat,
                vat_amount=breakdown.vat_amount,
                vat_rate=ticket_type.vat_rate,
                vat_label=VAT_RATE_LABELS[ticket_type.vat_rate],
                available=max(0, ticket_type.capacity - ticket_type.sold_count),
                is_on_sale=is_on_sale(ticket_type, event),
            )
        )

    return PublicEventResponse(
        id=event.id,
        title=event.title,
        slug=event.slug,
        description=event.description,
        location=event.location,
        starts_at=event.starts_at,
        ends_at=event.ends_at,
        organization_name=event.organization.name,
        ticket_types=items,
    )


@router.get("/public/events", response_model=list[EventResponse])
def list_public_events(db: Session = Depends(get_db)):
    events = EventService(db).list_public_events()
    return [EventResponse.model_validate(event) for event in events]


@router.get("/public/events/{slug}", response_model=PublicEventResponse)
def get_public_event(
    slug: str,
    organization_slug: str | None = None,
    db: Session = Depends(get_db),
):
    try:
        event = EventService(db).get_public_event(slug, organization_slug)
        return _public_event_response(event, db)
    except EntroError as exc:
        raise http_error(exc) from exc
