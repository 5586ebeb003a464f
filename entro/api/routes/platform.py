from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from entro.api.routes.dependencies import get_current_user_id, get_db, http_error
from entro.api.schemas.schemas import (
    EventResponse,
    ExpireOrdersResponse,
    FeeOverrideRequest,
    OrganizationResponse,
    OutboxEventResponse,
    PlanUpdateRequest,
)
from entro.application.order_service import OrderService
from entro.application.platform_service import PlatformService
from entro.domain.exceptions import EntroError
from entro.infrastructure.db.models import OutboxEvent
from entro.infrastructure.repositories.outbox_repository import OutboxRepository

router = APIRouter(tags=["platform"])


def require_platform_admin(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> str:
    try:
        PlatformService(db).require_platform_admin(user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return user_id


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )


@router.get("/health")
def health():
    return {"message": "Entro ticketing is running"}


@router.put("/platform/organizations/{organization_id}/plan", response_model=OrganizationResponse)
def set_plan(
    organization_id: str,
    request: PlanUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        organization = PlatformService(db).set_plan(organization_id, user_id, request.plan)
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrganizationResponse.model_validate(organization)


@router.put("/platform/events/{event_id}/fees", response_model=EventResponse)
def set_event_fee_overrides(
    event_id: str,
    request: FeeOverrideRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        event = PlatformService(db).set_event_fee_overrides(
            event_id,
            user_id,
            platform_fee_bps=request.platform_fee_bps,
            overage_fee=request.overage_fee,
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.post("/platform/orders/expire", response_model=ExpireOrdersResponse)
def expire_pending_orders(
    _: str = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    return ExpireOrdersResponse(expired=OrderService(db).expire_pending_orders())


@router.get("/platform/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    _: str = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    events = OutboxRepository(db).list_by_status(status_filter, limit)
    return [_outbox_response(item) for item in events]


@router.post(
    "/platform/outbox/events/{event_id}/mark-published",
    response_model=OutboxEventResponse,
)
def mark_outbox_event_published(
    event_id: str,
    _: str = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    repository = OutboxRepository(db)
    item = repository.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )
    return _outbox_response(repository.mark_published(item))
