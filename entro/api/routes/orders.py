import hashlib
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entro.api.routes.dependencies import get_current_user_id, get_db, get_raw_body, http_error
from entro.api.schemas.schemas import (
    CheckoutLineResponse,
    CheckoutSummaryRequest,
    CheckoutSummaryResponse,
    OrderCreate,
    OrderResponse,
    PaymentStartRequest,
    PaymentStartResponse,
    PaymentWebhookRequest,
    PaymentWebhookResponse,
    TicketResponse,
)
from entro.application.order_service import OrderService
from entro.application.payment_service import PaymentService, verify_webhook_signature
from entro.application.ticket_service import TicketService, generate_qr_data
from entro.domain.exceptions import EntroError

router = APIRouter(tags=["orders"])
logger = logging.getLogger(__name__)


@router.post("/checkout/summary", response_model=CheckoutSummaryResponse)
def checkout_summary(
    request: CheckoutSummaryRequest,
    db: Session = Depends(get_db),
):
    try:
        summary = OrderService(db).calculate_order_summary(
            event_slug=request.event_slug,
            items=[item.model_dump() for item in request.items],
            organization_slug=request.organization_slug,
        )
    except EntroError as exc:
        raise http_error(exc) from exc

    fees = summary.fees
    return CheckoutSummaryResponse(
        event_id=summary.event_id,
        lines=[CheckoutLineResponse(**asdict(line)) for line in summary.lines],
        ticket_total=fees.ticket_total,
        service_fee=fees.service_fee.service_fee_incl_vat,
        payment_fee=fees.payment_fee.payment_fee_incl_vat if fees.payment_fee else 0,
        total_amount=fees.total_amount,
    )


@router.post("/checkout/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    request: OrderCreate,
    idempotency_key: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    try:
        order = OrderService(db).create_order(
            event_slug=request.event_slug,
            buyer_email=request.buyer_email,
            buyer_name=request.buyer_name,
            items=[item.model_dump() for item in request.items],
            idempotency_key=request.idempotency_key or idempotency_key,
            organization_slug=request.organization_slug,
        )
        db.flush()
    except EntroError as exc:
        raise http_error(exc) from exc
    except IntegrityError as exc:
        # Lost a race on the idempotency key.
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Duplicate idempotent request",
        ) from exc
    return OrderResponse.model_validate(order)


@router.get("/checkout/orders/{order_id}", response_model=OrderResponse)
def get_checkout_order(
    order_id: str,
    db: Session = Depends(get_db),
):
    try:
        order = OrderService(db).get_public_order(order_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(order)


@router.post("/checkout/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_checkout_order(
    order_id: str,
    db: Session = Depends(get_db),
):
    try:
        order = OrderService(db).cancel_order(order_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(order)


@router.post("/checkout/orders/{order_id}/payment", response_model=PaymentStartResponse)
def start_payment(
    order_id: str,
    request: PaymentStartRequest,
    db: Session = Depends(get_db),
):
    try:
        payment = PaymentService(db).start_payment(order_id, request.payment_method)
    except EntroError as exc:
        raise http_error(exc) from exc
    return PaymentStartResponse(**payment)


@router.get("/checkout/orders/{order_id}/tickets", response_model=list[TicketResponse])
def get_order_tickets(
    order_id: str,
    db: Session = Depends(get_db),
):
    try:
        tickets = TicketService(db).get_tickets_for_order(order_id)
        return [
            TicketResponse(
                id=ticket.id,
                code=ticket.code,
                status=ticket.status,
                event_id=ticket.event_id,
                ticket_type_id=ticket.ticket_type_id,
                used_at=ticket.used_at,
                qr_data=generate_qr_data(ticket.id, ticket.secret_token),
            )
            for ticket in tickets
        ]
    except EntroError as exc:
        raise http_error(exc) from exc


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        order = OrderService(db).get_order(order_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        order = OrderService(db).cancel_order(order_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(order)


@router.post("/payments/webhook", response_model=PaymentWebhookResponse)
def payment_webhook(
    raw_body: bytes = Depends(get_raw_body),
    x_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    try:
        verify_webhook_signature(raw_body, x_signature)
    except EntroError as exc:
        logger.warning("Rejected payment webhook: %s", exc)
        raise http_error(exc) from exc

    try:
        payload = PaymentWebhookRequest.model_validate_json(raw_body)
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid webhook payload",
        ) from exc

    try:
        order = PaymentService(db).handle_payment_status(
            payment_id=payload.payment_id,
            payment_status=payload.status,
            payload_hash=hashlib.sha256(raw_body).hexdigest(),
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    except IntegrityError as exc:
        # A concurrent delivery of the same status already recorded it.
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Duplicate webhook delivery",
        ) from exc

    return PaymentWebhookResponse(order_id=order.id, status=order.status)
