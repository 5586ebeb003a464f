import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from entro.application.organization_service import OrganizationService
from entro.application.plan_limits_service import PlanLimitsService
from entro.application.ticket_service import TicketService
from entro.application.ticket_type_service import is_on_sale
from entro.domain.clock import utc_now
from entro.domain.exceptions import (
    InsufficientCapacityError,
    NotFoundError,
    PlanLimitExceededError,
    ValidationError,
)
from entro.domain.fees import OrderFeeBreakdown, calculate_order_fees
from entro.domain.permissions import Role
from entro.domain.state_machine import OrderStateMachine, OrderStatus
from entro.infrastructure.db.models import Event, Order, TicketType
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.order_repository import OrderRepository
from entro.infrastructure.repositories.organization_repository import OrganizationRepository
from entro.infrastructure.repositories.outbox_repository import OutboxRepository
from entro.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_QUANTITY_PER_LINE = 50
CANCELLABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.FAILED}


@dataclass(frozen=True)
class OrderLine:
    ticket_type_id: str
    name: str
    quantity: int
    unit_price: int
    total_price: int


@dataclass(frozen=True)
class OrderSummary:
    event_id: str
    lines: list[OrderLine] = field(default_factory=list)
    fees: OrderFeeBreakdown | None = None

    @property
    def ticket_count(self) -> int:
        return sum(line.quantity for line in self.lines)


def normalize_items(items: list[dict]) -> dict[str, int]:
    """
    Merge requested lines per ticket type, dropping zero quantities.
    Raises ValidationError for negative quantities or an empty selection.
    """
    quantities: dict[str, int] = {}
    for item in items:
        quantity = int(item.get("quantity", 0))
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")
        if quantity == 0:
            continue
        ticket_type_id = item["ticket_type_id"]
        quantities[ticket_type_id] = quantities.get(ticket_type_id, 0) + quantity

    if not quantities:
        raise ValidationError("Select at least one ticket")
    for quantity in quantities.values():
        if quantity > MAX_QUANTITY_PER_LINE:
            raise ValidationError(
                f"At most {MAX_QUANTITY_PER_LINE} tickets per ticket type per order"
            )
    return quantities


class OrderService:

    def __init__(self, db: Session):
        self.db = db
        self.order_repository = OrderRepository(db)
        self.event_repository = EventRepository(db)
        self.ticket_type_repository = TicketTypeRepository(db)
        self.organization_repository = OrganizationRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.organization_service = OrganizationService(db)
        self.plan_limits_service = PlanLimitsService(db)
        self.ticket_service = TicketService(db)

    def calculate_order_summary(
        self,
        event_slug: str,
        items: list[dict],
        organization_slug: str | None = None,
        now: datetime | None = None,
    ) -> OrderSummary:
        event = self._get_live_event(event_slug, organization_slug)
        quantities = normalize_items(items)

        lines = []
        for ticket_type_id, quantity in quantities.items():
            ticket_type = self._get_sellable_ticket_type(event, ticket_type_id, now)
            available = ticket_type.capacity - ticket_type.sold_count
            if quantity > available:
                raise InsufficientCapacityError(ticket_type.name, max(0, available))
            lines.append(self._line(ticket_type, quantity))

        ticket_total = sum(line.total_price for line in lines)
        fees = calculate_order_fees(ticket_total, event.pass_payment_fees_to_buyer)
        return OrderSummary(event_id=event.id, lines=lines, fees=fees)

    def create_order(
        self,
        event_slug: str,
        buyer_email: str,
        buyer_name: str | None,
        items: list[dict],
        idempotency_key: str | None = None,
        organization_slug: str | None = None,
        now: datetime | None = None,
    ) -> Order:
        if idempotency_key:
            existing = self.order_repository.get_by_idempotency_key(idempotency_key)
            if existing:
                logger.info(
                    "Idempotent checkout replay. order_id=%s key=%s",
                    existing.id,
                    idempotency_key,
                )
                return existing

        buyer_email = (buyer_email or "").strip().lower()
        if not EMAIL_PATTERN.match(buyer_email):
            raise ValidationError("A valid e-mail address is required")

        now = now or utc_now()
        event = self._get_live_event(event_slug, organization_slug)
        organization = self.organization_repository.get_by_id(event.organization_id)
        quantities = normalize_items(items)

        plan_check = self.plan_limits_service.check_ticket_sale(
            organization, event, sum(quantities.values()), now
        )
        if not plan_check.allowed:
            raise PlanLimitExceededError(
                "This event has reached the ticket limit of the organizer's plan"
            )

        lines = []
        # Sorted lock order keeps concurrent multi-type checkouts deadlock free.
        for ticket_type_id in sorted(quantities):
            quantity = quantities[ticket_type_id]
            ticket_type = self._get_sellable_ticket_type(event, ticket_type_id, now)
            reserved = self.ticket_type_repository.increment_sold_count(ticket_type.id, quantity)
            if reserved is None:
                self.db.refresh(ticket_type)
                raise InsufficientCapacityError(
                    ticket_type.name,
                    max(0, ticket_type.capacity - ticket_type.sold_count),
                )
            lines.append(self._line(reserved, quantity))

        ticket_total = sum(line.total_price for line in lines)
        fees = calculate_order_fees(ticket_total, event.pass_payment_fees_to_buyer)
        timeout = organization.payment_timeout_minutes

        order = self.order_repository.create(
            organization_id=organization.id,
            event_id=event.id,
            buyer_email=buyer_email,
            buyer_name=buyer_name,
            items=[
                {
                    "ticket_type_id": line.ticket_type_id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "total_price": line.total_price,
                }
                for line in lines
            ],
            idempotency_key=idempotency_key,
            ticket_total=fees.ticket_total,
            service_fee=fees.service_fee.service_fee_incl_vat,
            service_fee_excl_vat=fees.service_fee.service_fee_excl_vat,
            service_fee_vat=fees.service_fee.service_fee_vat,
            payment_fee=fees.payment_fee.payment_fee_incl_vat if fees.payment_fee else 0,
            total_amount=fees.total_amount,
            expires_at=now + timedelta(minutes=timeout),
        )
        logger.info(
            "Order created. order_id=%s order_number=%s total=%s",
            order.id,
            order.order_number,
            order.total_amount,
        )

        if order.total_amount == 0:
            self.mark_paid(order, now)
        return order

    def mark_paid(self, order: Order, now: datetime | None = None) -> Order:
        """
        Settle an order: book plan usage, flip to PAID, issue tickets and
        queue the confirmation. Calling it again for a PAID order is a no-op.
        """
        if order.status == OrderStatus.PAID:
            return order

        now = now or utc_now()
        OrderStateMachine.validate_transition(order.status, OrderStatus.PAID)

        event = self.event_repository.get_by_id(order.event_id)
        organization = self.organization_repository.get_by_id(order.organization_id)
        quantity = sum(item.quantity for item in order.items)
        usage = self.plan_limits_service.record_ticket_sale(organization, event, quantity, now)

        order.overage_fee = usage.overage_fee
        self.order_repository.update_status(order, OrderStatus.PAID)
        order.paid_at = now
        self.db.flush()

        tickets = self.ticket_service.issue_tickets(order)
        self._queue(order, "ORDER_PAID", {"ticket_count": len(tickets)})
        logger.info("Order paid. order_id=%s tickets=%s", order.id, len(tickets))
        return order

    def cancel_order(self, order_id: str, user_id: str | None = None) -> Order:
        """
        Buyers cancel their own unpaid order by id; organizers need the
        FINANCE role in the order's organization.
        """
        order = self.order_repository.lock(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if user_id is not None:
            self.organization_service.require_role(order.organization_id, user_id, Role.FINANCE)

        if order.status not in CANCELLABLE_STATUSES:
            raise ValidationError(f"Orders with status {order.status.value} cannot be cancelled")

        self._close(order, OrderStatus.CANCELLED)
        self._queue(order, "ORDER_CANCELLED", {})
        logger.info("Order cancelled. order_id=%s", order.id)
        return order

    def expire_order(self, order: Order) -> Order:
        self._close(order, OrderStatus.EXPIRED)
        self._queue(order, "ORDER_EXPIRED", {})
        return order

    def expire_pending_orders(self, now: datetime | None = None) -> int:
        """
        Release capacity held by unpaid orders past their payment deadline.

        Each order is locked and re-checked inside its own savepoint, so an
        order settled concurrently is skipped and a failing order leaves no
        partial release behind. Failures are logged and the batch goes on.
        """
        now = now or utc_now()
        expired = 0

        overdue_ids = [order.id for order in self.order_repository.find_expired_pending(now)]

        for order_id in overdue_ids:
            try:
                with self.db.begin_nested():
                    order = self.order_repository.lock(order_id)
                    if order is None or order.status not in CANCELLABLE_STATUSES:
                        continue
                    self.expire_order(order)
                expired += 1
            except Exception:
                logger.exception("Failed to expire order. order_id=%s", order_id)

        if expired:
            logger.info("Expired pending orders. count=%s", expired)
        return expired

    def get_order(self, order_id: str, user_id: str) -> Order:
        order = self.order_repository.find_by_id_for_user(order_id, user_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_public_order(self, order_id: str) -> Order:
        order = self.order_repository.get_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def list_orders(
        self,
        organization_id: str,
        user_id: str,
        status: OrderStatus | None = None,
        event_id: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        self.organization_service.require_role(organization_id, user_id, Role.MEMBER)
        return self.order_repository.find_by_organization(
            organization_id,
            status=status,
            event_id=event_id,
            search=search,
            limit=max(1, min(limit, 200)),
            offset=max(0, offset),
        )

    def release_capacity(self, order: Order) -> None:
        for item in order.items:
            self.ticket_type_repository.decrement_sold_count(item.ticket_type_id, item.quantity)

    def _close(self, order: Order, new_status: OrderStatus) -> None:
        OrderStateMachine.validate_transition(order.status, new_status)
        self.release_capacity(order)
        self.order_repository.update_status(order, new_status)
        self.db.flush()

    def _queue(self, order: Order, event_type: str, extra: dict) -> None:
        self.outbox_repository.add(
            aggregate_type="order",
            aggregate_id=order.id,
            event_type=event_type,
            payload={
                "order_id": order.id,
                "order_number": order.order_number,
                "buyer_email": order.buyer_email,
                "total_amount": order.total_amount,
                **extra,
            },
            dedupe_key=f"order:{order.id}:{event_type.lower()}",
        )

    def _get_live_event(self, event_slug: str, organization_slug: str | None) -> Event:
        event = self.event_repository.find_public_by_slug(event_slug, organization_slug)
        if not event:
            raise NotFoundError("Event not found or not on sale")
        return event

    def _get_sellable_ticket_type(
        self,
        event: Event,
        ticket_type_id: str,
        now: datetime | None,
    ) -> TicketType:
        ticket_type = self.ticket_type_repository.get_by_id(ticket_type_id)
        if not ticket_type or ticket_type.event_id != event.id:
            raise ValidationError("Ticket type does not belong to this event")
        if not is_on_sale(ticket_type, event, now):
            raise ValidationError(f'"{ticket_type.name}" is not on sale')
        return ticket_type

    def _line(self, ticket_type: TicketType, quantity: int) -> OrderLine:
        return OrderLine(
            ticket_type_id=ticket_type.id,
            name=ticket_type.name,
            quantity=quantity,
            unit_price=ticket_type.price,
            total_price=ticket_type.price * quantity,
        )
