import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from entro.domain.clock import utc_now
from entro.domain.plans import (
    OverageCheck,
    calculate_overage,
    get_plan_display_name,
    get_plan_limits,
)
from entro.domain.state_machine import EventStatus
from entro.infrastructure.db.models import Event, Organization
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.payment_repository import UsageRepository
from entro.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)


@dataclass
class PublishCheck:
    allowed: bool
    reason: str | None = None
    checklist: dict[str, bool] = field(default_factory=dict)


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Calendar month containing `now`, as [start, end) in UTC."""
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class PlanLimitsService:
    """Enforces the active-event and ticket limits of an organization's plan."""

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.ticket_repository = TicketRepository(db)
        self.usage_repository = UsageRepository(db)

    def can_publish_event(self, organization: Organization) -> PublishCheck:
        limits = get_plan_limits(organization.plan)

        within_event_limit = True
        if limits.active_events is not None:
            live = self.event_repository.count_by_status(organization.id, EventStatus.LIVE)
            within_event_limit = live < limits.active_events

        checklist = {
            "payment_provider_connected": organization.payment_provider_connected,
            "within_event_limit": within_event_limit,
        }

        if not organization.payment_provider_connected:
            return PublishCheck(
                False,
                "Connect a payment provider before publishing an event",
                checklist,
            )
        if not within_event_limit:
            return PublishCheck(
                False,
                f"Active event limit reached ({limits.active_events}) "
                f"on the {get_plan_display_name(organization.plan)} plan. "
                "Upgrade your plan for more events.",
                checklist,
            )
        return PublishCheck(True, None, checklist)

    def current_tickets_sold(
        self,
        organization: Organization,
        event: Event,
        now: datetime | None = None,
    ) -> int:
        limits = get_plan_limits(organization.plan)
        if limits.limit_period == "event":
            return self.ticket_repository.count_sold_for_event(event.id)

        period_start, _ = month_bounds(now or utc_now())
        record = self.usage_repository.get_for_period(organization.id, period_start)
        return record.tickets_sold if record else 0

    def check_ticket_sale(
        self,
        organization: Organization,
        event: Event,
        quantity: int,
        now: datetime | None = None,
    ) -> OverageCheck:
        current = self.current_tickets_sold(organization, event, now)
        return calculate_overage(
            current_sold=current,
            quantity=quantity,
            plan=organization.plan,
            override_fee=event.overage_fee_override,
        )

    def record_ticket_sale(
        self,
        organization: Organization,
        event: Event,
        quantity: int,
        now: datetime | None = None,
    ) -> OverageCheck:
        """
        Book a completed sale against the plan and return the overage charged.

        Must run before the order's tickets are issued: per-event plans count
        the event's issued tickets as the current usage.
        """
        now = now or utc_now()
        check = self.check_ticket_sale(organization, event, quantity, now)

        if get_plan_limits(organization.plan).limit_period == "month":
            period_start, period_end = month_bounds(now)
            record = self.usage_repository.get_or_create(organization.id, period_start, period_end)
            record.tickets_sold += quantity
            record.overage_tickets += check.overage_tickets
            record.overage_fee += check.overage_fee
            self.db.flush()

        if check.overage_tickets:
            logger.info(
                "Plan overage recorded. organization_id=%s event_id=%s tickets=%s fee=%s",
                organization.id,
                event.id,
                check.overage_tickets,
                check.overage_fee,
            )
        return check
