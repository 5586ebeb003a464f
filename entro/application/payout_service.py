from dataclasses import dataclass

from sqlalchemy.orm import Session

from entro.application.organization_service import OrganizationService
from entro.domain.exceptions import NotFoundError
from entro.domain.fees import calculate_payout_fees
from entro.domain.permissions import Role
from entro.domain.plans import effective_platform_fee_bps
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.order_repository import OrderRepository
from entro.infrastructure.repositories.organization_repository import OrganizationRepository


@dataclass(frozen=True)
class PayoutSummary:
    event_id: str
    order_count: int
    ticket_count: int
    gross_revenue: int
    platform_fee_bps: int
    platform_fee: int
    overage_fee: int
    net_payout: int
    # Buyer-paid fees, collected for the platform and not part of the payout
    service_fees_collected: int
    payment_fees_collected: int


class PayoutService:
    """What the organizer receives for an event after platform fees."""

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.order_repository = OrderRepository(db)
        self.organization_repository = OrganizationRepository(db)
        self.organization_service = OrganizationService(db)

    def get_event_payout(self, event_id: str, user_id: str) -> PayoutSummary:
        event = self.event_repository.find_by_id_for_user(event_id, user_id)
        if not event:
            raise NotFoundError("Event not found")
        self.organization_service.require_role(event.organization_id, user_id, Role.FINANCE)

        organization = self.organization_repository.get_by_id(event.organization_id)
        orders = self.order_repository.find_paid_for_event(event.id)

        fee_bps = effective_platform_fee_bps(
            organization.plan,
            branding_removed=organization.branding_removed,
            override_bps=event.platform_fee_bps_override,
        )
        gross = sum(order.ticket_total for order in orders)
        overage = sum(order.overage_fee for order in orders)
        fees = calculate_payout_fees(gross, fee_bps, overage)

        return PayoutSummary(
            event_id=event.id,
            order_count=len(orders),
            ticket_count=sum(item.quantity for order in orders for item in order.items),
            gross_revenue=fees.gross_revenue,
            platform_fee_bps=fee_bps,
            platform_fee=fees.platform_fee,
            overage_fee=fees.overage_fee,
            net_payout=fees.net_payout,
            service_fees_collected=sum(order.service_fee for order in orders),
            payment_fees_collected=sum(order.payment_fee for order in orders),
        )
