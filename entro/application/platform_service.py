import logging

from sqlalchemy.orm import Session

from entro.domain.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from entro.domain.plans import PricingPlan
from entro.infrastructure.db.models import Event, Organization
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.organization_repository import (
    OrganizationRepository,
    PlatformAdminRepository,
)
from entro.infrastructure.repositories.outbox_repository import AuditLogRepository

logger = logging.getLogger(__name__)

MAX_FEE_BPS = 10_000


class PlatformService:
    """Operations reserved for platform administrators."""

    def __init__(self, db: Session):
        self.db = db
        self.platform_admin_repository = PlatformAdminRepository(db)
        self.organization_repository = OrganizationRepository(db)
        self.event_repository = EventRepository(db)
        self.audit_repository = AuditLogRepository(db)

    def require_platform_admin(self, user_id: str) -> None:
        if not self.platform_admin_repository.is_platform_admin(user_id):
            raise PermissionDeniedError("Platform admin access required")

    def set_plan(self, organization_id: str, user_id: str, plan: PricingPlan) -> Organization:
        self.require_platform_admin(user_id)
        organization = self.organization_repository.get_by_id(organization_id)
        if not organization:
            raise NotFoundError("Organization not found")

        previous = organization.plan
        organization.plan = PricingPlan(plan)
        self.audit_repository.add(
            organization_id=organization.id,
            user_id=user_id,
            action="platform.set_plan",
            entity_type="organization",
            entity_id=organization.id,
            details={"from": previous.value, "to": organization.plan.value},
        )
        self.db.flush()
        logger.info(
            "Plan changed. organization_id=%s from=%s to=%s",
            organization.id,
            previous.value,
            organization.plan.value,
        )
        return organization

    def set_event_fee_overrides(
        self,
        event_id: str,
        user_id: str,
        platform_fee_bps: int | None = None,
        overage_fee: int | None = None,
    ) -> Event:
        """None clears an override so the plan default applies again."""
        self.require_platform_admin(user_id)
        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise NotFoundError("Event not found")

        if platform_fee_bps is not None and not 0 <= platform_fee_bps <= MAX_FEE_BPS:
            raise ValidationError("Platform fee must be between 0 and 10000 basis points")
        if overage_fee is not None and overage_fee < 0:
            raise ValidationError("Overage fee cannot be negative")

        event.platform_fee_bps_override = platform_fee_bps
        event.overage_fee_override = overage_fee
        self.audit_repository.add(
            organization_id=event.organization_id,
            user_id=user_id,
            action="platform.fee_override",
            entity_type="event",
            entity_id=event.id,
            details={"platform_fee_bps": platform_fee_bps, "overage_fee": overage_fee},
        )
        self.db.flush()
        return event
