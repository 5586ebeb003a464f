import logging
import os
import re

from sqlalchemy.orm import Session

from entro.domain.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from entro.domain.permissions import Role, has_role
from entro.domain.plans import get_plan_limits
from entro.infrastructure.db.models import Membership, Organization
from entro.infrastructure.repositories.organization_repository import (
    MembershipRepository,
    OrganizationRepository,
)
from entro.infrastructure.repositories.outbox_repository import AuditLogRepository

logger = logging.getLogger(__name__)

ORGANIZATION_SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


def default_payment_timeout_minutes() -> int:
    return int(os.getenv("ORDER_PAYMENT_TIMEOUT_MINUTES", "10"))


class OrganizationService:
    """Tenants, memberships and role checks."""

    def __init__(self, db: Session):
        self.db = db
        self.organization_repository = OrganizationRepository(db)
        self.membership_repository = MembershipRepository(db)
        self.audit_repository = AuditLogRepository(db)

    def create_organization(
        self,
        user_id: str,
        name: str,
        slug: str,
        email: str | None = None,
    ) -> Organization:
        name = name.strip()
        if not name:
            raise ValidationError("Organization name is required")
        if not ORGANIZATION_SLUG_PATTERN.match(slug):
            raise ValidationError(
                "Slug may only contain lower-case letters, digits and dashes"
            )
        if not self.organization_repository.is_slug_available(slug):
            raise ValidationError("This slug is already in use")

        organization = self.organization_repository.create(
            name=name,
            slug=slug,
            owner_user_id=user_id,
            email=email,
        )
        organization.payment_timeout_minutes = default_payment_timeout_minutes()
        self.db.flush()
        logger.info("Organization created. organization_id=%s slug=%s", organization.id, slug)
        return organization

    def list_for_user(self, user_id: str) -> list[Organization]:
        return self.organization_repository.find_by_user(user_id)

    def get_organization(self, organization_id: str, user_id: str) -> Organization:
        organization = self.organization_repository.find_by_id_for_user(organization_id, user_id)
        if not organization:
            raise NotFoundError("Organization not found")
        return organization

    def get_role(self, organization_id: str, user_id: str) -> Role | None:
        return self.membership_repository.get_role(organization_id, user_id)

    def require_role(self, organization_id: str, user_id: str, required: Role) -> Role:
        """
        Raises NotFoundError for non-members, so other tenants' ids stay
        indistinguishable from unknown ids, and PermissionDeniedError when
        the member ranks below `required`.
        """
        role = self.membership_repository.get_role(organization_id, user_id)
        if role is None:
            raise NotFoundError("Organization not found")
        if not has_role(role, required):
            raise PermissionDeniedError("Insufficient permissions")
        return role

    def list_members(self, organization_id: str, user_id: str) -> list[Membership]:
        self.require_role(organization_id, user_id, Role.MEMBER)
        return self.membership_repository.list_for_organization(organization_id)

    def add_member(
        self,
        organization_id: str,
        requesting_user_id: str,
        user_id: str,
        role: Role,
    ) -> Membership:
        self.require_role(organization_id, requesting_user_id, Role.ADMIN)
        if self.membership_repository.get(organization_id, user_id):
            raise ValidationError("User is already a member of this organization")

        membership = self.membership_repository.add(organization_id, user_id, Role(role))
        self.audit_repository.add(
            organization_id=organization_id,
            user_id=requesting_user_id,
            action="member.add",
            entity_type="membership",
            entity_id=membership.id,
            details={"user_id": user_id, "role": Role(role).value},
        )
        return membership

    def update_member_role(
        self,
        organization_id: str,
        requesting_user_id: str,
        user_id: str,
        role: Role,
    ) -> Membership:
        self.require_role(organization_id, requesting_user_id, Role.ADMIN)
        membership = self.membership_repository.get(organization_id, user_id)
        if not membership:
            raise NotFoundError("Member not found")

        role = Role(role)
        if membership.role == Role.ADMIN and role != Role.ADMIN:
            self._ensure_not_last_admin(organization_id)

        previous = membership.role
        membership.role = role
        self.audit_repository.add(
            organization_id=organization_id,
            user_id=requesting_user_id,
            action="member.update_role",
            entity_type="membership",
            entity_id=membership.id,
            details={"user_id": user_id, "from": previous.value, "to": role.value},
        )
        self.db.flush()
        return membership

    def remove_member(self, organization_id: str, requesting_user_id: str, user_id: str) -> None:
        self.require_role(organization_id, requesting_user_id, Role.ADMIN)
        membership = self.membership_repository.get(organization_id, user_id)
        if not membership:
            raise NotFoundError("Member not found")

        if membership.role == Role.ADMIN:
            self._ensure_not_last_admin(organization_id)

        self.membership_repository.delete(membership)
        self.audit_repository.add(
            organization_id=organization_id,
            user_id=requesting_user_id,
            action="member.remove",
            entity_type="membership",
            entity_id=membership.id,
            details={"user_id": user_id},
        )

    def update_settings(
        self,
        organization_id: str,
        user_id: str,
        payment_timeout_minutes: int | None = None,
        branding_removed: bool | None = None,
    ) -> Organization:
        self.require_role(organization_id, user_id, Role.ADMIN)
        organization = self.organization_repository.get_by_id(organization_id)

        if payment_timeout_minutes is not None:
            if not 1 <= payment_timeout_minutes <= 120:
                raise ValidationError("Payment timeout must be between 1 and 120 minutes")
            organization.payment_timeout_minutes = payment_timeout_minutes

        if branding_removed is not None:
            if branding_removed and not get_plan_limits(organization.plan).branding_removal_allowed:
                raise ValidationError("Branding removal is not available on this plan")
            organization.branding_removed = branding_removed

        self.db.flush()
        return organization

    def set_payment_provider_connected(
        self,
        organization_id: str,
        user_id: str,
        connected: bool,
    ) -> Organization:
        self.require_role(organization_id, user_id, Role.ADMIN)
        organization = self.organization_repository.get_by_id(organization_id)
        organization.payment_provider_connected = connected
        self.audit_repository.add(
            organization_id=organization_id,
            user_id=user_id,
            action="payment_provider.connect" if connected else "payment_provider.disconnect",
            entity_type="organization",
            entity_id=organization_id,
        )
        self.db.flush()
        logger.info(
            "Payment provider connection changed. organization_id=%s connected=%s",
            organization_id,
            connected,
        )
        return organization

    def _ensure_not_last_admin(self, organization_id: str) -> None:
        if self.membership_repository.count_admins(organization_id) <= 1:
            raise ValidationError("An organization must keep at least one admin")
