# entro/infrastructure/repositories/organization_repository.py

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from entro.domain.permissions import Role
from entro.infrastructure.db.models import Membership, Organization, PlatformAdmin


class OrganizationRepository:

    def __init__(self, db: Session):
        self.db = db

    def create(self, name: str, slug: str, owner_user_id: str, email: str | None = None) -> Organization:
        organization = Organization(name=name, slug=slug, email=email)
        self.db.add(organization)
        self.db.flush()

        # The creator always starts as the organization's admin.
        self.db.add(
            Membership(
                organization_id=organization.id,
                user_id=owner_user_id,
                role=Role.ADMIN,
            )
        )
        self.db.flush()
        return organization

    def get_by_id(self, organization_id: str) -> Organization | None:
        stmt = select(Organization).where(Organization.id == organization_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_slug(self, slug: str) -> Organization | None:
        stmt = select(Organization).where(Organization.slug == slug)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_id_for_user(self, organization_id: str, user_id: str) -> Organization | None:
        stmt = (
            select(Organization)
            .join(Membership, Membership.organization_id == Organization.id)
            .where(Organization.id == organization_id)
            .where(Membership.user_id == user_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_user(self, user_id: str) -> list[Organization]:
        stmt = (
            select(Organization)
            .join(Membership, Membership.organization_id == Organization.id)
            .where(Membership.user_id == user_id)
            .order_by(Organization.created_at, Organization.name)
        )
        return list(self.db.execute(stmt).scalars().all())

    def is_slug_available(self, slug: str) -> bool:
        return self.get_by_slug(slug) is None


class MembershipRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(self, organization_id: str, user_id: str) -> Membership | None:
        stmt = (
            select(Membership)
            .where(Membership.organization_id == organization_id)
            .where(Membership.user_id == user_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_role(self, organization_id: str, user_id: str) -> Role | None:
        membership = self.get(organization_id, user_id)
        return membership.role if membership else None

    def list_for_organization(self, organization_id: str) -> list[Membership]:
        stmt = (
            select(Membership)
            .where(Membership.organization_id == organization_id)
            .order_by(Membership.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, organization_id: str, user_id: str, role: Role) -> Membership:
        membership = Membership(organization_id=organization_id, user_id=user_id, role=role)
        self.db.add(membership)
        self.db.flush()
        return membership

    def count_admins(self, organization_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Membership)
            .where(Membership.organization_id == organization_id)
            .where(Membership.role == Role.ADMIN)
        )
        return self.db.execute(stmt).scalar_one()

    def delete(self, membership: Membership) -> None:
        self.db.delete(membership)
        self.db.flush()


class PlatformAdminRepository:

    def __init__(self, db: Session):
        self.db = db

    def is_platform_admin(self, user_id: str) -> bool:
        stmt = select(PlatformAdmin).where(PlatformAdmin.user_id == user_id)
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def create(self, user_id: str, email: str) -> PlatformAdmin:
        admin = PlatformAdmin(user_id=user_id, email=email.lower().strip())
        self.db.add(admin)
        self.db.flush()
        return admin
