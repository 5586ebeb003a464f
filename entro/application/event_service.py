import logging
import re
from datetime import datetime

from sqlalchemy.orm import Session

from entro.application.organization_service import OrganizationService
from entro.application.plan_limits_service import PlanLimitsService
from entro.domain.clock import as_utc
from entro.domain.exceptions import NotFoundError, ValidationError
from entro.domain.permissions import Role
from entro.domain.state_machine import EventStateMachine, EventStatus
from entro.infrastructure.db.models import Event
from entro.infrastructure.repositories.event_repository import EventRepository
from entro.infrastructure.repositories.organization_repository import OrganizationRepository
from entro.infrastructure.repositories.outbox_repository import AuditLogRepository

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 50
MAX_TITLE_LENGTH = 200
DELETABLE_STATUSES = {EventStatus.DRAFT, EventStatus.CANCELLED}


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


class EventService:

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.organization_repository = OrganizationRepository(db)
        self.organization_service = OrganizationService(db)
        self.plan_limits_service = PlanLimitsService(db)
        self.audit_repository = AuditLogRepository(db)

    def generate_slug(
        self,
        organization_id: str,
        title: str,
        exclude_event_id: str | None = None,
    ) -> str:
        base = slugify(title) or "event"
        slug = base
        counter = 1
        while not self.event_repository.is_slug_available(
            organization_id, slug, exclude_event_id
        ):
            suffix = f"-{counter}"
            slug = base[: MAX_SLUG_LENGTH - len(suffix)] + suffix
            counter += 1
        return slug

    def create_event(
        self,
        organization_id: str,
        user_id: str,
        title: str,
        starts_at: datetime,
        ends_at: datetime,
        description: str | None = None,
        location: str | None = None,
        pass_payment_fees_to_buyer: bool = False,
    ) -> Event:
        self.organization_service.require_role(organization_id, user_id, Role.MEMBER)

        title = self._validate_title(title)
        self._validate_dates(starts_at, ends_at)

        event = self.event_repository.create(
            organization_id,
            title=title,
            slug=self.generate_slug(organization_id, title),
            description=description,
            location=location,
            starts_at=starts_at,
            ends_at=ends_at,
            pass_payment_fees_to_buyer=pass_payment_fees_to_buyer,
        )
        logger.info("Event created. event_id=%s slug=%s", event.id, event.slug)
        return event

    def get_event(self, event_id: str, user_id: str) -> Event:
        event = self.event_repository.find_by_id_for_user(event_id, user_id)
        if not event:
            raise NotFoundError("Event not found")
        return event

    def list_events(
        self,
        organization_id: str,
        user_id: str,
        status: EventStatus | None = None,
    ) -> list[Event]:
        self.organization_service.require_role(organization_id, user_id, Role.SCANNER)
        return self.event_repository.find_by_organization(organization_id, user_id, status)

    def update_event(self, event_id: str, user_id: str, **changes) -> Event:
        event = self.get_event(event_id, user_id)
        self.organization_service.require_role(event.organization_id, user_id, Role.MEMBER)

        if "title" in changes and changes["title"] is not None:
            title = self._validate_title(changes.pop("title"))
            if title != event.title:
                event.title = title
                event.slug = self.generate_slug(event.organization_id, title, event.id)

        starts_at = changes.pop("starts_at", None) or event.starts_at
        ends_at = changes.pop("ends_at", None) or event.ends_at
        self._validate_dates(starts_at, ends_at)
        event.starts_at = starts_at
        event.ends_at = ends_at

        for field in ("description", "location", "pass_payment_fees_to_buyer"):
            if changes.get(field) is not None:
                setattr(event, field, changes[field])

        self.db.flush()
        return event

    def update_status(self, event_id: str, user_id: str, new_status: EventStatus) -> Event:
        event = self.get_event(event_id, user_id)
        self.organization_service.require_role(event.organization_id, user_id, Role.ADMIN)

        new_status = EventStatus(new_status)
        EventStateMachine.validate_transition(event.status, new_status)
        if event.status == new_status:
            return event

        if new_status == EventStatus.LIVE:
            organization = self.organization_repository.get_by_id(event.organization_id)
            check = self.plan_limits_service.can_publish_event(organization)
            if not check.allowed:
                raise ValidationError(check.reason)

        previous = event.status
        event.status = new_status
        self.audit_repository.add(
            organization_id=event.organization_id,
            user_id=user_id,
            action="event.status",
            entity_type="event",
            entity_id=event.id,
            details={"from": previous.value, "to": new_status.value},
        )
        self.db.flush()
        logger.info(
            "Event status changed. event_id=%s from=%s to=%s",
            event.id,
            previous.value,
            new_status.value,
        )
        return event

    def delete_event(self, event_id: str, user_id: str) -> None:
        event = self.get_event(event_id, user_id)
        self.organization_service.require_role(event.organization_id, user_id, Role.ADMIN)

        if event.status not in DELETABLE_STATUSES:
            raise ValidationError("Only draft or cancelled events can be deleted")
        if any(ticket_type.sold_count > 0 for ticket_type in event.ticket_types):
            raise ValidationError("Events with sold tickets cannot be deleted")

        self.event_repository.delete(event)

    def get_stats(self, event_id: str, user_id: str) -> dict:
        event = self.get_event(event_id, user_id)
        return self.event_repository.get_stats(event.id)

    def get_public_event(self, slug: str, organization_slug: str | None = None) -> Event:
        event = self.event_repository.find_public_by_slug(slug, organization_slug)
        if not event:
            raise NotFoundError("Event not found")
        return event

    def list_public_events(self) -> list[Event]:
        return self.event_repository.find_public()

    def _validate_title(self, title: str) -> str:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        return title

    def _validate_dates(self, starts_at: datetime, ends_at: datetime) -> None:
        if as_utc(ends_at) <= as_utc(starts_at):
            raise ValidationError("End time must be after start time")
