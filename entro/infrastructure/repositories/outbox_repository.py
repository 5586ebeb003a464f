# entro/infrastructure/repositories/outbox_repository.py

import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from entro.domain.clock import utc_now
from entro.infrastructure.db.models import AuditLog, OutboxEvent


class OutboxRepository:
    """
    Transactional outbox. Notifications (ticket e-mails and the like) are
    recorded here in the same transaction as the state change and delivered
    by a separate worker.
    """

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
    ) -> OutboxEvent | None:
        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            return None

        item = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(payload, sort_keys=True),
            dedupe_key=dedupe_key,
            status="PENDING",
            attempts=0,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def list_by_status(self, status: str = "PENDING", limit: int = 50) -> list[OutboxEvent]:
        safe_limit = max(1, min(limit, 200))
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == status)
            .order_by(OutboxEvent.created_at)
            .limit(safe_limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def mark_published(self, item: OutboxEvent) -> OutboxEvent:
        item.status = "PUBLISHED"
        item.published_at = utc_now()
        item.attempts += 1
        self.db.flush()
        return item


class AuditLogRepository:

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        organization_id: str,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        details: dict | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            organization_id=organization_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=json.dumps(details or {}, sort_keys=True, default=str),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_organization(self, organization_id: str, limit: int = 100) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.organization_id == organization_id)
            .order_by(AuditLog.created_at.desc())
            .limit(max(1, min(limit, 500)))
        )
        return list(self.db.execute(stmt).scalars().all())
