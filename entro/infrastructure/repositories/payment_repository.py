# entro/infrastructure/repositories/payment_repository.py

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from entro.infrastructure.db.models import PaymentWebhookEvent, UsageRecord


class PaymentWebhookRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(self, provider: str, payment_id: str, payment_status: str) -> PaymentWebhookEvent | None:
        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.payment_id == payment_id)
            .where(PaymentWebhookEvent.payment_status == payment_status)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record(
        self,
        provider: str,
        payment_id: str,
        payment_status: str,
        order_id: str,
        payload_hash: str,
    ) -> PaymentWebhookEvent:
        event = PaymentWebhookEvent(
            provider=provider,
            payment_id=payment_id,
            payment_status=payment_status,
            order_id=order_id,
            payload_hash=payload_hash,
        )
        self.db.add(event)
        self.db.flush()
        return event


class UsageRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_for_period(self, organization_id: str, period_start: datetime) -> UsageRecord | None:
        stmt = (
            select(UsageRecord)
            .where(UsageRecord.organization_id == organization_id)
            .where(UsageRecord.period_start == period_start)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_or_create(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> UsageRecord:
        record = self.get_for_period(organization_id, period_start)
        if record:
            return record

        record = UsageRecord(
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
            tickets_sold=0,
            overage_tickets=0,
            overage_fee=0,
        )
        self.db.add(record)
        self.db.flush()
        return record
