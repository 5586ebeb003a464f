# entro/infrastructure/repositories/scan_repository.py

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from entro.domain.state_machine import ScanResult
from entro.infrastructure.db.models import ScanLog


class ScanRepository:

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        ticket_id: str,
        scanned_by: str,
        result: ScanResult,
        scanned_at: datetime,
        event_id: str | None = None,
        device_id: str | None = None,
    ) -> ScanLog:
        log = ScanLog(
            ticket_id=ticket_id,
            event_id=event_id,
            scanned_by=scanned_by,
            device_id=device_id,
            result=result,
            scanned_at=scanned_at,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def find_first_valid_scan(self, ticket_id: str) -> ScanLog | None:
        stmt = (
            select(ScanLog)
            .where(ScanLog.ticket_id == ticket_id)
            .where(ScanLog.result == ScanResult.VALID)
            .order_by(ScanLog.scanned_at)
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_ticket(self, ticket_id: str) -> list[ScanLog]:
        stmt = (
            select(ScanLog)
            .where(ScanLog.ticket_id == ticket_id)
            .order_by(ScanLog.scanned_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_by_result(self, event_id: str) -> dict[ScanResult, int]:
        stmt = (
            select(ScanLog.result, func.count())
            .where(ScanLog.event_id == event_id)
            .group_by(ScanLog.result)
        )
        counts = {result: 0 for result in ScanResult}
        for result, count in self.db.execute(stmt).all():
            counts[ScanResult(result)] = count
        return counts
