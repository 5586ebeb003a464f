# entro/infrastructure/repositories/order_repository.py

from datetime import datetime
import secrets
import string

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from entro.domain.clock import utc_now
from entro.domain.exceptions import IdempotencyConflictError
from entro.domain.state_machine import OrderStatus
from entro.infrastructure.db.models import Membership, Order, OrderItem

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
_ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number(now: datetime | None = None) -> str:
    """ORD-YYYYMMDD-XXXXX"""
    now = now or utc_now()
    random_part = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(5))
    return f"ORD-{now:%Y%m%d}-{random_part}"


class OrderRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, order_id: str) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def lock(self, order_id: str) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_id(self, payment_id: str) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.payment_id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_idempotency_key(self, idempotency_key: str) -> Order | None:
        stmt = select(Order).where(Order.idempotency_key == idempotency_key)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_order_number(self, order_number: str) -> Order | None:
        stmt = select(Order).where(Order.order_number == order_number)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_id_for_user(self, order_id: str, user_id: str) -> Order | None:
        stmt = (
            select(Order)
            .join(Membership, Membership.organization_id == Order.organization_id)
            .where(Order.id == order_id)
            .where(Membership.user_id == user_id)
            .options(selectinload(Order.items))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_organization(
        self,
        organization_id: str,
        status: OrderStatus | None = None,
        event_id: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        stmt = select(Order).where(Order.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        if event_id is not None:
            stmt = stmt.where(Order.event_id == event_id)
        if search:
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    Order.buyer_email.ilike(pattern),
                    Order.buyer_name.ilike(pattern),
                    Order.order_number.ilike(pattern),
                )
            )
        stmt = stmt.order_by(Order.created_at.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    def find_paid_for_event(self, event_id: str) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.event_id == event_id)
            .where(Order.status == OrderStatus.PAID)
        )
        return list(self.db.execute(stmt).scalars().all())

    def find_expired_pending(self, now: datetime) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.status.in_((OrderStatus.PENDING, OrderStatus.FAILED)))
            .where(Order.expires_at.is_not(None))
            .where(Order.expires_at < now)
            .order_by(Order.expires_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self,
        organization_id: str,
        event_id: str,
        buyer_email: str,
        buyer_name: str | None,
        items: list[dict],
        idempotency_key: str | None = None,
        **amounts,
    ) -> Order:

        # Idempotency Check
        if idempotency_key and self.get_by_idempotency_key(idempotency_key):
            raise IdempotencyConflictError("Duplicate idempotent request")

        order_number = generate_order_number()
        for _ in range(_ORDER_NUMBER_ATTEMPTS):
            if self.get_by_order_number(order_number) is None:
                break
            order_number = generate_order_number()

        order = Order(
            organization_id=organization_id,
            event_id=event_id,
            order_number=order_number,
            buyer_email=buyer_email.lower().strip(),
            buyer_name=(buyer_name or "").strip() or None,
            status=OrderStatus.PENDING,
            idempotency_key=idempotency_key,
            **amounts,
        )
        order.items = [OrderItem(**item) for item in items]
        self.db.add(order)
        self.db.flush()
        return order

    def update_status(self, order: Order, new_status: OrderStatus) -> None:
        order.status = new_status
