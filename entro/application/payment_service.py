import hashlib
import hmac
import logging
import os
import secrets

from sqlalchemy.orm import Session

from entro.application.order_service import OrderService
from entro.domain.clock import as_utc, utc_now
from entro.domain.exceptions import (
    ConfigurationError,
    InvalidSignatureError,
    NotFoundError,
    ValidationError,
)
from entro.domain.fees import to_provider_amount
from entro.domain.state_machine import OrderStateMachine, OrderStatus
from entro.infrastructure.db.models import Order
from entro.infrastructure.repositories.order_repository import OrderRepository
from entro.infrastructure.repositories.payment_repository import PaymentWebhookRepository

logger = logging.getLogger(__name__)

PAYMENT_PROVIDER = "default"
PAYMENT_STATUSES = {"paid", "failed", "canceled", "expired"}
PAYABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.FAILED}


def generate_payment_id() -> str:
    return f"tr_{secrets.token_urlsafe(12)}"


def verify_webhook_signature(raw_body: bytes, signature: str | None) -> None:
    """HMAC-SHA256 of the raw request body, hex encoded."""
    secret = os.getenv("PAYMENT_WEBHOOK_SECRET")
    if not secret:
        raise ConfigurationError("PAYMENT_WEBHOOK_SECRET is not configured")

    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature.strip().lower()):
        raise InvalidSignatureError("Invalid webhook signature")


class PaymentService:
    """
    Provider-neutral payment lifecycle.

    The provider's checkout is out of scope: `start_payment` hands out the
    payment id and amount, and the provider reports back through
    `handle_payment_status`.
    """

    def __init__(self, db: Session):
        self.db = db
        self.order_repository = OrderRepository(db)
        self.webhook_repository = PaymentWebhookRepository(db)
        self.order_service = OrderService(db)

    def start_payment(self, order_id: str, payment_method: str | None = None) -> dict:
        order = self.order_repository.lock(order_id)
        if not order:
            raise NotFoundError("Order not found")

        if order.status not in PAYABLE_STATUSES:
            raise ValidationError(f"Orders with status {order.status.value} cannot be paid")
        if order.total_amount == 0:
            raise ValidationError("Free orders do not need a payment")

        expires_at = as_utc(order.expires_at)
        if expires_at and expires_at < utc_now():
            raise ValidationError("Order has expired")

        if order.status == OrderStatus.FAILED:
            OrderStateMachine.validate_transition(order.status, OrderStatus.PENDING)
            self.order_repository.update_status(order, OrderStatus.PENDING)

        order.payment_id = generate_payment_id()
        order.payment_method = payment_method
        self.db.flush()
        logger.info("Payment started. order_id=%s payment_id=%s", order.id, order.payment_id)

        return {
            "order_id": order.id,
            "payment_id": order.payment_id,
            "amount": to_provider_amount(order.total_amount),
            "currency": order.currency,
            "description": f"Order {order.order_number}",
        }

    def handle_payment_status(
        self,
        payment_id: str,
        payment_status: str,
        payload_hash: str | None = None,
    ) -> Order:
        """
        Apply a status report from the payment provider.
        Duplicate reports of the same status are acknowledged without effect.
        """
        payment_status = payment_status.lower()
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Unsupported payment status: {payment_status}")

        order = self.order_repository.get_by_payment_id(payment_id)
        if not order:
            raise NotFoundError("Order not found for payment")

        if self.webhook_repository.get(PAYMENT_PROVIDER, payment_id, payment_status):
            logger.info(
                "Duplicate payment status ignored. payment_id=%s status=%s",
                payment_id,
                payment_status,
            )
            return order

        self.webhook_repository.record(
            provider=PAYMENT_PROVIDER,
            payment_id=payment_id,
            payment_status=payment_status,
            order_id=order.id,
            payload_hash=payload_hash or hashlib.sha256(
                f"{payment_id}:{payment_status}".encode()
            ).hexdigest(),
        )

        if payment_status == "paid":
            self._handle_paid(order)
        elif payment_status == "failed":
            self._handle_failed(order)
        elif payment_status == "expired":
            self._handle_expired(order)
        else:
            self._handle_canceled(order)

        self.db.flush()
        return order

    def _handle_paid(self, order: Order) -> None:
        if order.status == OrderStatus.PAID:
            return
        if order.status == OrderStatus.FAILED:
            self.order_repository.update_status(order, OrderStatus.PENDING)
        if order.status != OrderStatus.PENDING:
            # Capacity was already released; the provider must refund.
            logger.warning(
                "Payment succeeded for a closed order. order_id=%s status=%s",
                order.id,
                order.status.value,
            )
            return
        self.order_service.mark_paid(order)

    def _handle_failed(self, order: Order) -> None:
        # Capacity stays reserved so the buyer can retry until the order expires.
        if order.status != OrderStatus.PENDING:
            return
        OrderStateMachine.validate_transition(order.status, OrderStatus.FAILED)
        self.order_repository.update_status(order, OrderStatus.FAILED)
        logger.info("Payment failed. order_id=%s", order.id)

    def _handle_expired(self, order: Order) -> None:
        if order.status not in PAYABLE_STATUSES:
            return
        self.order_service.expire_order(order)
        logger.info("Payment expired. order_id=%s", order.id)

    def _handle_canceled(self, order: Order) -> None:
        if order.status not in PAYABLE_STATUSES:
            return
        self.order_service.cancel_order(order.id)
