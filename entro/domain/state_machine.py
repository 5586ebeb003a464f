# entro/domain/state_machine.py

from enum import Enum
from typing import Dict, Set, Type

from entro.domain.exceptions import InvalidStateTransitionError


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    LIVE = "LIVE"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"


class TicketStatus(str, Enum):
    VALID = "VALID"
    USED = "USED"
    REFUNDED = "REFUNDED"


class ScanResult(str, Enum):
    VALID = "VALID"
    ALREADY_USED = "ALREADY_USED"
    INVALID = "INVALID"
    REFUNDED = "REFUNDED"


class StateMachine:
    """
    Central lifecycle controller.
    Subclasses declare the status enum and the legal transitions.
    """

    status_type: Type[Enum]
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]] = {}

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status: Enum) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return set(cls._ALLOWED_TRANSITIONS.get(status, set()))

    @classmethod
    def _ensure_valid_status(cls, status: Enum) -> None:
        if not isinstance(status, cls.status_type):
            raise TypeError(
                f"Expected {cls.status_type.__name__}, got {type(status)}"
            )


class EventStateMachine(StateMachine):
    status_type = EventStatus

    _ALLOWED_TRANSITIONS = {
        EventStatus.DRAFT: {
            EventStatus.LIVE,
            EventStatus.CANCELLED,
        },
        EventStatus.LIVE: {
            EventStatus.ENDED,
            EventStatus.CANCELLED,
        },
        EventStatus.ENDED: set(),
        # A cancelled event can be reactivated as a draft.
        EventStatus.CANCELLED: {
            EventStatus.DRAFT,
        },
    }

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        # Re-applying the current status is a no-op.
        cls._ensure_valid_status(from_status)
        if from_status == to_status:
            return
        super().validate_transition(from_status, to_status)


class OrderStateMachine(StateMachine):
    status_type = OrderStatus

    _ALLOWED_TRANSITIONS = {
        OrderStatus.PENDING: {
            OrderStatus.PAID,
            OrderStatus.CANCELLED,
            OrderStatus.FAILED,
            OrderStatus.EXPIRED,
        },
        OrderStatus.FAILED: {
            OrderStatus.PENDING,
            OrderStatus.CANCELLED,
            OrderStatus.EXPIRED,
        },
        OrderStatus.PAID: {
            OrderStatus.REFUNDED,
        },
        OrderStatus.CANCELLED: set(),
        OrderStatus.EXPIRED: set(),
        OrderStatus.REFUNDED: set(),
    }


class TicketStateMachine(StateMachine):
    status_type = TicketStatus

    _ALLOWED_TRANSITIONS = {
        TicketStatus.VALID: {
            TicketStatus.USED,
            TicketStatus.REFUNDED,
        },
        TicketStatus.USED: set(),
        TicketStatus.REFUNDED: set(),
    }
