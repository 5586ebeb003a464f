class EntroError(Exception):
    """
    Base exception for all domain-level errors
    inside the Entro ticketing platform.
    """


class NotFoundError(EntroError):
    """Raised when an entity does not exist or is outside the caller's tenant."""


class ValidationError(EntroError):
    """Raised when input violates a business rule."""


class PermissionDeniedError(EntroError):
    """Raised when the caller lacks the role required for an operation."""


class InvalidStateTransitionError(EntroError):
    """
    Raised when an illegal lifecycle transition is attempted
    on an event, order or ticket.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InsufficientCapacityError(EntroError):
    """Raised when a ticket type has fewer tickets left than requested."""

    def __init__(self, ticket_type_name: str, available: int):
        self.ticket_type_name = ticket_type_name
        self.available = available
        super().__init__(
            f'Not enough "{ticket_type_name}" tickets available ({available} left)'
        )


class PlanLimitExceededError(EntroError):
    """Raised when an organization hits a hard limit of its pricing plan."""


class IdempotencyConflictError(EntroError):
    """Raised when an idempotent request conflicts with previous data."""


class InvalidSignatureError(EntroError):
    """Raised when a webhook or QR signature does not verify."""


class ConfigurationError(EntroError):
    """Raised when required runtime configuration is missing."""
