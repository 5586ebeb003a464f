import logging

from fastapi import Header, HTTPException, Request, status

from entro.domain.exceptions import (
    ConfigurationError,
    EntroError,
    IdempotencyConflictError,
    InsufficientCapacityError,
    InvalidSignatureError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    PlanLimitExceededError,
    ValidationError,
)
from entro.infrastructure.db.session import SessionLocal

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[EntroError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (InsufficientCapacityError, status.HTTP_409_CONFLICT),
    (IdempotencyConflictError, status.HTTP_409_CONFLICT),
    (PlanLimitExceededError, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidSignatureError, status.HTTP_401_UNAUTHORIZED),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def get_raw_body(request: Request) -> bytes:
    # Signature checks need the exact bytes the provider signed.
    return await request.body()


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # Session handling lives in front of this service; it forwards the user id.
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


def http_error(exc: EntroError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    if status_code >= 500:
        logger.error("Server misconfiguration: %s", exc)
        return HTTPException(status_code=status_code, detail="Server misconfiguration")
    return HTTPException(status_code=status_code, detail=str(exc))
