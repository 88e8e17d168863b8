"""Translate domain exceptions into HTTP errors"""

import logging

from fastapi import HTTPException, status

from crediario_engine.domain.exceptions import (
    ConflictError,
    DomainException,
    GatewayUnavailable,
    InsufficientBalance,
    InsufficientCredit,
    NotFoundError,
    StoreWriteFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_EXCEPTION = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InsufficientBalance, status.HTTP_400_BAD_REQUEST),
    (InsufficientCredit, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (GatewayUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreWriteFailure, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def http_error(exc: DomainException, request_id: str = "unknown") -> HTTPException:
    """Map a domain exception to an HTTPException; unknown kinds become 500"""
    status_code = next(
        (code for kind, code in STATUS_BY_EXCEPTION if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )

    if status_code >= 500:
        logger.error(
            "Domain error occurred",
            extra={"request_id": request_id, "error_type": type(exc).__name__, "detail": str(exc)},
        )
        detail = "Service unavailable" if status_code == 503 else "Internal server error"
        return HTTPException(status_code=status_code, detail=detail)

    logger.info(
        "Client error",
        extra={"request_id": request_id, "error_type": type(exc).__name__, "detail": str(exc)},
    )
    return HTTPException(status_code=status_code, detail=str(exc))
