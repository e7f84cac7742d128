# app/api/errors.py
from __future__ import annotations

from fastapi import HTTPException, status

from app.core.errors import (
    ConfigurationError,
    DestinationUnavailable,
    DuplicateCommission,
    InvalidDate,
    InvalidSettlementInput,
    InvalidStateTransition,
    ProviderError,
    SdrLimitExceeded,
    SettlementError,
    WorkspaceLocked,
)

# Most specific first: DestinationUnavailable is a ProviderError.
_STATUS_BY_ERROR: list[tuple[type[SettlementError], int]] = [
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DuplicateCommission, status.HTTP_409_CONFLICT),
    (SdrLimitExceeded, status.HTTP_403_FORBIDDEN),
    (WorkspaceLocked, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransition, status.HTTP_400_BAD_REQUEST),
    (InvalidSettlementInput, status.HTTP_400_BAD_REQUEST),
    (InvalidDate, status.HTTP_400_BAD_REQUEST),
    (DestinationUnavailable, status.HTTP_400_BAD_REQUEST),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(exc: SettlementError) -> HTTPException:
    """Translate a domain error into the API's {"error": CODE, ...} shape."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_detail())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_detail())
