# app/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class SettlementError(Exception):
    """Base class for settlement / payout domain errors."""

    code = "SETTLEMENT_ERROR"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class ConfigurationError(SettlementError):
    """Payment provider is not configured at all. Fatal for the whole operation."""

    code = "STRIPE_NOT_CONFIGURED"


class InvalidSettlementInput(SettlementError):
    code = "INVALID_SETTLEMENT_INPUT"


class InvalidDate(SettlementError):
    code = "INVALID_DATE"


class DuplicateCommission(SettlementError):
    code = "DUPLICATE_COMMISSION"


class SdrLimitExceeded(SettlementError):
    code = "SDR_LIMIT_EXCEEDED"


class WorkspaceLocked(SettlementError):
    code = "WORKSPACE_LOCKED"


class InvalidStateTransition(SettlementError):
    code = "INVALID_STATE"


# ---------------------------------------------------------
# Payment provider boundary
# ---------------------------------------------------------
class ProviderError(SettlementError):
    code = "PROVIDER_ERROR"

    def __init__(self, message: str = "", *, provider_code: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.provider_code = provider_code


class TransientProviderError(ProviderError):
    """Network, 5xx or rate-limit failure; safe to retry with the same idempotency key."""

    code = "PROVIDER_TRANSIENT"


class DestinationUnavailable(ProviderError):
    """Payout destination is missing, disabled or rejected by the provider."""

    code = "DESTINATION_UNAVAILABLE"


class ChargeDeclined(ProviderError):
    code = "CARD_DECLINED"


class ChargeRequiresAction(ProviderError):
    code = "REQUIRES_ACTION"
