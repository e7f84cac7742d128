# app/integrations/payments.py
"""
Payment provider boundary.

Services depend on the ``PaymentProvider`` protocol only. ``StripePaymentProvider``
is the production adapter: Stripe Connect transfers for SDR payouts and
off-session PaymentIntents for agency charges. Stripe SDK errors never leave
this module; they are mapped onto ``app.core.errors.ProviderError`` subclasses.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import stripe

from app.core.config import Settings, settings
from app.core.errors import (
    ChargeDeclined,
    ChargeRequiresAction,
    DestinationUnavailable,
    ProviderError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    id: str
    amount: int
    currency: str
    destination: str


@dataclass(frozen=True)
class AccountStatus:
    account_id: str
    payouts_enabled: bool
    details_submitted: bool

    @property
    def is_active(self) -> bool:
        return self.payouts_enabled and self.details_submitted


@dataclass(frozen=True)
class ChargeResult:
    id: str
    # succeeded | processing | requires_action | requires_payment_method | canceled
    status: str
    amount: int

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def requires_action(self) -> bool:
        return self.status == "requires_action"

    @property
    def pending(self) -> bool:
        """Stripe has not settled the intent yet; a webhook will report the outcome."""
        return self.status in ("processing", "requires_action")


class PaymentProvider(Protocol):
    async def create_transfer(
        self,
        *,
        destination: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[dict[str, str]] = None,
    ) -> TransferResult: ...

    async def get_account_status(self, account_id: str) -> AccountStatus: ...

    async def charge_customer(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[dict[str, str]] = None,
    ) -> ChargeResult: ...

    async def get_payment_intent(self, intent_id: str) -> ChargeResult: ...


@dataclass
class StripePaymentProvider:
    """
    Amounts are integer minor units (cents). Every mutating call carries an
    idempotency key so a retried transfer can never pay twice.
    """

    api_key: str
    timeout_seconds: float = 30.0
    metadata_defaults: dict[str, str] = field(default_factory=dict)

    async def _call(self, fn, **params: Any) -> Any:
        # The SDK is synchronous; keep it off the event loop.
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, api_key=self.api_key, **params),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TransientProviderError("Payment provider timed out") from e

    async def create_transfer(
        self,
        *,
        destination: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[dict[str, str]] = None,
    ) -> TransferResult:
        try:
            transfer = await self._call(
                stripe.Transfer.create,
                amount=amount,
                currency=currency,
                destination=destination,
                description=description or None,
                metadata={**self.metadata_defaults, **(metadata or {})},
                idempotency_key=idempotency_key,
            )
        except stripe.InvalidRequestError as e:
            if (e.param or "") == "destination":
                raise DestinationUnavailable(str(e.user_message or e), provider_code=e.code) from e
            raise ProviderError(str(e.user_message or e), provider_code=e.code) from e
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise TransientProviderError(str(e.user_message or e), provider_code=e.code) from e
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), provider_code=e.code) from e

        logger.info("Stripe transfer %s created: %s %s to %s", transfer.id, amount, currency, destination)
        return TransferResult(id=transfer.id, amount=amount, currency=currency, destination=destination)

    async def get_account_status(self, account_id: str) -> AccountStatus:
        try:
            account = await self._call(stripe.Account.retrieve, id=account_id)
        except (stripe.InvalidRequestError, stripe.PermissionError) as e:
            raise DestinationUnavailable(str(e.user_message or e), provider_code=e.code) from e
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise TransientProviderError(str(e.user_message or e), provider_code=e.code) from e
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), provider_code=e.code) from e

        return AccountStatus(
            account_id=account_id,
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
        )

    async def charge_customer(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[dict[str, str]] = None,
    ) -> ChargeResult:
        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                description=description or None,
                metadata={**self.metadata_defaults, **(metadata or {})},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            if e.code == "authentication_required":
                raise ChargeRequiresAction(str(e.user_message or e), provider_code=e.code) from e
            raise ChargeDeclined(str(e.user_message or e), provider_code=e.code) from e
        except stripe.IdempotencyError as e:
            # Same key reused with different parameters; callers key each attempt uniquely.
            logger.error("Idempotency conflict on key %s: %s", idempotency_key, e)
            raise ProviderError(str(e.user_message or e), provider_code="idempotency_error") from e
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise TransientProviderError(str(e.user_message or e), provider_code=e.code) from e
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), provider_code=e.code) from e

        logger.info("Stripe PaymentIntent %s status=%s amount=%s", intent.id, intent.status, amount)
        return ChargeResult(id=intent.id, status=intent.status, amount=amount)

    async def get_payment_intent(self, intent_id: str) -> ChargeResult:
        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, id=intent_id)
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise TransientProviderError(str(e.user_message or e), provider_code=e.code) from e
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), provider_code=e.code) from e

        return ChargeResult(id=intent["id"], status=intent["status"], amount=int(intent.get("amount") or 0))


def build_payment_provider(s: Settings | None = None) -> Optional[PaymentProvider]:
    """
    None when STRIPE_API_KEY is unset: callers treat that as "not configured"
    and must not touch any record.
    """
    s = s or settings
    if not s.stripe_configured:
        return None
    return StripePaymentProvider(
        api_key=s.STRIPE_API_KEY.strip(),
        timeout_seconds=float(s.STRIPE_TIMEOUT_SECONDS),
        metadata_defaults={"environment": s.ENVIRONMENT},
    )
