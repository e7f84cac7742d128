# tests/test_payments_adapter.py
from __future__ import annotations

import time
from types import SimpleNamespace

import pytest
import stripe

from app.core.config import Settings
from app.core.errors import (
    ChargeDeclined,
    ChargeRequiresAction,
    DestinationUnavailable,
    ProviderError,
    TransientProviderError,
)
from app.integrations.payments import StripePaymentProvider, build_payment_provider


@pytest.fixture
def stripe_provider() -> StripePaymentProvider:
    return StripePaymentProvider(api_key="sk_test_123", timeout_seconds=2, metadata_defaults={"environment": "test"})


def raising(exc):
    def _fn(**params):
        raise exc

    return _fn


def test_provider_not_built_without_api_key():
    s = Settings(DATABASE_URL_ASYNC="sqlite+aiosqlite://", DATABASE_URL_SYNC="sqlite://", STRIPE_API_KEY="  ")
    assert build_payment_provider(s) is None

    s = Settings(DATABASE_URL_ASYNC="sqlite+aiosqlite://", DATABASE_URL_SYNC="sqlite://", STRIPE_API_KEY="sk_test_1")
    assert isinstance(build_payment_provider(s), StripePaymentProvider)


@pytest.mark.asyncio
async def test_transfer_passes_idempotency_key_and_metadata(monkeypatch, stripe_provider):
    captured = {}

    def fake_create(**params):
        captured.update(params)
        return SimpleNamespace(id="tr_123")

    monkeypatch.setattr(stripe.Transfer, "create", fake_create)

    result = await stripe_provider.create_transfer(
        destination="acct_1",
        amount=95000,
        currency="usd",
        idempotency_key="commission-payout-abc",
        metadata={"commission_id": "abc"},
    )

    assert result.id == "tr_123"
    assert captured["idempotency_key"] == "commission-payout-abc"
    assert captured["api_key"] == "sk_test_123"
    assert captured["metadata"] == {"environment": "test", "commission_id": "abc"}


@pytest.mark.asyncio
async def test_bad_destination_is_not_retryable(monkeypatch, stripe_provider):
    error = stripe.InvalidRequestError("No such destination", "destination", code="resource_missing")
    monkeypatch.setattr(stripe.Transfer, "create", raising(error))

    with pytest.raises(DestinationUnavailable) as exc:
        await stripe_provider.create_transfer(
            destination="acct_gone", amount=100, currency="usd", idempotency_key="k"
        )
    assert exc.value.provider_code == "resource_missing"


@pytest.mark.asyncio
async def test_connection_errors_are_transient(monkeypatch, stripe_provider):
    monkeypatch.setattr(stripe.Transfer, "create", raising(stripe.APIConnectionError("network down")))

    with pytest.raises(TransientProviderError):
        await stripe_provider.create_transfer(destination="acct_1", amount=100, currency="usd", idempotency_key="k")


@pytest.mark.asyncio
async def test_slow_provider_times_out_as_transient(monkeypatch):
    provider = StripePaymentProvider(api_key="sk_test_123", timeout_seconds=0.05)

    def slow_create(**params):
        time.sleep(0.5)
        return SimpleNamespace(id="tr_late")

    monkeypatch.setattr(stripe.Transfer, "create", slow_create)

    with pytest.raises(TransientProviderError):
        await provider.create_transfer(destination="acct_1", amount=100, currency="usd", idempotency_key="k")


@pytest.mark.asyncio
async def test_account_status(monkeypatch, stripe_provider):
    monkeypatch.setattr(
        stripe.Account,
        "retrieve",
        lambda **params: {"payouts_enabled": True, "details_submitted": False},
    )

    status = await stripe_provider.get_account_status("acct_1")

    assert status.payouts_enabled is True
    assert status.is_active is False


@pytest.mark.asyncio
async def test_card_errors_map_to_decline_or_authentication(monkeypatch, stripe_provider):
    kwargs = dict(
        customer_id="cus_1", payment_method_id="pm_1", amount=120000, currency="usd", idempotency_key="k"
    )

    monkeypatch.setattr(
        stripe.PaymentIntent, "create", raising(stripe.CardError("Declined", None, "card_declined"))
    )
    with pytest.raises(ChargeDeclined):
        await stripe_provider.charge_customer(**kwargs)

    monkeypatch.setattr(
        stripe.PaymentIntent,
        "create",
        raising(stripe.CardError("Authenticate", None, "authentication_required")),
    )
    with pytest.raises(ChargeRequiresAction):
        await stripe_provider.charge_customer(**kwargs)

    monkeypatch.setattr(
        stripe.PaymentIntent, "create", raising(stripe.AuthenticationError("Invalid API key"))
    )
    with pytest.raises(ProviderError):
        await stripe_provider.charge_customer(**kwargs)


@pytest.mark.asyncio
async def test_successful_charge(monkeypatch, stripe_provider):
    monkeypatch.setattr(
        stripe.PaymentIntent, "create", lambda **params: SimpleNamespace(id="pi_1", status="succeeded")
    )

    result = await stripe_provider.charge_customer(
        customer_id="cus_1", payment_method_id="pm_1", amount=120000, currency="usd", idempotency_key="k"
    )

    assert result.succeeded is True
    assert result.amount == 120000


@pytest.mark.asyncio
async def test_reused_charge_key_with_new_parameters_is_a_provider_error(monkeypatch, stripe_provider):
    monkeypatch.setattr(
        stripe.PaymentIntent, "create", raising(stripe.IdempotencyError("Keys for idempotent requests..."))
    )

    with pytest.raises(ProviderError) as exc:
        await stripe_provider.charge_customer(
            customer_id="cus_1", payment_method_id="pm_2", amount=120000, currency="usd", idempotency_key="k"
        )
    assert exc.value.provider_code == "idempotency_error"


@pytest.mark.asyncio
async def test_existing_payment_intent_is_retrieved(monkeypatch, stripe_provider):
    captured = {}

    def fake_retrieve(**params):
        captured.update(params)
        return {"id": "pi_1", "status": "processing", "amount": 120000}

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)

    result = await stripe_provider.get_payment_intent("pi_1")

    assert captured["id"] == "pi_1"
    assert result.pending is True
    assert result.amount == 120000
