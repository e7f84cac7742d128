# tests/test_charges.py
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import (
    ConfigurationError,
    InvalidSettlementInput,
    InvalidStateTransition,
    SdrLimitExceeded,
    WorkspaceLocked,
)
from app.models.notification import Notification
from app.models.salary_payment import SalaryPayment
from app.models.workspace_membership import WorkspaceMembership
from app.services.charges import charge_commission, charge_salary_payment, hire_salaried_sdr
from app.services.commissions import create_commission_for_deal

from factories import (
    add_membership,
    create_deal,
    create_job,
    create_sdr,
    create_user,
    create_workspace,
    utcnow,
)


async def types_for(db, user_id) -> list[str]:
    rows = await db.execute(select(Notification.type).where(Notification.user_id == user_id))
    return sorted(rows.scalars().all())


async def salary_job_setup(db, *, tier="omega", with_payment_method=True, salary=Decimal("4000.00")):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner, tier=tier, with_payment_method=with_payment_method)
    job = await create_job(db, workspace, employment_type="salary", salary_amount=salary)
    sdr = await create_sdr(db, "hire@closer.test")
    return owner, workspace, job, sdr


async def pending_commission(db, *, with_payment_method=True, self_closed=False, is_locked=False):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner, with_payment_method=with_payment_method, is_locked=is_locked)
    sdr = await create_sdr(db, "sdr@closer.test")
    job = await create_job(db, workspace, commission_percentage=Decimal("10"))
    deal = await create_deal(
        db, workspace, assigned_to=owner if self_closed else sdr, job=job, stage="closed_won"
    )
    commission = await create_commission_for_deal(db, deal, workspace)
    return owner, workspace, sdr, commission


# ---------------------------------------------------------
# Salary hires
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_hire_charges_agency_and_schedules_payout(db, provider, dispatcher):
    owner, workspace, job, sdr = await salary_job_setup(db)
    hired_at = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

    result = await hire_salaried_sdr(db, job, sdr, provider, dispatcher, hired_at=hired_at)

    payment = result.salary_payment
    assert result.charge.charged is True
    assert payment.agency_charge_status == "paid"
    assert payment.agency_charged_at is not None
    assert payment.stripe_payment_intent_id == result.charge.payment_intent_id
    assert payment.sdr_payout_status == "scheduled"
    assert payment.sdr_payout_date == date(2025, 4, 15)
    assert payment.sdr_payout_amount == Decimal("4000.00")

    (call,) = provider.charge_calls
    assert call["amount"] == 400000
    assert call["idempotency_key"] == f"salary-charge-{payment.id}-0-pm_test"
    assert call["customer_id"] == "cus_test"
    assert call["metadata"]["type"] == "salary_charge"

    membership = (
        await db.execute(
            select(WorkspaceMembership).where(
                WorkspaceMembership.workspace_id == workspace.id,
                WorkspaceMembership.user_id == sdr.id,
            )
        )
    ).scalar_one()
    assert membership.role == "SDR"
    assert membership.is_active is True

    assert await types_for(db, sdr.id) == ["salary_secured"]
    assert await types_for(db, owner.id) == ["salary_charged"]


@pytest.mark.asyncio
async def test_hire_on_month_end_rolls_to_last_day(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db)

    result = await hire_salaried_sdr(
        db, job, sdr, provider, hired_at=datetime(2025, 1, 31, tzinfo=timezone.utc)
    )

    assert result.salary_payment.sdr_payout_date == date(2025, 2, 28)


@pytest.mark.asyncio
async def test_hire_blocked_by_tier_seat_limit(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db, tier="omega")
    existing = await create_sdr(db, "first@closer.test")
    await add_membership(db, workspace, existing, role="SDR")

    with pytest.raises(SdrLimitExceeded) as exc:
        await hire_salaried_sdr(db, job, sdr, provider)

    assert exc.value.to_detail() == {
        "error": "SDR_LIMIT_EXCEEDED",
        "message": "Your omega plan allows 1 SDR(s). Upgrade to hire more.",
        "tier": "omega",
        "limit": 1,
        "active_sdrs": 1,
        "next_tier": "beta",
    }
    assert provider.charge_calls == []
    count = (await db.execute(select(func.count(SalaryPayment.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
async def test_inactive_sdr_seat_does_not_count(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db, tier="omega")
    former = await create_sdr(db, "former@closer.test")
    await add_membership(db, workspace, former, role="SDR", is_active=False)

    result = await hire_salaried_sdr(db, job, sdr, provider)

    assert result.charge.charged is True


@pytest.mark.asyncio
async def test_rehiring_a_seated_sdr_is_not_blocked(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db, tier="omega")
    await add_membership(db, workspace, sdr, role="SDR")

    result = await hire_salaried_sdr(db, job, sdr, provider)

    assert result.salary_payment.sdr_id == sdr.id


@pytest.mark.asyncio
async def test_locked_workspace_cannot_hire(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db)
    workspace.is_locked = True
    await db.flush()

    with pytest.raises(WorkspaceLocked):
        await hire_salaried_sdr(db, job, sdr, provider)


@pytest.mark.asyncio
async def test_commission_job_is_not_a_salary_hire(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db)
    job.employment_type = "commission"
    await db.flush()

    with pytest.raises(InvalidSettlementInput):
        await hire_salaried_sdr(db, job, sdr, provider)


@pytest.mark.asyncio
async def test_hire_without_payment_method_waits_for_one(db, provider, dispatcher):
    owner, workspace, job, sdr = await salary_job_setup(db, with_payment_method=False)

    result = await hire_salaried_sdr(db, job, sdr, provider, dispatcher)

    assert result.charge.status == "no_payment_method"
    assert result.salary_payment.agency_charge_status == "pending"
    assert provider.charge_calls == []
    assert await types_for(db, owner.id) == ["salary_payment_pending"]


@pytest.mark.asyncio
async def test_hire_without_stripe_records_payment_only(db, dispatcher):
    owner, workspace, job, sdr = await salary_job_setup(db)

    result = await hire_salaried_sdr(db, job, sdr, None, dispatcher)

    assert result.charge.status == "not_configured"
    assert result.salary_payment.agency_charge_status == "pending"
    assert result.salary_payment.sdr_payout_status == "scheduled"


@pytest.mark.asyncio
async def test_declined_salary_charge_marks_payment_failed(db, provider, dispatcher):
    owner, workspace, job, sdr = await salary_job_setup(db)
    provider.decline_charges()

    result = await hire_salaried_sdr(db, job, sdr, provider, dispatcher)

    assert result.charge.status == "declined"
    assert result.salary_payment.agency_charge_status == "failed"
    assert await types_for(db, owner.id) == ["salary_charge_failed"]
    assert await types_for(db, sdr.id) == []


@pytest.mark.asyncio
async def test_salary_charge_needing_authentication_stays_pending(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db)
    provider.charge_status = "requires_action"

    result = await hire_salaried_sdr(db, job, sdr, provider)

    assert result.charge.status == "requires_action"
    assert result.charge.payment_intent_id is not None
    assert result.salary_payment.agency_charge_status == "pending"


# ---------------------------------------------------------
# Commission charges
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_charging_commission_schedules_sdr_payout(db, provider, dispatcher):
    owner, workspace, sdr, commission = await pending_commission(db)

    outcome = await charge_commission(db, commission, provider, dispatcher)

    assert outcome.charged is True
    (call,) = provider.charge_calls
    assert call["amount"] == 120000
    assert call["idempotency_key"] == f"commission-charge-{commission.id}-0-pm_test"
    assert call["metadata"]["type"] == "commission_charge"

    await db.refresh(commission)
    assert commission.status == "paid"
    assert commission.paid_at is not None
    assert commission.stripe_payment_intent_id == outcome.payment_intent_id
    assert commission.sdr_payout_status == "scheduled"
    assert commission.sdr_payout_date == utcnow().date()

    assert await types_for(db, sdr.id) == ["commission_paid"]


@pytest.mark.asyncio
async def test_paying_last_open_commission_unlocks_workspace(db, provider):
    owner, workspace, sdr, commission = await pending_commission(db, is_locked=True)
    commission.status = "overdue"
    await db.commit()

    await charge_commission(db, commission, provider)

    await db.refresh(workspace)
    assert workspace.is_locked is False


@pytest.mark.asyncio
async def test_self_closed_commission_has_no_sdr_payout(db, provider, dispatcher):
    owner, workspace, sdr, commission = await pending_commission(db, self_closed=True)

    outcome = await charge_commission(db, commission, provider, dispatcher)

    assert outcome.charged is True
    assert provider.charge_calls[0]["amount"] == 20000
    await db.refresh(commission)
    assert commission.status == "paid"
    assert commission.sdr_payout_status is None
    assert await types_for(db, owner.id) == []


@pytest.mark.asyncio
async def test_paid_commission_cannot_be_charged_twice(db, provider):
    owner, workspace, sdr, commission = await pending_commission(db)
    await charge_commission(db, commission, provider)

    with pytest.raises(InvalidStateTransition):
        await charge_commission(db, commission, provider)

    assert len(provider.charge_calls) == 1


@pytest.mark.asyncio
async def test_charging_without_stripe_is_a_configuration_error(db):
    owner, workspace, sdr, commission = await pending_commission(db)

    with pytest.raises(ConfigurationError) as exc:
        await charge_commission(db, commission, None)

    assert exc.value.code == "STRIPE_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_commission_without_payment_method(db, provider):
    owner, workspace, sdr, commission = await pending_commission(db, with_payment_method=False)

    outcome = await charge_commission(db, commission, provider)

    assert outcome.status == "no_payment_method"
    assert provider.charge_calls == []


@pytest.mark.asyncio
async def test_declined_commission_charge_notifies_owner(db, provider, dispatcher):
    owner, workspace, sdr, commission = await pending_commission(db)
    provider.decline_charges()

    outcome = await charge_commission(db, commission, provider, dispatcher)

    assert outcome.status == "declined"
    await db.refresh(commission)
    assert commission.status == "pending"
    assert "payment_failed" in await types_for(db, owner.id)


@pytest.mark.asyncio
async def test_commission_charge_requiring_authentication(db, provider, dispatcher):
    owner, workspace, sdr, commission = await pending_commission(db)
    provider.require_authentication()

    outcome = await charge_commission(db, commission, provider, dispatcher)

    assert outcome.status == "requires_action"
    await db.refresh(commission)
    assert commission.status == "pending"
    assert "payment_action_required" in await types_for(db, owner.id)


# ---------------------------------------------------------
# Asynchronous settlement and retries
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_processing_commission_charge_stores_intent_and_is_not_recharged(db, provider):
    owner, workspace, sdr, commission = await pending_commission(db)
    provider.charge_status = "processing"

    first = await charge_commission(db, commission, provider)
    second = await charge_commission(db, commission, provider)

    assert first.status == "processing"
    await db.refresh(commission)
    assert commission.status == "pending"
    assert commission.stripe_payment_intent_id == first.payment_intent_id

    assert second.status == "processing"
    assert second.payment_intent_id == first.payment_intent_id
    assert len(provider.charge_calls) == 1
    assert provider.intent_lookups == [first.payment_intent_id]


@pytest.mark.asyncio
async def test_intent_that_settled_meanwhile_pays_commission_without_new_charge(db, provider, dispatcher):
    owner, workspace, sdr, commission = await pending_commission(db)
    provider.charge_status = "processing"
    first = await charge_commission(db, commission, provider)

    provider.settle_intent(first.payment_intent_id, "succeeded")
    outcome = await charge_commission(db, commission, provider, dispatcher)

    assert outcome.charged is True
    assert outcome.payment_intent_id == first.payment_intent_id
    assert len(provider.charge_calls) == 1
    await db.refresh(commission)
    assert commission.status == "paid"
    assert await types_for(db, sdr.id) == ["commission_paid"]


@pytest.mark.asyncio
async def test_failed_intent_starts_a_new_charge_attempt(db, provider):
    owner, workspace, sdr, commission = await pending_commission(db)
    provider.charge_status = "processing"
    first = await charge_commission(db, commission, provider)

    provider.settle_intent(first.payment_intent_id, "requires_payment_method")
    provider.charge_status = "succeeded"
    outcome = await charge_commission(db, commission, provider)

    assert outcome.charged is True
    assert outcome.payment_intent_id != first.payment_intent_id
    keys = [c["idempotency_key"] for c in provider.charge_calls]
    assert keys == [
        f"commission-charge-{commission.id}-0-pm_test",
        f"commission-charge-{commission.id}-1-pm_test",
    ]


@pytest.mark.asyncio
async def test_commission_can_be_retried_after_a_decline(db, provider, dispatcher):
    owner, workspace, sdr, commission = await pending_commission(db)
    provider.decline_charges()
    declined = await charge_commission(db, commission, provider, dispatcher)

    provider.charge_error = None
    outcome = await charge_commission(db, commission, provider, dispatcher)

    assert declined.status == "declined"
    assert outcome.charged is True
    await db.refresh(commission)
    assert commission.status == "paid"
    assert commission.charge_attempts == 1
    first_key, second_key = (c["idempotency_key"] for c in provider.charge_calls)
    assert first_key != second_key


@pytest.mark.asyncio
async def test_declined_salary_charged_again_with_new_payment_method(db, provider, dispatcher):
    owner, workspace, job, sdr = await salary_job_setup(db)
    provider.decline_charges()
    hired = await hire_salaried_sdr(db, job, sdr, provider, dispatcher)
    payment = hired.salary_payment
    assert payment.agency_charge_status == "failed"

    workspace.stripe_default_payment_method = "pm_replacement"
    await db.commit()
    provider.charge_error = None

    outcome = await charge_salary_payment(db, payment, provider, dispatcher)

    assert outcome.charged is True
    await db.refresh(payment)
    assert payment.agency_charge_status == "paid"
    assert payment.stripe_payment_intent_id == outcome.payment_intent_id
    last = provider.charge_calls[-1]
    assert last["payment_method_id"] == "pm_replacement"
    assert last["idempotency_key"] == f"salary-charge-{payment.id}-1-pm_replacement"
    assert await types_for(db, owner.id) == ["salary_charge_failed", "salary_charged"]
    assert await types_for(db, sdr.id) == ["salary_secured"]


@pytest.mark.asyncio
async def test_processing_salary_charge_keeps_intent(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db)
    provider.charge_status = "processing"

    result = await hire_salaried_sdr(db, job, sdr, provider)

    assert result.charge.status == "processing"
    await db.refresh(result.salary_payment)
    assert result.salary_payment.agency_charge_status == "pending"
    assert result.salary_payment.stripe_payment_intent_id == result.charge.payment_intent_id


@pytest.mark.asyncio
async def test_charged_salary_cannot_be_charged_again(db, provider):
    owner, workspace, job, sdr = await salary_job_setup(db)
    result = await hire_salaried_sdr(db, job, sdr, provider)

    with pytest.raises(InvalidStateTransition):
        await charge_salary_payment(db, result.salary_payment, provider)

    assert len(provider.charge_calls) == 1
