# app/services/charges.py
"""
Agency-side charges: the salary charged when an SDR is hired into a salary
position, and the commission (SDR gross + agency rake) owed after a close.
Money collected here is what the payout batch later transfers to SDRs.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PayoutConfig
from app.core.errors import (
    ChargeDeclined,
    ChargeRequiresAction,
    ConfigurationError,
    InvalidSettlementInput,
    InvalidStateTransition,
    ProviderError,
    SdrLimitExceeded,
    WorkspaceLocked,
)
from app.core.payout_schedule import compute_payout_date
from app.core.roles import WorkspaceRole
from app.core.settlement import quantize_money, to_minor_units
from app.core.statuses import AgencyChargeStatus, CommissionStatus, EmploymentType, PayoutStatus
from app.core.tiers import get_next_tier, get_sdr_limit_for_tier, resolve_tier
from app.crud.workspace_membership import count_active_sdr_memberships_excluding_user, get_membership
from app.integrations.payments import ChargeResult, PaymentProvider
from app.models.commission import Commission
from app.models.deal import Deal
from app.models.job import Job
from app.models.salary_payment import SalaryPayment
from app.models.user import User
from app.models.workspace import Workspace
from app.models.workspace_membership import WorkspaceMembership
from app.services.notifications import NotificationDispatcher, NotificationRequest

logger = logging.getLogger(__name__)

CHARGE_PAID = "paid"
CHARGE_REQUIRES_ACTION = "requires_action"
CHARGE_DECLINED = "declined"
CHARGE_NO_PAYMENT_METHOD = "no_payment_method"
CHARGE_NOT_CONFIGURED = "not_configured"
CHARGE_PROCESSING = "processing"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChargeOutcome:
    status: str
    payment_intent_id: Optional[str] = None
    message: str = ""

    @property
    def charged(self) -> bool:
        return self.status == CHARGE_PAID


@dataclass
class HireResult:
    salary_payment: SalaryPayment
    charge: ChargeOutcome


async def _notify(dispatcher: Optional[NotificationDispatcher], *requests: NotificationRequest) -> None:
    if dispatcher is not None:
        await dispatcher.send_many(requests)


def _has_payment_method(workspace: Workspace) -> bool:
    return bool(workspace.stripe_customer_id and workspace.stripe_default_payment_method)


async def _attempt_charge(
    provider: PaymentProvider,
    workspace: Workspace,
    *,
    amount: Decimal,
    currency: str,
    idempotency_key: str,
    description: str,
    metadata: dict[str, str],
) -> tuple[Optional[ChargeResult], Optional[ProviderError]]:
    """Returns (result, None) on a PaymentIntent, (None, error) on decline/auth failures."""
    try:
        result = await provider.charge_customer(
            customer_id=workspace.stripe_customer_id,
            payment_method_id=workspace.stripe_default_payment_method,
            amount=to_minor_units(amount),
            currency=currency,
            idempotency_key=idempotency_key,
            description=description,
            metadata=metadata,
        )
    except (ChargeDeclined, ChargeRequiresAction) as e:
        return None, e
    return result, None


def charge_idempotency_key(kind: str, record: Commission | SalaryPayment, payment_method_id: str) -> str:
    """
    Stable for one attempt against one payment method. A retry after a decline
    (new attempt) or after the agency saves another card gets a fresh key, so
    Stripe neither replays the old decline nor rejects the changed parameters.
    """
    return f"{kind}-charge-{record.id}-{record.charge_attempts or 0}-{payment_method_id}"


async def _charge_record(
    db: AsyncSession,
    provider: PaymentProvider,
    workspace: Workspace,
    record: Commission | SalaryPayment,
    *,
    kind: str,
    amount: Decimal,
    currency: str,
    description: str,
    metadata: dict[str, str],
) -> tuple[Optional[ChargeResult], Optional[ProviderError]]:
    """
    One charge attempt for a commission or salary payment.

    A PaymentIntent already on the record that Stripe has settled or is still
    settling is returned instead of charging again. Every new intent id is
    stored before returning; declines and dead intents bump ``charge_attempts``.
    """
    if record.stripe_payment_intent_id:
        existing = await provider.get_payment_intent(record.stripe_payment_intent_id)
        if existing.succeeded or existing.pending:
            logger.info(
                "%s %s already has PaymentIntent %s (%s); not charging again",
                kind,
                record.id,
                existing.id,
                existing.status,
            )
            return existing, None
        logger.info("%s %s PaymentIntent %s ended as %s; starting a new attempt", kind, record.id, existing.id, existing.status)
        record.stripe_payment_intent_id = None
        record.charge_attempts = (record.charge_attempts or 0) + 1

    result, error = await _attempt_charge(
        provider,
        workspace,
        amount=amount,
        currency=currency,
        idempotency_key=charge_idempotency_key(kind, record, workspace.stripe_default_payment_method),
        description=description,
        metadata=metadata,
    )

    if result is not None:
        record.stripe_payment_intent_id = result.id
    else:
        record.charge_attempts = (record.charge_attempts or 0) + 1
    await db.commit()
    return result, error


# ---------------------------------------------------------
# Salary hires
# ---------------------------------------------------------
async def _ensure_sdr_seat(db: AsyncSession, workspace: Workspace, sdr: User) -> WorkspaceMembership:
    membership = await get_membership(db, workspace.id, sdr.id)
    if membership is not None and membership.is_active and membership.role == WorkspaceRole.SDR.value:
        return membership

    limit = get_sdr_limit_for_tier(workspace.subscription_tier)
    active = await count_active_sdr_memberships_excluding_user(db, workspace.id, sdr.id)
    if active >= limit:
        tier = resolve_tier(workspace.subscription_tier).value
        raise SdrLimitExceeded(
            f"Your {tier} plan allows {limit} SDR(s). Upgrade to hire more.",
            tier=tier,
            limit=limit,
            active_sdrs=active,
            next_tier=get_next_tier(tier),
        )

    if membership is None:
        membership = WorkspaceMembership(
            workspace_id=workspace.id,
            user_id=sdr.id,
            role=WorkspaceRole.SDR.value,
            is_active=True,
        )
        db.add(membership)
    else:
        membership.role = WorkspaceRole.SDR.value
        membership.is_active = True
    return membership



async def hire_salaried_sdr(
    db: AsyncSession,
    job: Job,
    sdr: User,
    provider: Optional[PaymentProvider],
    dispatcher: Optional[NotificationDispatcher] = None,
    hired_at: Optional[datetime] = None,
    *,
    config: Optional[PayoutConfig] = None,
) -> HireResult:
    config = config or PayoutConfig()
    hired_at = hired_at or _utcnow()

    if job.employment_type != EmploymentType.SALARY.value:
        raise InvalidSettlementInput("Job is not a salary position", job_id=str(job.id))
    if job.salary_amount is None or Decimal(job.salary_amount) <= 0:
        raise InvalidSettlementInput("Job has no valid salary amount", job_id=str(job.id))

    workspace = await db.get(Workspace, job.workspace_id)
    if workspace is None:
        raise InvalidSettlementInput("Job has no workspace", job_id=str(job.id))
    if workspace.is_locked:
        raise WorkspaceLocked("Workspace is locked until overdue commissions are paid", workspace_id=str(workspace.id))

    await _ensure_sdr_seat(db, workspace, sdr)

    salary = quantize_money(Decimal(job.salary_amount))
    payment = SalaryPayment(
        workspace_id=workspace.id,
        sdr_id=sdr.id,
        job_id=job.id,
        salary_amount=salary,
        sdr_payout_amount=salary,
        sdr_payout_date=compute_payout_date(hired_at),
        sdr_payout_status=PayoutStatus.SCHEDULED.value,
        agency_charge_status=AgencyChargeStatus.PENDING.value,
        hired_at=hired_at,
        retry_count=0,
        charge_attempts=0,
    )
    db.add(payment)
    await db.commit()

    logger.info(
        "Salary payment %s created: SDR %s hired into job %s for %s, payout on %s",
        payment.id,
        sdr.id,
        job.id,
        salary,
        payment.sdr_payout_date,
    )

    if provider is None:
        logger.warning("Stripe not configured; salary payment %s created but not charged", payment.id)
        return HireResult(payment, ChargeOutcome(CHARGE_NOT_CONFIGURED, message="Stripe not configured for charging"))

    outcome = await charge_salary_payment(db, payment, provider, dispatcher, config=config)
    return HireResult(payment, outcome)


async def mark_salary_paid(
    db: AsyncSession,
    payment: SalaryPayment,
    *,
    payment_intent_id: Optional[str],
    dispatcher: Optional[NotificationDispatcher] = None,
) -> None:
    """Agency charge collected: the scheduled SDR payout may now be transferred."""
    payment.agency_charge_status = AgencyChargeStatus.PAID.value
    payment.agency_charged_at = _utcnow()
    payment.stripe_payment_intent_id = payment_intent_id
    await db.commit()
    logger.info("Salary payment %s charged (%s)", payment.id, payment_intent_id)

    workspace = await db.get(Workspace, payment.workspace_id)
    salary = quantize_money(Decimal(payment.salary_amount))
    await _notify(
        dispatcher,
        NotificationRequest(
            user_id=payment.sdr_id,
            workspace_id=payment.workspace_id,
            type="salary_secured",
            title="Salary Secured!",
            message=(
                f"Your salary of ${salary:,.2f} has been secured. "
                f"Payout scheduled for {payment.sdr_payout_date.isoformat()}."
            ),
            data={"salary_payment_id": payment.id, "amount": salary, "payout_date": payment.sdr_payout_date},
        ),
        NotificationRequest(
            user_id=workspace.owner_id,
            workspace_id=payment.workspace_id,
            type="salary_charged",
            title="Salary Payment Processed",
            message=f"Salary payment of ${salary:,.2f} for new SDR hire was charged successfully.",
            data={"salary_payment_id": payment.id, "amount": salary, "job_id": payment.job_id},
        ),
    )


async def mark_salary_charge_failed(
    db: AsyncSession,
    payment: SalaryPayment,
    reason: str,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> None:
    payment.agency_charge_status = AgencyChargeStatus.FAILED.value
    await db.commit()
    logger.warning("Salary payment %s charge failed: %s", payment.id, reason)

    workspace = await db.get(Workspace, payment.workspace_id)
    salary = quantize_money(Decimal(payment.salary_amount))
    await _notify(
        dispatcher,
        NotificationRequest(
            user_id=workspace.owner_id,
            workspace_id=payment.workspace_id,
            type="salary_charge_failed",
            title="Salary Payment Failed",
            message=f"Failed to charge salary payment of ${salary:,.2f}. Please update your payment method.",
            data={"salary_payment_id": payment.id, "amount": salary, "error": reason},
        ),
    )


async def charge_salary_payment(
    db: AsyncSession,
    payment: SalaryPayment,
    provider: Optional[PaymentProvider],
    dispatcher: Optional[NotificationDispatcher] = None,
    *,
    config: Optional[PayoutConfig] = None,
) -> ChargeOutcome:
    """
    Charge (or re-charge) the agency for a salary hire. Used right after the
    hire and again by the agency once a failed charge has a new card behind it.
    """
    config = config or PayoutConfig()

    if payment.agency_charge_status == AgencyChargeStatus.PAID.value:
        raise InvalidStateTransition("Salary payment is already charged", salary_payment_id=str(payment.id))
    if provider is None:
        raise ConfigurationError("Stripe is not configured. Add STRIPE_API_KEY to enable payments.")

    workspace = await db.get(Workspace, payment.workspace_id)
    if workspace is None:
        raise InvalidSettlementInput("Salary payment has no workspace", salary_payment_id=str(payment.id))

    salary = quantize_money(Decimal(payment.salary_amount))
    if not _has_payment_method(workspace):
        await _notify(
            dispatcher,
            NotificationRequest(
                user_id=workspace.owner_id,
                workspace_id=workspace.id,
                type="salary_payment_pending",
                title="Salary Payment Required",
                message=f"Please add a payment method to complete the salary payment of ${salary:,.2f} for your new SDR hire.",
                data={"salary_payment_id": payment.id, "amount": salary, "job_id": payment.job_id},
            ),
        )
        return ChargeOutcome(CHARGE_NO_PAYMENT_METHOD, message="Payment method required")

    job = await db.get(Job, payment.job_id)
    try:
        result, error = await _charge_record(
            db,
            provider,
            workspace,
            payment,
            kind="salary",
            amount=salary,
            currency=config.currency,
            description=f"Salary payment for SDR - {job.title if job is not None else 'Salary position'}",
            metadata={
                "salary_payment_id": str(payment.id),
                "job_id": str(payment.job_id),
                "workspace_id": str(workspace.id),
                "sdr_id": str(payment.sdr_id),
                "type": "salary_charge",
            },
        )
    except ProviderError as e:
        error, result = e, None

    if result is not None and result.succeeded:
        await mark_salary_paid(db, payment, payment_intent_id=result.id, dispatcher=dispatcher)
        return ChargeOutcome(CHARGE_PAID, payment_intent_id=result.id)

    if (result is not None and result.pending) or isinstance(error, ChargeRequiresAction):
        # requires_action / processing: settled later by the payment webhook
        payment.agency_charge_status = AgencyChargeStatus.PENDING.value
        await db.commit()
        intent_id = result.id if result is not None else None
        if result is not None and not result.requires_action:
            status, message = CHARGE_PROCESSING, "Payment is processing."
        else:
            status, message = CHARGE_REQUIRES_ACTION, "Payment requires additional authentication."
        logger.info("Salary payment %s charge pending: %s", payment.id, status)
        return ChargeOutcome(status, payment_intent_id=intent_id, message=message)

    reason = error.message if error is not None else f"Payment {result.status}"
    await mark_salary_charge_failed(db, payment, reason, dispatcher)
    return ChargeOutcome(CHARGE_DECLINED, message=reason)


# ---------------------------------------------------------
# Commissions
# ---------------------------------------------------------
async def count_open_commissions(db: AsyncSession, workspace_id: uuid.UUID) -> int:
    stmt = (
        select(func.count(Commission.id))
        .where(Commission.workspace_id == workspace_id)
        .where(Commission.status.in_([CommissionStatus.PENDING.value, CommissionStatus.OVERDUE.value]))
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def mark_commission_paid(
    db: AsyncSession,
    commission: Commission,
    *,
    payment_intent_id: Optional[str],
    paid_on: Optional[date] = None,
) -> None:
    """
    Agency payment received: the SDR's net payout becomes due on ``paid_on``.
    Self-closed commissions have no SDR payout.
    """
    now = _utcnow()
    commission.status = CommissionStatus.PAID.value
    commission.paid_at = now
    commission.stripe_payment_intent_id = payment_intent_id
    if not commission.is_agency_self_closed and commission.sdr_id is not None:
        commission.sdr_payout_status = PayoutStatus.SCHEDULED.value
        commission.sdr_payout_date = paid_on or now.date()
    await db.flush()

    workspace = await db.get(Workspace, commission.workspace_id)
    if workspace is not None and workspace.is_locked:
        if await count_open_commissions(db, workspace.id) == 0:
            workspace.is_locked = False
            logger.info("Workspace %s unlocked: no pending or overdue commissions remain", workspace.id)

    await db.commit()


async def _deal_title(db: AsyncSession, commission: Commission) -> str:
    deal = await db.get(Deal, commission.deal_id)
    return deal.title if deal is not None else "Deal"


async def settle_commission_payment(
    db: AsyncSession,
    commission: Commission,
    *,
    payment_intent_id: Optional[str],
    dispatcher: Optional[NotificationDispatcher] = None,
) -> None:
    """Mark the commission paid and tell the SDR their payout is on its way."""
    await mark_commission_paid(db, commission, payment_intent_id=payment_intent_id)
    logger.info("Commission %s paid (%s)", commission.id, payment_intent_id)

    if commission.sdr_id is None or commission.is_agency_self_closed:
        return
    deal_title = await _deal_title(db, commission)
    payout = quantize_money(Decimal(commission.sdr_payout_amount or commission.amount))
    await _notify(
        dispatcher,
        NotificationRequest(
            user_id=commission.sdr_id,
            workspace_id=commission.workspace_id,
            type="commission_paid",
            title="Commission Paid!",
            message=f'Your commission of ${payout:,.2f} for "{deal_title}" has been paid.',
            data={"commission_id": commission.id, "amount": payout, "deal_title": deal_title},
        ),
    )


async def notify_commission_charge_failed(
    commission: Commission,
    owner_id: uuid.UUID,
    reason: str,
    dispatcher: Optional[NotificationDispatcher] = None,
    *,
    auto_charge: bool = False,
) -> None:
    total = quantize_money(commission.total_agency_owed)
    logger.warning("Commission %s charge failed: %s", commission.id, reason)
    await _notify(
        dispatcher,
        NotificationRequest(
            user_id=owner_id,
            workspace_id=commission.workspace_id,
            type="payment_failed",
            title="Payment Failed",
            message=(
                f"{'Automatic c' if auto_charge else 'C'}ommission payment of ${total:,.2f} was declined. "
                "Please update your payment method or pay manually."
            ),
            data={"commission_id": commission.id, "amount": total, "error": reason},
        ),
    )


async def charge_commission(
    db: AsyncSession,
    commission: Commission,
    provider: Optional[PaymentProvider],
    dispatcher: Optional[NotificationDispatcher] = None,
    *,
    config: Optional[PayoutConfig] = None,
    auto_charge: bool = False,
) -> ChargeOutcome:
    """
    Charge the agency's saved payment method for SDR gross + agency rake.
    Transient provider errors propagate; declines and authentication
    requirements are reported on the outcome. A charge Stripe is still
    processing is settled by the payment webhook.
    """
    config = config or PayoutConfig()

    if commission.status == CommissionStatus.PAID.value:
        raise InvalidStateTransition("Commission is already paid", commission_id=str(commission.id))
    if provider is None:
        raise ConfigurationError("Stripe is not configured. Add STRIPE_API_KEY to enable payments.")

    workspace = await db.get(Workspace, commission.workspace_id)
    if workspace is None:
        raise InvalidSettlementInput("Commission has no workspace", commission_id=str(commission.id))
    if not _has_payment_method(workspace):
        return ChargeOutcome(CHARGE_NO_PAYMENT_METHOD, message="Add a payment method to pay this commission.")

    total = quantize_money(commission.total_agency_owed)
    deal_title = await _deal_title(db, commission)

    result, error = await _charge_record(
        db,
        provider,
        workspace,
        commission,
        kind="commission",
        amount=total,
        currency=config.currency,
        description=f"Commission payment for {deal_title}",
        metadata={
            "commission_id": str(commission.id),
            "workspace_id": str(workspace.id),
            "deal_id": str(commission.deal_id),
            "type": "commission_auto_charge" if auto_charge else "commission_charge",
        },
    )

    if result is not None and result.succeeded:
        await settle_commission_payment(db, commission, payment_intent_id=result.id, dispatcher=dispatcher)
        return ChargeOutcome(CHARGE_PAID, payment_intent_id=result.id)

    if (result is not None and result.requires_action) or isinstance(error, ChargeRequiresAction):
        logger.info("Commission %s charge requires authentication", commission.id)
        await _notify(
            dispatcher,
            NotificationRequest(
                user_id=workspace.owner_id,
                workspace_id=workspace.id,
                type="payment_action_required",
                title="Payment Requires Authentication",
                message=f"Your commission payment of ${total:,.2f} requires additional authentication. Please complete the payment manually.",
                data={"commission_id": commission.id, "amount": total},
            ),
        )
        return ChargeOutcome(
            CHARGE_REQUIRES_ACTION,
            payment_intent_id=result.id if result is not None else None,
            message="Payment requires additional authentication. Manual payment required.",
        )

    if result is not None and result.pending:
        logger.info("Commission %s charge processing (%s)", commission.id, result.id)
        return ChargeOutcome(CHARGE_PROCESSING, payment_intent_id=result.id, message="Payment is processing.")

    reason = error.message if error is not None else f"Payment {result.status}"
    await notify_commission_charge_failed(commission, workspace.owner_id, reason, dispatcher, auto_charge=auto_charge)
    return ChargeOutcome(CHARGE_DECLINED, message="Card was declined. Manual payment required.")
