# app/services/payouts.py
"""
Payout Batch Processor.

Moves due SDR payouts (salary payments and paid commissions) through

    scheduled -> processing -> paid | held | failed

Each record is claimed, transferred and committed on its own, so one bad
record never blocks or rolls back another. Transfers carry a per-record
idempotency key ("salary-payout-<id>" / "commission-payout-<id>"), which makes
re-running a batch, or re-picking a stale ``processing`` claim, safe.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from sqlalchemy import and_, inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import PayoutConfig
from app.core.errors import ConfigurationError, DestinationUnavailable, ProviderError
from app.core.settlement import quantize_money, to_minor_units
from app.core.statuses import AgencyChargeStatus, CommissionStatus, ConnectStatus, PayoutStatus
from app.integrations.payments import PaymentProvider
from app.models.commission import Commission
from app.models.deal import Deal
from app.models.job import Job
from app.models.salary_payment import SalaryPayment
from app.models.user import User
from app.services.notifications import NotificationDispatcher, NotificationRequest

logger = logging.getLogger(__name__)

PayoutRecord = Union[SalaryPayment, Commission]

HOLD_NO_ACCOUNT = "no_payout_account"
HOLD_ACCOUNT_INACTIVE = "payout_account_inactive"
HOLD_DESTINATION_REJECTED = "destination_rejected"

# What the SDR must do to release a held payout, by hold reason.
HOLD_ACTIONS = {
    HOLD_NO_ACCOUNT: "Connect your bank account in Settings to receive it.",
    HOLD_ACCOUNT_INACTIVE: "Your payout account is not active yet. Finish the Stripe onboarding in Settings to receive it.",
    HOLD_DESTINATION_REJECTED: "Your bank account could not accept the transfer. Check your payout details in Settings.",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_kind(record: PayoutRecord) -> str:
    return "salary" if isinstance(record, SalaryPayment) else "commission"


def idempotency_key_for(record: PayoutRecord) -> str:
    return f"{record_kind(record)}-payout-{record.id}"


@dataclass
class PayoutDetail:
    id: str
    kind: str
    status: str
    amount: Optional[str] = None
    transfer_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    retry_count: Optional[int] = None


@dataclass
class PayoutBatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    held: int = 0
    details: list[PayoutDetail] = field(default_factory=list)
    not_configured: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "held": self.held,
            "details": [{k: v for k, v in asdict(d).items() if v is not None} for d in self.details],
            "not_configured": self.not_configured,
        }


class PayoutProcessor:
    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[PaymentProvider],
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[PayoutConfig] = None,
    ) -> None:
        self.db = db
        self.provider = provider
        self.dispatcher = dispatcher
        # Sent after the record's transition is committed.
        self._outbox: list[NotificationRequest] = []
        self._admin_alerts: list[dict[str, Any]] = []
        self.config = config or PayoutConfig()

    # ---------------------------------------------------------
    # Selection
    # ---------------------------------------------------------
    def _due_or_stale(self, model, today: date, now: datetime):
        stale_before = now - timedelta(minutes=self.config.processing_timeout_minutes)
        return or_(
            and_(
                model.sdr_payout_status == PayoutStatus.SCHEDULED.value,
                model.sdr_payout_date <= today,
            ),
            and_(
                model.sdr_payout_status == PayoutStatus.PROCESSING.value,
                or_(model.last_attempt_at.is_(None), model.last_attempt_at < stale_before),
            ),
        )

    def _eligible(self, model, today: date, now: datetime):
        """Salary: agency charge collected. Commission: agency paid and an SDR is owed."""
        if model is SalaryPayment:
            return and_(
                SalaryPayment.agency_charge_status == AgencyChargeStatus.PAID.value,
                self._due_or_stale(SalaryPayment, today, now),
            )
        return and_(
            Commission.status == CommissionStatus.PAID.value,
            Commission.is_agency_self_closed.is_(False),
            self._due_or_stale(Commission, today, now),
        )

    async def due_records(self, today: date, now: Optional[datetime] = None) -> list[PayoutRecord]:
        now = now or _utcnow()
        records: list[PayoutRecord] = []
        for model in (SalaryPayment, Commission):
            rows = (
                await self.db.execute(
                    select(model)
                    .where(self._eligible(model, today, now))
                    .order_by(model.sdr_payout_date, model.created_at)
                )
            ).scalars().all()
            records.extend(rows)
        return records

    async def _reload_if_due(self, model, record_id: uuid.UUID, today: date, now: datetime) -> Optional[PayoutRecord]:
        stmt = (
            select(model)
            .where(model.id == record_id)
            .where(self._eligible(model, today, now))
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    # ---------------------------------------------------------
    # Batch
    # ---------------------------------------------------------
    async def run(self, today: Optional[date] = None) -> PayoutBatchResult:
        result = PayoutBatchResult()

        if self.provider is None:
            logger.warning("Payment provider not configured; payout batch skipped")
            result.not_configured = True
            return result

        now = _utcnow()
        today = today or now.date()
        # Keys only: a rollback on one record expires every loaded instance.
        due = [(type(r), r.id) for r in await self.due_records(today, now)]
        if not due:
            logger.info("No SDR payouts due for %s", today)
            return result

        logger.info("Processing %d SDR payout(s) due on or before %s", len(due), today)

        for model, record_id in due:
            detail = await self._process_one(model, record_id, today, now)
            if detail is None:
                continue
            result.processed += 1
            if detail.status == PayoutStatus.PAID.value:
                result.successful += 1
            elif detail.status == PayoutStatus.HELD.value:
                result.held += 1
            else:
                result.failed += 1
            result.details.append(detail)

        logger.info(
            "Payout batch complete: processed=%d successful=%d failed=%d held=%d",
            result.processed,
            result.successful,
            result.failed,
            result.held,
        )
        return result

    async def _process_one(
        self,
        model,
        record_id: uuid.UUID,
        today: date,
        now: datetime,
    ) -> Optional[PayoutDetail]:
        kind = "salary" if model is SalaryPayment else "commission"

        try:
            record = await self._reload_if_due(model, record_id, today, now)
        except Exception as e:
            logger.exception("Could not load %s payout %s", kind, record_id)
            await self.db.rollback()
            return PayoutDetail(id=str(record_id), kind=kind, status="error", error=str(e) or e.__class__.__name__)

        if record is None:
            logger.info("%s payout %s no longer due; skipping", kind, record_id)
            return None

        try:
            await self._claim(record)
            detail = await self._settle(record)
        except StaleDataError:
            # Version moved under us: another run owns this record now.
            await self.db.rollback()
            self._outbox.clear()
            logger.info("%s payout %s claimed by another run; skipping", kind, record_id)
            return None
        except Exception as e:
            logger.exception("%s payout %s failed unexpectedly", kind, record_id)
            await self.db.rollback()
            detail = await self._record_failure(record, e)

        await self._flush_notifications()
        return detail

    async def _claim(self, record: PayoutRecord) -> None:
        record.sdr_payout_status = PayoutStatus.PROCESSING.value
        record.last_attempt_at = _utcnow()
        await self.db.commit()

    async def _settle(self, record: PayoutRecord) -> PayoutDetail:
        sdr = await self.db.get(User, record.sdr_id) if record.sdr_id is not None else None

        hold_reason = await self._destination_problem(sdr)
        if hold_reason is not None:
            return await self._hold(record, sdr, hold_reason)

        amount = quantize_money(Decimal(record.sdr_payout_amount or 0))
        if amount <= 0:
            # Nothing to move (e.g. a 0% commission); close it out.
            return await self._mark_paid(record, sdr, transfer_id=None, amount=amount)

        try:
            transfer = await self.provider.create_transfer(
                destination=sdr.stripe_connect_account_id,
                amount=to_minor_units(amount),
                currency=self.config.currency,
                idempotency_key=idempotency_key_for(record),
                description=await self._describe(record),
                metadata={
                    f"{record_kind(record)}_id": str(record.id),
                    "sdr_id": str(record.sdr_id),
                    "workspace_id": str(record.workspace_id),
                    "type": f"{record_kind(record)}_payout",
                },
            )
        except DestinationUnavailable as e:
            return await self._hold(record, sdr, HOLD_DESTINATION_REJECTED, error=e.message)
        except ProviderError as e:
            logger.warning("%s payout %s transfer failed: %s", record_kind(record), record.id, e.message)
            return await self._record_failure(record, e)

        return await self._mark_paid(record, sdr, transfer_id=transfer.id, amount=amount)

    async def _destination_problem(self, sdr: Optional[User]) -> Optional[str]:
        if sdr is None or not sdr.stripe_connect_account_id:
            return HOLD_NO_ACCOUNT
        if sdr.has_active_payout_account:
            return None

        # Local status can lag the provider (onboarding finished since last sync).
        try:
            status = await self.provider.get_account_status(sdr.stripe_connect_account_id)
        except DestinationUnavailable:
            return HOLD_ACCOUNT_INACTIVE
        if not status.is_active:
            return HOLD_ACCOUNT_INACTIVE

        sdr.stripe_connect_status = ConnectStatus.ACTIVE.value
        if sdr.stripe_connect_onboarded_at is None:
            sdr.stripe_connect_onboarded_at = _utcnow()
        return None

    async def _describe(self, record: PayoutRecord) -> str:
        if isinstance(record, SalaryPayment):
            job = await self.db.get(Job, record.job_id)
            return f"Salary payment for {job.title if job else 'position'}"
        deal = await self.db.get(Deal, record.deal_id)
        return f'Commission payout for "{deal.title if deal else "deal"}"'

    # ---------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------
    async def _mark_paid(
        self,
        record: PayoutRecord,
        sdr: User,
        *,
        transfer_id: Optional[str],
        amount: Decimal,
    ) -> PayoutDetail:
        record.sdr_payout_status = PayoutStatus.PAID.value
        record.sdr_paid_at = _utcnow()
        record.sdr_stripe_transfer_id = transfer_id
        record.retry_count = 0
        record.failure_reason = None
        await self.db.commit()

        kind = record_kind(record)
        logger.info("%s payout %s paid: %s to SDR %s (transfer %s)", kind, record.id, amount, record.sdr_id, transfer_id)

        if kind == "salary":
            self._notify(
                NotificationRequest(
                    user_id=sdr.id,
                    workspace_id=record.workspace_id,
                    type="salary_paid",
                    title="Salary Paid!",
                    message=f"Your salary of ${amount:,.2f} has been transferred to your bank account.",
                    data={"salary_payment_id": record.id, "amount": amount, "transfer_id": transfer_id},
                )
            )
        else:
            self._notify(
                NotificationRequest(
                    user_id=sdr.id,
                    workspace_id=record.workspace_id,
                    type="payout_paid",
                    title="Payout Complete!",
                    message=f"${amount:,.2f} has been sent to your bank account.",
                    data={"commission_id": record.id, "amount": amount, "transfer_id": transfer_id},
                )
            )

        return PayoutDetail(
            id=str(record.id),
            kind=kind,
            status=PayoutStatus.PAID.value,
            amount=str(amount),
            transfer_id=transfer_id,
        )

    async def _hold(
        self,
        record: PayoutRecord,
        sdr: Optional[User],
        reason: str,
        *,
        error: Optional[str] = None,
    ) -> PayoutDetail:
        record.sdr_payout_status = PayoutStatus.HELD.value
        record.failure_reason = error or reason
        await self.db.commit()

        kind = record_kind(record)
        amount = quantize_money(Decimal(record.sdr_payout_amount or 0))
        logger.warning("%s payout %s held for SDR %s: %s", kind, record.id, record.sdr_id, reason)

        if sdr is not None:
            what = "salary payment" if kind == "salary" else "commission"
            action = HOLD_ACTIONS.get(reason, HOLD_ACTIONS[HOLD_NO_ACCOUNT])
            if reason == HOLD_NO_ACCOUNT:
                title, message = f"Connect Bank to Receive ${amount:,.2f}", f"Your {what} of ${amount:,.2f} is waiting! {action}"
            else:
                title, message = f"Payout of ${amount:,.2f} On Hold", f"Your {what} of ${amount:,.2f} is on hold. {action}"
            if error:
                message = f"{message} ({error})"
            self._notify(
                NotificationRequest(
                    user_id=sdr.id,
                    workspace_id=record.workspace_id,
                    type="connect_bank_prompt",
                    title=title,
                    message=message,
                    data={f"{kind}_id": record.id, "amount": amount, "reason": reason},
                )
            )

        return PayoutDetail(
            id=str(record.id),
            kind=kind,
            status=PayoutStatus.HELD.value,
            amount=str(amount),
            reason=reason,
        )

    async def _record_failure(self, record: PayoutRecord, exc: Exception) -> PayoutDetail:
        kind = record_kind(record)
        record_id = inspect(record).identity[0]
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__

        try:
            await self.db.refresh(record)
            record.retry_count = int(record.retry_count or 0) + 1
            record.failure_reason = message[:1000]
            record.last_attempt_at = _utcnow()
            terminal = record.retry_count >= self.config.max_retries
            record.sdr_payout_status = PayoutStatus.FAILED.value if terminal else PayoutStatus.SCHEDULED.value
            await self.db.commit()
        except Exception:
            # Left in processing; the stale-claim sweep picks it up again.
            logger.exception("Could not record failure for %s payout %s", kind, record_id)
            await self.db.rollback()
            return PayoutDetail(id=str(record_id), kind=kind, status="error", error=message)

        if not terminal:
            logger.info(
                "%s payout %s rescheduled after failure (%d/%d): %s",
                kind,
                record.id,
                record.retry_count,
                self.config.max_retries,
                message,
            )
            return PayoutDetail(
                id=str(record.id),
                kind=kind,
                status=PayoutStatus.SCHEDULED.value,
                error=message,
                retry_count=record.retry_count,
            )

        logger.error("%s payout %s failed permanently after %d attempts: %s", kind, record.id, record.retry_count, message)
        amount = quantize_money(Decimal(record.sdr_payout_amount or 0))

        if record.sdr_id is not None:
            self._notify(
                NotificationRequest(
                    user_id=record.sdr_id,
                    workspace_id=record.workspace_id,
                    type="salary_payout_failed" if kind == "salary" else "payout_failed",
                    title="Payout Failed",
                    message=f"Your payout of ${amount:,.2f} could not be completed: {message.rstrip('.')}. Our team will investigate.",
                    data={f"{kind}_id": record.id, "amount": amount, "error": message},
                )
            )
        self._admin_alerts.append(
            dict(
                type="payout_failed",
                title="SDR payout failed",
                message=f"{kind.capitalize()} payout {record.id} of ${amount:,.2f} failed after {record.retry_count} attempts: {message}",
                workspace_id=record.workspace_id,
                data={f"{kind}_id": record.id, "sdr_id": record.sdr_id, "error": message},
            )
        )

        return PayoutDetail(
            id=str(record.id),
            kind=kind,
            status=PayoutStatus.FAILED.value,
            error=message,
            retry_count=record.retry_count,
        )

    def _notify(self, request: NotificationRequest) -> None:
        self._outbox.append(request)

    async def _flush_notifications(self) -> None:
        outbox, self._outbox = self._outbox, []
        alerts, self._admin_alerts = self._admin_alerts, []
        if self.dispatcher is None:
            return
        for request in outbox:
            await self.dispatcher.send(request)
        for alert in alerts:
            await self.dispatcher.notify_platform_admins(**alert)


@dataclass
class ReleaseResult:
    released: int
    total_amount: Decimal


async def release_held_payouts(
    db: AsyncSession,
    provider: Optional[PaymentProvider],
    user: User,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ReleaseResult:
    """
    Re-verify the SDR's payout account and put their held payouts back on the
    schedule. They go out with the next batch run.
    """
    if provider is None:
        raise ConfigurationError("Stripe is not configured")
    if not user.stripe_connect_account_id:
        raise DestinationUnavailable("Connect a bank account first", reason=HOLD_NO_ACCOUNT)

    status = await provider.get_account_status(user.stripe_connect_account_id)
    if not status.is_active:
        raise DestinationUnavailable("Payout account is not active yet", reason=HOLD_ACCOUNT_INACTIVE)

    user.stripe_connect_status = ConnectStatus.ACTIVE.value
    if user.stripe_connect_onboarded_at is None:
        user.stripe_connect_onboarded_at = _utcnow()

    held: list[PayoutRecord] = []
    for model in (SalaryPayment, Commission):
        rows = (
            await db.execute(
                select(model)
                .where(model.sdr_id == user.id)
                .where(model.sdr_payout_status == PayoutStatus.HELD.value)
            )
        ).scalars().all()
        held.extend(rows)

    total = Decimal("0")
    for record in held:
        record.sdr_payout_status = PayoutStatus.SCHEDULED.value
        record.failure_reason = None
        total += Decimal(record.sdr_payout_amount or 0)

    await db.commit()
    total = quantize_money(total)
    logger.info("Released %d held payout(s) for SDR %s totaling %s", len(held), user.id, total)

    if held and dispatcher is not None:
        await dispatcher.send(
            NotificationRequest(
                user_id=user.id,
                type="payout_processing",
                title="Payouts Processing!",
                message=f"Your bank is connected! {len(held)} held payout(s) totaling ${total:,.2f} will be transferred shortly.",
                data={"count": len(held), "total_amount": total},
            )
        )

    return ReleaseResult(released=len(held), total_amount=total)


async def list_salary_payments(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    *,
    sdr_id: Optional[uuid.UUID] = None,
) -> list[SalaryPayment]:
    stmt = select(SalaryPayment).where(SalaryPayment.workspace_id == workspace_id)
    if sdr_id is not None:
        stmt = stmt.where(SalaryPayment.sdr_id == sdr_id)
    stmt = stmt.order_by(SalaryPayment.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())
