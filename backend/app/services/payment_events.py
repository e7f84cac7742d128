# app/services/payment_events.py
"""
Stripe PaymentIntent events for agency charges.

Charges that Stripe settles asynchronously (processing, or requires_action
completed by the agency) are finished here. The intent's metadata names the
commission or salary payment it was created for; the stored
``stripe_payment_intent_id`` is the fallback. Deliveries are idempotent:
replays and events for superseded intents are acknowledged without effect.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.statuses import AgencyChargeStatus, CommissionStatus
from app.models.commission import Commission
from app.models.salary_payment import SalaryPayment
from app.models.workspace import Workspace
from app.services.charges import (
    mark_salary_charge_failed,
    mark_salary_paid,
    notify_commission_charge_failed,
    settle_commission_payment,
)
from app.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

SALARY_CHARGE_TYPES = {"salary_charge"}
COMMISSION_CHARGE_TYPES = {"commission_charge", "commission_auto_charge"}

# Handler results (echoed in the webhook response)
EVENT_IGNORED = "ignored"
EVENT_NOT_FOUND = "not_found"
EVENT_ALREADY_PAID = "already_paid"
EVENT_STALE = "stale"
EVENT_PAID = "paid"
EVENT_FAILED = "failed"


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _failure_reason(intent: Mapping[str, Any]) -> str:
    error = intent.get("last_payment_error") or {}
    return error.get("message") or "Payment failed"


async def _find_by_intent(db: AsyncSession, model, intent_id: str):
    stmt = select(model).where(model.stripe_payment_intent_id == intent_id)
    return (await db.execute(stmt)).scalars().first()


async def _resolve_record(
    db: AsyncSession, intent_id: str, metadata: Mapping[str, Any]
) -> Optional[Commission | SalaryPayment]:
    charge_type = metadata.get("type")
    if charge_type in SALARY_CHARGE_TYPES:
        record_id = _parse_uuid(metadata.get("salary_payment_id"))
        record = await db.get(SalaryPayment, record_id) if record_id else None
        return record or await _find_by_intent(db, SalaryPayment, intent_id)
    if charge_type in COMMISSION_CHARGE_TYPES:
        record_id = _parse_uuid(metadata.get("commission_id"))
        record = await db.get(Commission, record_id) if record_id else None
        return record or await _find_by_intent(db, Commission, intent_id)

    return await _find_by_intent(db, Commission, intent_id) or await _find_by_intent(db, SalaryPayment, intent_id)


def _is_paid(record: Commission | SalaryPayment) -> bool:
    if isinstance(record, SalaryPayment):
        return record.agency_charge_status == AgencyChargeStatus.PAID.value
    return record.status == CommissionStatus.PAID.value


async def handle_payment_intent_event(
    db: AsyncSession,
    event_type: str,
    intent: Mapping[str, Any],
    dispatcher: Optional[NotificationDispatcher] = None,
) -> str:
    if event_type not in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        return EVENT_IGNORED

    intent_id = intent.get("id")
    metadata = intent.get("metadata") or {}
    if not intent_id:
        return EVENT_IGNORED

    record = await _resolve_record(db, intent_id, metadata)
    if record is None:
        logger.info("No charge record for PaymentIntent %s (%s)", intent_id, event_type)
        return EVENT_NOT_FOUND

    if event_type == PAYMENT_SUCCEEDED:
        return await _handle_succeeded(db, record, intent_id, dispatcher)
    return await _handle_failed(db, record, intent_id, _failure_reason(intent), metadata, dispatcher)


async def _handle_succeeded(
    db: AsyncSession,
    record: Commission | SalaryPayment,
    intent_id: str,
    dispatcher: Optional[NotificationDispatcher],
) -> str:
    if _is_paid(record):
        if record.stripe_payment_intent_id != intent_id:
            logger.error(
                "%s %s already paid by %s but PaymentIntent %s also succeeded; refund one manually",
                type(record).__name__,
                record.id,
                record.stripe_payment_intent_id,
                intent_id,
            )
        return EVENT_ALREADY_PAID

    if isinstance(record, SalaryPayment):
        await mark_salary_paid(db, record, payment_intent_id=intent_id, dispatcher=dispatcher)
    else:
        await settle_commission_payment(db, record, payment_intent_id=intent_id, dispatcher=dispatcher)
    logger.info("PaymentIntent %s settled %s %s", intent_id, type(record).__name__, record.id)
    return EVENT_PAID


async def _handle_failed(
    db: AsyncSession,
    record: Commission | SalaryPayment,
    intent_id: str,
    reason: str,
    metadata: Mapping[str, Any],
    dispatcher: Optional[NotificationDispatcher],
) -> str:
    # Only the intent currently on the record can fail it; synchronous declines
    # were already handled when the charge was made.
    if _is_paid(record) or record.stripe_payment_intent_id != intent_id:
        logger.info("Ignoring failure of superseded PaymentIntent %s", intent_id)
        return EVENT_STALE

    record.stripe_payment_intent_id = None
    record.charge_attempts = (record.charge_attempts or 0) + 1

    if isinstance(record, SalaryPayment):
        await mark_salary_charge_failed(db, record, reason, dispatcher)
        return EVENT_FAILED

    await db.commit()
    workspace = await db.get(Workspace, record.workspace_id)
    await notify_commission_charge_failed(
        record,
        workspace.owner_id,
        reason,
        dispatcher,
        auto_charge=metadata.get("type") == "commission_auto_charge",
    )
    return EVENT_FAILED
