# backend/app/api/v1/payouts.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.services import (
    get_notification_dispatcher,
    get_payment_provider,
    get_payout_config,
    require_cron_or_platform_admin,
)
from app.api.errors import http_error
from app.api.v1.auth import get_current_user
from app.core.config import PayoutConfig, settings
from app.core.errors import ConfigurationError, SettlementError
from app.db.session import get_db
from app.integrations.payments import PaymentProvider
from app.jobs.scheduler import get_job_status
from app.models.user import User
from app.schemas.payouts import PayoutBatchOut, ReleaseHeldOut
from app.services.notifications import NotificationDispatcher
from app.services.payouts import PayoutProcessor, release_held_payouts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["payouts"])


@router.post("/process", response_model=PayoutBatchOut)
async def process_payouts(
    caller: Optional[User] = Depends(require_cron_or_platform_admin),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    config: PayoutConfig = Depends(get_payout_config),
) -> PayoutBatchOut:
    """
    Run the SDR payout batch now (cron secret or platform admin).
    """
    if provider is None:
        raise http_error(ConfigurationError("Stripe is not configured. Add STRIPE_API_KEY to enable payouts."))

    logger.info("Payout batch triggered by %s", caller.email if caller is not None else "cron")
    result = await PayoutProcessor(db, provider, dispatcher, config).run()
    data = result.as_dict()
    data.pop("not_configured", None)
    return PayoutBatchOut(**data)


@router.post("/held/release", response_model=ReleaseHeldOut)
async def release_held(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReleaseHeldOut:
    """
    Called by an SDR after connecting their bank: re-verifies the payout
    account and reschedules every held payout for the next batch.
    """
    try:
        result = await release_held_payouts(db, provider, user, dispatcher)
    except SettlementError as e:
        raise http_error(e)
    return ReleaseHeldOut(released=result.released, total_amount=result.total_amount)


@router.get("/schedule")
async def payout_schedule(
    _caller: Optional[User] = Depends(require_cron_or_platform_admin),
):
    """Next run times of the in-process settlement jobs (empty when the scheduler is disabled)."""
    return {"enabled": settings.SCHEDULER_ENABLED, "jobs": get_job_status()}
