"""
Settlement batch jobs.

Entry points for the APScheduler cron triggers. The manual
``/payouts/process`` and ``/commissions/process-overdue`` endpoints run the
same services on the request session. Each job run
opens its own session; collaborators are built from settings unless passed in.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from app.core.config import PayoutConfig
from app.db.session import get_sessionmaker
from app.integrations.payments import PaymentProvider, build_payment_provider
from app.services.notifications import NotificationDispatcher, build_notification_dispatcher
from app.services.overdue import process_overdue_commissions
from app.services.payouts import PayoutProcessor

logger = logging.getLogger(__name__)


async def run_payout_batch(
    today: Optional[date] = None,
    *,
    provider: Optional[PaymentProvider] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    config: Optional[PayoutConfig] = None,
) -> dict[str, Any]:
    config = config or PayoutConfig.from_settings()
    provider = provider or build_payment_provider()
    dispatcher = dispatcher or build_notification_dispatcher(max_attempts=config.notification_max_attempts)

    async with get_sessionmaker()() as db:
        result = await PayoutProcessor(db, provider, dispatcher, config).run(today=today)

    if result.not_configured:
        logger.warning("Scheduled payout batch skipped: Stripe not configured")
    return result.as_dict()


async def run_overdue_sweep(
    now: Optional[datetime] = None,
    *,
    provider: Optional[PaymentProvider] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    config: Optional[PayoutConfig] = None,
) -> dict[str, Any]:
    config = config or PayoutConfig.from_settings()
    provider = provider or build_payment_provider()
    dispatcher = dispatcher or build_notification_dispatcher(max_attempts=config.notification_max_attempts)

    async with get_sessionmaker()() as db:
        result = await process_overdue_commissions(db, provider, dispatcher, config, now=now)
    return result.as_dict()
