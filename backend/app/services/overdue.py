# app/services/overdue.py
from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PayoutConfig
from app.core.settlement import quantize_money
from app.core.statuses import CommissionStatus
from app.integrations.payments import PaymentProvider
from app.models.commission import Commission
from app.models.workspace import Workspace
from app.services.charges import CHARGE_PAID, charge_commission
from app.services.notifications import NotificationDispatcher, NotificationRequest

logger = logging.getLogger(__name__)


@dataclass
class OverdueResult:
    processed: int = 0
    auto_charged: int = 0
    locked_workspaces: int = 0
    errors: list[str] = field(default_factory=list)
    stripe_enabled: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


async def _pending_ids_created_before(db: AsyncSession, cutoff: datetime) -> list[uuid.UUID]:
    stmt = (
        select(Commission.id)
        .where(Commission.status == CommissionStatus.PENDING.value)
        .where(Commission.created_at < cutoff)
        .order_by(Commission.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def process_overdue_commissions(
    db: AsyncSession,
    provider: Optional[PaymentProvider],
    dispatcher: Optional[NotificationDispatcher] = None,
    config: Optional[PayoutConfig] = None,
    now: Optional[datetime] = None,
) -> OverdueResult:
    """
    Pending commissions past the lock threshold become overdue and lock their
    workspace; those past the auto-charge threshold are charged against the
    saved payment method when Stripe is configured.
    """
    config = config or PayoutConfig()
    now = now or datetime.now(timezone.utc)
    result = OverdueResult(stripe_enabled=provider is not None)

    lock_ids = await _pending_ids_created_before(db, now - timedelta(days=config.lock_days))
    lock_set = set(lock_ids)
    charge_ids = [
        cid
        for cid in await _pending_ids_created_before(db, now - timedelta(days=config.auto_charge_days))
        if cid not in lock_set
    ]
    logger.info("Overdue sweep: %d to lock, %d to auto-charge", len(lock_ids), len(charge_ids))

    locked: set[uuid.UUID] = set()
    for commission_id in lock_ids:
        try:
            newly_locked = await _mark_overdue(db, commission_id, dispatcher, locked)
        except Exception as e:
            logger.exception("Could not mark commission %s overdue", commission_id)
            await db.rollback()
            result.errors.append(f"Failed to lock for {commission_id}: {e}")
            continue
        if newly_locked:
            result.locked_workspaces += 1
        result.processed += 1

    if provider is None:
        if charge_ids:
            logger.info("Stripe not configured; skipping %d auto-charge(s)", len(charge_ids))
        return result

    for commission_id in charge_ids:
        try:
            commission = await db.get(Commission, commission_id)
            if commission is None or commission.status != CommissionStatus.PENDING.value:
                continue
            outcome = await charge_commission(
                db, commission, provider, dispatcher, config=config, auto_charge=True
            )
        except Exception as e:
            logger.exception("Error auto-charging commission %s", commission_id)
            await db.rollback()
            result.errors.append(f"Error charging {commission_id}: {e}")
            result.processed += 1
            continue

        if outcome.status == CHARGE_PAID:
            result.auto_charged += 1
        result.processed += 1

    logger.info(
        "Overdue sweep complete: processed=%d auto_charged=%d locked_workspaces=%d errors=%d",
        result.processed,
        result.auto_charged,
        result.locked_workspaces,
        len(result.errors),
    )
    return result


async def _mark_overdue(
    db: AsyncSession,
    commission_id: uuid.UUID,
    dispatcher: Optional[NotificationDispatcher],
    locked: set[uuid.UUID],
) -> bool:
    """Returns True when this commission locked its workspace."""
    commission = await db.get(Commission, commission_id)
    commission.status = CommissionStatus.OVERDUE.value

    workspace = await db.get(Workspace, commission.workspace_id)
    newly_locked = workspace is not None and not workspace.is_locked and workspace.id not in locked
    if newly_locked:
        workspace.is_locked = True
        locked.add(workspace.id)

    await db.commit()

    if not newly_locked:
        return False

    total = quantize_money(Decimal(commission.amount or 0) + Decimal(commission.agency_rake_amount or 0))
    logger.warning("Workspace %s locked: commission %s is overdue (%s)", workspace.id, commission.id, total)
    if dispatcher is not None:
        await dispatcher.send(
            NotificationRequest(
                user_id=workspace.owner_id,
                workspace_id=workspace.id,
                type="account_locked",
                title="Account Locked",
                message=(
                    f"Your account has been locked due to unpaid commissions totaling ${total:,.2f}. "
                    "Please pay immediately to restore access."
                ),
                data={"commission_id": commission.id, "amount": total},
            )
        )
    return True
