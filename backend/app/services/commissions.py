# app/services/commissions.py
"""
Commission Record Writer.

Turns a closed-won deal into exactly one ``Commission`` row: the agency rake
billed to the agency, the SDR's gross commission, the platform's cut of it and
the SDR's net payout. The unique constraint on ``commissions.deal_id`` is the
final guard against a second record for the same deal.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PayoutConfig
from app.core.errors import DuplicateCommission, InvalidSettlementInput, InvalidStateTransition
from app.core.settlement import ZERO, calculate_settlement, quantize_money
from app.core.statuses import CommissionStatus, DealStage, PayoutStatus
from app.core.tiers import (
    SubscriptionTier,
    calculate_sdr_level,
    get_platform_cut_percentage,
    get_rake_percentage_for_tier,
    normalize_tier,
)
from app.models.commission import Commission
from app.models.deal import Deal
from app.models.job import Job
from app.models.user import User
from app.models.workspace import Workspace
from app.services.notifications import NotificationDispatcher, NotificationRequest

logger = logging.getLogger(__name__)

LEVEL_NAMES = {2: "Silver", 3: "Gold"}


def is_agency_self_closed(deal: Deal, workspace: Workspace) -> bool:
    """
    The agency closed its own deal when the owner is the assignee (or nobody
    is). No SDR commission is owed in that case.
    """
    return deal.assigned_to is None or deal.assigned_to == workspace.owner_id


def resolve_rake_percentage(workspace: Workspace, default: Decimal) -> Decimal:
    if workspace.rake_percentage is not None:
        return Decimal(workspace.rake_percentage)
    tier = normalize_tier(workspace.subscription_tier)
    if tier in {t.value for t in SubscriptionTier}:
        return get_rake_percentage_for_tier(tier)
    return Decimal(default)


async def _commission_percentage_for(db: AsyncSession, deal: Deal) -> Decimal:
    if deal.job_id is None:
        logger.warning("Deal %s has no job; SDR commission percentage defaults to 0", deal.id)
        return ZERO
    job = await db.get(Job, deal.job_id)
    if job is None:
        logger.warning("Deal %s references missing job %s; commission percentage defaults to 0", deal.id, deal.job_id)
        return ZERO
    return Decimal(job.commission_percentage or 0)


@dataclass
class LevelChange:
    old_level: int
    new_level: int
    total_closed_value: Decimal

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


def _apply_closed_deal_to_sdr(sdr: User, deal_value: Decimal) -> LevelChange:
    old_level = int(sdr.sdr_level or 1)
    total = Decimal(sdr.total_deals_closed_value or 0) + deal_value
    new_level = max(old_level, calculate_sdr_level(total))
    sdr.total_deals_closed_value = quantize_money(total)
    sdr.sdr_level = new_level
    return LevelChange(old_level=old_level, new_level=new_level, total_closed_value=total)


async def create_commission_for_deal(
    db: AsyncSession,
    deal: Deal,
    workspace: Workspace,
    dispatcher: Optional[NotificationDispatcher] = None,
    *,
    config: Optional[PayoutConfig] = None,
) -> Commission:
    """
    Insert the single commission for a closed-won deal.

    Raises DuplicateCommission when the deal already has one; the caller's
    signature and deal transition are not affected.
    """
    config = config or PayoutConfig()

    if deal.stage != DealStage.CLOSED_WON.value:
        raise InvalidStateTransition(
            "Commissions are only created for closed_won deals",
            deal_id=str(deal.id),
            stage=deal.stage,
        )
    if deal.workspace_id != workspace.id:
        raise InvalidSettlementInput("Deal does not belong to workspace", deal_id=str(deal.id))

    existing = (
        await db.execute(select(Commission.id).where(Commission.deal_id == deal.id))
    ).scalar_one_or_none()
    if existing is not None:
        raise DuplicateCommission(
            "Commission already exists for this deal",
            deal_id=str(deal.id),
            commission_id=str(existing),
        )

    self_closed = is_agency_self_closed(deal, workspace)
    sdr: Optional[User] = None if self_closed else await db.get(User, deal.assigned_to)

    deal_value = Decimal(deal.value or 0)
    if deal_value < 0:
        raise InvalidSettlementInput("deal_value must be >= 0", field="deal_value")

    breakdown = calculate_settlement(
        deal_value=deal_value,
        commission_percentage=ZERO if self_closed else await _commission_percentage_for(db, deal),
        sdr_level=sdr.sdr_level if sdr is not None else 1,
        agency_rake_percentage=resolve_rake_percentage(workspace, config.default_rake_percentage),
        is_agency_self_closed=self_closed,
    ).rounded()

    commission = Commission(
        workspace_id=workspace.id,
        deal_id=deal.id,
        sdr_id=deal.assigned_to,
        deal_value=breakdown.deal_value,
        amount=breakdown.sdr_gross_commission,
        agency_rake_percentage=breakdown.agency_rake_percentage,
        agency_rake_amount=breakdown.agency_rake_amount,
        commission_percentage=breakdown.commission_percentage,
        platform_cut_percentage=breakdown.platform_cut_percentage,
        platform_cut_amount=breakdown.platform_cut_amount,
        rake_amount=breakdown.agency_rake_amount + breakdown.platform_cut_amount,
        sdr_payout_amount=breakdown.sdr_net_payout,
        is_agency_self_closed=self_closed,
        status=CommissionStatus.PENDING.value,
        sdr_payout_status=None if self_closed else PayoutStatus.PENDING.value,
        retry_count=0,
    )
    db.add(commission)

    level_change: Optional[LevelChange] = None
    if sdr is not None:
        level_change = _apply_closed_deal_to_sdr(sdr, deal_value)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateCommission("Commission already exists for this deal", deal_id=str(deal.id)) from e

    logger.info(
        "Commission %s created for deal %s: value=%s rake=%s gross=%s cut=%s net=%s self_closed=%s",
        commission.id,
        deal.id,
        breakdown.deal_value,
        breakdown.agency_rake_amount,
        breakdown.sdr_gross_commission,
        breakdown.platform_cut_amount,
        breakdown.sdr_net_payout,
        self_closed,
    )

    if dispatcher is not None:
        await dispatcher.send_many(
            _commission_notifications(commission, deal, workspace, sdr, level_change, config)
        )

    return commission


def _commission_notifications(
    commission: Commission,
    deal: Deal,
    workspace: Workspace,
    sdr: Optional[User],
    level_change: Optional[LevelChange],
    config: PayoutConfig,
) -> list[NotificationRequest]:
    total_due = commission.total_agency_owed
    closer = sdr.display_name if sdr is not None else "your team"

    out = [
        NotificationRequest(
            user_id=workspace.owner_id,
            workspace_id=workspace.id,
            type="commission_created",
            title="New Commission Due",
            message=(
                f'A ${total_due:,.2f} commission is due for "{deal.title}" closed by {closer}. '
                f"Payment due within {config.auto_charge_days} days."
            ),
            data={
                "commission_id": commission.id,
                "deal_id": deal.id,
                "commission_amount": total_due,
                "sdr_name": sdr.full_name if sdr is not None else None,
            },
        )
    ]

    if sdr is None:
        return out

    out.append(
        NotificationRequest(
            user_id=sdr.id,
            workspace_id=workspace.id,
            type="commission_created",
            title="Commission Earned!",
            message=(
                f'You earned a ${commission.sdr_payout_amount:,.2f} commission for closing "{deal.title}". '
                "Payout pending agency payment."
            ),
            data={
                "commission_id": commission.id,
                "deal_id": deal.id,
                "commission_amount": commission.sdr_payout_amount,
                "gross_amount": commission.amount,
                "platform_cut_amount": commission.platform_cut_amount,
            },
        )
    )

    if level_change is not None and level_change.leveled_up:
        new_cut = get_platform_cut_percentage(level_change.new_level)
        name = LEVEL_NAMES.get(level_change.new_level)
        out.append(
            NotificationRequest(
                user_id=sdr.id,
                workspace_id=workspace.id,
                type="level_up",
                title="Level Up!",
                message=(
                    f"Congratulations! You've reached Level {level_change.new_level}"
                    + (f" ({name})" if name else "")
                    + f". Your platform fee is now {new_cut.normalize()}%."
                ),
                data={
                    "old_level": level_change.old_level,
                    "new_level": level_change.new_level,
                    "total_deals_closed": level_change.total_closed_value,
                    "new_platform_cut": new_cut,
                },
            )
        )
    return out


async def list_commissions(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    *,
    sdr_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
) -> list[Commission]:
    stmt = select(Commission).where(Commission.workspace_id == workspace_id)
    if sdr_id is not None:
        stmt = stmt.where(Commission.sdr_id == sdr_id)
    if status:
        stmt = stmt.where(Commission.status == status)
    stmt = stmt.order_by(Commission.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())
