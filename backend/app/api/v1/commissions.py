# backend/app/api/v1/commissions.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.services import (
    get_notification_dispatcher,
    get_payment_provider,
    get_payout_config,
    require_cron_or_platform_admin,
)
from app.api.deps.workspace import get_current_membership, get_current_workspace, require_workspace_roles
from app.api.errors import http_error
from app.core.config import PayoutConfig
from app.core.errors import SettlementError
from app.core.roles import MANAGER_ROLES, WorkspaceRole
from app.core.settlement import quantize_money
from app.db.session import get_db
from app.integrations.payments import PaymentProvider
from app.models.commission import Commission
from app.models.workspace import Workspace
from app.models.workspace_membership import WorkspaceMembership
from app.schemas.commissions import CommissionChargeResponse, CommissionListOut, CommissionOut
from app.schemas.payouts import OverdueRunOut
from app.services.charges import charge_commission
from app.services.commissions import list_commissions
from app.services.notifications import NotificationDispatcher
from app.services.overdue import process_overdue_commissions

router = APIRouter(prefix="/commissions", tags=["commissions"])


@router.get("", response_model=CommissionListOut)
async def list_workspace_commissions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    workspace: Workspace = Depends(get_current_workspace),
    membership: WorkspaceMembership = Depends(get_current_membership),
    db: AsyncSession = Depends(get_db),
) -> CommissionListOut:
    """
    OWNER/ADMIN see every commission in the workspace; an SDR sees only their own.
    """
    role = (membership.role or "").upper()
    sdr_id = None if role in MANAGER_ROLES else membership.user_id

    rows = await list_commissions(db, workspace.id, sdr_id=sdr_id, status=status_filter)
    return CommissionListOut(
        items=[CommissionOut.model_validate(r) for r in rows],
        total=len(rows),
    )


@router.post("/process-overdue", response_model=OverdueRunOut)
async def process_overdue(
    _caller=Depends(require_cron_or_platform_admin),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    config: PayoutConfig = Depends(get_payout_config),
) -> OverdueRunOut:
    result = await process_overdue_commissions(db, provider, dispatcher, config)
    return OverdueRunOut(**result.as_dict())


@router.get("/{commission_id}", response_model=CommissionOut)
async def get_commission(
    commission_id: uuid.UUID,
    workspace: Workspace = Depends(get_current_workspace),
    membership: WorkspaceMembership = Depends(get_current_membership),
    db: AsyncSession = Depends(get_db),
) -> CommissionOut:
    commission = await db.get(Commission, commission_id)
    if commission is None or commission.workspace_id != workspace.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commission not found")

    role = (membership.role or "").upper()
    if role not in MANAGER_ROLES and commission.sdr_id != membership.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commission not found")

    return CommissionOut.model_validate(commission)


@router.post("/{commission_id}/charge", response_model=CommissionChargeResponse)
async def charge(
    commission_id: uuid.UUID,
    workspace: Workspace = Depends(get_current_workspace),
    _membership: WorkspaceMembership = Depends(
        require_workspace_roles(WorkspaceRole.OWNER.value, WorkspaceRole.ADMIN.value)
    ),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    config: PayoutConfig = Depends(get_payout_config),
) -> CommissionChargeResponse:
    """
    Charge the agency's saved payment method for SDR gross + agency rake.
    """
    commission = await db.get(Commission, commission_id)
    if commission is None or commission.workspace_id != workspace.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commission not found")

    try:
        outcome = await charge_commission(db, commission, provider, dispatcher, config=config)
    except SettlementError as e:
        raise http_error(e)

    return CommissionChargeResponse(
        success=outcome.charged,
        status=outcome.status,
        commission_id=commission.id,
        payment_intent_id=outcome.payment_intent_id,
        amount=quantize_money(commission.total_agency_owed),
        message=outcome.message,
    )
