# backend/app/api/v1/jobs.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.services import get_notification_dispatcher, get_payment_provider, get_payout_config
from app.api.deps.workspace import get_current_workspace, require_workspace_roles
from app.api.errors import http_error
from app.core.config import PayoutConfig
from app.core.errors import SettlementError
from app.core.roles import WorkspaceRole
from app.db.session import get_db
from app.integrations.payments import PaymentProvider
from app.models.job import Job
from app.models.user import User
from app.models.workspace import Workspace
from app.models.workspace_membership import WorkspaceMembership
from app.schemas.payouts import HireRequest, HireResponse
from app.services.charges import hire_salaried_sdr
from app.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/{job_id}/hires", response_model=HireResponse, status_code=status.HTTP_201_CREATED)
async def hire_sdr(
    job_id: uuid.UUID,
    payload: HireRequest,
    workspace: Workspace = Depends(get_current_workspace),
    _membership: WorkspaceMembership = Depends(
        require_workspace_roles(WorkspaceRole.OWNER.value, WorkspaceRole.ADMIN.value)
    ),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    config: PayoutConfig = Depends(get_payout_config),
) -> HireResponse:
    """
    Hire an SDR into a salary position (OWNER/ADMIN).
    - Enforces the tier SDR seat limit.
    - Schedules the SDR's payout one month after hire.
    - Charges the agency's saved payment method when one is on file.
    """
    job = await db.get(Job, job_id)
    if job is None or job.workspace_id != workspace.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    sdr = await db.get(User, payload.sdr_user_id)
    if sdr is None or not sdr.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    try:
        result = await hire_salaried_sdr(db, job, sdr, provider, dispatcher, config=config)
    except SettlementError as e:
        raise http_error(e)

    payment = result.salary_payment
    return HireResponse(
        success=True,
        salary_payment_id=payment.id,
        charged=result.charge.charged,
        charge_status=result.charge.status,
        payment_intent_id=result.charge.payment_intent_id,
        amount=payment.salary_amount,
        payout_date=payment.sdr_payout_date,
        message=result.charge.message,
    )
