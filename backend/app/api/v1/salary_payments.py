# backend/app/api/v1/salary_payments.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.services import get_notification_dispatcher, get_payment_provider, get_payout_config
from app.api.deps.workspace import get_current_membership, get_current_workspace, require_workspace_roles
from app.api.errors import http_error
from app.core.config import PayoutConfig
from app.core.errors import SettlementError
from app.core.roles import MANAGER_ROLES, WorkspaceRole
from app.db.session import get_db
from app.integrations.payments import PaymentProvider
from app.models.salary_payment import SalaryPayment
from app.models.workspace import Workspace
from app.models.workspace_membership import WorkspaceMembership
from app.schemas.payouts import SalaryChargeResponse, SalaryPaymentListOut, SalaryPaymentOut
from app.services.charges import charge_salary_payment
from app.services.notifications import NotificationDispatcher
from app.services.payouts import list_salary_payments

router = APIRouter(prefix="/salary-payments", tags=["salary-payments"])


@router.get("", response_model=SalaryPaymentListOut)
async def list_workspace_salary_payments(
    workspace: Workspace = Depends(get_current_workspace),
    membership: WorkspaceMembership = Depends(get_current_membership),
    db: AsyncSession = Depends(get_db),
) -> SalaryPaymentListOut:
    role = (membership.role or "").upper()
    sdr_id = None if role in MANAGER_ROLES else membership.user_id

    rows = await list_salary_payments(db, workspace.id, sdr_id=sdr_id)
    return SalaryPaymentListOut(
        items=[SalaryPaymentOut.model_validate(r) for r in rows],
        total=len(rows),
    )


@router.post("/{salary_payment_id}/charge", response_model=SalaryChargeResponse)
async def charge_salary(
    salary_payment_id: uuid.UUID,
    workspace: Workspace = Depends(get_current_workspace),
    _membership: WorkspaceMembership = Depends(
        require_workspace_roles(WorkspaceRole.OWNER.value, WorkspaceRole.ADMIN.value)
    ),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    config: PayoutConfig = Depends(get_payout_config),
) -> SalaryChargeResponse:
    """
    Retry the agency charge for a salary hire, e.g. after a decline once a new
    payment method is saved. The SDR payout only runs once this is paid.
    """
    payment = await db.get(SalaryPayment, salary_payment_id)
    if payment is None or payment.workspace_id != workspace.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Salary payment not found")

    try:
        outcome = await charge_salary_payment(db, payment, provider, dispatcher, config=config)
    except SettlementError as e:
        raise http_error(e)

    return SalaryChargeResponse(
        success=outcome.charged,
        status=outcome.status,
        salary_payment_id=payment.id,
        payment_intent_id=outcome.payment_intent_id,
        amount=payment.salary_amount,
        message=outcome.message,
    )
