# backend/app/api/v1/contracts.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.services import get_notification_dispatcher, get_payout_config
from app.api.errors import http_error
from app.core.config import PayoutConfig
from app.core.errors import SettlementError
from app.db.session import get_db
from app.models.deal import Deal
from app.schemas.contracts import ContractDealOut, ContractOut, ContractSignRequest, ContractSignResponse
from app.services.contracts import get_signable_contract, sign_contract
from app.services.notifications import NotificationDispatcher

# Public: the client signs via an emailed link, without an account.
router = APIRouter(prefix="/contracts", tags=["contracts"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.get("/{contract_id}", response_model=ContractOut)
async def get_contract_for_signing(
    contract_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> ContractOut:
    try:
        contract = await get_signable_contract(db, contract_id)
    except SettlementError as e:
        raise http_error(e)
    if contract is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")

    deal = await db.get(Deal, contract.deal_id)
    if deal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")

    return ContractOut(
        id=contract.id,
        title=contract.title,
        content=contract.content,
        status=contract.status,
        deal=ContractDealOut.model_validate(deal),
    )


@router.post("/{contract_id}/sign", response_model=ContractSignResponse)
async def sign(
    contract_id: uuid.UUID,
    payload: ContractSignRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    config: PayoutConfig = Depends(get_payout_config),
) -> ContractSignResponse:
    """
    Sign a sent contract. Closes the deal as won and writes its commission.
    A commission failure does not undo the signature; it is reported as
    commission_error.
    """
    try:
        contract = await get_signable_contract(db, contract_id)
        if contract is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")

        result = await sign_contract(
            db,
            contract,
            signer_name=payload.signer_name,
            signer_email=payload.signer_email,
            agreed=payload.agreed,
            signature_data=payload.signature_data,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            dispatcher=dispatcher,
            config=config,
        )
    except SettlementError as e:
        raise http_error(e)

    return ContractSignResponse(
        contract_id=result.contract.id,
        deal_id=result.deal.id,
        signed_at=result.contract.signed_at,
        commission_created=result.commission_created,
        commission_id=result.commission.id if result.commission is not None else None,
        commission_error=result.commission_error,
    )
