# app/services/contracts.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import PayoutConfig
from app.core.errors import InvalidSettlementInput, InvalidStateTransition, SettlementError
from app.core.statuses import ContractStatus, DealStage
from app.models.commission import Commission
from app.models.contract import Contract, ContractSignature
from app.models.deal import Deal
from app.models.workspace import Workspace
from app.services.commissions import create_commission_for_deal
from app.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class ContractNotSignable(InvalidStateTransition):
    code = "CONTRACT_NOT_SIGNABLE"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SignatureResult:
    contract: Contract
    deal: Deal
    commission: Optional[Commission] = None
    commission_error: Optional[str] = None

    @property
    def commission_created(self) -> bool:
        return self.commission is not None


async def get_signable_contract(db: AsyncSession, contract_id: uuid.UUID) -> Optional[Contract]:
    """None when missing; ContractNotSignable when it is not awaiting signature."""
    contract = await db.get(Contract, contract_id)
    if contract is None:
        return None
    if contract.status != ContractStatus.SENT.value:
        raise ContractNotSignable("Contract is not available for signing", status=contract.status)
    return contract


async def sign_contract(
    db: AsyncSession,
    contract: Contract,
    *,
    signer_name: str,
    signer_email: str,
    agreed: bool,
    signature_data: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    config: Optional[PayoutConfig] = None,
) -> SignatureResult:
    """
    Record the signature, close the deal as won, commit, then write the
    commission. A commission failure is reported on the result; the signature
    and deal transition stay committed.
    """
    name = " ".join((signer_name or "").split())
    email = (signer_email or "").strip().lower()
    if not name or not email or not agreed:
        raise InvalidSettlementInput("Signer name, email and agreement are required")

    if contract.status != ContractStatus.SENT.value:
        raise ContractNotSignable("Contract cannot be signed", current_status=contract.status)

    deal = await db.get(Deal, contract.deal_id)
    if deal is None:
        raise InvalidSettlementInput("Contract has no deal", contract_id=str(contract.id))
    if deal.stage != DealStage.OPEN.value:
        raise ContractNotSignable("Deal is already closed", deal_stage=deal.stage)

    now = _utcnow()
    db.add(
        ContractSignature(
            contract_id=contract.id,
            signer_name=name,
            signer_email=email,
            signature_data=signature_data or None,
            ip_address=ip_address or "unknown",
            user_agent=(user_agent or "unknown")[:500],
            signed_at=now,
        )
    )
    contract.status = ContractStatus.SIGNED.value
    contract.signed_at = now
    deal.stage = DealStage.CLOSED_WON.value
    deal.closed_at = now

    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise ContractNotSignable("Deal was modified concurrently", deal_id=str(deal.id)) from e

    logger.info("Contract %s signed by %s; deal %s closed_won", contract.id, email, deal.id)

    result = SignatureResult(contract=contract, deal=deal)

    workspace = await db.get(Workspace, deal.workspace_id)
    try:
        result.commission = await create_commission_for_deal(
            db, deal, workspace, dispatcher, config=config
        )
    except SettlementError as e:
        logger.error("Commission not created for deal %s: %s", deal.id, e.message)
        result.commission_error = e.code
    except Exception:
        logger.exception("Commission writer failed for deal %s", deal.id)
        await db.rollback()
        result.commission_error = "COMMISSION_FAILED"

    return result
