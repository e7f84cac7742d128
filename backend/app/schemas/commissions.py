# app/schemas/commissions.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class CommissionOut(BaseModel):
    id: uuid.UUID
    workspace_id: uuid.UUID
    deal_id: uuid.UUID
    sdr_id: Optional[uuid.UUID] = None

    deal_value: Decimal
    amount: Decimal
    agency_rake_percentage: Decimal
    agency_rake_amount: Decimal
    commission_percentage: Decimal
    platform_cut_percentage: Decimal
    platform_cut_amount: Decimal
    rake_amount: Decimal
    sdr_payout_amount: Decimal
    total_agency_owed: Decimal
    is_agency_self_closed: bool

    status: str
    paid_at: Optional[datetime] = None
    charge_attempts: int = 0

    sdr_payout_status: Optional[str] = None
    sdr_payout_date: Optional[date] = None
    sdr_paid_at: Optional[datetime] = None
    retry_count: int = 0
    failure_reason: Optional[str] = None

    created_at: datetime

    class Config:
        from_attributes = True


class CommissionListOut(BaseModel):
    items: List[CommissionOut]
    total: int


class CommissionChargeRequest(BaseModel):
    auto_charge: bool = False


class CommissionChargeResponse(BaseModel):
    success: bool
    status: str
    commission_id: uuid.UUID
    payment_intent_id: Optional[str] = None
    amount: Decimal
    message: str = ""
