# app/schemas/payouts.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class SalaryPaymentOut(BaseModel):
    id: uuid.UUID
    workspace_id: uuid.UUID
    sdr_id: uuid.UUID
    job_id: uuid.UUID

    salary_amount: Decimal
    agency_charge_status: str
    agency_charged_at: Optional[datetime] = None
    charge_attempts: int = 0
    hired_at: datetime

    sdr_payout_status: Optional[str] = None
    sdr_payout_date: Optional[date] = None
    sdr_payout_amount: Decimal
    sdr_paid_at: Optional[datetime] = None
    retry_count: int = 0
    failure_reason: Optional[str] = None

    created_at: datetime

    class Config:
        from_attributes = True


class SalaryPaymentListOut(BaseModel):
    items: List[SalaryPaymentOut]
    total: int


class HireRequest(BaseModel):
    sdr_user_id: uuid.UUID


class HireResponse(BaseModel):
    success: bool
    salary_payment_id: uuid.UUID
    charged: bool
    charge_status: str
    payment_intent_id: Optional[str] = None
    amount: Decimal
    payout_date: date
    message: str = ""


class SalaryChargeResponse(BaseModel):
    success: bool
    status: str
    salary_payment_id: uuid.UUID
    payment_intent_id: Optional[str] = None
    amount: Decimal
    message: str = ""


class PayoutDetailOut(BaseModel):
    id: str
    kind: str
    status: str
    amount: Optional[str] = None
    transfer_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    retry_count: Optional[int] = None


class PayoutBatchOut(BaseModel):
    processed: int
    successful: int
    failed: int
    held: int
    details: List[PayoutDetailOut]


class ReleaseHeldOut(BaseModel):
    released: int
    total_amount: Decimal


class OverdueRunOut(BaseModel):
    processed: int
    auto_charged: int
    locked_workspaces: int
    errors: List[str]
    stripe_enabled: bool
