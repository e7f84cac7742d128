# app/schemas/contracts.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class ContractDealOut(BaseModel):
    id: uuid.UUID
    title: str
    value: Decimal

    class Config:
        from_attributes = True


class ContractOut(BaseModel):
    id: uuid.UUID
    title: str
    content: str
    status: str
    deal: ContractDealOut


class ContractSignRequest(BaseModel):
    signer_name: str = Field(min_length=1, max_length=200)
    signer_email: EmailStr
    agreed: bool
    signature_data: Optional[str] = None


class ContractSignResponse(BaseModel):
    success: bool = True
    contract_id: uuid.UUID
    deal_id: uuid.UUID
    signed_at: Optional[datetime] = None

    commission_created: bool
    commission_id: Optional[uuid.UUID] = None
    # Error code when the commission could not be written (signature still stands)
    commission_error: Optional[str] = None
