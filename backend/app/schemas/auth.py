# backend/app/schemas/auth.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _normalize_full_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = " ".join(value.strip().split())
    return v or None


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Allow null to clear; empty strings normalize to None
    full_name: Optional[str] = Field(default=None, max_length=200)

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_full_name(v)


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    is_active: bool
    full_name: Optional[str] = None

    is_platform_admin: bool = False

    # SDR progression / payout destination
    sdr_level: int
    total_deals_closed_value: Decimal
    platform_cut_percentage: Decimal
    stripe_connect_status: str
    stripe_connect_onboarded_at: Optional[datetime] = None
    has_active_payout_account: bool
