# backend/app/models/payout_state.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.types import Money


class PayoutStateMixin:
    """
    SDR payout columns shared by commissions and salary payments so the
    batch processor can drive both through the same state machine.
    """

    # pending | scheduled | processing | paid | held | failed
    sdr_payout_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    sdr_payout_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    sdr_payout_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    sdr_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sdr_stripe_transfer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
