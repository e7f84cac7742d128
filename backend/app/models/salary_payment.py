# backend/app/models/salary_payment.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import Money, UUIDType
from app.models.payout_state import PayoutStateMixin


class SalaryPayment(PayoutStateMixin, Base):
    """
    One row per salaried hire. The agency is charged at hire time; the SDR is
    paid on sdr_payout_date (hire date + 1 month, clamped to month end).
    """

    __tablename__ = "salary_payments"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    workspace_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sdr_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    salary_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # pending | paid | failed
    agency_charge_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    agency_charged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    # Bumped when a charge attempt ends unpaid; part of the charge idempotency key.
    charge_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    hired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}
