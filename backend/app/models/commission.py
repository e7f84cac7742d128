# backend/app/models/commission.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import Money, Percent, UUIDType
from app.models.payout_state import PayoutStateMixin


class Commission(PayoutStateMixin, Base):
    """
    One settlement per closed-won deal.

    Money columns (all cents-precision):
      - amount: SDR gross commission (0 when the agency closed its own deal)
      - agency_rake_amount: platform fee billed to the agency
      - platform_cut_amount: platform's share of the SDR gross commission
      - sdr_payout_amount: SDR net payout (amount - platform_cut_amount)
      - rake_amount: everything the platform keeps (agency rake + platform cut)

    Agency owes amount + agency_rake_amount.
    """

    __tablename__ = "commissions"
    __table_args__ = (
        Index("ix_commissions_workspace_status", "workspace_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    workspace_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # At most one commission per deal.
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Deal assignee (SDR, or the owner on self-closed deals)
    sdr_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    deal_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    rake_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    agency_rake_percentage: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    agency_rake_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_percentage: Mapped[Decimal] = mapped_column(Percent, nullable=False, default=Decimal("0"))
    platform_cut_percentage: Mapped[Decimal] = mapped_column(Percent, nullable=False, default=Decimal("0"))
    platform_cut_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    is_agency_self_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # pending | paid | overdue
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    # Bumped when a charge attempt ends unpaid; part of the charge idempotency key.
    charge_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_agency_owed(self) -> Decimal:
        return (self.amount or Decimal("0")) + (self.agency_rake_amount or Decimal("0"))
