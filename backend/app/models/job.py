# backend/app/models/job.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import Money, Percent, UUIDType


class Job(Base):
    """A posted SDR position. Carries the commission % or salary the agency agreed to."""

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    workspace_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # commission | salary
    employment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="commission")

    # Percent of deal value paid to the closing SDR (e.g. 10.000 == 10%)
    commission_percentage: Mapped[Decimal] = mapped_column(Percent, nullable=False, default=Decimal("0"))

    # Monthly salary (salary positions only)
    salary_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
