# backend/app/models/workspace.py

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import Percent, UUIDType


class Workspace(Base):
    """An agency account. Owns jobs, deals and the commissions they produce."""

    __tablename__ = "workspaces"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # omega | beta | alpha (string for now; resolved via app.core.tiers)
    subscription_tier: Mapped[str] = mapped_column(String(30), nullable=False, default="omega")
    subscription_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Snapshot of the tier rake; NULL => derive from tier.
    rake_percentage: Mapped[Optional[Decimal]] = mapped_column(Percent, nullable=True)

    # Locked when commissions go unpaid past the grace period.
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    stripe_default_payment_method: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
