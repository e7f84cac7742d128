# backend/app/models/user.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import Money, UUIDType


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Operator channel: receives failed-payout alerts, may trigger payout runs.
    is_platform_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # SDR progression (drives the platform cut)
    sdr_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_deals_closed_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))

    # Payout destination (Stripe Connect)
    stripe_connect_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # not_connected | pending | active | disabled
    stripe_connect_status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_connected")
    stripe_connect_onboarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def has_active_payout_account(self) -> bool:
        return self.stripe_connect_account_id is not None and self.stripe_connect_status == "active"

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @staticmethod
    def normalize_full_name(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        v = " ".join(value.strip().split())
        return v or None
