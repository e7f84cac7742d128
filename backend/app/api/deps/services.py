# app/api/deps/services.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PayoutConfig, settings
from app.core.security import cron_secret_matches, optional_bearer_scheme, user_id_from_token
from app.db.session import get_db
from app.integrations.payments import PaymentProvider, build_payment_provider
from app.models.user import User
from app.services.notifications import NotificationDispatcher, build_notification_dispatcher


def get_payment_provider() -> Optional[PaymentProvider]:
    """None when Stripe is not configured."""
    return build_payment_provider(settings)


def get_notification_dispatcher() -> NotificationDispatcher:
    return build_notification_dispatcher(max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS)


def get_payout_config() -> PayoutConfig:
    return PayoutConfig.from_settings(settings)


async def require_cron_or_platform_admin(
    x_cron_secret: Optional[str] = Header(default=None, alias="X-Cron-Secret"),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """
    Batch triggers are open to the scheduler (shared secret) and to platform admins.
    Returns the admin user, or None for a cron caller.
    """
    if cron_secret_matches(x_cron_secret):
        return None

    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    user = await db.get(User, user_id_from_token(credentials.credentials))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not user.is_platform_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Platform admin required")
    return user
