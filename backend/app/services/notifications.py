# app/services/notifications.py
"""
Best-effort in-app notifications.

The dispatcher writes through its own session so a failed notification can
never roll back (or be rolled back by) the settlement transaction that
triggered it. Failures are retried a bounded number of times, then logged and
dropped; ``send`` never raises.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import get_sessionmaker
from app.models.notification import Notification
from app.models.user import User

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class NotificationRequest:
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    workspace_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 0.2,
    ) -> None:
        self._session_factory = session_factory
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_seconds = retry_delay_seconds

    async def _write(self, requests: list[NotificationRequest]) -> None:
        async with self._session_factory() as session:
            for r in requests:
                session.add(
                    Notification(
                        user_id=r.user_id,
                        workspace_id=r.workspace_id,
                        type=r.type,
                        title=r.title,
                        message=r.message,
                        data=_jsonable(r.data or {}),
                        is_read=False,
                    )
                )
            await session.commit()

    async def _deliver(self, requests: list[NotificationRequest]) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._write(requests)
                return True
            except Exception:
                if attempt >= self.max_attempts:
                    logger.exception(
                        "Dropping %d notification(s) after %d attempts (types=%s)",
                        len(requests),
                        attempt,
                        sorted({r.type for r in requests}),
                    )
                    return False
                logger.warning("Notification write failed (attempt %d/%d); retrying", attempt, self.max_attempts)
                if self.retry_delay_seconds:
                    await asyncio.sleep(self.retry_delay_seconds * attempt)
        return False

    async def send(self, request: NotificationRequest) -> bool:
        return await self._deliver([request])

    async def send_many(self, requests: Iterable[NotificationRequest]) -> bool:
        batch = [r for r in requests if r is not None]
        if not batch:
            return True
        return await self._deliver(batch)

    async def notify_platform_admins(
        self,
        *,
        type: str,
        title: str,
        message: str,
        workspace_id: Optional[uuid.UUID] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Operator channel: one notification per active platform admin."""
        try:
            async with self._session_factory() as session:
                admin_ids = (
                    await session.execute(
                        select(User.id).where(User.is_platform_admin.is_(True), User.is_active.is_(True))
                    )
                ).scalars().all()
        except Exception:
            logger.exception("Could not resolve platform admins for %s notification", type)
            return False

        if not admin_ids:
            logger.warning("No platform admins to notify (%s): %s", type, message)
            return False

        return await self.send_many(
            NotificationRequest(
                user_id=admin_id,
                workspace_id=workspace_id,
                type=type,
                title=title,
                message=message,
                data=dict(data or {}),
            )
            for admin_id in admin_ids
        )


def build_notification_dispatcher(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    *,
    max_attempts: int = 3,
) -> NotificationDispatcher:
    if session_factory is None:
        session_factory = get_sessionmaker()
    return NotificationDispatcher(session_factory, max_attempts=max_attempts)
