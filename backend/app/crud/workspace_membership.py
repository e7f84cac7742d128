# app/crud/workspace_membership.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.roles import WorkspaceRole
from app.models.workspace_membership import WorkspaceMembership


async def get_membership(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Optional[WorkspaceMembership]:
    stmt = select(WorkspaceMembership).where(
        WorkspaceMembership.workspace_id == workspace_id,
        WorkspaceMembership.user_id == user_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def count_active_sdr_memberships_excluding_user(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    exclude_user_id: uuid.UUID,
) -> int:
    """
    Counts ACTIVE SDR memberships for a workspace, excluding one user
    so re-hiring an SDR who already holds a seat is not blocked.
    """
    stmt = (
        select(func.count(WorkspaceMembership.id))
        .where(WorkspaceMembership.workspace_id == workspace_id)
        .where(WorkspaceMembership.is_active.is_(True))
        .where(WorkspaceMembership.role == WorkspaceRole.SDR.value)
        .where(WorkspaceMembership.user_id != exclude_user_id)
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)
