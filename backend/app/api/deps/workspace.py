import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.auth import get_current_user
from app.core.roles import WorkspaceRole
from app.crud.workspace_membership import get_membership
from app.db.session import get_db
from app.models.user import User
from app.models.workspace import Workspace
from app.models.workspace_membership import WorkspaceMembership

ALLOWED_WORKSPACE_ROLES = {r.value for r in WorkspaceRole}


async def get_current_workspace(
    x_workspace_id: Optional[str] = Header(default=None, alias="X-Workspace-Id"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Workspace:
    """
    Resolve workspace from X-Workspace-Id header and ensure current user has an active membership.
    """
    if not x_workspace_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Workspace-Id header is required",
        )

    try:
        workspace_uuid = uuid.UUID(x_workspace_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="X-Workspace-Id must be a valid UUID",
        )

    workspace = await db.get(Workspace, workspace_uuid)
    if not workspace:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workspace not found",
        )

    membership = await get_membership(db, workspace_id=workspace.id, user_id=user.id)
    if not membership or not membership.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this workspace",
        )

    return workspace


async def get_current_membership(
    workspace: Workspace = Depends(get_current_workspace),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> WorkspaceMembership:
    """
    Fetch the active membership for (user, workspace). Safe after get_current_workspace.
    """
    return await get_membership(db, workspace_id=workspace.id, user_id=user.id)


def require_workspace_roles(*allowed_roles: str):
    """
    Enforce membership.role is in allowed_roles. (OWNER/ADMIN/SDR)
    """
    allowed = {r.upper() for r in allowed_roles}
    unknown = allowed - ALLOWED_WORKSPACE_ROLES
    if unknown:
        raise ValueError(
            f"Unknown workspace role(s): {sorted(unknown)}. Allowed: {sorted(ALLOWED_WORKSPACE_ROLES)}"
        )

    async def _checker(
        membership: WorkspaceMembership = Depends(get_current_membership),
    ) -> WorkspaceMembership:
        role = (membership.role or "").upper()
        if role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient role: {role}. Allowed: {', '.join(sorted(allowed))}",
            )
        return membership

    return _checker
