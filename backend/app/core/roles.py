# app/core/roles.py

import enum


class WorkspaceRole(str, enum.Enum):
    OWNER = "OWNER"   # agency owner / ultimate authority, pays commissions
    ADMIN = "ADMIN"   # can do everything in the workspace (like owner)
    SDR = "SDR"       # hired sales rep; counts against the tier seat limit


MANAGER_ROLES = {WorkspaceRole.OWNER.value, WorkspaceRole.ADMIN.value}
