# app/schemas/notifications.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NotificationOut(BaseModel):
    id: uuid.UUID
    workspace_id: Optional[uuid.UUID] = None
    type: str
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationsPageOut(BaseModel):
    items: List[NotificationOut]
    limit: int
    offset: int
    total: int
    unread: int
