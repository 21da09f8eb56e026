"""Notification schemas."""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from mdrrmo_api.models.notification import NotificationPriority, NotificationType


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    inventory_item_id: Optional[int] = None
    deployment_id: Optional[int] = None
    user_id: Optional[int] = None
    seen: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
