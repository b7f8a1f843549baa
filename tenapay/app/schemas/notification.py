"""
Notification Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from tenapay.app.models.notification import NotificationType


class NotificationResponse(BaseModel):
    class Config:
        from_attributes = True

    id: int
    type: NotificationType
    title: str
    message: str
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None
