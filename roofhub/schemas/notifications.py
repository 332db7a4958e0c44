import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    user_id: uuid.UUID
    type: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    project_id: Optional[uuid.UUID] = None
    project_name: Optional[str] = None
    action_url: Optional[str] = None


class NotificationResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    project_id: Optional[uuid.UUID] = None
    project_name: Optional[str] = None
    action_url: Optional[str] = None
    read: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total_count: int
    unread_count: int
    has_more: bool


class NotificationMarkRead(BaseModel):
    notification_ids: Optional[List[uuid.UUID]] = None
    mark_all_as_read: bool = False
