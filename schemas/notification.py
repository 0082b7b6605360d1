from datetime import datetime
from pydantic import BaseModel, ConfigDict
from typing import Optional

from constant.enum import NotificationType


class NotificationSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    type: NotificationType
    title: str
    content: str
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    is_read: bool = False
    created_at: datetime
