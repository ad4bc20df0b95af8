import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from auth.usage_tracking.models import utcnow


class AdminActivity(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    admin_user_id: str
    action: str
    target_user_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class SystemStats(BaseModel):
    total_users: int
    total_chat_sessions: int
    total_conversations: int
    active_users_last_30_days: int
    users_by_tier: dict[str, int]


DEFAULT_ADMIN_SETTINGS = {
    "get_started_video_url": "https://youtu.be/lCAa4-Wu0og",
}
