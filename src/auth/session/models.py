from pydantic import BaseModel
from typing import Optional

from auth.usage_tracking.models import UserRole


class SessionData(BaseModel):
    """What the signed session cookie resolves to."""
    user_id: str
    email: str = ""
    role: UserRole = UserRole.MEMBER
    access_token: Optional[str] = None

    @property
    def is_superadmin(self) -> bool:
        return self.role == UserRole.SUPERADMIN
