"""Chat cleanup request schema."""
from typing import Optional

from pydantic import Field

from walios.core.config import settings
from walios.schemas.common import CamelModel


class ChatCleanupRequest(CamelModel):
    action: str = "cleanup"
    dry_run: bool = False
    hours_old: float = Field(default=settings.chat_cleanup_hours_old, gt=0)
    user_id: Optional[str] = None
