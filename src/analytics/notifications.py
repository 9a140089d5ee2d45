"""User notifications about portal submission outcomes"""

import os
import json
import asyncio
from typing import Dict, Any, List, Optional
from datetime import datetime
from loguru import logger
from pydantic import BaseModel, Field

from src.browser.sanitize import sanitize_credentials
from src.storage.models import new_id, utcnow


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    message: str
    type: str = 'info'  # 'info', 'success', 'error'
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False


class NotificationService:
    """Outbox of user notifications, optionally mirrored to a JSON-lines file"""

    def __init__(self, outbox_file: Optional[str] = None):
        self.outbox_file = outbox_file
        self.sent: List[Notification] = []

    def _append(self, line: str):
        directory = os.path.dirname(self.outbox_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.outbox_file, 'a', encoding='utf-8') as f:
            f.write(line + "\n")

    async def send_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str = 'info',
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            data=sanitize_credentials(data or {}),
        )
        self.sent.append(notification)
        if self.outbox_file:
            await asyncio.to_thread(self._append, json.dumps(notification.model_dump(mode='json'), default=str))
        logger.info(f"📨 Notification to {user_id}: {title}")
        return notification

    def for_user(self, user_id: str) -> List[Notification]:
        return [n for n in self.sent if n.user_id == user_id]
