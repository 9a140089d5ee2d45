"""Audit trail of portal submission events"""

import os
import json
import asyncio
from typing import Dict, Any, List, Optional
from loguru import logger
from pydantic import BaseModel, Field

from src.browser.sanitize import sanitize_credentials
from src.storage.models import utcnow
from datetime import datetime

RESOURCE_PORTAL_SUBMISSION = 'PORTAL_SUBMISSION'
RESOURCE_PORTAL_FIELD_MAPPING = 'PORTAL_FIELD_MAPPING'


class AuditAction:
    """Action names written to the audit log"""
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    RETRY = 'RETRY'
    SUBMIT_SUCCESS = 'SUBMIT_SUCCESS'
    SUBMIT_FAILURE = 'SUBMIT_FAILURE'
    SUBMISSION_FAILED = 'PORTAL_SUBMISSION_FAILED'
    RETRY_SCHEDULED = 'PORTAL_SUBMISSION_RETRY_SCHEDULED'
    RETRY_SUCCEEDED = 'PORTAL_SUBMISSION_RETRY_SUCCEEDED'
    RETRY_FAILED = 'PORTAL_SUBMISSION_RETRY_FAILED'
    RETRY_SKIPPED = 'PORTAL_SUBMISSION_RETRY_SKIPPED'
    RETRY_ERROR = 'PORTAL_SUBMISSION_RETRY_ERROR'


class AuditEvent(BaseModel):
    user_id: str
    action: str
    resource_type: str
    resource_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class AuditLog:
    """Keeps audit events in memory and appends them to a JSON-lines file"""

    def __init__(self, log_file: Optional[str] = None):
        self.log_file = log_file
        self.events: List[AuditEvent] = []

    def _append(self, line: str):
        directory = os.path.dirname(self.log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(line + "\n")

    async def log_event(
        self,
        user_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=sanitize_credentials(details or {}),
        )
        self.events.append(event)
        if self.log_file:
            await asyncio.to_thread(self._append, json.dumps(event.model_dump(mode='json'), default=str))
        logger.info(f"[{resource_id}] Audit: {action} by {user_id}")
        return event

    def events_for(self, resource_id: str, action: Optional[str] = None) -> List[AuditEvent]:
        return [
            event for event in self.events
            if event.resource_id == resource_id and (action is None or event.action == action)
        ]
