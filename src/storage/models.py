"""Data models for portal submission storage"""

import uuid
from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current time used for every stored timestamp"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class PortalType(str, Enum):
    """Government portals we can submit to"""
    IMMIGRATION = 'IMMIGRATION'
    VISA = 'VISA'
    REGISTRATION_BUREAU = 'REGISTRATION_BUREAU'
    EMPLOYMENT_PERMIT = 'EMPLOYMENT_PERMIT'


class PortalSubmissionStatus(str, Enum):
    PENDING = 'PENDING'
    IN_PROGRESS = 'IN_PROGRESS'
    SUBMITTED = 'SUBMITTED'
    FAILED = 'FAILED'
    RETRYING = 'RETRYING'
    RETRY_SCHEDULED = 'RETRY_SCHEDULED'
    COMPLETED = 'COMPLETED'


class FormSubmissionStatus(str, Enum):
    DRAFT = 'DRAFT'
    COMPLETED = 'COMPLETED'
    SIGNED = 'SIGNED'
    SUBMITTED = 'SUBMITTED'


class PortalSubmission(BaseModel):
    """One government-portal submission tied to a form submission.

    Never deleted: the record is the audit trail of an external interaction.
    """
    id: str = Field(default_factory=new_id)
    form_submission_id: str
    portal_type: PortalType
    status: PortalSubmissionStatus = PortalSubmissionStatus.PENDING
    confirmation_number: Optional[str] = None
    confirmation_receipt_url: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0  # scheduled retries, owned by the retry engine
    attempt_count: int = 0  # every orchestrator attempt, including the first
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    requested_by: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PortalFieldMapping(BaseModel):
    """Correspondence between a logical form field and a portal input name"""
    id: str = Field(default_factory=new_id)
    portal_type: PortalType
    form_field: str
    portal_field: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FormTemplate(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None


class FormSubmission(BaseModel):
    """Filled form as produced by the case-management side"""
    id: str = Field(default_factory=new_id)
    template_id: str
    case_id: Optional[str] = None
    form_data: Dict[str, Any] = Field(default_factory=dict)
    status: FormSubmissionStatus = FormSubmissionStatus.COMPLETED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PortalCredentials(BaseModel):
    username: str
    password: str


class PortalSubmissionResult(BaseModel):
    """Outcome of one automation attempt.

    Screenshots travel with the result but are never serialized; the
    orchestrator hands them to receipt storage.
    """
    success: bool
    status: PortalSubmissionStatus
    confirmation_number: Optional[str] = None
    confirmation_receipt_url: Optional[str] = None
    error_message: Optional[str] = None
    receipt_screenshot: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    error_screenshot: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @classmethod
    def failed(cls, error_message: str, error_screenshot: Optional[bytes] = None) -> "PortalSubmissionResult":
        return cls(
            success=False,
            status=PortalSubmissionStatus.FAILED,
            error_message=error_message,
            error_screenshot=error_screenshot,
        )
