"""Portal integration service - entry points used by the case-management side"""

from typing import List, Optional
from loguru import logger

from .scheduler import RetryScheduler, ScheduledTask
from .side_effects import SideEffectPolicy, run_side_effect
from src.analytics.audit_log import AuditAction, RESOURCE_PORTAL_FIELD_MAPPING, RESOURCE_PORTAL_SUBMISSION
from src.errors import (
    FieldMappingNotFoundError,
    FormSubmissionNotFoundError,
    FormTemplateNotFoundError,
    InvalidSubmissionStateError,
    PortalRoutingError,
    SubmissionNotFoundError,
)
from src.portals.registry import detect_portal_type
from src.storage.models import (
    FormSubmissionStatus,
    PortalFieldMapping,
    PortalSubmission,
    PortalSubmissionStatus,
    PortalType,
)

# A form may be re-sent only while its portal submission is in one of these states
REUSABLE_STATUSES = (
    PortalSubmissionStatus.PENDING,
    PortalSubmissionStatus.FAILED,
    PortalSubmissionStatus.RETRYING,
)

RETRYABLE_STATUSES = (
    PortalSubmissionStatus.FAILED,
    PortalSubmissionStatus.RETRYING,
)


class PortalIntegrationService:
    """Field mapping administration, submission requests, status and manual retry"""

    def __init__(
        self,
        store,
        orchestrator,
        scheduler: RetryScheduler,
        audit_log,
        side_effect_policy: SideEffectPolicy = SideEffectPolicy.BEST_EFFORT,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.audit_log = audit_log
        self.side_effect_policy = SideEffectPolicy(side_effect_policy)

    async def _audit(self, user_id: str, action: str, resource_type: str, resource_id: str, details: dict):
        await run_side_effect(
            self.side_effect_policy,
            self.audit_log.log_event(user_id, action, resource_type, resource_id, details),
            f"Audit {action}",
            resource_id,
        )

    # ------------------------------------------------------------------
    # Field mappings
    # ------------------------------------------------------------------

    async def get_field_mappings(self, portal_type: PortalType) -> List[PortalFieldMapping]:
        return await self.store.get_field_mappings(PortalType(portal_type))

    async def create_field_mapping(
        self,
        portal_type: PortalType,
        form_field: str,
        portal_field: str,
        user_id: str,
    ) -> PortalFieldMapping:
        mapping = await self.store.create_field_mapping(PortalType(portal_type), form_field, portal_field)
        await self._audit(user_id, AuditAction.CREATE, RESOURCE_PORTAL_FIELD_MAPPING, mapping.id, {
            'portal_type': mapping.portal_type.value,
            'form_field': form_field,
            'portal_field': portal_field,
        })
        logger.info(f"Mapped {form_field} -> {portal_field} on {mapping.portal_type.value}")
        return mapping

    async def update_field_mapping(self, mapping_id: str, portal_field: str, user_id: str) -> PortalFieldMapping:
        mapping = await self.store.update_field_mapping(mapping_id, portal_field)
        if mapping is None:
            raise FieldMappingNotFoundError(mapping_id)
        await self._audit(user_id, AuditAction.UPDATE, RESOURCE_PORTAL_FIELD_MAPPING, mapping_id, {
            'portal_field': portal_field,
        })
        return mapping

    async def delete_field_mapping(self, mapping_id: str, user_id: str):
        if not await self.store.delete_field_mapping(mapping_id):
            raise FieldMappingNotFoundError(mapping_id)
        await self._audit(user_id, AuditAction.DELETE, RESOURCE_PORTAL_FIELD_MAPPING, mapping_id, {})

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def submit_form(self, form_submission_id: str, user_id: str) -> PortalSubmission:
        """
        Request submission of a completed form to its government portal

        The automation itself runs in the background; the returned record
        is the submission as it was before the run started.

        Raises:
            FormSubmissionNotFoundError: unknown form submission
            InvalidSubmissionStateError: form already submitted, or the portal
                submission is past the point where it can be re-sent
            FormTemplateNotFoundError: the form's template is missing
            PortalRoutingError: no portal matches the template
        """
        form_submission = await self.store.get_form_submission(form_submission_id)
        if form_submission is None:
            raise FormSubmissionNotFoundError(form_submission_id)

        if form_submission.status == FormSubmissionStatus.SUBMITTED:
            raise InvalidSubmissionStateError("Form is already submitted")

        template = await self.store.get_form_template(form_submission.template_id)
        if template is None:
            raise FormTemplateNotFoundError(form_submission.template_id)

        portal_type = detect_portal_type(template.name)
        if portal_type is None:
            raise PortalRoutingError("Unable to determine portal type for this form template")

        submission = await self.store.get_submission_by_form_submission_id(form_submission_id)
        if submission is None:
            submission = await self.store.create_submission(form_submission_id, portal_type, requested_by=user_id)
            await self._audit(user_id, AuditAction.CREATE, RESOURCE_PORTAL_SUBMISSION, submission.id, {
                'form_submission_id': form_submission_id,
                'portal_type': portal_type.value,
            })
        elif submission.status not in REUSABLE_STATUSES:
            raise InvalidSubmissionStateError(f"Portal submission is already in {submission.status.value} status")

        await self.store.update_form_submission_status(form_submission_id, FormSubmissionStatus.SUBMITTED)
        self._run_in_background(submission.id, user_id)
        logger.info(f"[{submission.id}] Queued {portal_type.value} submission for form {form_submission_id}")
        return submission

    async def get_submission_status(self, portal_submission_id: str) -> PortalSubmission:
        submission = await self.store.get_submission(portal_submission_id)
        if submission is None:
            raise SubmissionNotFoundError(portal_submission_id)
        return submission

    async def get_status_for_form_submission(self, form_submission_id: str) -> PortalSubmission:
        submission = await self.store.get_submission_by_form_submission_id(form_submission_id)
        if submission is None:
            raise SubmissionNotFoundError(form_submission_id)
        return submission

    async def retry_submission(self, portal_submission_id: str, user_id: str) -> PortalSubmission:
        """
        Manually re-run a failed submission

        Raises:
            SubmissionNotFoundError: unknown submission
            InvalidSubmissionStateError: submission is not FAILED or RETRYING;
                nothing is changed
        """
        submission = await self.store.get_submission(portal_submission_id)
        if submission is None:
            raise SubmissionNotFoundError(portal_submission_id)

        if submission.status not in RETRYABLE_STATUSES:
            raise InvalidSubmissionStateError(f"Cannot retry submission with status {submission.status.value}")

        updated = await self.store.update_submission(
            portal_submission_id,
            {'status': PortalSubmissionStatus.RETRYING},
            expected_version=submission.version,
        )
        await self._audit(user_id, AuditAction.RETRY, RESOURCE_PORTAL_SUBMISSION, portal_submission_id, {
            'previous_status': submission.status.value,
            'retry_count': submission.retry_count,
        })
        self._run_in_background(portal_submission_id, user_id)
        logger.info(f"[{portal_submission_id}] Manual retry requested by {user_id}")
        return updated

    def _run_in_background(self, portal_submission_id: str, user_id: str) -> ScheduledTask:
        async def run():
            await self.orchestrator.submit_form_to_portal(portal_submission_id, user_id)

        return self.scheduler.schedule(0, run, name=f"submit:{portal_submission_id}")

    async def list_submissions(self, status: Optional[PortalSubmissionStatus] = None) -> List[PortalSubmission]:
        return await self.store.list_submissions(status)
