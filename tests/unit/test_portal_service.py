"""Unit tests for the portal integration service"""

import pytest

from src.analytics.audit_log import AuditAction
from src.errors import (
    DuplicateFieldMappingError,
    FieldMappingNotFoundError,
    FormSubmissionNotFoundError,
    FormTemplateNotFoundError,
    InvalidSubmissionStateError,
    PortalRoutingError,
    SubmissionNotFoundError,
)
from src.storage.models import (
    FormSubmission,
    FormSubmissionStatus,
    PortalSubmissionStatus,
    PortalType,
)


class TestFieldMappingAdministration:
    @pytest.mark.asyncio
    async def test_mapping_lifecycle_is_audited(self, pipeline, audit_log):
        service = pipeline.service

        mapping = await service.create_field_mapping(PortalType.VISA, "firstName", "applicant_first_name", "admin")
        await service.update_field_mapping(mapping.id, "given_name", "admin")
        await service.delete_field_mapping(mapping.id, "admin")

        actions = [event.action for event in audit_log.events_for(mapping.id)]
        assert actions == [AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE]
        assert await service.get_field_mappings(PortalType.VISA) == []

    @pytest.mark.asyncio
    async def test_unknown_mapping(self, pipeline):
        with pytest.raises(FieldMappingNotFoundError):
            await pipeline.service.update_field_mapping("missing", "x", "admin")
        with pytest.raises(FieldMappingNotFoundError):
            await pipeline.service.delete_field_mapping("missing", "admin")

    @pytest.mark.asyncio
    async def test_duplicate_mapping(self, pipeline):
        await pipeline.service.create_field_mapping(PortalType.VISA, "firstName", "a", "admin")
        with pytest.raises(DuplicateFieldMappingError):
            await pipeline.service.create_field_mapping(PortalType.VISA, "firstName", "b", "admin")


class TestSubmitForm:
    @pytest.mark.asyncio
    async def test_creates_submission_and_queues_run(self, pipeline, add_form, audit_log, scheduler):
        form = await add_form("Visa Application")

        submission = await pipeline.service.submit_form(form.id, "user-1")

        assert submission.portal_type == PortalType.VISA
        assert submission.status == PortalSubmissionStatus.PENDING
        assert submission.requested_by == "user-1"
        assert (await pipeline.store.get_form_submission(form.id)).status == FormSubmissionStatus.SUBMITTED
        assert audit_log.events_for(submission.id, AuditAction.CREATE)
        pending = scheduler.pending()
        assert len(pending) == 1
        assert pending[0].due_at == scheduler.now()

    @pytest.mark.asyncio
    async def test_background_run_reaches_portal(self, pipeline, add_form, driver_factory, make_driver, scheduler):
        form = await add_form("Visa Application")
        driver_factory.push(make_driver(PortalType.VISA, confirmation="VISA-2026-1"))

        submission = await pipeline.service.submit_form(form.id, "user-1")
        await scheduler.run_due()

        stored = await pipeline.service.get_submission_status(submission.id)
        assert stored.status == PortalSubmissionStatus.COMPLETED
        assert stored.confirmation_number == "VISA-2026-1"
        assert (await pipeline.service.get_status_for_form_submission(form.id)).id == submission.id

    @pytest.mark.asyncio
    async def test_unknown_form(self, pipeline):
        with pytest.raises(FormSubmissionNotFoundError):
            await pipeline.service.submit_form("missing", "user-1")

    @pytest.mark.asyncio
    async def test_already_submitted_form(self, pipeline, add_form):
        form = await add_form(status=FormSubmissionStatus.SUBMITTED)
        with pytest.raises(InvalidSubmissionStateError, match="already submitted"):
            await pipeline.service.submit_form(form.id, "user-1")

    @pytest.mark.asyncio
    async def test_missing_template(self, pipeline, store):
        form = await store.save_form_submission(FormSubmission(template_id="gone"))
        with pytest.raises(FormTemplateNotFoundError):
            await pipeline.service.submit_form(form.id, "user-1")

    @pytest.mark.asyncio
    async def test_unroutable_template(self, pipeline, add_form, scheduler):
        form = await add_form("Citizenship Naturalisation")
        with pytest.raises(PortalRoutingError) as exc_info:
            await pipeline.service.submit_form(form.id, "user-1")
        assert exc_info.value.status_code == 400
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_reuses_failed_submission(self, pipeline, add_form, store):
        form = await add_form("Immigration Residence Permit")
        existing = await store.create_submission(form.id, PortalType.IMMIGRATION)
        await store.update_submission(existing.id, {'status': PortalSubmissionStatus.FAILED})

        submission = await pipeline.service.submit_form(form.id, "user-1")

        assert submission.id == existing.id
        assert len(await store.list_submissions()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        PortalSubmissionStatus.IN_PROGRESS,
        PortalSubmissionStatus.RETRY_SCHEDULED,
        PortalSubmissionStatus.COMPLETED,
    ])
    async def test_refuses_active_or_finished_submission(self, pipeline, add_form, store, scheduler, status):
        form = await add_form("Immigration Residence Permit")
        existing = await store.create_submission(form.id, PortalType.IMMIGRATION)
        await store.update_submission(existing.id, {'status': status})

        with pytest.raises(InvalidSubmissionStateError, match=f"already in {status.value} status"):
            await pipeline.service.submit_form(form.id, "user-1")

        assert (await store.get_form_submission(form.id)).status == FormSubmissionStatus.COMPLETED
        assert scheduler.pending() == []


class TestStatus:
    @pytest.mark.asyncio
    async def test_unknown_submission(self, pipeline):
        with pytest.raises(SubmissionNotFoundError) as exc_info:
            await pipeline.service.get_submission_status("missing")
        assert exc_info.value.status_code == 404
        with pytest.raises(SubmissionNotFoundError):
            await pipeline.service.get_status_for_form_submission("missing")


class TestManualRetry:
    @pytest.mark.asyncio
    async def test_retry_of_completed_submission_is_rejected(self, pipeline, store, scheduler, audit_log):
        submission = await store.create_submission("form-1", PortalType.IMMIGRATION)
        completed = await store.update_submission(submission.id, {
            'status': PortalSubmissionStatus.COMPLETED,
            'confirmation_number': 'IMM-1',
        })

        with pytest.raises(InvalidSubmissionStateError) as exc_info:
            await pipeline.service.retry_submission(submission.id, "user-1")

        assert exc_info.value.message == "Cannot retry submission with status COMPLETED"
        assert await store.get_submission(submission.id) == completed
        assert scheduler.pending() == []
        assert audit_log.events_for(submission.id) == []

    @pytest.mark.asyncio
    async def test_retry_of_failed_submission(self, pipeline, store, scheduler, audit_log):
        submission = await store.create_submission("form-1", PortalType.IMMIGRATION)
        await store.update_submission(submission.id, {'status': PortalSubmissionStatus.FAILED, 'retry_count': 3})

        updated = await pipeline.service.retry_submission(submission.id, "user-1")

        assert updated.status == PortalSubmissionStatus.RETRYING
        assert updated.retry_count == 3
        assert audit_log.events_for(submission.id, AuditAction.RETRY)
        assert len(scheduler.pending()) == 1

    @pytest.mark.asyncio
    async def test_retry_of_unknown_submission(self, pipeline):
        with pytest.raises(SubmissionNotFoundError):
            await pipeline.service.retry_submission("missing", "user-1")
