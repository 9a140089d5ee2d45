"""Unit tests for the audit log, notifications, metrics and side-effect policy"""

import json

import pytest

from src.analytics.audit_log import AuditAction, AuditLog, RESOURCE_PORTAL_SUBMISSION
from src.analytics.metrics import SubmissionMetrics
from src.analytics.notifications import NotificationService
from src.browser.sanitize import REDACTED
from src.submission.side_effects import SideEffectPolicy, run_side_effect


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_writes_json_lines(self, tmp_path):
        log_file = tmp_path / "logs" / "audit.jsonl"
        audit_log = AuditLog(str(log_file))

        await audit_log.log_event("user-1", AuditAction.SUBMIT_SUCCESS, RESOURCE_PORTAL_SUBMISSION, "ps-1",
                                  {'confirmation_number': 'IMM-1'})
        await audit_log.log_event("system", AuditAction.RETRY_SCHEDULED, RESOURCE_PORTAL_SUBMISSION, "ps-2")

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [line['action'] for line in lines] == ['SUBMIT_SUCCESS', 'PORTAL_SUBMISSION_RETRY_SCHEDULED']
        assert lines[0]['details'] == {'confirmation_number': 'IMM-1'}
        assert lines[1]['details'] == {}

    @pytest.mark.asyncio
    async def test_details_are_sanitized(self):
        audit_log = AuditLog()

        event = await audit_log.log_event("user-1", AuditAction.CREATE, RESOURCE_PORTAL_SUBMISSION, "ps-1",
                                          {'password': 'hunter2', 'passportNumber': 'X1234567'})

        assert event.details == {'password': REDACTED, 'passportNumber': '*****567'}

    @pytest.mark.asyncio
    async def test_events_for(self):
        audit_log = AuditLog()
        await audit_log.log_event("u", AuditAction.CREATE, RESOURCE_PORTAL_SUBMISSION, "ps-1")
        await audit_log.log_event("u", AuditAction.RETRY, RESOURCE_PORTAL_SUBMISSION, "ps-1")
        await audit_log.log_event("u", AuditAction.CREATE, RESOURCE_PORTAL_SUBMISSION, "ps-2")

        assert len(audit_log.events_for("ps-1")) == 2
        assert [e.action for e in audit_log.events_for("ps-1", AuditAction.RETRY)] == [AuditAction.RETRY]


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_outbox_file(self, tmp_path):
        outbox = tmp_path / "notifications.jsonl"
        notifier = NotificationService(str(outbox))

        notification = await notifier.send_notification(
            "user-1", "Portal Submission Completed", "Done", type="success", data={'confirmation_number': 'V-1'}
        )

        assert notification.read is False
        record = json.loads(outbox.read_text())
        assert record['title'] == "Portal Submission Completed"
        assert record['type'] == "success"
        assert notifier.for_user("user-1") == [notification]
        assert notifier.for_user("user-2") == []


class TestSubmissionMetrics:
    def test_summary(self):
        metrics = SubmissionMetrics()
        metrics.record_attempt("VISA")
        metrics.record_attempt("VISA")
        metrics.record_success("VISA", 12.0)
        metrics.record_failure("VISA", "NETWORK_ERROR", "Connection timeout", {'submission_id': 'ps-1'})
        metrics.record_retry_scheduled()

        summary = metrics.get_summary()

        assert summary['total_attempts'] == 2
        assert summary['success_rate'] == 0.5
        assert summary['failure_categories'] == {'NETWORK_ERROR': 1}
        assert summary['retries_scheduled'] == 1
        assert summary['avg_duration_seconds'] == 12.0
        assert summary['failure_log'][0]['context'] == {'submission_id': 'ps-1'}

    def test_long_failure_reason_truncated(self):
        metrics = SubmissionMetrics()
        metrics.record_failure("IMMIGRATION", "UNKNOWN", "x" * 500)

        assert len(metrics.get_summary()['failure_log'][0]['reason']) == 200

    def test_reset(self):
        metrics = SubmissionMetrics()
        metrics.record_attempt("VISA")
        metrics.record_retries_exhausted()
        metrics.reset()

        summary = metrics.get_summary()
        assert summary['total_attempts'] == 0
        assert summary['retries_exhausted'] == 0
        assert summary['success_rate'] == 0


class TestSideEffectPolicy:
    @pytest.mark.asyncio
    async def test_best_effort_swallows_failure(self):
        async def failing():
            raise ConnectionError("audit store down")

        assert await run_side_effect(SideEffectPolicy.BEST_EFFORT, failing(), "Audit") is None

    @pytest.mark.asyncio
    async def test_strict_propagates_failure(self):
        async def failing():
            raise ConnectionError("audit store down")

        with pytest.raises(ConnectionError):
            await run_side_effect("strict", failing(), "Audit")

    @pytest.mark.asyncio
    async def test_result_is_returned(self):
        async def ok():
            return "sent"

        assert await run_side_effect(SideEffectPolicy.STRICT, ok(), "Notify") == "sent"
