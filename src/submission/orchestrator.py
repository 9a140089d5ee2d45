"""Submission orchestrator - one automation attempt for a portal submission"""

import time
from datetime import datetime
from typing import Callable, Optional
from loguru import logger

from .error_classifier import classify_error
from .side_effects import SideEffectPolicy, run_side_effect
from src.analytics.audit_log import AuditAction, RESOURCE_PORTAL_SUBMISSION
from src.browser.portal_driver import PortalDriver
from src.browser.sanitize import mask_password_in_logs
from src.errors import ConcurrentUpdateError
from src.storage.models import (
    PortalSubmission,
    PortalSubmissionResult,
    PortalSubmissionStatus,
    utcnow,
)

DriverFactory = Callable[[str], PortalDriver]


class SubmissionOrchestrator:
    """Runs a portal submission end to end and hands failures to the retry engine"""

    def __init__(
        self,
        store,
        registry,
        retry_engine,
        audit_log,
        notifier,
        driver_factory: DriverFactory,
        receipt_storage=None,
        metrics=None,
        clock: Callable[[], datetime] = utcnow,
        side_effect_policy: SideEffectPolicy = SideEffectPolicy.BEST_EFFORT,
        save_error_screenshots: bool = False,
    ):
        """
        Initialize orchestrator

        Args:
            store: PortalStore with submissions and form data
            registry: PortalAdapterRegistry
            retry_engine: RetryEngine receiving failed attempts
            audit_log: Audit log collaborator
            notifier: Notification collaborator
            driver_factory: Builds an unstarted driver for a correlation id
            receipt_storage: Where receipt and error screenshots are written
            metrics: Optional SubmissionMetrics
            clock: Source of attempt timestamps
            side_effect_policy: How audit/notification failures are treated
            save_error_screenshots: Keep the screenshot of failed attempts
        """
        self.store = store
        self.registry = registry
        self.retry_engine = retry_engine
        self.audit_log = audit_log
        self.notifier = notifier
        self.driver_factory = driver_factory
        self.receipt_storage = receipt_storage
        self.metrics = metrics
        self.clock = clock
        self.side_effect_policy = SideEffectPolicy(side_effect_policy)
        self.save_error_screenshots = save_error_screenshots
        retry_engine.bind_submitter(self.submit_form_to_portal)

    async def submit_form_to_portal(self, portal_submission_id: str, user_id: str) -> PortalSubmissionResult:
        """
        Run one automation attempt

        Business failures come back as a FAILED result; only storage errors
        while loading the submission (and side-effect failures under the
        STRICT policy) propagate.

        Args:
            portal_submission_id: Submission to run
            user_id: User the attempt is attributed to

        Returns:
            Result of the attempt
        """
        submission = await self.store.get_submission(portal_submission_id)
        if submission is None:
            logger.warning(f"[{portal_submission_id}] Portal submission not found")
            return PortalSubmissionResult.failed("Portal submission not found")

        if submission.status == PortalSubmissionStatus.COMPLETED:
            logger.info(f"[{submission.id}] Already completed ({submission.confirmation_number}), nothing to do")
            return PortalSubmissionResult(
                success=True,
                status=PortalSubmissionStatus.COMPLETED,
                confirmation_number=submission.confirmation_number,
                confirmation_receipt_url=submission.confirmation_receipt_url,
            )

        form_submission = await self.store.get_form_submission(submission.form_submission_id)
        if form_submission is None:
            logger.warning(f"[{submission.id}] Form submission {submission.form_submission_id} not found")
            result = PortalSubmissionResult.failed("Form submission not found")
            if submission.status == PortalSubmissionStatus.RETRYING:
                # A fired retry has nothing left to submit; close it out
                try:
                    await self.store.update_submission(
                        submission.id,
                        {
                            'status': PortalSubmissionStatus.FAILED,
                            'error_message': result.error_message,
                            'next_retry_at': None,
                        },
                        expected_version=submission.version,
                    )
                except ConcurrentUpdateError as e:
                    logger.warning(f"[{submission.id}] Submission changed while closing stale retry: {e}")
            return result

        try:
            submission = await self.store.update_submission(
                submission.id,
                {
                    'status': PortalSubmissionStatus.IN_PROGRESS,
                    'last_attempt_at': self.clock(),
                    'attempt_count': submission.attempt_count + 1,
                },
                expected_version=submission.version,
            )
        except ConcurrentUpdateError as e:
            logger.warning(f"[{portal_submission_id}] Another worker owns this attempt: {e}")
            return PortalSubmissionResult.failed("Portal submission is already being processed")

        logger.info(
            f"[{submission.id}] Attempt #{submission.attempt_count} on {submission.portal_type.value} "
            f"(retry {submission.retry_count})"
        )
        if self.metrics:
            self.metrics.record_attempt(submission.portal_type.value)

        started = time.monotonic()
        driver: Optional[PortalDriver] = None
        persisted = False
        try:
            adapter = self.registry.get_adapter(submission.portal_type)
            if adapter is None:
                result = PortalSubmissionResult.failed(
                    f"Unsupported portal type: {submission.portal_type.value}"
                )
            else:
                driver = self.driver_factory(submission.id)
                await driver.start()
                result = await adapter.submit(driver, form_submission.form_data, submission)

            await self._store_screenshots(submission, result)
            await self.store.update_submission(submission.id, {
                'status': result.status,
                'confirmation_number': result.confirmation_number,
                'confirmation_receipt_url': result.confirmation_receipt_url,
                'error_message': result.error_message,
                'last_attempt_at': self.clock(),
                'next_retry_at': None,
            })
            persisted = True

            await self._audit(user_id, AuditAction.SUBMIT_SUCCESS if result.success else AuditAction.SUBMIT_FAILURE,
                              submission.id, {
                                  'form_submission_id': submission.form_submission_id,
                                  'portal_type': submission.portal_type.value,
                                  'status': result.status.value,
                                  'confirmation_number': result.confirmation_number,
                                  'error_message': result.error_message,
                              })
            self._record_metrics(submission, result, time.monotonic() - started)

            if result.success:
                logger.info(f"[{submission.id}] ✅ Submitted, confirmation {result.confirmation_number}")
                await self._notify_success(user_id, submission, result)
            else:
                logger.warning(
                    f"[{submission.id}] ❌ Attempt failed: {mask_password_in_logs(result.error_message or '')}"
                )
                await self._delegate_failure(submission.id, user_id, result)

            return result

        except Exception as e:
            if persisted:
                raise
            logger.exception(f"[{submission.id}] Error submitting form to portal: {e}")
            result = PortalSubmissionResult.failed(f"Unexpected error: {e}")
            await self.store.update_submission(submission.id, {
                'status': PortalSubmissionStatus.FAILED,
                'error_message': result.error_message,
                'last_attempt_at': self.clock(),
            })
            await self._audit(user_id, AuditAction.SUBMIT_FAILURE, submission.id, {'error_message': str(e)})
            self._record_metrics(submission, result, time.monotonic() - started)
            await self._delegate_failure(submission.id, user_id, result)
            return result

        finally:
            if driver is not None:
                await driver.close()

    async def _store_screenshots(self, submission: PortalSubmission, result: PortalSubmissionResult):
        if self.receipt_storage is None:
            return
        try:
            if result.success and result.receipt_screenshot and result.confirmation_number:
                await self.receipt_storage.save_receipt(result.confirmation_number, result.receipt_screenshot)
            elif not result.success and result.error_screenshot and self.save_error_screenshots:
                await self.receipt_storage.save_error_screenshot(
                    submission.id, submission.attempt_count, result.error_screenshot
                )
        except OSError as e:
            logger.error(f"[{submission.id}] Could not store screenshot: {e}")

    async def _audit(self, user_id: str, action: str, submission_id: str, details: dict):
        await run_side_effect(
            self.side_effect_policy,
            self.audit_log.log_event(user_id, action, RESOURCE_PORTAL_SUBMISSION, submission_id, details),
            f"Audit {action}",
            submission_id,
        )

    async def _notify_success(self, user_id: str, submission: PortalSubmission, result: PortalSubmissionResult):
        await run_side_effect(
            self.side_effect_policy,
            self.notifier.send_notification(
                user_id,
                'Portal Submission Completed',
                f"Your submission to the government portal was completed. "
                f"Confirmation number: {result.confirmation_number}",
                'success',
                {
                    'portal_submission_id': submission.id,
                    'confirmation_number': result.confirmation_number,
                    'confirmation_receipt_url': result.confirmation_receipt_url,
                },
            ),
            "Success notification",
            submission.id,
        )

    async def _delegate_failure(self, submission_id: str, user_id: str, result: PortalSubmissionResult):
        try:
            await self.retry_engine.handle_failed_submission(submission_id, user_id, result)
        except Exception as e:
            logger.error(f"[{submission_id}] Retry engine failed to handle the failure: {e}")

    def _record_metrics(self, submission: PortalSubmission, result: PortalSubmissionResult, duration: float):
        if not self.metrics:
            return
        portal = submission.portal_type.value
        if result.success:
            self.metrics.record_success(portal, duration)
        else:
            self.metrics.record_failure(
                portal,
                classify_error(result.error_message).category.value,
                result.error_message or '',
                {'portal_submission_id': submission.id, 'attempt': submission.attempt_count},
            )
