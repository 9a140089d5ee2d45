"""Retry engine for failed portal submissions.

Failures are classified by message. Retryable ones are re-attempted with
exponential backoff (base delay * 2^retry_count) until the retry limit is
reached; terminal ones fail the submission and notify the user.

The engine is the only writer of `retry_count`. Delayed re-attempts are
handed to a RetryScheduler, so scheduling returns immediately.
"""

from datetime import timedelta
from typing import Awaitable, Callable, Optional
from loguru import logger

from .error_classifier import classify_error
from .scheduler import RetryScheduler, ScheduledTask
from .side_effects import SideEffectPolicy, run_side_effect
from src.analytics.audit_log import AuditAction, RESOURCE_PORTAL_SUBMISSION
from src.browser.sanitize import mask_password_in_logs
from src.errors import ConcurrentUpdateError
from src.storage.models import PortalSubmissionResult, PortalSubmissionStatus

# Maximum number of scheduled retries per submission
MAX_RETRY_ATTEMPTS = 3

# Base delay in milliseconds, multiplied by 2^retry_count
BASE_RETRY_DELAY_MS = 60000

SYSTEM_USER = 'system'

Submitter = Callable[[str, str], Awaitable[PortalSubmissionResult]]


def calculate_retry_delay(retry_count: int, base_delay_ms: int = BASE_RETRY_DELAY_MS) -> int:
    """Backoff delay in milliseconds for the given retry number"""
    return base_delay_ms * (2 ** retry_count)


class RetryEngine:
    """Decides between retry and terminal failure and arms delayed re-attempts"""

    def __init__(
        self,
        store,
        scheduler: RetryScheduler,
        audit_log,
        notifier,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        base_delay_ms: int = BASE_RETRY_DELAY_MS,
        side_effect_policy: SideEffectPolicy = SideEffectPolicy.BEST_EFFORT,
        metrics=None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.audit_log = audit_log
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.side_effect_policy = SideEffectPolicy(side_effect_policy)
        self.metrics = metrics
        self._submitter: Optional[Submitter] = None

    def bind_submitter(self, submitter: Submitter):
        """Set the coroutine that re-runs a submission (the orchestrator)"""
        self._submitter = submitter

    async def _audit(self, user_id: str, action: str, submission_id: str, details: dict):
        await run_side_effect(
            self.side_effect_policy,
            self.audit_log.log_event(user_id, action, RESOURCE_PORTAL_SUBMISSION, submission_id, details),
            f"Audit {action}",
            submission_id,
        )

    async def _notify(self, user_id: str, title: str, message: str, submission_id: str, data: dict):
        await run_side_effect(
            self.side_effect_policy,
            self.notifier.send_notification(user_id, title, message, 'error', data),
            "Failure notification",
            submission_id,
        )

    async def handle_failed_submission(
        self,
        submission_id: str,
        user_id: str,
        result: PortalSubmissionResult,
    ) -> Optional[ScheduledTask]:
        """
        Route a failed attempt to a retry or a terminal failure

        Args:
            submission_id: Portal submission that failed
            user_id: User to notify and attribute audit events to
            result: Result of the failed attempt

        Returns:
            The scheduled retry task, or None when nothing was scheduled
        """
        if not result.error_message:
            return None

        classification = classify_error(result.error_message)
        if classification.retryable:
            return await self.schedule_retry(submission_id, user_id, result.error_message)

        logger.info(
            f"[{submission_id}] Non-retryable error ({classification.category.value}): "
            f"{mask_password_in_logs(result.error_message)}"
        )
        await self.store.update_submission(submission_id, {
            'status': PortalSubmissionStatus.FAILED,
            'error_message': result.error_message,
            'next_retry_at': None,
        })
        await self._notify(
            user_id,
            'Portal Submission Failed',
            f"Your submission to the government portal has failed due to a {classification.describe()}: "
            f"{result.error_message}. Please review your submission and try again.",
            submission_id,
            {
                'portal_submission_id': submission_id,
                'error_type': classification.category.value,
                'error_message': result.error_message,
            },
        )
        return None

    async def schedule_retry(
        self,
        submission_id: str,
        user_id: str,
        error_message: str,
    ) -> Optional[ScheduledTask]:
        """
        Schedule the next re-attempt of a submission, or fail it for good

        Returns:
            The scheduled task, or None when the submission is missing, out of
            retries, or the error is not retryable
        """
        submission = await self.store.get_submission(submission_id)
        if submission is None:
            logger.error(f"[{submission_id}] Cannot schedule retry: portal submission not found")
            return None

        if submission.retry_count >= self.max_attempts:
            logger.warning(f"[{submission_id}] Maximum retry attempts ({self.max_attempts}) reached")
            await self.store.update_submission(submission_id, {
                'status': PortalSubmissionStatus.FAILED,
                'error_message': f"Maximum retry attempts reached. Last error: {error_message}",
                'next_retry_at': None,
            })
            if self.metrics:
                self.metrics.record_retries_exhausted()
            await self._notify(
                user_id,
                'Portal Submission Failed',
                f"Your submission to the government portal has failed after {self.max_attempts} attempts. "
                "Please contact support for assistance.",
                submission_id,
                {'portal_submission_id': submission_id, 'error_message': error_message},
            )
            await self._audit(user_id, AuditAction.SUBMISSION_FAILED, submission_id, {
                'error_message': error_message,
                'retry_count': submission.retry_count,
            })
            return None

        classification = classify_error(error_message)
        if not classification.retryable:
            logger.info(f"[{submission_id}] Not scheduling retry for {classification.category.value}")
            await self.store.update_submission(submission_id, {
                'status': PortalSubmissionStatus.FAILED,
                'error_message': f"Non-retryable error: {error_message}",
                'next_retry_at': None,
            })
            await self._notify(
                user_id,
                'Portal Submission Failed',
                f"Your submission to the government portal has failed due to a {classification.describe()}. "
                "Please review your submission and try again.",
                submission_id,
                {
                    'portal_submission_id': submission_id,
                    'error_type': classification.category.value,
                    'error_message': error_message,
                },
            )
            return None

        retry_count = submission.retry_count + 1
        delay_ms = calculate_retry_delay(retry_count, self.base_delay_ms)
        next_retry_at = self.scheduler.now() + timedelta(milliseconds=delay_ms)

        await self.store.update_submission(submission_id, {
            'status': PortalSubmissionStatus.RETRY_SCHEDULED,
            'retry_count': retry_count,
            'next_retry_at': next_retry_at,
            'error_message': f"Retry scheduled after error: {error_message}",
        })
        # A RETRY_SCHEDULED record always has an armed task, even when the audit below raises
        task = self._arm(submission_id, user_id, retry_count, delay_ms / 1000)
        if self.metrics:
            self.metrics.record_retry_scheduled()
        logger.info(f"[{submission_id}] Scheduled retry #{retry_count} in {delay_ms / 1000:.0f} seconds")

        await self._audit(user_id, AuditAction.RETRY_SCHEDULED, submission_id, {
            'error_message': error_message,
            'retry_count': retry_count,
            'retry_delay_ms': delay_ms,
            'next_retry_at': next_retry_at.isoformat(),
        })
        return task

    def _arm(self, submission_id: str, user_id: str, retry_count: int, delay_seconds: float) -> ScheduledTask:
        async def callback():
            await self._execute_retry(submission_id, user_id, retry_count)

        return self.scheduler.schedule(delay_seconds, callback, name=f"retry:{submission_id}:{retry_count}")

    async def _execute_retry(self, submission_id: str, user_id: str, retry_count: int):
        """Body of a delayed re-attempt; nothing raised here leaves the task"""
        try:
            submission = await self.store.get_submission(submission_id)
            if (
                submission is None
                or submission.status != PortalSubmissionStatus.RETRY_SCHEDULED
                or submission.retry_count != retry_count
            ):
                current = submission.status.value if submission else None
                logger.info(f"[{submission_id}] Skipping retry #{retry_count}: submission is {current}")
                await self._audit(user_id, AuditAction.RETRY_SKIPPED, submission_id, {
                    'retry_count': retry_count,
                    'status': current,
                })
                return

            if self._submitter is None:
                raise RuntimeError("No submitter bound to the retry engine")

            logger.info(f"[{submission_id}] Executing retry #{retry_count}")
            await self.store.update_submission(
                submission_id,
                {'status': PortalSubmissionStatus.RETRYING},
                expected_version=submission.version,
            )

            result = await self._submitter(submission_id, user_id)

            action = AuditAction.RETRY_SUCCEEDED if result.success else AuditAction.RETRY_FAILED
            await self._audit(user_id, action, submission_id, {
                'retry_count': retry_count,
                'result': result.model_dump(mode='json'),
            })

        except ConcurrentUpdateError as e:
            logger.info(f"[{submission_id}] Retry #{retry_count} lost the race: {e}")
            await self._audit_retry_error(user_id, submission_id, retry_count, e)
        except Exception as e:
            logger.error(f"[{submission_id}] Error during retry #{retry_count}: {mask_password_in_logs(str(e))}")
            await self._audit_retry_error(user_id, submission_id, retry_count, e)

    async def _audit_retry_error(self, user_id: str, submission_id: str, retry_count: int, error: Exception):
        await run_side_effect(
            SideEffectPolicy.BEST_EFFORT,
            self.audit_log.log_event(
                user_id,
                AuditAction.RETRY_ERROR,
                RESOURCE_PORTAL_SUBMISSION,
                submission_id,
                {'retry_count': retry_count, 'error': str(error)},
            ),
            f"Audit {AuditAction.RETRY_ERROR}",
            submission_id,
        )

    async def resume_scheduled_retries(self) -> int:
        """
        Re-arm persisted RETRY_SCHEDULED submissions after a restart

        Returns:
            Number of retries armed
        """
        now = self.scheduler.now()
        armed = 0
        for submission in await self.store.list_submissions(PortalSubmissionStatus.RETRY_SCHEDULED):
            if submission.next_retry_at is not None:
                delay_seconds = max(0.0, (submission.next_retry_at - now).total_seconds())
            else:
                delay_seconds = 0.0
            self._arm(submission.id, submission.requested_by or SYSTEM_USER, submission.retry_count, delay_seconds)
            armed += 1
            logger.info(f"[{submission.id}] Re-armed retry #{submission.retry_count} in {delay_seconds:.0f}s")
        return armed
