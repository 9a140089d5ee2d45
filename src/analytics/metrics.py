"""Metrics tracking"""

from typing import Dict, Any, List
from datetime import datetime
from loguru import logger
from collections import defaultdict


class SubmissionMetrics:
    """Track portal submission metrics for the CLI summary"""

    def __init__(self):
        """Initialize metrics tracker"""
        self.reset()
        logger.info("Metrics tracker initialized")

    def record_attempt(self, portal_type: str):
        """Record an automation attempt"""
        self.metrics['attempts'] += 1
        self.metrics['attempts_by_portal'][portal_type] += 1

    def record_success(self, portal_type: str, duration_seconds: float = 0.0):
        """Record a completed submission"""
        self.metrics['successes'] += 1
        self.metrics['successes_by_portal'][portal_type] += 1
        if duration_seconds > 0:
            self.metrics['durations'].append(duration_seconds)

    def record_failure(
        self,
        portal_type: str,
        category: str,
        reason: str,
        context: Dict[str, Any] = None
    ):
        """
        Record a failed attempt

        Args:
            portal_type: Portal the attempt targeted
            category: Error category from the classifier
            reason: Error message recorded on the submission
            context: Additional context (submission id, attempt number)
        """
        self.metrics['failures'] += 1
        self.metrics['failures_by_portal'][portal_type] += 1
        self.metrics['failure_categories'][category] += 1
        self.metrics['failure_log'].append({
            'timestamp': datetime.now().isoformat(),
            'portal_type': portal_type,
            'category': category,
            'reason': reason[:200],  # Truncate
            'context': context or {}
        })

    def record_retry_scheduled(self):
        self.metrics['retries_scheduled'] += 1

    def record_retries_exhausted(self):
        """Record a submission that hit the retry limit"""
        self.metrics['retries_exhausted'] += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary"""
        durations = self.metrics['durations']
        avg_duration = sum(durations) / len(durations) if durations else 0

        return {
            'total_attempts': self.metrics['attempts'],
            'total_successes': self.metrics['successes'],
            'total_failures': self.metrics['failures'],
            'success_rate': (
                self.metrics['successes'] / self.metrics['attempts']
                if self.metrics['attempts'] > 0 else 0
            ),
            'attempts_by_portal': dict(self.metrics['attempts_by_portal']),
            'successes_by_portal': dict(self.metrics['successes_by_portal']),
            'failures_by_portal': dict(self.metrics['failures_by_portal']),
            'failure_categories': dict(self.metrics['failure_categories']),
            'retries_scheduled': self.metrics['retries_scheduled'],
            'retries_exhausted': self.metrics['retries_exhausted'],
            'avg_duration_seconds': avg_duration,
            'failure_log': list(self.metrics['failure_log']),
        }

    def reset(self):
        """Reset metrics"""
        self.metrics = {
            'attempts': 0,
            'successes': 0,
            'failures': 0,
            'attempts_by_portal': defaultdict(int),
            'successes_by_portal': defaultdict(int),
            'failures_by_portal': defaultdict(int),
            'failure_categories': defaultdict(int),
            'retries_scheduled': 0,
            'retries_exhausted': 0,
            'durations': [],
            'failure_log': []
        }

    def log_summary(self):
        summary = self.get_summary()
        logger.info("=" * 60)
        logger.info("Submission summary")
        logger.info(f"  Attempts: {summary['total_attempts']}")
        logger.info(f"  Completed: {summary['total_successes']}")
        logger.info(f"  Failed attempts: {summary['total_failures']}")
        logger.info(f"  Retries scheduled: {summary['retries_scheduled']}")
        logger.info(f"  Retries exhausted: {summary['retries_exhausted']}")
        for category, count in summary['failure_categories'].items():
            logger.info(f"  {category}: {count}")
        logger.info("=" * 60)
