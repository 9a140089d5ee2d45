"""Wiring of the submission pipeline from settings"""

from dataclasses import dataclass
from typing import Optional
from loguru import logger

from .orchestrator import DriverFactory, SubmissionOrchestrator
from .portal_service import PortalIntegrationService
from .retry_engine import RetryEngine
from .scheduler import AsyncioRetryScheduler, RetryScheduler
from .side_effects import SideEffectPolicy
from src.analytics.audit_log import AuditLog
from src.analytics.metrics import SubmissionMetrics
from src.analytics.notifications import NotificationService
from src.browser.portal_driver import PortalDriver
from src.config import AutomationSettings
from src.portals.credentials import EnvCredentialProvider
from src.portals.registry import PortalAdapterRegistry
from src.storage.receipts import LocalReceiptStorage
from src.storage.store import PortalStore


@dataclass
class SubmissionPipeline:
    settings: AutomationSettings
    store: PortalStore
    scheduler: RetryScheduler
    audit_log: AuditLog
    notifier: NotificationService
    metrics: SubmissionMetrics
    registry: PortalAdapterRegistry
    retry_engine: RetryEngine
    orchestrator: SubmissionOrchestrator
    service: PortalIntegrationService


def playwright_driver_factory(settings: AutomationSettings) -> DriverFactory:
    def factory(correlation_id: str) -> PortalDriver:
        return PortalDriver(
            browser_type=settings.browser_type,
            headless=settings.headless,
            timeout_ms=settings.element_timeout_ms,
            correlation_id=correlation_id,
        )
    return factory


def build_pipeline(
    settings: AutomationSettings,
    scheduler: Optional[RetryScheduler] = None,
    driver_factory: Optional[DriverFactory] = None,
    store: Optional[PortalStore] = None,
    credential_provider=None,
    audit_log: Optional[AuditLog] = None,
    notifier: Optional[NotificationService] = None,
) -> SubmissionPipeline:
    """
    Build every component of the pipeline

    Args:
        settings: Runtime settings
        scheduler: Retry scheduler (an AsyncioRetryScheduler when None)
        driver_factory: Driver builder (Playwright when None)
        store: Store to use instead of the file named in settings
        credential_provider: Credential source (environment when None)
        audit_log: Audit log collaborator (file-backed from settings when None)
        notifier: Notification collaborator (file-backed from settings when None)

    Returns:
        The wired pipeline
    """
    policy = SideEffectPolicy(settings.side_effect_policy)
    store = store or PortalStore(settings.store_file)
    scheduler = scheduler or AsyncioRetryScheduler()
    audit_log = audit_log or AuditLog(settings.audit_log_file)
    notifier = notifier or NotificationService(settings.notifications_file)
    metrics = SubmissionMetrics()

    registry = PortalAdapterRegistry(
        store,
        credential_provider or EnvCredentialProvider(),
        receipt_base_url=settings.receipt_base_url,
        element_timeout_ms=settings.element_timeout_ms,
        settle_delay_seconds=settings.slot_lookup_delay_seconds,
        entry_urls=settings.portal_entry_urls(),
    )
    retry_engine = RetryEngine(
        store,
        scheduler,
        audit_log,
        notifier,
        max_attempts=settings.max_retry_attempts,
        base_delay_ms=settings.base_retry_delay_ms,
        side_effect_policy=policy,
        metrics=metrics,
    )
    orchestrator = SubmissionOrchestrator(
        store,
        registry,
        retry_engine,
        audit_log,
        notifier,
        driver_factory or playwright_driver_factory(settings),
        receipt_storage=LocalReceiptStorage(settings.receipts_dir, settings.receipt_base_url),
        metrics=metrics,
        side_effect_policy=policy,
        save_error_screenshots=settings.save_error_screenshots,
    )
    service = PortalIntegrationService(store, orchestrator, scheduler, audit_log, side_effect_policy=policy)

    logger.info(f"Submission pipeline ready ({policy.value} side effects, {settings.max_retry_attempts} retries)")
    return SubmissionPipeline(
        settings=settings,
        store=store,
        scheduler=scheduler,
        audit_log=audit_log,
        notifier=notifier,
        metrics=metrics,
        registry=registry,
        retry_engine=retry_engine,
        orchestrator=orchestrator,
        service=service,
    )
