"""Integration tests driving a real headless browser through local portal pages"""

import pytest

from src.browser.portal_driver import PortalDriver
from src.portals.immigration_portal import ImmigrationPortalAdapter
from src.storage.models import PortalSubmissionStatus, PortalType
from src.submission.pipeline import build_pipeline

pytestmark = [pytest.mark.integration, pytest.mark.slow]


@pytest.fixture
def immigration_url(test_fixture_path):
    """Return URL for the immigration portal fixture"""
    return (test_fixture_path / "portals" / "immigration" / "index.html").as_uri()


@pytest.fixture
async def browser_available():
    """Skip when no Chromium build is installed for Playwright"""
    driver = PortalDriver(headless=True)
    try:
        await driver.start()
    except Exception as e:
        pytest.skip(f"Chromium not available: {e}")
    finally:
        await driver.close()


@pytest.fixture
def browser_pipeline(browser_available, settings, scheduler, store, credential_provider, audit_log, notifier,
                     immigration_url):
    """Pipeline using the Playwright driver against the local fixture portal"""
    pipeline = build_pipeline(
        settings.model_copy(update={'element_timeout_ms': 5000, 'headless': True}),
        scheduler=scheduler,
        store=store,
        credential_provider=credential_provider,
        audit_log=audit_log,
        notifier=notifier,
    )
    pipeline.registry.register_instance(ImmigrationPortalAdapter(
        store,
        credential_provider,
        receipt_base_url=settings.receipt_base_url,
        entry_url=immigration_url,
        element_timeout_ms=5000,
        settle_delay_seconds=0,
    ))
    return pipeline


class TestImmigrationPortalInBrowser:
    @pytest.mark.asyncio
    async def test_driver_reads_fixture_page(self, browser_available, immigration_url):
        driver = PortalDriver(headless=True, timeout_ms=5000)
        await driver.start()
        try:
            await driver.navigate(immigration_url)
            await driver.click(await driver.find_by_selector(".login-button"))
            username = await driver.find_by_id("username")
            await driver.fill_input(username, "agent@example.com")

            assert await username.input_value() == "agent@example.com"
            screenshot = await driver.take_screenshot()
            assert screenshot.startswith(b"\x89PNG")
        finally:
            await driver.close()

    @pytest.mark.asyncio
    async def test_submission_completes(self, browser_pipeline, store, add_form, settings):
        await store.create_field_mapping(PortalType.IMMIGRATION, "firstName", "first_name")
        await store.create_field_mapping(PortalType.IMMIGRATION, "lastName", "last_name")
        await store.create_field_mapping(PortalType.IMMIGRATION, "passportNumber", "passport_number")
        form = await add_form("Immigration Residence Permit", {"firstName": "Aoife", "lastName": "Murphy"})
        submission = await store.create_submission(form.id, PortalType.IMMIGRATION, requested_by="user-1")

        result = await browser_pipeline.orchestrator.submit_form_to_portal(submission.id, "user-1")

        assert result.success is True, result.error_message
        assert result.confirmation_number == "IMM-2026-0042"
        stored = await store.get_submission(submission.id)
        assert stored.status == PortalSubmissionStatus.COMPLETED
        assert stored.confirmation_receipt_url == f"{settings.receipt_base_url}/IMM-2026-0042.png"

    @pytest.mark.asyncio
    async def test_rejected_login_fails_without_retry(self, browser_pipeline, store, add_form, scheduler,
                                                      monkeypatch):
        monkeypatch.setenv("IMMIGRATION_USERNAME", "blocked@example.com")
        form = await add_form("Immigration Residence Permit")
        submission = await store.create_submission(form.id, PortalType.IMMIGRATION, requested_by="user-1")

        result = await browser_pipeline.orchestrator.submit_form_to_portal(submission.id, "user-1")

        assert result.success is False
        assert result.error_message == "Portal submission failed: Authentication failed: Invalid username or password"
        stored = await store.get_submission(submission.id)
        assert stored.status == PortalSubmissionStatus.FAILED
        assert stored.retry_count == 0
        assert scheduler.pending() == []
