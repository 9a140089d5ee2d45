"""Pytest configuration and shared fixtures for testing"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.analytics.audit_log import AuditLog
from src.analytics.notifications import NotificationService
from src.browser.portal_driver import By, ElementNotFoundError, PortalDriverError, WaitTimeoutError
from src.config import AutomationSettings
from src.portals.credentials import EnvCredentialProvider, credential_env_vars
from src.storage.models import FormSubmission, FormTemplate, PortalType
from src.storage.store import PortalStore
from src.submission.pipeline import build_pipeline
from src.submission.scheduler import ManualRetryScheduler

PORTAL_BASE_URL = "https://portal.test"
START_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# (by, value, navigates_to) for every control a portal flow touches
PORTAL_CONTROLS: Dict[PortalType, List[Tuple[str, str, Optional[str]]]] = {
    PortalType.IMMIGRATION: [
        ("css", ".login-button", None),
        ("id", "username", None),
        ("id", "password", None),
        ("css", 'button[type="submit"]', None),
        ("css", ".new-application-button", None),
        ("id", "submit-application", f"{PORTAL_BASE_URL}/immigration/confirmation"),
    ],
    PortalType.VISA: [
        ("css", ".login-btn", None),
        ("id", "email", None),
        ("id", "password", None),
        ("css", 'button[type="submit"]', None),
        ("css", ".new-application", None),
        ("id", "visa-type", None),
        ("id", "date-of-birth", None),
        ("id", "submit-application", f"{PORTAL_BASE_URL}/visa/confirmation"),
    ],
    PortalType.REGISTRATION_BUREAU: [
        ("css", ".appointment-button", None),
        ("id", "Category", None),
        ("id", "SubCategory", None),
        ("id", "termsCheckbox", None),
        ("id", "btnLookup", None),
        ("id", "btnConfirm", f"{PORTAL_BASE_URL}/bureau/confirmed"),
    ],
    PortalType.EMPLOYMENT_PERMIT: [
        ("id", "username", None),
        ("id", "password", None),
        ("css", "#login-button", None),
        ("css", 'a[href*="new-application"]', None),
        ("id", "permit-type", None),
        ("id", "employer-name", None),
        ("id", "employer-reg-number", None),
        ("id", "employer-address", None),
        ("id", "employer-contact-name", None),
        ("id", "employer-phone", None),
        ("id", "employer-email", None),
        ("id", "first-name", None),
        ("id", "last-name", None),
        ("id", "date-of-birth", None),
        ("id", "nationality", None),
        ("id", "passport-number", None),
        ("id", "passport-expiry", None),
        ("id", "job-title", None),
        ("id", "job-description", None),
        ("id", "annual-salary", None),
        ("id", "hours-per-week", None),
        ("id", "work-location", None),
        ("id", "next-button", None),
        ("id", "terms-checkbox", None),
        ("id", "submit-button", f"{PORTAL_BASE_URL}/permits/confirmation"),
    ],
}

APPOINTMENT_SLOT = ("css", ".appointment-slot:not(.disabled)")
CONFIRMATION = ("css", ".confirmation-number")


class FakeElement:
    """Element handle stand-in that remembers what was done to it"""

    def __init__(self, key: Tuple[str, str], text: str = "", navigates_to: Optional[str] = None,
                 visible: bool = True):
        self.key = key
        self.text = text
        self.navigates_to = navigates_to
        self.visible = visible
        self.value: Optional[str] = None


class FakePortalDriver:
    """Scripted stand-in for PortalDriver: elements exist only when added"""

    def __init__(self, correlation_id: str = "test", timeout_ms: int = 30000):
        self.correlation_id = correlation_id
        self.timeout_ms = timeout_ms
        self.elements: Dict[Tuple[str, str], FakeElement] = {}
        self.actions: List[tuple] = []
        self.url = "about:blank"
        self.started = False
        self.closed = False
        self.start_error: Optional[Exception] = None
        self.navigate_error: Optional[Exception] = None

    def add(self, by: str, value: str, text: str = "", navigates_to: Optional[str] = None,
            visible: bool = True) -> FakeElement:
        key = (By(by).value, value)
        self.elements[key] = FakeElement(key, text, navigates_to, visible)
        return self.elements[key]

    def remove(self, by: str, value: str):
        self.elements.pop((By(by).value, value), None)

    def filled(self, by: str, value: str) -> Optional[str]:
        element = self.elements.get((By(by).value, value))
        return element.value if element else None

    def clicked(self, by: str, value: str) -> bool:
        return ("click", (By(by).value, value)) in self.actions

    @property
    def is_started(self) -> bool:
        return self.started and not self.closed

    @property
    def current_url(self) -> str:
        return self.url

    async def start(self):
        if self.start_error:
            raise self.start_error
        self.started = True

    async def close(self):
        self.closed = True

    async def navigate(self, url: str):
        self.actions.append(("navigate", url))
        if self.navigate_error:
            raise self.navigate_error
        self.url = url

    async def find_element(self, by, value: str, timeout: Optional[int] = None) -> FakeElement:
        key = (By(by).value, value)
        if key not in self.elements:
            raise ElementNotFoundError(key[0], value, self.timeout_ms if timeout is None else timeout)
        return self.elements[key]

    async def find_by_id(self, element_id: str, timeout: Optional[int] = None) -> FakeElement:
        return await self.find_element(By.ID, element_id, timeout)

    async def find_by_name(self, name: str, timeout: Optional[int] = None) -> FakeElement:
        return await self.find_element(By.NAME, name, timeout)

    async def find_by_selector(self, selector: str, timeout: Optional[int] = None) -> FakeElement:
        return await self.find_element(By.CSS, selector, timeout)

    async def find_by_xpath(self, xpath: str, timeout: Optional[int] = None) -> FakeElement:
        return await self.find_element(By.XPATH, xpath, timeout)

    async def fill_input(self, element: FakeElement, value: str):
        element.value = str(value)
        self.actions.append(("fill", element.key, str(value)))

    async def click(self, element: FakeElement):
        self.actions.append(("click", element.key))
        if element.navigates_to:
            self.url = element.navigates_to

    async def select_option_by_value(self, element: FakeElement, value: str):
        element.value = str(value)
        self.actions.append(("select_value", element.key, str(value)))

    async def select_option_by_text(self, element: FakeElement, text: str):
        element.value = str(text)
        self.actions.append(("select_text", element.key, str(text)))

    async def upload_file(self, element: FakeElement, path: str):
        element.value = path
        self.actions.append(("upload", element.key, path))

    async def get_text(self, element: FakeElement) -> str:
        return element.text

    async def wait_for_url_contains(self, text: str, timeout: Optional[int] = None):
        if text not in self.url:
            raise WaitTimeoutError(f"URL to contain '{text}'", self.timeout_ms if timeout is None else timeout)

    async def wait_for_visible(self, by, value: str, timeout: Optional[int] = None) -> FakeElement:
        element = self.elements.get((By(by).value, value))
        if element is None or not element.visible:
            raise WaitTimeoutError(f"{By(by).value}={value} to be visible", self.timeout_ms if timeout is None else timeout)
        return element

    async def pause(self, seconds: float):
        self.actions.append(("pause", seconds))

    async def take_screenshot(self) -> bytes:
        if not self.started:
            raise PortalDriverError("Browser not started")
        return b"\x89PNG fake screenshot"


def scripted_driver(
    portal_type: PortalType,
    confirmation: Optional[str] = "CONF-001",
    portal_fields: Tuple[str, ...] = (),
    with_slot: bool = True,
    correlation_id: str = "test",
) -> FakePortalDriver:
    """A fake driver rendering the happy path of one portal"""
    driver = FakePortalDriver(correlation_id)
    driver.started = True
    for by, value, navigates_to in PORTAL_CONTROLS[PortalType(portal_type)]:
        driver.add(by, value, navigates_to=navigates_to)
    for name in portal_fields:
        driver.add("name", name)
    if portal_type == PortalType.REGISTRATION_BUREAU and with_slot:
        driver.add(*APPOINTMENT_SLOT, text="Tue 10 Mar 09:30")
    if confirmation is not None:
        driver.add(*CONFIRMATION, text=confirmation)
    return driver


class ScriptedDriverFactory:
    """Driver factory handing out queued fake drivers in order"""

    def __init__(self):
        self.queue: List[FakePortalDriver] = []
        self.created: List[FakePortalDriver] = []

    def push(self, driver: FakePortalDriver) -> FakePortalDriver:
        driver.started = False
        self.queue.append(driver)
        return driver

    def __call__(self, correlation_id: str) -> FakePortalDriver:
        assert self.queue, "no scripted driver left for this attempt"
        driver = self.queue.pop(0)
        driver.correlation_id = correlation_id
        self.created.append(driver)
        return driver


@pytest.fixture
def make_driver():
    """Factory for scripted fake portal drivers"""
    return scripted_driver


@pytest.fixture
def fake_driver() -> FakePortalDriver:
    driver = FakePortalDriver()
    driver.started = True
    return driver


@pytest.fixture
def driver_factory() -> ScriptedDriverFactory:
    return ScriptedDriverFactory()


@pytest.fixture
def store() -> PortalStore:
    """In-memory store"""
    return PortalStore(store_file=None, clock=lambda: START_TIME)


@pytest.fixture
def scheduler() -> ManualRetryScheduler:
    return ManualRetryScheduler(start=START_TIME)


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture
def notifier() -> NotificationService:
    return NotificationService()


@pytest.fixture
def credential_provider(monkeypatch) -> EnvCredentialProvider:
    """Environment credentials for every portal"""
    for portal_type in PortalType:
        env_vars = credential_env_vars(portal_type)
        monkeypatch.setenv(env_vars['username'], f"agent-{portal_type.value.lower()}@example.com")
        monkeypatch.setenv(env_vars['password'], "s3cret-Passw0rd")
    return EnvCredentialProvider()


@pytest.fixture
def settings(tmp_path) -> AutomationSettings:
    return AutomationSettings(
        store_file=None,
        audit_log_file=None,
        notifications_file=None,
        receipts_dir=str(tmp_path / "receipts"),
        receipt_base_url="https://storage.example.com/confirmations",
        slot_lookup_delay_seconds=0,
        element_timeout_ms=1000,
    )


@pytest.fixture
def pipeline(settings, scheduler, driver_factory, store, credential_provider, audit_log, notifier):
    """Fully wired pipeline on fakes: manual clock, scripted drivers, in-memory store"""
    return build_pipeline(
        settings,
        scheduler=scheduler,
        driver_factory=driver_factory,
        store=store,
        credential_provider=credential_provider,
        audit_log=audit_log,
        notifier=notifier,
    )


@pytest.fixture
def add_form(store):
    """Create a template plus form submission and return the form submission"""
    async def _add_form(template_name: str = "Immigration Residence Permit", form_data: Optional[dict] = None,
                        **kwargs) -> FormSubmission:
        template = await store.save_form_template(FormTemplate(name=template_name))
        return await store.save_form_submission(FormSubmission(
            template_id=template.id,
            case_id="case-1",
            form_data=form_data if form_data is not None else {"firstName": "Aoife", "lastName": "Murphy"},
            **kwargs,
        ))
    return _add_form


@pytest.fixture
def test_fixture_path() -> Path:
    """Return the path to the test fixtures directory"""
    return Path(__file__).parent / "fixtures"


# Pytest async configuration
def pytest_configure(config):
    """Configure pytest-asyncio and custom markers"""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (can be skipped with -m 'not slow')"
    )
