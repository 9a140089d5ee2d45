"""Base portal adapter - drives one government portal through a submission

Every portal follows the same outline:

1. load the portal's field mappings and credentials
2. open the portal and log in when the portal requires it
3. open the application flow
4. fill the mapped fields (a missing portal element is only a warning)
5. run portal-specific steps (wizards, dropdowns, uploads, appointment slots)
6. submit, wait for the confirmation page, read the confirmation number

Subclasses implement the portal-specific pieces. Structural failures raise
and end the run with a FAILED result; they are never retried here.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from loguru import logger

from src.browser.portal_driver import By, PortalDriver, PortalDriverError
from src.browser.sanitize import describe_field_value, mask_password_in_logs
from src.storage.models import (
    PortalCredentials,
    PortalFieldMapping,
    PortalSubmission,
    PortalSubmissionResult,
    PortalSubmissionStatus,
    PortalType,
)
from src.storage.receipts import build_receipt_url

DEFAULT_RECEIPT_BASE_URL = 'https://storage.example.com/confirmations'

# Generic login error banners shown by the portals after a rejected login
LOGIN_ERROR_SELECTORS = '.login-error, .alert-danger, .validation-summary-errors'


class AppointmentUnavailableError(Exception):
    """The portal has no bookable appointment slot. Terminal, never retried."""

    def __init__(self, message: str = "No available appointment slots found"):
        super().__init__(message)


class PortalLoginError(Exception):
    pass


@dataclass
class FieldFillReport:
    """What happened to each mapped field during one run"""
    filled: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def form_value(form_data: Dict[str, Any], key: str) -> Optional[str]:
    """Scalar form value as text, or None when absent or empty"""
    value = form_data.get(key)
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    if isinstance(value, bool):
        return 'true' if value else None
    text = str(value).strip()
    return text or None


class BasePortalAdapter(ABC):
    """Abstract base class for government portal adapters"""

    portal_type: PortalType
    name: str = "Portal"
    default_entry_url: str = ''
    requires_login: bool = True
    confirmation_url_fragment: str = 'confirmation'
    confirmation_selector: str = '.confirmation-number'
    login_error_timeout_ms: int = 1500

    def __init__(
        self,
        store,
        credential_provider,
        receipt_base_url: str = DEFAULT_RECEIPT_BASE_URL,
        entry_url: Optional[str] = None,
        element_timeout_ms: Optional[int] = None,
        settle_delay_seconds: float = 2.0,
    ):
        """
        Initialize adapter

        Args:
            store: Store providing field mappings
            credential_provider: Source of portal credentials
            receipt_base_url: Base of the confirmation receipt URL scheme
            entry_url: Override of the portal entry URL
            element_timeout_ms: Lookup timeout for mapped fields (driver default when None)
            settle_delay_seconds: Pause after AJAX-driven portal actions
        """
        self.store = store
        self.credential_provider = credential_provider
        self.receipt_base_url = receipt_base_url
        self.entry_url = entry_url or self.default_entry_url
        self.element_timeout_ms = element_timeout_ms
        self.settle_delay_seconds = settle_delay_seconds
        logger.debug(f"Initialized {self.name} adapter ({self.entry_url})")

    async def submit(
        self,
        driver: PortalDriver,
        form_data: Dict[str, Any],
        submission: PortalSubmission,
    ) -> PortalSubmissionResult:
        """Run one complete submission on this portal"""
        correlation_id = submission.id
        try:
            mappings = await self.store.get_field_mappings(self.portal_type)

            credentials = None
            if self.requires_login:
                credentials = await self.credential_provider.get_credentials(self.portal_type)

            logger.info(f"[{correlation_id}] Opening {self.name}")
            await driver.navigate(self.entry_url)

            if credentials is not None:
                await self.login(driver, credentials)
                await self._check_login_error(driver)
                logger.info(f"[{correlation_id}] Logged in to {self.name}")

            await self.open_application(driver, form_data, correlation_id)

            report = await self.fill_mapped_fields(driver, form_data, mappings, correlation_id)
            logger.info(
                f"[{correlation_id}] Mapped fields: {len(report.filled)} filled, "
                f"{len(report.missing)} missing on portal, {len(report.skipped)} without value"
            )

            await self.complete_portal_steps(driver, form_data, correlation_id)

            await self.submit_application(driver)
            await driver.wait_for_url_contains(self.confirmation_url_fragment)

            return await self.collect_confirmation(driver, correlation_id)

        except AppointmentUnavailableError as e:
            logger.warning(f"[{correlation_id}] {self.name}: {e}")
            screenshot = await self._capture_error_screenshot(driver, correlation_id)
            return PortalSubmissionResult.failed(str(e), screenshot)

        except Exception as e:
            logger.error(f"[{correlation_id}] Error submitting to {self.name}: {mask_password_in_logs(str(e))}")
            screenshot = await self._capture_error_screenshot(driver, correlation_id)
            return PortalSubmissionResult.failed(f"Portal submission failed: {e}", screenshot)

    # ------------------------------------------------------------------
    # Portal-specific steps
    # ------------------------------------------------------------------

    async def login(self, driver: PortalDriver, credentials: PortalCredentials):
        """Authenticate on the portal. Only called when requires_login is set."""
        raise NotImplementedError(f"{self.name} does not implement login")

    @abstractmethod
    async def open_application(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        """Navigate from the portal landing page to the application form"""

    async def complete_portal_steps(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        """Steps between generic field filling and the final submit"""

    @abstractmethod
    async def submit_application(self, driver: PortalDriver):
        """Press the final submit control"""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def login_with_form(
        self,
        driver: PortalDriver,
        credentials: PortalCredentials,
        username_id: str,
        password_id: str,
        submit_selector: str,
        opener_selector: Optional[str] = None,
    ):
        """Fill a username/password form and press its submit button"""
        if opener_selector:
            await driver.click(await driver.find_by_selector(opener_selector))

        username_field = await driver.find_by_id(username_id)
        password_field = await driver.find_by_id(password_id)
        submit_button = await driver.find_by_selector(submit_selector)

        await driver.fill_input(username_field, credentials.username)
        await driver.fill_input(password_field, credentials.password)
        await driver.click(submit_button)

    async def _check_login_error(self, driver: PortalDriver):
        try:
            banner = await driver.wait_for_visible(By.CSS, LOGIN_ERROR_SELECTORS, timeout=self.login_error_timeout_ms)
        except PortalDriverError:
            return
        message = await driver.get_text(banner)
        raise PortalLoginError(f"Authentication failed: {message or 'portal rejected the login'}")

    async def fill_mapped_fields(
        self,
        driver: PortalDriver,
        form_data: Dict[str, Any],
        mappings: List[PortalFieldMapping],
        correlation_id: str = "N/A",
    ) -> FieldFillReport:
        """Fill every mapped field that has a value; missing portal inputs are skipped"""
        report = FieldFillReport()
        for mapping in mappings:
            value = form_value(form_data, mapping.form_field)
            if value is None:
                report.skipped.append(mapping.form_field)
                continue
            try:
                element = await driver.find_by_name(mapping.portal_field, timeout=self.element_timeout_ms)
                await driver.fill_input(element, value)
                report.filled.append(mapping.form_field)
                logger.debug(
                    f"[{correlation_id}] Filled {mapping.portal_field} = "
                    f"{describe_field_value(mapping.form_field, value)}"
                )
            except PortalDriverError as e:
                logger.warning(f"[{correlation_id}] Field not found: {mapping.portal_field} ({e})")
                report.missing.append(mapping.form_field)
        return report

    async def fill_optional_by_id(
        self,
        driver: PortalDriver,
        element_id: str,
        value: Optional[str],
        correlation_id: str,
    ) -> bool:
        """Fill an input that some portal variants do not render"""
        if value is None:
            return False
        try:
            await driver.fill_input(await driver.find_by_id(element_id, timeout=self.element_timeout_ms), value)
            return True
        except PortalDriverError:
            logger.warning(f"[{correlation_id}] {element_id} field not found or could not be filled")
            return False

    async def select_optional_by_text(
        self,
        driver: PortalDriver,
        element_id: str,
        text: Optional[str],
        correlation_id: str,
    ) -> bool:
        """Pick a dropdown option by visible text when the dropdown exists"""
        if text is None:
            return False
        try:
            dropdown = await driver.find_by_id(element_id, timeout=self.element_timeout_ms)
            await driver.select_option_by_text(dropdown, text)
            return True
        except PortalDriverError:
            logger.warning(f"[{correlation_id}] {element_id} dropdown not found or could not be filled")
            return False

    async def collect_confirmation(self, driver: PortalDriver, correlation_id: str) -> PortalSubmissionResult:
        """Read the confirmation number and capture the receipt screenshot"""
        confirmation_element = await driver.find_by_selector(self.confirmation_selector)
        confirmation_number = await driver.get_text(confirmation_element)
        if not confirmation_number:
            raise ValueError("Confirmation page did not show a confirmation number")

        screenshot = await driver.take_screenshot()
        logger.info(f"[{correlation_id}] {self.name} confirmation number: {confirmation_number}")

        return PortalSubmissionResult(
            success=True,
            status=PortalSubmissionStatus.COMPLETED,
            confirmation_number=confirmation_number,
            confirmation_receipt_url=build_receipt_url(self.receipt_base_url, confirmation_number),
            receipt_screenshot=screenshot,
        )

    async def _capture_error_screenshot(self, driver: PortalDriver, correlation_id: str) -> Optional[bytes]:
        try:
            return await driver.take_screenshot()
        except Exception as e:
            logger.debug(f"[{correlation_id}] Error taking screenshot: {e}")
            return None
