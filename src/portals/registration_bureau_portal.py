"""Registration bureau appointment portal adapter.

No login. The applicant details are filled, the category chosen, and then
the portal is asked for appointment slots. When no slot is offered the run
ends with a terminal "No available appointment slots found" result rather
than a generic failure.
"""

from typing import Dict, Any
from loguru import logger

from .base import BasePortalAdapter, AppointmentUnavailableError, form_value
from src.browser.portal_driver import PortalDriver, PortalDriverError
from src.storage.models import PortalType

REGISTRATION_BUREAU_URL = 'https://burghquayregistrationoffice.inis.gov.ie/'

# Slots are rendered by an AJAX call; once it settled they are either there or not
SLOT_LOOKUP_TIMEOUT_MS = 5000

REGISTRATION_SELECTORS = {
    "appointment_button": ".appointment-button",
    "category_id": "Category",
    "subcategory_id": "SubCategory",
    "terms_checkbox_id": "termsCheckbox",
    "lookup_button_id": "btnLookup",
    "available_slot": ".appointment-slot:not(.disabled)",
    "confirm_button_id": "btnConfirm",
}


class RegistrationBureauAdapter(BasePortalAdapter):
    """Appointment booking for residence registration"""

    portal_type = PortalType.REGISTRATION_BUREAU
    name = "Registration Bureau"
    default_entry_url = REGISTRATION_BUREAU_URL
    requires_login = False
    confirmation_url_fragment = 'confirmed'

    async def open_application(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        await driver.click(await driver.find_by_selector(REGISTRATION_SELECTORS["appointment_button"]))

    async def complete_portal_steps(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        await self.select_optional_by_text(
            driver, REGISTRATION_SELECTORS["category_id"], form_value(form_data, 'category'), correlation_id
        )
        await self.select_optional_by_text(
            driver, REGISTRATION_SELECTORS["subcategory_id"], form_value(form_data, 'subcategory'), correlation_id
        )

        try:
            terms = await driver.find_by_id(REGISTRATION_SELECTORS["terms_checkbox_id"], timeout=self.element_timeout_ms)
            await driver.click(terms)
        except PortalDriverError:
            logger.warning(f"[{correlation_id}] Terms checkbox not found or could not be clicked")

        await self.book_first_available_slot(driver, correlation_id)

    async def book_first_available_slot(self, driver: PortalDriver, correlation_id: str):
        await driver.click(await driver.find_by_id(REGISTRATION_SELECTORS["lookup_button_id"]))
        await driver.pause(self.settle_delay_seconds)

        try:
            slot = await driver.find_by_selector(REGISTRATION_SELECTORS["available_slot"], timeout=SLOT_LOOKUP_TIMEOUT_MS)
        except PortalDriverError:
            raise AppointmentUnavailableError()

        slot_text = await driver.get_text(slot)
        await driver.click(slot)
        logger.info(f"[{correlation_id}] Selected appointment slot {slot_text or '(unlabelled)'}")

    async def submit_application(self, driver: PortalDriver):
        await driver.click(await driver.find_by_id(REGISTRATION_SELECTORS["confirm_button_id"]))
