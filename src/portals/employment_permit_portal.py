"""Employment permit portal adapter.

The permit application is a multi-page wizard:
employer details -> employee details -> job details -> review and submit.
Wizard inputs for values present in the form are structural: if the portal
does not render them the run fails instead of submitting a partial permit.
"""

from dataclasses import dataclass
from typing import Dict, Any, List
from loguru import logger

from .base import BasePortalAdapter, form_value
from src.browser.portal_driver import PortalDriver
from src.storage.models import PortalCredentials, PortalType

EMPLOYMENT_PERMIT_URL = 'https://epos.djei.ie/'

EMPLOYMENT_SELECTORS = {
    "username_id": "username",
    "password_id": "password",
    "login_submit": "#login-button",
    "new_application": 'a[href*="new-application"]',
    "permit_type_id": "permit-type",
    "next_button_id": "next-button",
    "terms_checkbox_id": "terms-checkbox",
    "submit_button_id": "submit-button",
}


@dataclass(frozen=True)
class WizardField:
    form_field: str
    element_id: str
    select_by_text: bool = False


@dataclass(frozen=True)
class WizardPage:
    title: str
    fields: List[WizardField]


EMPLOYMENT_WIZARD_PAGES = [
    WizardPage("Employer details", [
        WizardField("employerName", "employer-name"),
        WizardField("employerRegistrationNumber", "employer-reg-number"),
        WizardField("employerAddress", "employer-address"),
        WizardField("employerContactName", "employer-contact-name"),
        WizardField("employerPhone", "employer-phone"),
        WizardField("employerEmail", "employer-email"),
    ]),
    WizardPage("Employee details", [
        WizardField("firstName", "first-name"),
        WizardField("lastName", "last-name"),
        WizardField("dateOfBirth", "date-of-birth"),
        WizardField("nationality", "nationality", select_by_text=True),
        WizardField("passportNumber", "passport-number"),
        WizardField("passportExpiry", "passport-expiry"),
    ]),
    WizardPage("Job details", [
        WizardField("jobTitle", "job-title"),
        WizardField("jobDescription", "job-description"),
        WizardField("annualSalary", "annual-salary"),
        WizardField("hoursPerWeek", "hours-per-week"),
        WizardField("workLocation", "work-location"),
    ]),
]


class EmploymentPermitAdapter(BasePortalAdapter):
    """Employment permits online system"""

    portal_type = PortalType.EMPLOYMENT_PERMIT
    name = "Employment Permit Portal"
    default_entry_url = EMPLOYMENT_PERMIT_URL

    async def login(self, driver: PortalDriver, credentials: PortalCredentials):
        await self.login_with_form(
            driver,
            credentials,
            username_id=EMPLOYMENT_SELECTORS["username_id"],
            password_id=EMPLOYMENT_SELECTORS["password_id"],
            submit_selector=EMPLOYMENT_SELECTORS["login_submit"],
        )

    async def open_application(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        await driver.click(await driver.find_by_selector(EMPLOYMENT_SELECTORS["new_application"]))
        await self.select_optional_by_text(
            driver, EMPLOYMENT_SELECTORS["permit_type_id"], form_value(form_data, 'permitType'), correlation_id
        )

    async def complete_portal_steps(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        for page_number, page in enumerate(EMPLOYMENT_WIZARD_PAGES, start=1):
            filled = await self.fill_wizard_page(driver, page, form_data)
            logger.info(f"[{correlation_id}] Wizard page {page_number} ({page.title}): {filled} fields")
            await driver.click(await driver.find_by_id(EMPLOYMENT_SELECTORS["next_button_id"]))

        # Review page
        await driver.click(await driver.find_by_id(EMPLOYMENT_SELECTORS["terms_checkbox_id"]))

    async def fill_wizard_page(self, driver: PortalDriver, page: WizardPage, form_data: Dict[str, Any]) -> int:
        filled = 0
        for wizard_field in page.fields:
            value = form_value(form_data, wizard_field.form_field)
            if value is None:
                continue
            element = await driver.find_by_id(wizard_field.element_id)
            if wizard_field.select_by_text:
                await driver.select_option_by_text(element, value)
            else:
                await driver.fill_input(element, value)
            filled += 1
        return filled

    async def submit_application(self, driver: PortalDriver):
        await driver.click(await driver.find_by_id(EMPLOYMENT_SELECTORS["submit_button_id"]))
