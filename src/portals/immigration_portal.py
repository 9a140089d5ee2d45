"""Immigration service portal adapter.

Single-page application form behind a username/password login.
"""

from typing import Dict, Any

from .base import BasePortalAdapter
from src.browser.portal_driver import PortalDriver
from src.storage.models import PortalCredentials, PortalType

IMMIGRATION_PORTAL_URL = 'https://www.irishimmigration.ie/'

IMMIGRATION_SELECTORS = {
    "login_opener": ".login-button",
    "username_id": "username",
    "password_id": "password",
    "login_submit": 'button[type="submit"]',
    "new_application": ".new-application-button",
    "submit_application_id": "submit-application",
}


class ImmigrationPortalAdapter(BasePortalAdapter):
    """Immigration service online application portal"""

    portal_type = PortalType.IMMIGRATION
    name = "Immigration Portal"
    default_entry_url = IMMIGRATION_PORTAL_URL

    async def login(self, driver: PortalDriver, credentials: PortalCredentials):
        await self.login_with_form(
            driver,
            credentials,
            username_id=IMMIGRATION_SELECTORS["username_id"],
            password_id=IMMIGRATION_SELECTORS["password_id"],
            submit_selector=IMMIGRATION_SELECTORS["login_submit"],
            opener_selector=IMMIGRATION_SELECTORS["login_opener"],
        )

    async def open_application(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        await driver.click(await driver.find_by_selector(IMMIGRATION_SELECTORS["new_application"]))

    async def submit_application(self, driver: PortalDriver):
        await driver.click(await driver.find_by_id(IMMIGRATION_SELECTORS["submit_application_id"]))
