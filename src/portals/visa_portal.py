"""Visa application portal adapter.

The visa portal needs a visa type picked before the form renders, has a
date picker outside the mapped fields, and accepts supporting documents
through file inputs named after the document type.
"""

from typing import Dict, Any, List
from loguru import logger

from .base import BasePortalAdapter, form_value
from src.browser.portal_driver import PortalDriver, PortalDriverError
from src.storage.models import PortalCredentials, PortalType

VISA_PORTAL_URL = 'https://www.irishvisa.gov.ie/'
DEFAULT_VISA_TYPE = 'GENERAL'

VISA_SELECTORS = {
    "login_opener": ".login-btn",
    "username_id": "email",
    "password_id": "password",
    "login_submit": 'button[type="submit"]',
    "new_application": ".new-application",
    "visa_type_id": "visa-type",
    "date_of_birth_id": "date-of-birth",
    "submit_application_id": "submit-application",
}


def document_uploads(form_data: Dict[str, Any]) -> List[Dict[str, str]]:
    """Documents to upload as {type, path} pairs; malformed entries are dropped"""
    documents = form_data.get('documents')
    if not isinstance(documents, list):
        return []
    return [
        {"type": str(doc["type"]), "path": str(doc["path"])}
        for doc in documents
        if isinstance(doc, dict) and doc.get("type") and doc.get("path")
    ]


class VisaPortalAdapter(BasePortalAdapter):
    """Online visa application portal"""

    portal_type = PortalType.VISA
    name = "Visa Portal"
    default_entry_url = VISA_PORTAL_URL

    async def login(self, driver: PortalDriver, credentials: PortalCredentials):
        await self.login_with_form(
            driver,
            credentials,
            username_id=VISA_SELECTORS["username_id"],
            password_id=VISA_SELECTORS["password_id"],
            submit_selector=VISA_SELECTORS["login_submit"],
            opener_selector=VISA_SELECTORS["login_opener"],
        )

    async def open_application(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        await driver.click(await driver.find_by_selector(VISA_SELECTORS["new_application"]))

        # The form only renders once a visa type is chosen
        visa_type = form_value(form_data, 'visaType') or DEFAULT_VISA_TYPE
        dropdown = await driver.find_by_id(VISA_SELECTORS["visa_type_id"])
        await driver.select_option_by_value(dropdown, visa_type)
        logger.info(f"[{correlation_id}] Selected visa type {visa_type}")

    async def complete_portal_steps(self, driver: PortalDriver, form_data: Dict[str, Any], correlation_id: str):
        await self.fill_optional_by_id(
            driver, VISA_SELECTORS["date_of_birth_id"], form_value(form_data, 'dateOfBirth'), correlation_id
        )

        for document in document_uploads(form_data):
            try:
                upload_field = await driver.find_by_id(document["type"], timeout=self.element_timeout_ms)
                await driver.upload_file(upload_field, document["path"])
                logger.info(f"[{correlation_id}] Uploaded {document['type']}")
            except PortalDriverError:
                logger.warning(f"[{correlation_id}] Document upload field not found: {document['type']}")

    async def submit_application(self, driver: PortalDriver):
        await driver.click(await driver.find_by_id(VISA_SELECTORS["submit_application_id"]))
