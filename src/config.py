"""Runtime configuration loaded from .env and environment variables"""

import os
from typing import Dict, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from src.storage.models import PortalType

SUPPORTED_BROWSERS = ('chrome', 'chromium', 'edge', 'firefox', 'webkit')


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes')


class AutomationSettings(BaseModel):
    """Settings for the portal submission pipeline"""

    # Browser
    browser_type: str = 'chrome'
    headless: bool = True
    element_timeout_ms: int = 30000
    slot_lookup_delay_seconds: float = 2.0

    # Retry engine
    max_retry_attempts: int = 3
    base_retry_delay_ms: int = 60000

    # Storage
    store_file: Optional[str] = 'portal_store.json'
    audit_log_file: Optional[str] = 'logs/audit_log.jsonl'
    notifications_file: Optional[str] = 'logs/notifications.jsonl'
    receipts_dir: str = 'receipts'
    receipt_base_url: str = 'https://storage.example.com/confirmations'
    field_mappings_file: str = 'config/field_mappings.yaml'

    # Portal entry points; None keeps the adapter's public URL
    immigration_portal_url: Optional[str] = None
    visa_portal_url: Optional[str] = None
    registration_bureau_url: Optional[str] = None
    employment_permit_url: Optional[str] = None

    # Behaviour
    side_effect_policy: str = 'best_effort'
    save_error_screenshots: bool = False
    debug: bool = False

    @field_validator('browser_type')
    @classmethod
    def _check_browser(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_BROWSERS:
            raise ValueError(f"Unsupported browser type: {value}")
        return value

    @field_validator('max_retry_attempts', 'base_retry_delay_ms', 'element_timeout_ms')
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    def portal_entry_urls(self) -> Dict[PortalType, str]:
        """Entry URL overrides keyed by portal"""
        urls = {
            PortalType.IMMIGRATION: self.immigration_portal_url,
            PortalType.VISA: self.visa_portal_url,
            PortalType.REGISTRATION_BUREAU: self.registration_bureau_url,
            PortalType.EMPLOYMENT_PERMIT: self.employment_permit_url,
        }
        return {portal_type: url for portal_type, url in urls.items() if url}

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AutomationSettings":
        """Build settings from the process environment (after loading .env)"""
        load_dotenv(env_file)
        debug = _env_bool('DEBUG', False)
        return cls(
            browser_type=os.getenv('BROWSER_TYPE', 'chrome'),
            headless=_env_bool('HEADLESS', True),
            element_timeout_ms=int(os.getenv('ELEMENT_TIMEOUT_MS', '30000')),
            slot_lookup_delay_seconds=float(os.getenv('SLOT_LOOKUP_DELAY_SECONDS', '2.0')),
            max_retry_attempts=int(os.getenv('MAX_RETRY_ATTEMPTS', '3')),
            base_retry_delay_ms=int(os.getenv('BASE_RETRY_DELAY_MS', '60000')),
            store_file=os.getenv('PORTAL_STORE_FILE', 'portal_store.json'),
            audit_log_file=os.getenv('AUDIT_LOG_FILE', 'logs/audit_log.jsonl'),
            notifications_file=os.getenv('NOTIFICATIONS_FILE', 'logs/notifications.jsonl'),
            receipts_dir=os.getenv('RECEIPTS_DIR', 'receipts'),
            receipt_base_url=os.getenv('RECEIPT_BASE_URL', 'https://storage.example.com/confirmations'),
            field_mappings_file=os.getenv('FIELD_MAPPINGS_FILE', 'config/field_mappings.yaml'),
            immigration_portal_url=os.getenv('IMMIGRATION_PORTAL_URL') or None,
            visa_portal_url=os.getenv('VISA_PORTAL_URL') or None,
            registration_bureau_url=os.getenv('REGISTRATION_BUREAU_URL') or None,
            employment_permit_url=os.getenv('EMPLOYMENT_PERMIT_URL') or None,
            side_effect_policy=os.getenv('SIDE_EFFECT_POLICY', 'best_effort'),
            # Error screenshots are always kept in debug mode
            save_error_screenshots=_env_bool('SAVE_ERROR_SCREENSHOTS', debug),
            debug=debug,
        )
