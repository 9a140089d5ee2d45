"""Unit tests for settings loading"""

import pytest
from pydantic import ValidationError

from src.config import AutomationSettings
from src.storage.models import PortalType

SETTINGS_ENV = (
    'BROWSER_TYPE', 'HEADLESS', 'ELEMENT_TIMEOUT_MS', 'SLOT_LOOKUP_DELAY_SECONDS',
    'MAX_RETRY_ATTEMPTS', 'BASE_RETRY_DELAY_MS', 'PORTAL_STORE_FILE', 'AUDIT_LOG_FILE',
    'NOTIFICATIONS_FILE', 'RECEIPTS_DIR', 'RECEIPT_BASE_URL', 'FIELD_MAPPINGS_FILE',
    'SIDE_EFFECT_POLICY', 'SAVE_ERROR_SCREENSHOTS', 'DEBUG',
    'IMMIGRATION_PORTAL_URL', 'VISA_PORTAL_URL', 'REGISTRATION_BUREAU_URL', 'EMPLOYMENT_PERMIT_URL',
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in SETTINGS_ENV:
        # setenv first so teardown also removes values loaded from env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestAutomationSettings:
    def test_defaults(self, clean_env):
        settings = AutomationSettings.from_env()

        assert settings.browser_type == 'chrome'
        assert settings.headless is True
        assert settings.max_retry_attempts == 3
        assert settings.base_retry_delay_ms == 60000
        assert settings.side_effect_policy == 'best_effort'
        assert settings.save_error_screenshots is False
        assert settings.portal_entry_urls() == {}

    def test_environment_overrides(self, clean_env):
        clean_env.setenv('BROWSER_TYPE', 'Firefox')
        clean_env.setenv('HEADLESS', 'false')
        clean_env.setenv('MAX_RETRY_ATTEMPTS', '5')
        clean_env.setenv('BASE_RETRY_DELAY_MS', '1000')
        clean_env.setenv('SIDE_EFFECT_POLICY', 'strict')

        settings = AutomationSettings.from_env()

        assert settings.browser_type == 'firefox'
        assert settings.headless is False
        assert settings.max_retry_attempts == 5
        assert settings.base_retry_delay_ms == 1000
        assert settings.side_effect_policy == 'strict'

    def test_debug_keeps_error_screenshots(self, clean_env):
        clean_env.setenv('DEBUG', '1')

        settings = AutomationSettings.from_env()

        assert settings.debug is True
        assert settings.save_error_screenshots is True

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / "portal.env"
        env_file.write_text("MAX_RETRY_ATTEMPTS=2\nRECEIPTS_DIR=/var/receipts\n")

        settings = AutomationSettings.from_env(str(env_file))

        assert settings.max_retry_attempts == 2
        assert settings.receipts_dir == '/var/receipts'

    def test_unsupported_browser(self):
        with pytest.raises(ValidationError):
            AutomationSettings(browser_type='netscape')

    def test_retry_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            AutomationSettings(max_retry_attempts=0)

    def test_portal_entry_url_overrides(self, clean_env):
        clean_env.setenv('VISA_PORTAL_URL', 'https://staging-visa.test/')
        clean_env.setenv('EMPLOYMENT_PERMIT_URL', '')

        settings = AutomationSettings.from_env()

        assert settings.visa_portal_url == 'https://staging-visa.test/'
        assert settings.employment_permit_url is None
        assert settings.portal_entry_urls() == {PortalType.VISA: 'https://staging-visa.test/'}
