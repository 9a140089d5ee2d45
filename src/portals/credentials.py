"""Portal credential lookup.

Credentials come from the environment (loaded from .env), one pair per
portal type: IMMIGRATION_USERNAME / IMMIGRATION_PASSWORD and so on.
"""

import os
from typing import Dict, List
from loguru import logger

from src.storage.models import PortalCredentials, PortalType


class MissingCredentialsError(Exception):
    def __init__(self, portal_type: PortalType, missing: List[str]):
        super().__init__(f"Authentication failed: missing credentials for {portal_type.value} ({', '.join(missing)})")
        self.portal_type = portal_type
        self.missing = missing


def credential_env_vars(portal_type: PortalType) -> Dict[str, str]:
    prefix = PortalType(portal_type).value
    return {'username': f"{prefix}_USERNAME", 'password': f"{prefix}_PASSWORD"}


class EnvCredentialProvider:
    """Reads portal credentials from environment variables"""

    async def get_credentials(self, portal_type: PortalType) -> PortalCredentials:
        env_vars = credential_env_vars(portal_type)
        values = {key: os.getenv(var, '') for key, var in env_vars.items()}
        missing = [env_vars[key] for key, value in values.items() if not value]
        if missing:
            raise MissingCredentialsError(PortalType(portal_type), missing)
        return PortalCredentials(**values)

    def report_availability(self) -> Dict[str, bool]:
        """Log which portals have credentials configured"""
        availability = {}
        for portal_type in PortalType:
            env_vars = credential_env_vars(portal_type)
            available = all(os.getenv(var) for var in env_vars.values())
            availability[portal_type.value] = available
            if available:
                logger.info(f"{portal_type.value} credentials available")
            else:
                logger.warning(f"{portal_type.value} credentials missing: {list(env_vars.values())}")
        return availability
