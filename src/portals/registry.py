"""Portal adapter registry for routing submissions to the right portal"""

from typing import Dict, Type, Optional, List
from loguru import logger

from .base import BasePortalAdapter, DEFAULT_RECEIPT_BASE_URL
from .immigration_portal import ImmigrationPortalAdapter
from .visa_portal import VisaPortalAdapter
from .registration_bureau_portal import RegistrationBureauAdapter
from .employment_permit_portal import EmploymentPermitAdapter
from src.storage.models import PortalType

# Template name keywords -> portal, checked in order
TEMPLATE_ROUTING_KEYWORDS = [
    (("immigration", "residence"), PortalType.IMMIGRATION),
    (("visa",), PortalType.VISA),
    (("registration", "bureau", "appointment"), PortalType.REGISTRATION_BUREAU),
    (("employment", "permit"), PortalType.EMPLOYMENT_PERMIT),
]


def detect_portal_type(template_name: str) -> Optional[PortalType]:
    """
    Derive the target portal from a form template name

    Args:
        template_name: Human-readable template name

    Returns:
        Portal type or None when nothing matches
    """
    name = template_name.lower()
    for keywords, portal_type in TEMPLATE_ROUTING_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return portal_type
    return None


class PortalAdapterRegistry:
    """Registry of adapter implementations keyed by portal type"""

    def __init__(
        self,
        store,
        credential_provider,
        receipt_base_url: str = DEFAULT_RECEIPT_BASE_URL,
        element_timeout_ms: Optional[int] = None,
        settle_delay_seconds: float = 2.0,
        entry_urls: Optional[Dict[PortalType, str]] = None,
        register_defaults: bool = True,
    ):
        self.store = store
        self.credential_provider = credential_provider
        self.receipt_base_url = receipt_base_url
        self.element_timeout_ms = element_timeout_ms
        self.settle_delay_seconds = settle_delay_seconds
        self.entry_urls = {PortalType(k): v for k, v in (entry_urls or {}).items()}
        self.adapters: Dict[PortalType, Type[BasePortalAdapter]] = {}
        self.adapter_instances: Dict[PortalType, BasePortalAdapter] = {}
        if register_defaults:
            self._register_defaults()
        logger.info("Portal adapter registry initialized")

    def _register_defaults(self):
        self.register(PortalType.IMMIGRATION, ImmigrationPortalAdapter)
        self.register(PortalType.VISA, VisaPortalAdapter)
        self.register(PortalType.REGISTRATION_BUREAU, RegistrationBureauAdapter)
        self.register(PortalType.EMPLOYMENT_PERMIT, EmploymentPermitAdapter)

    def register(self, portal_type: PortalType, adapter_class: Type[BasePortalAdapter]):
        portal_type = PortalType(portal_type)
        self.adapters[portal_type] = adapter_class
        self.adapter_instances.pop(portal_type, None)
        logger.debug(f"Registered adapter for {portal_type.value}: {adapter_class.__name__}")

    def register_instance(self, adapter: BasePortalAdapter):
        """Register a ready-made adapter (custom entry URL, test doubles)"""
        self.adapters[adapter.portal_type] = type(adapter)
        self.adapter_instances[adapter.portal_type] = adapter

    def unregister(self, portal_type: PortalType):
        self.adapters.pop(portal_type, None)
        self.adapter_instances.pop(portal_type, None)

    def supported_types(self) -> List[PortalType]:
        return list(self.adapters)

    def get_adapter(self, portal_type: PortalType) -> Optional[BasePortalAdapter]:
        """
        Get adapter instance

        Args:
            portal_type: Portal to submit to

        Returns:
            Adapter instance or None when no adapter is registered
        """
        try:
            portal_type = PortalType(portal_type)
        except ValueError:
            logger.warning(f"Unknown portal type {portal_type}")
            return None

        if portal_type not in self.adapters:
            logger.warning(f"No adapter registered for {portal_type.value}")
            return None

        if portal_type not in self.adapter_instances:
            adapter_class = self.adapters[portal_type]
            self.adapter_instances[portal_type] = adapter_class(
                self.store,
                self.credential_provider,
                receipt_base_url=self.receipt_base_url,
                element_timeout_ms=self.element_timeout_ms,
                entry_url=self.entry_urls.get(portal_type),
                settle_delay_seconds=self.settle_delay_seconds,
            )

        return self.adapter_instances[portal_type]
