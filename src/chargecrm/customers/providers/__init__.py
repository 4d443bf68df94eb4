"""CRM backends -- one CustomerProvider implementation per source.

Provides:
- CustomerProvider: abstract capability contract
- NativeCustomerProvider: built-in provider persisted in the key-value store
- HubSpotCustomerProvider / PipedriveCustomerProvider: REST-backed vendors
- build_provider_registry: explicit source -> provider table used by CustomerService
"""

from __future__ import annotations

import httpx

from src.chargecrm.config import Settings
from src.chargecrm.core.storage import KeyValueStore
from src.chargecrm.customers.providers.base import CustomerProvider
from src.chargecrm.customers.providers.hubspot import HubSpotCustomerProvider
from src.chargecrm.customers.providers.native import NativeCustomerProvider
from src.chargecrm.customers.providers.pipedrive import PipedriveCustomerProvider
from src.chargecrm.customers.providers.vendor import VendorCustomerProvider
from src.chargecrm.customers.schemas import CustomerSource


def build_provider_registry(
    storage: KeyValueStore,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[CustomerSource, CustomerProvider]:
    """Construct every provider eagerly, keyed by source in registry order."""
    http = {
        "timeout": settings.CRM_HTTP_TIMEOUT,
        "max_attempts": settings.CRM_HTTP_MAX_ATTEMPTS,
        "transport": transport,
        "page_size": settings.CRM_DEFAULT_PAGE_SIZE,
    }
    return {
        CustomerSource.NATIVE: NativeCustomerProvider(storage),
        CustomerSource.HUBSPOT: HubSpotCustomerProvider(settings.HUBSPOT_API_BASE_URL, **http),
        CustomerSource.PIPEDRIVE: PipedriveCustomerProvider(settings.PIPEDRIVE_API_BASE_URL, **http),
    }


__all__ = [
    "CustomerProvider",
    "VendorCustomerProvider",
    "NativeCustomerProvider",
    "HubSpotCustomerProvider",
    "PipedriveCustomerProvider",
    "build_provider_registry",
]
