"""Customer/CRM integration layer -- pluggable providers behind one service.

Provides:
- CustomerService: routes operations by ID namespace, owns config and events
- CustomerProvider implementations: native store, HubSpot, Pipedrive
- CustomerEventBus / CustomerSyncEvent: in-process change notifications
- Schemas for customers, deals, contact history, config and sync results

Architecture: the native provider is always available and needs no
credentials. Vendor providers are selected through CRMConfig and
authenticated before they become active; records from every provider can
coexist because IDs carry their provider's prefix.
"""

from src.chargecrm.customers.errors import (
    CRMConfigurationError,
    CRMError,
    NamespaceMismatchError,
    NotAuthenticatedError,
    ProviderNotFoundError,
    RecordNotFoundError,
    VendorAPIError,
    VendorTransportError,
)
from src.chargecrm.customers.events import CustomerEventBus, CustomerEventType, CustomerSyncEvent
from src.chargecrm.customers.providers import (
    CustomerProvider,
    HubSpotCustomerProvider,
    NativeCustomerProvider,
    PipedriveCustomerProvider,
)
from src.chargecrm.customers.service import CustomerService

__all__ = [
    "CustomerService",
    "CustomerProvider",
    "NativeCustomerProvider",
    "HubSpotCustomerProvider",
    "PipedriveCustomerProvider",
    "CustomerEventBus",
    "CustomerEventType",
    "CustomerSyncEvent",
    "CRMError",
    "CRMConfigurationError",
    "NotAuthenticatedError",
    "VendorAPIError",
    "VendorTransportError",
    "RecordNotFoundError",
    "NamespaceMismatchError",
    "ProviderNotFoundError",
]
