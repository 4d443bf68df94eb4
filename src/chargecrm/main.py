"""Application factory for the customer service.

Configures logging, opens the configured key-value store, builds the
provider registry and returns a ready CustomerService. Call
``restore_authentication()`` on the result to reconnect a persisted vendor.
"""

from __future__ import annotations

import httpx
import structlog

from src.chargecrm.config import Settings, get_settings
from src.chargecrm.core.storage import KeyValueStore, create_store
from src.chargecrm.customers.providers import build_provider_registry
from src.chargecrm.customers.service import CustomerService
from src.chargecrm.observability import configure_structlog


def create_customer_service(
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CustomerService:
    """Build a CustomerService from settings.

    Args:
        settings: Application settings (defaults to get_settings()).
        store: Key-value store override; built from CRM_STORE_BACKEND when omitted.
        transport: Optional httpx transport shared by the vendor providers.
    """
    settings = settings or get_settings()
    configure_structlog(settings)
    log = structlog.get_logger(__name__)

    if store is None:
        store = create_store(settings)
    providers = build_provider_registry(store, settings, transport=transport)
    service = CustomerService(store, providers=providers, settings=settings)

    log.info(
        "customer_service.started",
        store_backend=settings.CRM_STORE_BACKEND.value,
        active_provider=service.get_config().provider.value,
    )
    return service
