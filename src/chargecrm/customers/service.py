"""CustomerService -- single entry point over the native and vendor CRM providers.

Owns the provider registry, the persisted CRMConfig and the active
provider. Per-entity operations are routed by the ID namespace prefix
(``native_``, ``hubspot_``, ``pipedrive_``), falling back to the active
provider for un-prefixed IDs. Successful mutations are announced on the
service's CustomerEventBus.

Error propagation:
- Reads (customers, deals, contacts, sync status, link lookups) log and
  degrade to None / [] / an inactive status.
- Writes (create/update/delete, add contact, sync) raise; no event is
  emitted for a failed call.
- Linking hooks log and return False.

Event payloads are deep copies; listeners cannot alter the returned records.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import structlog
from pydantic import ValidationError

from src.chargecrm.config import Settings, get_settings
from src.chargecrm.core.storage import KeyValueStore
from src.chargecrm.customers.errors import ProviderNotFoundError
from src.chargecrm.customers.events import (
    CustomerEventBus,
    CustomerEventType,
    CustomerSyncEvent,
    EventListener,
)
from src.chargecrm.customers.ids import detect_source
from src.chargecrm.customers.providers import CustomerProvider, build_provider_registry
from src.chargecrm.customers.query import apply_filters, sort_customers
from src.chargecrm.customers.schemas import (
    ContactCreate,
    CRMConfig,
    CRMConfigUpdate,
    Customer,
    CustomerContact,
    CustomerCreate,
    CustomerDeal,
    CustomerListOptions,
    CustomerSearchFilters,
    CustomerSource,
    CustomerUpdate,
    DealCreate,
    DealUpdate,
    SyncResult,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

CONFIG_KEY = "customerServiceConfig"


class CustomerService:
    """Routes customer operations to the right CRM provider.

    Args:
        storage: Durable key-value store for config and native records.
        providers: Provider registry; built from settings when omitted.
        settings: Application settings (defaults to get_settings()).
        event_bus: Listener bus; a private one is created when omitted.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        providers: dict[CustomerSource, CustomerProvider] | None = None,
        settings: Settings | None = None,
        event_bus: CustomerEventBus | None = None,
    ) -> None:
        self._storage = storage
        self._settings = settings or get_settings()
        self._providers = (
            providers if providers is not None
            else build_provider_registry(storage, self._settings)
        )
        if CustomerSource.NATIVE not in self._providers:
            raise ProviderNotFoundError(CustomerSource.NATIVE.value)
        self._events = event_bus or CustomerEventBus()

        self._config = self._load_config()
        self._active = self._providers[self._config.provider]

    # ── Configuration ──────────────────────────────────────────────────────

    def _load_config(self) -> CRMConfig:
        raw = self._storage.get_json(CONFIG_KEY, None)
        if raw is None:
            return CRMConfig()

        try:
            config = CRMConfig.model_validate(raw)
        except ValidationError as exc:
            logger.warning("customer_service.config_invalid", error=str(exc))
            cleaned = {k: v for k, v in raw.items() if k != "provider"} if isinstance(raw, dict) else {}
            try:
                config = CRMConfig.model_validate(cleaned)
            except ValidationError:
                return CRMConfig()

        if config.provider not in self._providers:
            logger.warning("customer_service.provider_unavailable", provider=config.provider.value)
            config = config.model_copy(update={"provider": CustomerSource.NATIVE})
        return config

    def _save_config(self) -> None:
        self._storage.set_json(CONFIG_KEY, self._config.to_storage())

    def _resolve_source(self, name: CustomerSource | str) -> CustomerSource:
        try:
            source = CustomerSource(name)
        except ValueError:
            raise ProviderNotFoundError(str(name)) from None
        if source not in self._providers:
            raise ProviderNotFoundError(source.value)
        return source

    async def set_config(self, update: CRMConfigUpdate | dict[str, Any]) -> bool:
        """Merge ``update`` into the current config, authenticating first.

        Switching provider authenticates the new provider with the merged
        config; a credential change on the current vendor re-authenticates
        it in place. If authentication returns False nothing changes and
        False is returned.

        Raises:
            ProviderNotFoundError: The requested provider is not registered.
            CRMConfigurationError: The target vendor is missing credentials.
        """
        if isinstance(update, dict):
            if update.get("provider") is not None:
                self._resolve_source(update["provider"])
            update = CRMConfigUpdate.model_validate(update)

        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        merged = CRMConfig.model_validate({**self._config.model_dump(), **changes})
        target = self._providers[self._resolve_source(merged.provider)]

        if target is not self._active:
            if target.requires_auth and not await target.authenticate(merged):
                logger.warning("customer_service.provider_switch_rejected", provider=merged.provider.value)
                return False
        elif target.requires_auth and (
            merged.api_key != self._config.api_key or merged.domain != self._config.domain
        ):
            if not await target.authenticate(merged):
                logger.warning("customer_service.credentials_rejected", provider=merged.provider.value)
                return False

        self._config = merged
        self._active = target
        target.apply_config(merged)
        self._save_config()
        logger.info("customer_service.config_updated", provider=merged.provider.value)

        self._emit(CustomerEventType.SYNC_COMPLETED, target, data={"config_updated": True})
        return True

    def get_config(self) -> CRMConfig:
        return self._config.model_copy(deep=True)

    def get_active_provider(self) -> CustomerProvider:
        return self._active

    def get_available_providers(self) -> list[CustomerSource]:
        return list(self._providers)

    def get_provider(self, name: CustomerSource | str) -> CustomerProvider:
        return self._providers[self._resolve_source(name)]

    async def restore_authentication(self) -> bool:
        """Re-authenticate the persisted active vendor with its stored credentials.

        Vendor sessions live in memory only, so a restarted service starts
        with an unauthenticated vendor until this is called.
        """
        provider = self._active
        if not provider.requires_auth or provider.is_authenticated():
            return True
        try:
            restored = await provider.authenticate(self._config)
        except Exception:
            logger.exception("customer_service.restore_auth_failed", provider=provider.name.value)
            return False
        if not restored:
            logger.warning("customer_service.restore_auth_rejected", provider=provider.name.value)
        return restored

    # ── Routing ────────────────────────────────────────────────────────────

    def detect_provider_from_id(self, entity_id: str) -> CustomerProvider | None:
        source = detect_source(entity_id)
        if source is None:
            return None
        return self._providers.get(source)

    def _route(self, entity_id: str) -> CustomerProvider:
        return self.detect_provider_from_id(entity_id) or self._active

    # ── Events ─────────────────────────────────────────────────────────────

    def add_event_listener(self, event_type: CustomerEventType | str, listener: EventListener) -> None:
        self._events.add_listener(event_type, listener)

    def remove_event_listener(self, event_type: CustomerEventType | str, listener: EventListener) -> None:
        self._events.remove_listener(event_type, listener)

    def _emit(
        self,
        event_type: CustomerEventType,
        provider: CustomerProvider,
        customer_id: str = "",
        data: Any = None,
    ) -> None:
        self._events.emit(
            CustomerSyncEvent(
                type=event_type,
                customer_id=customer_id,
                data=copy.deepcopy(data),
                source=provider.name,
            )
        )

    # ── Customers ──────────────────────────────────────────────────────────

    async def get_customers(self, options: CustomerListOptions | None = None) -> list[Customer]:
        """List customers from the active provider, one other provider, or all of them.

        ``filters.source == "all"`` queries every provider concurrently,
        skipping unauthenticated vendors and dropping any provider that
        fails; results keep registry order. Filters and sorting are applied
        after fetching.
        """
        options = options or CustomerListOptions()
        if "limit" not in options.model_fields_set:
            options = options.model_copy(update={"limit": self._settings.CRM_DEFAULT_PAGE_SIZE})
        filters = options.filters
        source = filters.source if filters else None

        try:
            if source == "all":
                customers = await self._fetch_all(options.limit, options.offset)
            elif source is not None and source != self._config.provider.value:
                provider = self._providers.get(CustomerSource(source))
                if provider is None or not self._is_usable(provider):
                    customers = []
                else:
                    customers = await provider.get_customers(options.limit, options.offset)
            else:
                customers = await self._active.get_customers(options.limit, options.offset)
        except Exception:
            logger.exception("customer_service.fetch_failed", source=source)
            return []

        if filters:
            active_ids = None
            if filters.has_active_deals is not None:
                active_ids = await self._customers_with_open_deals(customers)
            customers = apply_filters(customers, filters, active_ids)

        if options.sort_by:
            customers = sort_customers(customers, options.sort_by, options.sort_order)

        return customers

    @staticmethod
    def _is_usable(provider: CustomerProvider) -> bool:
        return not provider.requires_auth or provider.is_authenticated()

    async def _fetch_all(self, limit: int, offset: int) -> list[Customer]:
        providers = list(self._providers.values())

        async def fetch(provider: CustomerProvider) -> list[Customer]:
            if not self._is_usable(provider):
                return []
            try:
                return await provider.get_customers(limit, offset)
            except Exception as exc:
                logger.warning(
                    "customer_service.provider_fetch_failed",
                    provider=provider.name.value,
                    error=str(exc),
                )
                return []

        results = await asyncio.gather(*(fetch(p) for p in providers))
        return [customer for batch in results for customer in batch]

    async def _customers_with_open_deals(self, customers: list[Customer]) -> set[str]:
        deal_lists = await asyncio.gather(*(self.get_customer_deals(c.id) for c in customers))
        return {
            customer.id
            for customer, deals in zip(customers, deal_lists)
            if any(deal.is_open for deal in deals)
        }

    async def search_customers(
        self, query: str, filters: CustomerSearchFilters | None = None
    ) -> list[Customer]:
        merged = (filters or CustomerSearchFilters()).model_copy(update={"query": query})
        return await self.get_customers(CustomerListOptions(filters=merged))

    async def get_customer(self, customer_id: str) -> Customer | None:
        provider = self._route(customer_id)
        try:
            return await provider.get_customer(customer_id)
        except Exception:
            logger.exception(
                "customer_service.customer_fetch_failed",
                customer_id=customer_id,
                provider=provider.name.value,
            )
            return None

    async def create_customer(self, data: CustomerCreate) -> Customer:
        provider = self._active
        customer = await provider.create_customer(data)
        self._emit(CustomerEventType.CUSTOMER_CREATED, provider, customer.id, customer)
        return customer

    async def update_customer(self, customer_id: str, updates: CustomerUpdate) -> Customer:
        provider = self._route(customer_id)
        customer = await provider.update_customer(customer_id, updates)
        self._emit(
            CustomerEventType.CUSTOMER_UPDATED,
            provider,
            customer.id,
            {"updates": updates.model_dump(exclude_unset=True), "customer": customer},
        )
        return customer

    async def delete_customer(self, customer_id: str) -> bool:
        provider = self._route(customer_id)
        deleted = await provider.delete_customer(customer_id)
        if deleted:
            self._emit(CustomerEventType.CUSTOMER_DELETED, provider, customer_id, {"deleted": True})
        return deleted

    # ── Deals ──────────────────────────────────────────────────────────────

    async def get_customer_deals(self, customer_id: str) -> list[CustomerDeal]:
        provider = self._route(customer_id)
        try:
            return await provider.get_customer_deals(customer_id)
        except Exception:
            logger.exception("customer_service.deals_fetch_failed", customer_id=customer_id)
            return []

    async def create_deal(self, data: DealCreate) -> CustomerDeal:
        provider = self._route(data.customer_id)
        deal = await provider.create_deal(data)
        self._emit(CustomerEventType.DEAL_CREATED, provider, data.customer_id, deal)
        return deal

    async def update_deal(self, deal_id: str, updates: DealUpdate) -> CustomerDeal:
        provider = self._route(deal_id)
        deal = await provider.update_deal(deal_id, updates)
        self._emit(
            CustomerEventType.DEAL_UPDATED,
            provider,
            deal.customer_id,
            {"updates": updates.model_dump(exclude_unset=True), "deal": deal},
        )
        return deal

    # ── Contact History ────────────────────────────────────────────────────

    async def get_customer_contacts(self, customer_id: str) -> list[CustomerContact]:
        provider = self._route(customer_id)
        try:
            return await provider.get_customer_contacts(customer_id)
        except Exception:
            logger.exception("customer_service.contacts_fetch_failed", customer_id=customer_id)
            return []

    async def add_contact(self, data: ContactCreate) -> CustomerContact:
        provider = self._route(data.customer_id)
        contact = await provider.add_contact(data)
        self._emit(CustomerEventType.CONTACT_ADDED, provider, data.customer_id, contact)
        return contact

    # ── Sync ───────────────────────────────────────────────────────────────

    async def sync(self, provider_name: CustomerSource | str | None = None) -> SyncResult:
        provider = self.get_provider(provider_name) if provider_name else self._active
        result = await provider.sync()
        self._emit(CustomerEventType.SYNC_COMPLETED, provider, data=result)
        return result

    async def get_sync_status(self, provider_name: CustomerSource | str | None = None) -> SyncStatus:
        try:
            provider = self.get_provider(provider_name) if provider_name else self._active
            return await provider.get_last_sync_status()
        except Exception:
            logger.exception("customer_service.sync_status_failed", provider=str(provider_name))
            return SyncStatus()

    # ── Project and Quote Integration ──────────────────────────────────────

    async def link_project_to_customer(self, project_id: str, customer_id: str) -> bool:
        provider = self._route(customer_id)
        try:
            return await provider.link_project_to_customer(project_id, customer_id)
        except Exception:
            logger.exception("customer_service.project_link_failed", project_id=project_id)
            return False

    async def link_quote_to_customer(self, quote_id: str, customer_id: str) -> bool:
        provider = self._route(customer_id)
        try:
            return await provider.link_quote_to_customer(quote_id, customer_id)
        except Exception:
            logger.exception("customer_service.quote_link_failed", quote_id=quote_id)
            return False

    async def notify_quote_status_change(self, quote_id: str, status: str, customer_id: str) -> bool:
        provider = self._route(customer_id)
        try:
            return await provider.notify_quote_status_change(quote_id, status, customer_id)
        except Exception:
            logger.exception("customer_service.quote_notify_failed", quote_id=quote_id)
            return False

    async def get_project_customer(self, project_id: str) -> Customer | None:
        customer_id = self._providers[CustomerSource.NATIVE].get_project_customer(project_id)
        return await self.get_customer(customer_id) if customer_id else None

    async def get_quote_customer(self, quote_id: str) -> Customer | None:
        customer_id = self._providers[CustomerSource.NATIVE].get_quote_customer(quote_id)
        return await self.get_customer(customer_id) if customer_id else None
