"""Native customer record store.

Holds customers, deals and contact-history entries for the built-in
provider, plus the project->customer and quote->customer link tables.
Everything is loaded once from the key-value store and rewritten after each
mutation.

Every mutating method completes its read-modify-write synchronously; callers
must not introduce an ``await`` between reading and writing. The cycle is not
safe across threads or processes.
"""

from __future__ import annotations

from datetime import datetime
from typing import TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from src.chargecrm.core.storage import KeyValueStore
from src.chargecrm.customers.schemas import (
    Customer,
    CustomerContact,
    CustomerDeal,
    SyncResult,
)

logger = structlog.get_logger(__name__)

# Storage keys shared with the web client's local storage layout
CUSTOMERS_KEY = "nativeCustomers"
DEALS_KEY = "nativeDeals"
CONTACTS_KEY = "nativeContacts"
LAST_SYNC_KEY = "nativeLastSync"
LAST_SYNC_RESULT_KEY = "nativeLastSyncResult"
PROJECT_LINKS_KEY = "customerProjectLinks"
QUOTE_LINKS_KEY = "customerQuoteLinks"

ModelT = TypeVar("ModelT", bound=BaseModel)


class CustomerRecordStore:
    """In-memory lists of native records mirrored to a KeyValueStore.

    Args:
        storage: Durable key-value store to load from and write to.
    """

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage
        self.customers: list[Customer] = self._load_list(CUSTOMERS_KEY, Customer)
        self.deals: list[CustomerDeal] = self._load_list(DEALS_KEY, CustomerDeal)
        self.contacts: list[CustomerContact] = self._load_list(CONTACTS_KEY, CustomerContact)
        self.last_sync: datetime | None = self._load_value(LAST_SYNC_KEY, datetime)
        self.last_result: SyncResult | None = self._load_value(LAST_SYNC_RESULT_KEY, SyncResult)

    # ── Loading ────────────────────────────────────────────────────────────

    def _load_list(self, key: str, model: type[ModelT]) -> list[ModelT]:
        raw = self._storage.get(key)
        if raw is None:
            return []
        try:
            return TypeAdapter(list[model]).validate_json(raw)
        except ValidationError as exc:
            logger.warning("native_store.load_failed", key=key, error=str(exc))
            return []

    def _load_value(self, key: str, type_: type):
        raw = self._storage.get(key)
        if raw is None:
            return None
        try:
            return TypeAdapter(type_).validate_json(raw)
        except ValidationError:
            # Older clients stored the timestamp as a bare string
            try:
                return TypeAdapter(type_).validate_python(raw)
            except ValidationError as exc:
                logger.warning("native_store.load_failed", key=key, error=str(exc))
                return None

    # ── Persistence ────────────────────────────────────────────────────────

    def save(self) -> None:
        """Rewrite the three record lists and the sync markers."""
        self._storage.set_json(CUSTOMERS_KEY, [c.to_storage() for c in self.customers])
        self._storage.set_json(DEALS_KEY, [d.to_storage() for d in self.deals])
        self._storage.set_json(CONTACTS_KEY, [c.to_storage() for c in self.contacts])
        if self.last_sync is not None:
            self._storage.set_json(LAST_SYNC_KEY, self.last_sync.isoformat())
        if self.last_result is not None:
            self._storage.set_json(LAST_SYNC_RESULT_KEY, self.last_result.to_storage())

    # ── Lookups ────────────────────────────────────────────────────────────

    def customer_index(self, customer_id: str) -> int | None:
        for index, customer in enumerate(self.customers):
            if customer.id == customer_id:
                return index
        return None

    def deal_index(self, deal_id: str) -> int | None:
        for index, deal in enumerate(self.deals):
            if deal.id == deal_id:
                return index
        return None

    def has_customer(self, customer_id: str) -> bool:
        return self.customer_index(customer_id) is not None

    # ── Mutations ──────────────────────────────────────────────────────────

    def remove_customer(self, customer_id: str) -> bool:
        """Delete a customer and cascade to its deals and contacts."""
        index = self.customer_index(customer_id)
        if index is None:
            return False
        del self.customers[index]
        self.deals = [d for d in self.deals if d.customer_id != customer_id]
        self.contacts = [c for c in self.contacts if c.customer_id != customer_id]
        self.save()
        return True

    def record_sync(self, result: SyncResult) -> None:
        self.last_sync = result.timestamp
        self.last_result = result
        self.save()

    # ── Link Tables ────────────────────────────────────────────────────────

    def _links(self, key: str) -> dict[str, str]:
        links = self._storage.get_json(key, {})
        return links if isinstance(links, dict) else {}

    def _set_link(self, key: str, entity_id: str, customer_id: str) -> None:
        links = self._links(key)
        links[entity_id] = customer_id
        self._storage.set_json(key, links)

    def link_project(self, project_id: str, customer_id: str) -> None:
        self._set_link(PROJECT_LINKS_KEY, project_id, customer_id)

    def link_quote(self, quote_id: str, customer_id: str) -> None:
        self._set_link(QUOTE_LINKS_KEY, quote_id, customer_id)

    def project_customer(self, project_id: str) -> str | None:
        return self._links(PROJECT_LINKS_KEY).get(project_id)

    def quote_customer(self, quote_id: str) -> str | None:
        return self._links(QUOTE_LINKS_KEY).get(quote_id)
