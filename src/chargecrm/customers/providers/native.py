"""Native customer provider -- the built-in, locally persisted CRM backend.

All operations mutate the CustomerRecordStore; no authentication is needed.
``sync`` validates the local records instead of talking to a remote system,
and deleting a customer cascades to its deals and contact history.
"""

from __future__ import annotations

from typing import TypeVar

import structlog
from pydantic import BaseModel

from src.chargecrm.core.storage import KeyValueStore
from src.chargecrm.customers.errors import RecordNotFoundError
from src.chargecrm.customers.ids import CONTACT_KIND, DEAL_KIND, generate_native_id, require_namespace
from src.chargecrm.customers.providers.base import CustomerProvider
from src.chargecrm.customers.schemas import (
    ContactCreate,
    ContactType,
    CRMConfig,
    Customer,
    CustomerContact,
    CustomerCreate,
    CustomerDeal,
    CustomerSource,
    CustomerUpdate,
    DealCreate,
    DealUpdate,
    SyncResult,
    SyncStatus,
    utc_now,
)
from src.chargecrm.customers.store import CustomerRecordStore

logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def _detached(record: RecordT) -> RecordT:
    """Copy of a stored record; callers never hold the instance kept in the store."""
    return record.model_copy(deep=True)


class NativeCustomerProvider(CustomerProvider):
    """Customer provider backed by the local record store.

    Args:
        storage: Key-value store holding the native records.
    """

    name = CustomerSource.NATIVE
    requires_auth = False

    def __init__(self, storage: KeyValueStore) -> None:
        self._store = CustomerRecordStore(storage)

    @property
    def store(self) -> CustomerRecordStore:
        return self._store

    async def authenticate(self, config: CRMConfig) -> bool:
        return True

    def is_authenticated(self) -> bool:
        return True

    # ── Customers ──────────────────────────────────────────────────────────

    async def get_customers(self, limit: int = 100, offset: int = 0) -> list[Customer]:
        return [_detached(c) for c in self._store.customers[offset:offset + limit]]

    async def get_customer(self, customer_id: str) -> Customer | None:
        index = self._store.customer_index(customer_id)
        return _detached(self._store.customers[index]) if index is not None else None

    async def create_customer(self, data: CustomerCreate) -> Customer:
        now = utc_now()
        customer = Customer(
            **data.model_dump(),
            id=generate_native_id(),
            source=CustomerSource.NATIVE,
            created_at=now,
            updated_at=now,
        )
        self._store.customers.append(customer)
        self._store.save()
        logger.info("native_crm.customer_created", customer_id=customer.id)
        return _detached(customer)

    async def update_customer(self, customer_id: str, updates: CustomerUpdate) -> Customer:
        index = self._store.customer_index(customer_id)
        if index is None:
            raise RecordNotFoundError(f"Customer with id {customer_id} not found")

        current = self._store.customers[index]
        merged = current.model_dump()
        merged.update(updates.model_dump(exclude_unset=True, exclude_none=True))
        merged["updated_at"] = max(utc_now(), current.created_at)
        updated = Customer.model_validate(merged)

        self._store.customers[index] = updated
        self._store.save()
        logger.info("native_crm.customer_updated", customer_id=customer_id)
        return _detached(updated)

    async def delete_customer(self, customer_id: str) -> bool:
        deleted = self._store.remove_customer(customer_id)
        if deleted:
            logger.info("native_crm.customer_deleted", customer_id=customer_id)
        return deleted

    # ── Deals ──────────────────────────────────────────────────────────────

    async def get_customer_deals(self, customer_id: str) -> list[CustomerDeal]:
        return [_detached(d) for d in self._store.deals if d.customer_id == customer_id]

    async def create_deal(self, data: DealCreate) -> CustomerDeal:
        require_namespace(data.customer_id, self.name)
        if not self._store.has_customer(data.customer_id):
            raise RecordNotFoundError(f"Customer with id {data.customer_id} not found")

        now = utc_now()
        deal = CustomerDeal(
            **data.model_dump(),
            id=generate_native_id(DEAL_KIND),
            source=CustomerSource.NATIVE,
            created_at=now,
            updated_at=now,
        )
        self._store.deals.append(deal)
        self._store.save()
        logger.info("native_crm.deal_created", deal_id=deal.id, customer_id=deal.customer_id)
        return _detached(deal)

    async def update_deal(self, deal_id: str, updates: DealUpdate) -> CustomerDeal:
        index = self._store.deal_index(deal_id)
        if index is None:
            raise RecordNotFoundError(f"Deal with id {deal_id} not found")

        current = self._store.deals[index]
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        changes.pop("customer_id", None)
        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = max(utc_now(), current.created_at)
        updated = CustomerDeal.model_validate(merged)

        self._store.deals[index] = updated
        self._store.save()
        logger.info("native_crm.deal_updated", deal_id=deal_id)
        return _detached(updated)

    # ── Contact History ────────────────────────────────────────────────────

    async def get_customer_contacts(self, customer_id: str) -> list[CustomerContact]:
        return [_detached(c) for c in self._store.contacts if c.customer_id == customer_id]

    async def add_contact(self, data: ContactCreate) -> CustomerContact:
        require_namespace(data.customer_id, self.name)
        if not self._store.has_customer(data.customer_id):
            raise RecordNotFoundError(f"Customer with id {data.customer_id} not found")

        contact = CustomerContact(**data.model_dump(), id=generate_native_id(CONTACT_KIND))
        self._store.contacts.append(contact)
        self._store.save()
        logger.info("native_crm.contact_added", contact_id=contact.id, customer_id=contact.customer_id)
        return _detached(contact)

    # ── Sync ───────────────────────────────────────────────────────────────

    async def sync(self) -> SyncResult:
        """Validate local records; problems are reported, never raised.

        Flags customers missing a name or email and deals whose customer no
        longer exists.
        """
        processed = 0
        errors: list[str] = []
        customer_ids = {c.id for c in self._store.customers}

        for customer in self._store.customers:
            processed += 1
            if not customer.email or not customer.name:
                errors.append(f"Customer {customer.id} is missing required fields")

        for deal in self._store.deals:
            processed += 1
            if deal.customer_id not in customer_ids:
                errors.append(f"Deal {deal.id} references missing customer {deal.customer_id}")

        result = SyncResult(
            success=not errors,
            records_processed=processed,
            records_failed=len(errors),
            errors=errors,
        )
        self._store.record_sync(result)

        logger.info(
            "native_crm.sync_complete",
            processed=processed,
            errors=len(errors),
        )
        return result

    async def get_last_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_active=False,
            last_sync=self._store.last_sync,
            last_result=self._store.last_result,
            next_sync=None,
        )

    # ── Host Application Hooks ─────────────────────────────────────────────

    async def link_project_to_customer(self, project_id: str, customer_id: str) -> bool:
        self._store.link_project(project_id, customer_id)
        logger.info("native_crm.project_linked", project_id=project_id, customer_id=customer_id)
        return True

    async def link_quote_to_customer(self, quote_id: str, customer_id: str) -> bool:
        self._store.link_quote(quote_id, customer_id)
        logger.info("native_crm.quote_linked", quote_id=quote_id, customer_id=customer_id)
        return True

    async def notify_quote_status_change(
        self, quote_id: str, status: str, customer_id: str
    ) -> bool:
        await self.add_contact(
            ContactCreate(
                customer_id=customer_id,
                type=ContactType.NOTE,
                subject="Quote Status Updated",
                content=f"Quote {quote_id} status changed to: {status}",
            )
        )
        return True

    def get_project_customer(self, project_id: str) -> str | None:
        return self._store.project_customer(project_id)

    def get_quote_customer(self, quote_id: str) -> str | None:
        return self._store.quote_customer(quote_id)
