"""Customer provider abstract base class -- the capability contract every CRM backend implements.

Every backend (native store, HubSpot, Pipedrive) implements this ABC so
CustomerService can treat them uniformly and new vendors can be added
without touching the orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from src.chargecrm.customers.schemas import (
    ContactCreate,
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
)


class CustomerProvider(ABC):
    """Abstract interface for CRM backend operations.

    Attributes:
        name: The provider's source name, also its ID namespace.
        requires_auth: Whether authenticate() must succeed before use.

    Methods:
        authenticate / is_authenticated: Credential validation and status.
        apply_config: Settings changes that need no re-authentication.
        get_customers / get_customer / create_customer / update_customer / delete_customer
        get_customer_deals / create_deal / update_deal
        get_customer_contacts / add_contact: Append-only contact history.
        sync / get_last_sync_status: Reconciliation run and its status.
        link_project_to_customer / link_quote_to_customer / notify_quote_status_change:
            Hooks back into the host application's project and quote entities.
    """

    name: ClassVar[CustomerSource]
    requires_auth: ClassVar[bool] = True

    @abstractmethod
    async def authenticate(self, config: CRMConfig) -> bool:
        """Validate and store credentials. Raises CRMConfigurationError if fields are missing."""
        ...

    @abstractmethod
    def is_authenticated(self) -> bool:
        """In-memory status check, no I/O."""
        ...

    def apply_config(self, config: CRMConfig) -> None:
        """Take non-credential settings (sync schedule, auto-sync flags) from ``config``."""

    @abstractmethod
    async def get_customers(self, limit: int = 100, offset: int = 0) -> list[Customer]:
        ...

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Customer | None:
        """Fetch one customer; None when the backend has no such record."""
        ...

    @abstractmethod
    async def create_customer(self, data: CustomerCreate) -> Customer:
        ...

    @abstractmethod
    async def update_customer(self, customer_id: str, updates: CustomerUpdate) -> Customer:
        ...

    @abstractmethod
    async def delete_customer(self, customer_id: str) -> bool:
        ...

    @abstractmethod
    async def get_customer_deals(self, customer_id: str) -> list[CustomerDeal]:
        ...

    @abstractmethod
    async def create_deal(self, data: DealCreate) -> CustomerDeal:
        ...

    @abstractmethod
    async def update_deal(self, deal_id: str, updates: DealUpdate) -> CustomerDeal:
        ...

    @abstractmethod
    async def get_customer_contacts(self, customer_id: str) -> list[CustomerContact]:
        ...

    @abstractmethod
    async def add_contact(self, data: ContactCreate) -> CustomerContact:
        ...

    @abstractmethod
    async def sync(self) -> SyncResult:
        ...

    @abstractmethod
    async def get_last_sync_status(self) -> SyncStatus:
        ...

    @abstractmethod
    async def link_project_to_customer(self, project_id: str, customer_id: str) -> bool:
        ...

    @abstractmethod
    async def link_quote_to_customer(self, quote_id: str, customer_id: str) -> bool:
        ...

    @abstractmethod
    async def notify_quote_status_change(
        self, quote_id: str, status: str, customer_id: str
    ) -> bool:
        ...

    def get_project_customer(self, project_id: str) -> str | None:
        """Customer id linked to a project, if this provider keeps link tables."""
        return None

    def get_quote_customer(self, quote_id: str) -> str | None:
        """Customer id linked to a quote, if this provider keeps link tables."""
        return None
