"""Pydantic schemas for the customer/CRM integration layer.

Defines all structured types shared by the providers and CustomerService:
- Enums: CustomerSource, DealStage, ContactType, SyncFrequency, CustomerSortField, SortOrder
- Records: Address, Customer, CustomerDeal, CustomerContact
- Payloads: CustomerCreate/Update, DealCreate/Update, ContactCreate
- Configuration: CRMConfig, CRMConfigUpdate
- Sync reporting: SyncResult, SyncStatus
- Listing: CustomerSearchFilters, CustomerListOptions

Every model accepts snake_case names and camelCase aliases, and
``to_storage()`` dumps camelCase JSON so persisted records keep the
storage shape the web client already writes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Vendors mix naive and offset timestamps; naive ones are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


# ── Enums ───────────────────────────────────────────────────────────────────


class CustomerSource(str, Enum):
    """Provider that owns a record; also the record's ID namespace."""

    NATIVE = "native"
    HUBSPOT = "hubspot"
    PIPEDRIVE = "pipedrive"


class DealStage(str, Enum):
    """Canonical sales pipeline stage for a customer deal."""

    NEW = "new"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


CLOSED_STAGES = frozenset({DealStage.CLOSED_WON, DealStage.CLOSED_LOST})


class ContactType(str, Enum):
    """Kind of interaction recorded in a customer's contact history."""

    EMAIL = "email"
    PHONE = "phone"
    MEETING = "meeting"
    NOTE = "note"


class SyncFrequency(str, Enum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"


class CustomerSortField(str, Enum):
    NAME = "name"
    COMPANY = "company"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ── Base ────────────────────────────────────────────────────────────────────


class CRMModel(BaseModel):
    """Base model: camelCase aliases, population by field name allowed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> dict[str, Any]:
        """JSON-safe dict with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _check_namespace(value: str, source: CustomerSource, field_name: str) -> None:
    prefix = f"{source.value}_"
    if not value.startswith(prefix):
        msg = f"{field_name} '{value}' must start with '{prefix}' for source '{source.value}'"
        raise ValueError(msg)


# ── Customer Schemas ────────────────────────────────────────────────────────


class Address(CRMModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class CustomerCreate(CRMModel):
    """Payload for creating a customer (provider assigns id, source, timestamps)."""

    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    address: Address | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    external_id: str | None = None


class CustomerUpdate(CRMModel):
    """Partial customer update. Identity fields (id, source, createdAt) are not accepted."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    address: Address | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None
    external_id: str | None = None
    last_sync_at: UTCDateTime | None = None


class Customer(CRMModel):
    """Canonical customer record.

    Invariants: ``id`` carries the ``<source>_`` namespace prefix and
    ``updated_at`` is never earlier than ``created_at``.
    """

    id: str
    external_id: str | None = None
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    address: Address | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    source: CustomerSource
    created_at: UTCDateTime
    updated_at: UTCDateTime
    last_sync_at: UTCDateTime | None = None

    @model_validator(mode="after")
    def _validate_invariants(self) -> Customer:
        _check_namespace(self.id, self.source, "id")
        if self.updated_at < self.created_at:
            msg = f"updatedAt precedes createdAt for customer '{self.id}'"
            raise ValueError(msg)
        return self


# ── Deal Schemas ────────────────────────────────────────────────────────────


class DealCreate(CRMModel):
    customer_id: str
    title: str
    value: float = Field(default=0.0, ge=0)
    stage: DealStage = DealStage.NEW
    probability: int = Field(default=0, ge=0, le=100)
    expected_close_date: str | None = None
    external_id: str | None = None


class DealUpdate(CRMModel):
    """Partial deal update (all fields optional).

    ``customer_id`` is never used to re-parent a deal; vendor providers read
    it only to label the returned record.
    """

    customer_id: str | None = None
    title: str | None = None
    value: float | None = Field(default=None, ge=0)
    stage: DealStage | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: str | None = None
    external_id: str | None = None


class CustomerDeal(CRMModel):
    """Sales opportunity owned by exactly one customer of the same provider."""

    id: str
    customer_id: str
    title: str
    value: float = Field(ge=0)
    stage: DealStage
    probability: int = Field(ge=0, le=100)
    expected_close_date: str | None = None
    external_id: str | None = None
    source: CustomerSource
    created_at: UTCDateTime
    updated_at: UTCDateTime

    @model_validator(mode="after")
    def _validate_invariants(self) -> CustomerDeal:
        _check_namespace(self.id, self.source, "id")
        _check_namespace(self.customer_id, self.source, "customerId")
        if self.updated_at < self.created_at:
            msg = f"updatedAt precedes createdAt for deal '{self.id}'"
            raise ValueError(msg)
        return self

    @property
    def is_open(self) -> bool:
        return self.stage not in CLOSED_STAGES


# ── Contact History Schemas ─────────────────────────────────────────────────


class ContactCreate(CRMModel):
    customer_id: str
    type: ContactType
    subject: str
    content: str
    timestamp: UTCDateTime = Field(default_factory=utc_now)
    external_id: str | None = None


class CustomerContact(CRMModel):
    """Append-only interaction log entry (email, call, meeting, note)."""

    id: str
    customer_id: str
    type: ContactType
    subject: str
    content: str
    timestamp: UTCDateTime
    external_id: str | None = None


# ── Configuration ───────────────────────────────────────────────────────────


class CRMConfig(CRMModel):
    """Active CRM configuration, persisted under ``customerServiceConfig``."""

    provider: CustomerSource = CustomerSource.NATIVE
    api_key: str | None = None
    domain: str | None = None
    sync_enabled: bool = False
    sync_frequency: SyncFrequency = SyncFrequency.HOURLY
    auto_create_projects: bool = False
    auto_sync_quotes: bool = False


class CRMConfigUpdate(CRMModel):
    """Partial configuration merged over the current CRMConfig."""

    provider: CustomerSource | None = None
    api_key: str | None = None
    domain: str | None = None
    sync_enabled: bool | None = None
    sync_frequency: SyncFrequency | None = None
    auto_create_projects: bool | None = None
    auto_sync_quotes: bool | None = None


# ── Sync Reporting ──────────────────────────────────────────────────────────


class SyncResult(CRMModel):
    """Outcome of one provider sync run."""

    success: bool
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    errors: list[str] = Field(default_factory=list)
    timestamp: UTCDateTime = Field(default_factory=utc_now)


class SyncStatus(CRMModel):
    is_active: bool = False
    last_sync: UTCDateTime | None = None
    last_result: SyncResult | None = None
    next_sync: UTCDateTime | None = None


# ── Listing ─────────────────────────────────────────────────────────────────


class CustomerSearchFilters(CRMModel):
    """Client-side filters applied after fetching from the provider(s)."""

    query: str | None = None
    source: Literal["native", "hubspot", "pipedrive", "all"] | None = None
    tags: list[str] | None = None
    has_active_deals: bool | None = None
    created_after: UTCDateTime | None = None
    created_before: UTCDateTime | None = None


class CustomerListOptions(CRMModel):
    filters: CustomerSearchFilters | None = None
    sort_by: CustomerSortField | None = None
    sort_order: SortOrder = SortOrder.ASC
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
