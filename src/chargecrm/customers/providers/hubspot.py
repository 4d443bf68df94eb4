"""HubSpot customer provider.

Contacts map to customers and deals are read through the v4 associations
API. Contact history is not wired to HubSpot engagements: reads return an
empty list and ``add_contact`` echoes the entry with a generated id.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.chargecrm.customers.errors import CRMConfigurationError, RecordNotFoundError
from src.chargecrm.customers.field_mapping import (
    HUBSPOT_CONTACT_PROPERTIES,
    HUBSPOT_DEAL_CONTACT_ASSOCIATION_TYPE,
    HUBSPOT_DEAL_PROPERTIES,
    from_hubspot_contact,
    from_hubspot_deal,
    to_hubspot_deal_properties,
    to_hubspot_properties,
)
from src.chargecrm.customers.ids import CONTACT_KIND, DEAL_KIND, external_key, require_namespace, vendor_id
from src.chargecrm.customers.providers.vendor import VendorCustomerProvider
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
)

logger = structlog.get_logger(__name__)

CONTACTS_PATH = "/crm/v3/objects/contacts"
DEALS_PATH = "/crm/v3/objects/deals"
MAX_PAGE_SIZE = 100  # HubSpot rejects larger list pages

_CONTACT_PROPERTIES = ",".join(HUBSPOT_CONTACT_PROPERTIES)


class HubSpotCustomerProvider(VendorCustomerProvider):
    """CustomerProvider backed by the HubSpot CRM v3/v4 REST API."""

    name = CustomerSource.HUBSPOT

    def __init__(
        self,
        base_url: str = "https://api.hubapi.com",
        timeout: float | None = None,
        max_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        page_size: int = 100,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            transport=transport,
            page_size=page_size,
        )

    # ── Vendor hooks ───────────────────────────────────────────────────────

    def _validate_credentials(self, config: CRMConfig) -> None:
        if not config.api_key:
            raise CRMConfigurationError("HubSpot API key is required")

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _auth_params(self, api_key: str) -> dict[str, str]:
        return {}

    async def _probe(self, api_key: str) -> httpx.Response:
        return await self._send("GET", CONTACTS_PATH, params={"limit": 1}, api_key=api_key)

    async def _iter_raw_customers(self) -> AsyncIterator[dict[str, Any]]:
        after: str | None = None
        while True:
            params: dict[str, Any] = {
                "limit": min(self._page_size, MAX_PAGE_SIZE),
                "properties": _CONTACT_PROPERTIES,
            }
            if after:
                params["after"] = after
            response = await self._send("GET", CONTACTS_PATH, params=params)
            self._raise_for_status(response)
            body = response.json()
            for contact in body.get("results", []):
                yield contact
            after = ((body.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                return

    def _map_customer(self, raw: dict[str, Any]) -> Customer:
        return from_hubspot_contact(raw, now=self.now())

    # ── Customers ──────────────────────────────────────────────────────────

    async def get_customers(self, limit: int = 100, offset: int = 0) -> list[Customer]:
        """List contacts, walking HubSpot's paging cursors to skip ``offset`` records."""
        wanted = offset + limit
        raw: list[dict[str, Any]] = []
        after: str | None = None
        while len(raw) < wanted:
            params: dict[str, Any] = {
                "limit": min(wanted - len(raw), MAX_PAGE_SIZE),
                "properties": _CONTACT_PROPERTIES,
            }
            if after:
                params["after"] = after
            response = await self._send("GET", CONTACTS_PATH, params=params)
            self._raise_for_status(response)
            body = response.json()
            raw.extend(body.get("results", []))
            after = ((body.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break

        customers: list[Customer] = []
        now = self.now()
        for contact in raw[offset:wanted]:
            try:
                customers.append(from_hubspot_contact(contact, now=now))
            except (ValidationError, KeyError) as exc:
                logger.warning("hubspot.contact_skipped", contact_id=contact.get("id"), error=str(exc))
        return customers

    async def get_customer(self, customer_id: str) -> Customer | None:
        key = external_key(customer_id, self.name)
        response = await self._send(
            "GET", f"{CONTACTS_PATH}/{key}", params={"properties": _CONTACT_PROPERTIES}
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return from_hubspot_contact(response.json(), now=self.now())

    async def create_customer(self, data: CustomerCreate) -> Customer:
        properties = to_hubspot_properties(data.model_dump())
        response = await self._send("POST", CONTACTS_PATH, json={"properties": properties})
        self._raise_for_status(response)
        customer = from_hubspot_contact(response.json(), now=self.now())
        logger.info("hubspot.customer_created", customer_id=customer.id)
        return customer

    async def update_customer(self, customer_id: str, updates: CustomerUpdate) -> Customer:
        key = external_key(customer_id, self.name)
        properties = to_hubspot_properties(updates.model_dump(exclude_unset=True))
        response = await self._send(
            "PATCH", f"{CONTACTS_PATH}/{key}", json={"properties": properties}
        )
        self._raise_for_status(response)
        customer = from_hubspot_contact(response.json(), now=self.now())
        logger.info("hubspot.customer_updated", customer_id=customer.id)
        return customer

    async def delete_customer(self, customer_id: str) -> bool:
        key = external_key(customer_id, self.name)
        response = await self._send("DELETE", f"{CONTACTS_PATH}/{key}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        logger.info("hubspot.customer_deleted", customer_id=customer_id)
        return True

    # ── Deals ──────────────────────────────────────────────────────────────

    async def get_customer_deals(self, customer_id: str) -> list[CustomerDeal]:
        key = external_key(customer_id, self.name)
        owner_id = vendor_id(self.name, key)

        response = await self._send("GET", f"/crm/v4/objects/contacts/{key}/associations/deals")
        self._raise_for_status(response)
        deal_ids = [str(r["toObjectId"]) for r in response.json().get("results", [])]
        if not deal_ids:
            return []

        response = await self._send(
            "POST",
            f"{DEALS_PATH}/batch/read",
            json={
                "inputs": [{"id": deal_id} for deal_id in deal_ids],
                "properties": HUBSPOT_DEAL_PROPERTIES,
            },
        )
        self._raise_for_status(response)
        now = self.now()
        return [from_hubspot_deal(d, owner_id, now=now) for d in response.json().get("results", [])]

    async def create_deal(self, data: DealCreate) -> CustomerDeal:
        require_namespace(data.customer_id, self.name)
        contact_key = external_key(data.customer_id, self.name)

        properties = to_hubspot_deal_properties(data.model_dump())
        response = await self._send("POST", DEALS_PATH, json={"properties": properties})
        self._raise_for_status(response)
        created = response.json()

        association = [
            {
                "associationCategory": "HUBSPOT_DEFINED",
                "associationTypeId": HUBSPOT_DEAL_CONTACT_ASSOCIATION_TYPE,
            }
        ]
        response = await self._send(
            "PUT",
            f"/crm/v4/objects/deals/{created['id']}/associations/contacts/{contact_key}",
            json=association,
        )
        self._raise_for_status(response)

        deal = from_hubspot_deal(created, vendor_id(self.name, contact_key), now=self.now())
        logger.info("hubspot.deal_created", deal_id=deal.id, customer_id=deal.customer_id)
        return deal

    async def update_deal(self, deal_id: str, updates: DealUpdate) -> CustomerDeal:
        key = external_key(deal_id, self.name, DEAL_KIND)
        properties = to_hubspot_deal_properties(updates.model_dump(exclude_unset=True))
        response = await self._send("PATCH", f"{DEALS_PATH}/{key}", json={"properties": properties})
        self._raise_for_status(response)
        updated = response.json()

        if updates.customer_id:
            customer_id = vendor_id(self.name, external_key(updates.customer_id, self.name))
        else:
            customer_id = await self._deal_owner(key)
        if customer_id is None:
            raise RecordNotFoundError(f"No contact is associated with HubSpot deal {key}")

        deal = from_hubspot_deal(updated, customer_id, now=self.now())
        logger.info("hubspot.deal_updated", deal_id=deal.id)
        return deal

    async def _deal_owner(self, deal_key: str) -> str | None:
        response = await self._send("GET", f"/crm/v4/objects/deals/{deal_key}/associations/contacts")
        self._raise_for_status(response)
        results = response.json().get("results", [])
        if not results:
            return None
        return vendor_id(self.name, results[0]["toObjectId"])

    # ── Contact History ────────────────────────────────────────────────────

    async def get_customer_contacts(self, customer_id: str) -> list[CustomerContact]:
        self._require_auth()
        return []

    async def add_contact(self, data: ContactCreate) -> CustomerContact:
        self._require_auth()
        require_namespace(data.customer_id, self.name)
        millis = int(time.time() * 1000)
        contact = CustomerContact(
            **data.model_dump(exclude={"external_id"}),
            id=vendor_id(self.name, millis, CONTACT_KIND),
            external_id=f"engagement_{millis}",
        )
        logger.info("hubspot.contact_recorded_locally", contact_id=contact.id)
        return contact
