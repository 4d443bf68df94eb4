"""Pipedrive customer provider.

Persons map to customers, deals to deals and activities to contact history.
Every Pipedrive answer is wrapped in ``{"success": bool, "data": ...}``; a
``success: false`` envelope reads as "missing" on fetches and as a failure
on writes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.chargecrm.customers.errors import (
    CRMConfigurationError,
    RecordNotFoundError,
    VendorAPIError,
)
from src.chargecrm.customers.field_mapping import (
    contact_type_to_pipedrive,
    from_pipedrive_activity,
    from_pipedrive_deal,
    from_pipedrive_person,
    pipedrive_deal_person_id,
    to_pipedrive_deal,
    to_pipedrive_person,
)
from src.chargecrm.customers.ids import ACTIVITY_KIND, DEAL_KIND, external_key, require_namespace, vendor_id
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
    DealStage,
    DealUpdate,
)

logger = structlog.get_logger(__name__)


class PipedriveCustomerProvider(VendorCustomerProvider):
    """CustomerProvider backed by the Pipedrive v1 REST API.

    Args:
        stage_map: Canonical stage -> Pipedrive stage id table. Defaults to
            the stage ids of Pipedrive's default pipeline.
    """

    name = CustomerSource.PIPEDRIVE

    def __init__(
        self,
        base_url: str = "https://api.pipedrive.com/v1",
        timeout: float | None = None,
        max_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        page_size: int = 100,
        stage_map: dict[DealStage, int] | None = None,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            transport=transport,
            page_size=page_size,
        )
        self._stage_map = stage_map

    # ── Vendor hooks ───────────────────────────────────────────────────────

    def _validate_credentials(self, config: CRMConfig) -> None:
        if not config.api_key or not config.domain:
            raise CRMConfigurationError("Pipedrive API key and domain are required")

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {}

    def _auth_params(self, api_key: str) -> dict[str, str]:
        return {"api_token": api_key}

    async def _probe(self, api_key: str) -> httpx.Response:
        return await self._send("GET", "/persons", params={"limit": 1}, api_key=api_key)

    async def _iter_raw_customers(self) -> AsyncIterator[dict[str, Any]]:
        start = 0
        while True:
            response = await self._send(
                "GET", "/persons", params={"limit": self._page_size, "start": start}
            )
            body = self._write_envelope(response)
            for person in body.get("data") or []:
                yield person
            pagination = (body.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                return
            start = pagination.get("next_start", start + self._page_size)

    def _map_customer(self, raw: dict[str, Any]) -> Customer:
        return from_pipedrive_person(raw, now=self.now())

    # ── Envelope handling ──────────────────────────────────────────────────

    def _read_envelope(self, response: httpx.Response) -> Any:
        """Return ``data`` or None for a 404 / ``success: false`` answer."""
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        body = response.json()
        if not body.get("success"):
            return None
        return body.get("data")

    def _write_envelope(self, response: httpx.Response) -> dict[str, Any]:
        """Return the full body, raising VendorAPIError on any failure."""
        self._raise_for_status(response)
        body = response.json()
        if not body.get("success"):
            raise VendorAPIError(
                self.name.value,
                body.get("error") or "request was not successful",
                status_code=response.status_code,
            )
        return body

    def _person_id(self, customer_id: str) -> int:
        key = external_key(customer_id, self.name)
        try:
            return int(key)
        except ValueError:
            raise RecordNotFoundError(f"'{customer_id}' is not a Pipedrive person id") from None

    # ── Customers ──────────────────────────────────────────────────────────

    async def get_customers(self, limit: int = 100, offset: int = 0) -> list[Customer]:
        response = await self._send("GET", "/persons", params={"limit": limit, "start": offset})
        body = self._write_envelope(response)

        customers: list[Customer] = []
        now = self.now()
        for person in body.get("data") or []:
            try:
                customers.append(from_pipedrive_person(person, now=now))
            except (ValidationError, KeyError) as exc:
                logger.warning("pipedrive.person_skipped", person_id=person.get("id"), error=str(exc))
        return customers

    async def get_customer(self, customer_id: str) -> Customer | None:
        key = external_key(customer_id, self.name)
        data = self._read_envelope(await self._send("GET", f"/persons/{key}"))
        if not data:
            return None
        return from_pipedrive_person(data, now=self.now())

    async def create_customer(self, data: CustomerCreate) -> Customer:
        response = await self._send("POST", "/persons", json=to_pipedrive_person(data.model_dump()))
        body = self._write_envelope(response)
        customer = from_pipedrive_person(body["data"], now=self.now())
        logger.info("pipedrive.customer_created", customer_id=customer.id)
        return customer

    async def update_customer(self, customer_id: str, updates: CustomerUpdate) -> Customer:
        key = external_key(customer_id, self.name)
        payload = to_pipedrive_person(updates.model_dump(exclude_unset=True))
        body = self._write_envelope(await self._send("PUT", f"/persons/{key}", json=payload))
        customer = from_pipedrive_person(body["data"], now=self.now())
        logger.info("pipedrive.customer_updated", customer_id=customer.id)
        return customer

    async def delete_customer(self, customer_id: str) -> bool:
        key = external_key(customer_id, self.name)
        response = await self._send("DELETE", f"/persons/{key}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        deleted = bool(response.json().get("success"))
        if deleted:
            logger.info("pipedrive.customer_deleted", customer_id=customer_id)
        return deleted

    # ── Deals ──────────────────────────────────────────────────────────────

    async def get_customer_deals(self, customer_id: str) -> list[CustomerDeal]:
        key = external_key(customer_id, self.name)
        owner_id = vendor_id(self.name, key)
        data = self._read_envelope(await self._send("GET", f"/persons/{key}/deals"))
        now = self.now()
        return [
            from_pipedrive_deal(deal, owner_id, stage_map=self._stage_map, now=now)
            for deal in data or []
        ]

    async def create_deal(self, data: DealCreate) -> CustomerDeal:
        require_namespace(data.customer_id, self.name)
        person_id = self._person_id(data.customer_id)

        payload = to_pipedrive_deal(data.model_dump(), self._stage_map)
        payload["person_id"] = person_id
        body = self._write_envelope(await self._send("POST", "/deals", json=payload))

        deal = from_pipedrive_deal(
            body["data"],
            vendor_id(self.name, person_id),
            stage_map=self._stage_map,
            now=self.now(),
        )
        logger.info("pipedrive.deal_created", deal_id=deal.id, customer_id=deal.customer_id)
        return deal

    async def update_deal(self, deal_id: str, updates: DealUpdate) -> CustomerDeal:
        key = external_key(deal_id, self.name, DEAL_KIND)
        payload = to_pipedrive_deal(updates.model_dump(exclude_unset=True), self._stage_map)
        body = self._write_envelope(await self._send("PUT", f"/deals/{key}", json=payload))
        updated = body["data"]

        if updates.customer_id:
            customer_id = vendor_id(self.name, external_key(updates.customer_id, self.name))
        else:
            person = pipedrive_deal_person_id(updated)
            if person is None:
                raise RecordNotFoundError(f"Pipedrive deal {key} has no person")
            customer_id = vendor_id(self.name, person)

        deal = from_pipedrive_deal(updated, customer_id, stage_map=self._stage_map, now=self.now())
        logger.info("pipedrive.deal_updated", deal_id=deal.id)
        return deal

    # ── Contact History ────────────────────────────────────────────────────

    async def get_customer_contacts(self, customer_id: str) -> list[CustomerContact]:
        key = external_key(customer_id, self.name)
        owner_id = vendor_id(self.name, key)
        data = self._read_envelope(await self._send("GET", f"/persons/{key}/activities"))
        now = self.now()
        return [from_pipedrive_activity(a, owner_id, now=now) for a in data or []]

    async def add_contact(self, data: ContactCreate) -> CustomerContact:
        require_namespace(data.customer_id, self.name)
        person_id = self._person_id(data.customer_id)

        payload = {
            "subject": data.subject,
            "note": data.content,
            "type": contact_type_to_pipedrive(data.type),
            "person_id": person_id,
            "done": 1,
        }
        body = self._write_envelope(await self._send("POST", "/activities", json=payload))
        activity_id = str(body["data"]["id"])

        contact = CustomerContact(
            **data.model_dump(exclude={"external_id"}),
            id=vendor_id(self.name, activity_id, ACTIVITY_KIND),
            external_id=activity_id,
        )
        logger.info("pipedrive.contact_added", contact_id=contact.id, customer_id=contact.customer_id)
        return contact
