"""Vendor <-> canonical field mappings for HubSpot and Pipedrive.

Defines:
- HUBSPOT_CONTACT_PROPERTIES / HUBSPOT_DEAL_PROPERTIES: property lists requested from HubSpot.
- HUBSPOT_STAGE_MAP / PIPEDRIVE_STAGE_MAP: fixed pipeline stage lookup tables.
- PIPEDRIVE_ACTIVITY_TYPE_MAP: contact-history type <-> Pipedrive activity type.
- to_*/from_* helpers converting between vendor payloads and canonical models.

Vendor payload field names (``dealname``, ``hs_lastmodifieddate``,
``person_id``, ``add_time`` ...) must match the vendor APIs exactly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from src.chargecrm.customers.ids import ACTIVITY_KIND, DEAL_KIND, vendor_id
from src.chargecrm.customers.schemas import (
    Address,
    ContactType,
    Customer,
    CustomerContact,
    CustomerDeal,
    CustomerSource,
    DealStage,
)


# ── HubSpot Property Lists ─────────────────────────────────────────────────

HUBSPOT_CONTACT_PROPERTIES: list[str] = [
    "email",
    "firstname",
    "lastname",
    "company",
    "phone",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "createdate",
    "lastmodifieddate",
]

HUBSPOT_DEAL_PROPERTIES: list[str] = [
    "dealname",
    "amount",
    "dealstage",
    "probability",
    "closedate",
    "createdate",
    "hs_lastmodifieddate",
]

# Canonical address field -> HubSpot contact property
HUBSPOT_ADDRESS_MAP: dict[str, str] = {
    "street": "address",
    "city": "city",
    "state": "state",
    "postal_code": "zip",
    "country": "country",
}

# Deal-to-contact association type in HubSpot's default schema
HUBSPOT_DEAL_CONTACT_ASSOCIATION_TYPE = 4


# ── Stage Tables ───────────────────────────────────────────────────────────
# Both tables assume the vendor's default sales pipeline. Unknown vendor
# values read back as DealStage.NEW, which is lossy by construction.

HUBSPOT_STAGE_MAP: dict[DealStage, str] = {
    DealStage.NEW: "appointmentscheduled",
    DealStage.QUALIFIED: "qualifiedtobuy",
    DealStage.PROPOSAL: "presentationscheduled",
    DealStage.NEGOTIATION: "contractsent",
    DealStage.CLOSED_WON: "closedwon",
    DealStage.CLOSED_LOST: "closedlost",
}

_HUBSPOT_STAGE_READ: dict[str, DealStage] = {
    **{v: k for k, v in HUBSPOT_STAGE_MAP.items()},
    "decisionmakerboughtin": DealStage.NEGOTIATION,
}

PIPEDRIVE_STAGE_MAP: dict[DealStage, int] = {
    DealStage.NEW: 1,
    DealStage.QUALIFIED: 2,
    DealStage.PROPOSAL: 3,
    DealStage.NEGOTIATION: 4,
    DealStage.CLOSED_WON: 5,
    DealStage.CLOSED_LOST: 6,
}

PIPEDRIVE_ACTIVITY_TYPE_MAP: dict[ContactType, str] = {
    ContactType.EMAIL: "email",
    ContactType.PHONE: "call",
    ContactType.MEETING: "meeting",
    ContactType.NOTE: "task",
}


def stage_to_hubspot(stage: DealStage | str) -> str:
    return HUBSPOT_STAGE_MAP.get(DealStage(stage), HUBSPOT_STAGE_MAP[DealStage.NEW])


def hubspot_to_stage(value: str | None) -> DealStage:
    if not value:
        return DealStage.NEW
    if value in _HUBSPOT_STAGE_READ:
        return _HUBSPOT_STAGE_READ[value]
    try:
        return DealStage(value)
    except ValueError:
        return DealStage.NEW


def map_stage_to_stage_id(
    stage: DealStage | str,
    stage_map: dict[DealStage, int] | None = None,
) -> int:
    """Map a canonical stage to a Pipedrive stage id (default: first stage)."""
    if stage_map is None:
        stage_map = PIPEDRIVE_STAGE_MAP
    try:
        return stage_map[DealStage(stage)]
    except (KeyError, ValueError):
        return stage_map.get(DealStage.NEW, 1)


def map_stage_id_to_stage(
    stage_id: Any,
    stage_map: dict[DealStage, int] | None = None,
) -> DealStage:
    """Map a Pipedrive stage id back to a canonical stage; unknown ids read as NEW."""
    if stage_map is None:
        stage_map = PIPEDRIVE_STAGE_MAP
    try:
        numeric = int(stage_id)
    except (TypeError, ValueError):
        return DealStage.NEW
    for stage, mapped in stage_map.items():
        if mapped == numeric:
            return stage
    return DealStage.NEW


def contact_type_to_pipedrive(contact_type: ContactType | str) -> str:
    try:
        return PIPEDRIVE_ACTIVITY_TYPE_MAP[ContactType(contact_type)]
    except (KeyError, ValueError):
        return "task"


def pipedrive_to_contact_type(activity_type: str | None) -> ContactType:
    for contact_type, mapped in PIPEDRIVE_ACTIVITY_TYPE_MAP.items():
        if mapped == activity_type:
            return contact_type
    return ContactType.NOTE


# ── Value Helpers ──────────────────────────────────────────────────────────


def parse_timestamp(value: Any, default: datetime) -> datetime:
    """Parse an ISO-ish vendor timestamp, falling back to ``default``.

    Accepts HubSpot's ``2024-01-05T10:00:00.000Z`` and Pipedrive's
    ``2024-01-05 10:00:00``; naive values are treated as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return default
    else:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _timestamps(created: Any, updated: Any, now: datetime) -> tuple[datetime, datetime]:
    created_at = parse_timestamp(created, now)
    updated_at = parse_timestamp(updated, now)
    return created_at, max(created_at, updated_at)


def _to_float(value: Any) -> float:
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return 0.0


def _to_probability(value: Any) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return 0
    return min(max(number, 0), 100)


def split_name(name: str) -> tuple[str, str | None]:
    """Split a display name into first name and the rest."""
    parts = name.split(" ")
    first = parts[0]
    rest = " ".join(parts[1:]) if len(parts) > 1 else None
    return first, rest


# ── HubSpot Conversions ────────────────────────────────────────────────────


def to_hubspot_properties(data: dict[str, Any]) -> dict[str, Any]:
    """Convert canonical customer fields to HubSpot contact properties.

    Only truthy fields are sent, so a partial update never blanks a value
    on the HubSpot side.
    """
    properties: dict[str, Any] = {}

    if data.get("name"):
        first, rest = split_name(data["name"])
        properties["firstname"] = first
        if rest:
            properties["lastname"] = rest

    for field_name in ("email", "phone", "company"):
        if data.get(field_name):
            properties[field_name] = data[field_name]

    address = data.get("address") or {}
    for field_name, hubspot_name in HUBSPOT_ADDRESS_MAP.items():
        if address.get(field_name):
            properties[hubspot_name] = address[field_name]

    return properties


def from_hubspot_contact(contact: dict[str, Any], now: datetime | None = None) -> Customer:
    """Map a HubSpot contact object to a canonical Customer."""
    now = now or datetime.now(timezone.utc)
    props = contact.get("properties") or {}
    external = str(contact["id"])

    full_name = f"{props.get('firstname') or ''} {props.get('lastname') or ''}".strip()
    address_values = {
        field_name: props.get(hubspot_name) or None
        for field_name, hubspot_name in HUBSPOT_ADDRESS_MAP.items()
    }
    created_at, updated_at = _timestamps(
        props.get("createdate"), props.get("lastmodifieddate"), now
    )

    return Customer(
        id=vendor_id(CustomerSource.HUBSPOT, external),
        external_id=external,
        name=full_name or props.get("email") or "",
        email=props.get("email") or "",
        phone=props.get("phone") or None,
        company=props.get("company") or None,
        address=Address(**address_values) if any(address_values.values()) else None,
        source=CustomerSource.HUBSPOT,
        created_at=created_at,
        updated_at=updated_at,
        last_sync_at=now,
    )


def to_hubspot_deal_properties(data: dict[str, Any]) -> dict[str, Any]:
    """Convert canonical deal fields (set fields only) to HubSpot deal properties."""
    properties: dict[str, Any] = {}
    if data.get("title"):
        properties["dealname"] = data["title"]
    if data.get("value") is not None:
        properties["amount"] = str(data["value"])
    if data.get("stage"):
        properties["dealstage"] = stage_to_hubspot(data["stage"])
    if data.get("probability") is not None:
        properties["probability"] = str(data["probability"])
    if data.get("expected_close_date"):
        properties["closedate"] = data["expected_close_date"]
    return properties


def from_hubspot_deal(
    deal: dict[str, Any],
    customer_id: str,
    now: datetime | None = None,
) -> CustomerDeal:
    """Map a HubSpot deal object to a canonical CustomerDeal owned by ``customer_id``."""
    now = now or datetime.now(timezone.utc)
    props = deal.get("properties") or {}
    external = str(deal["id"])
    created_at, updated_at = _timestamps(
        props.get("createdate"), props.get("hs_lastmodifieddate"), now
    )

    return CustomerDeal(
        id=vendor_id(CustomerSource.HUBSPOT, external, DEAL_KIND),
        customer_id=customer_id,
        title=props.get("dealname") or "Untitled Deal",
        value=_to_float(props.get("amount")),
        stage=hubspot_to_stage(props.get("dealstage")),
        probability=_to_probability(props.get("probability")),
        expected_close_date=props.get("closedate") or None,
        external_id=external,
        source=CustomerSource.HUBSPOT,
        created_at=created_at,
        updated_at=updated_at,
    )


# ── Pipedrive Conversions ──────────────────────────────────────────────────


def _primary_value(entries: Any) -> str | None:
    """Pick the primary value out of Pipedrive's ``[{value, primary}]`` lists."""
    if isinstance(entries, str):
        return entries or None
    if isinstance(entries, dict):
        return entries.get("value") or None
    if not isinstance(entries, list) or not entries:
        return None
    for entry in entries:
        if isinstance(entry, dict) and entry.get("primary") and entry.get("value"):
            return entry["value"]
    first = entries[0]
    if isinstance(first, dict):
        return first.get("value") or None
    return str(first) or None


def _pipedrive_ref(value: Any) -> Any:
    # Pipedrive expands references like person_id into {"value": 7, "name": ...}
    if isinstance(value, dict):
        return value.get("value")
    return value


def to_pipedrive_person(data: dict[str, Any]) -> dict[str, Any]:
    """Convert canonical customer fields to a Pipedrive person payload."""
    payload: dict[str, Any] = {}
    if data.get("name"):
        payload["name"] = data["name"]
    if data.get("email"):
        payload["email"] = [{"value": data["email"], "primary": True, "label": "work"}]
    if data.get("phone"):
        payload["phone"] = [{"value": data["phone"], "primary": True, "label": "work"}]
    if data.get("company"):
        payload["org_name"] = data["company"]
    return payload


def from_pipedrive_person(person: dict[str, Any], now: datetime | None = None) -> Customer:
    """Map a Pipedrive person to a canonical Customer."""
    now = now or datetime.now(timezone.utc)
    external = str(person["id"])
    email = _primary_value(person.get("email"))
    created_at, updated_at = _timestamps(person.get("add_time"), person.get("update_time"), now)

    return Customer(
        id=vendor_id(CustomerSource.PIPEDRIVE, external),
        external_id=external,
        name=person.get("name") or email or "Unknown",
        email=email or "",
        phone=_primary_value(person.get("phone")),
        company=person.get("org_name") or None,
        source=CustomerSource.PIPEDRIVE,
        created_at=created_at,
        updated_at=updated_at,
        last_sync_at=now,
    )


def to_pipedrive_deal(
    data: dict[str, Any],
    stage_map: dict[DealStage, int] | None = None,
) -> dict[str, Any]:
    """Convert canonical deal fields (set fields only) to a Pipedrive deal payload."""
    payload: dict[str, Any] = {}
    if data.get("title"):
        payload["title"] = data["title"]
    if data.get("value") is not None:
        payload["value"] = data["value"]
    if data.get("probability") is not None:
        payload["probability"] = data["probability"]
    if data.get("expected_close_date"):
        payload["expected_close_date"] = data["expected_close_date"]
    if data.get("stage"):
        payload["stage_id"] = map_stage_to_stage_id(data["stage"], stage_map)
    return payload


def pipedrive_deal_person_id(deal: dict[str, Any]) -> str | None:
    person = _pipedrive_ref(deal.get("person_id"))
    return str(person) if person is not None else None


def from_pipedrive_deal(
    deal: dict[str, Any],
    customer_id: str,
    stage_map: dict[DealStage, int] | None = None,
    now: datetime | None = None,
) -> CustomerDeal:
    """Map a Pipedrive deal to a canonical CustomerDeal owned by ``customer_id``."""
    now = now or datetime.now(timezone.utc)
    external = str(deal["id"])
    created_at, updated_at = _timestamps(deal.get("add_time"), deal.get("update_time"), now)

    return CustomerDeal(
        id=vendor_id(CustomerSource.PIPEDRIVE, external, DEAL_KIND),
        customer_id=customer_id,
        title=deal.get("title") or "Untitled Deal",
        value=_to_float(deal.get("value")),
        stage=map_stage_id_to_stage(deal.get("stage_id"), stage_map),
        probability=_to_probability(deal.get("probability")),
        expected_close_date=deal.get("expected_close_date") or None,
        external_id=external,
        source=CustomerSource.PIPEDRIVE,
        created_at=created_at,
        updated_at=updated_at,
    )


def from_pipedrive_activity(
    activity: dict[str, Any],
    customer_id: str,
    now: datetime | None = None,
) -> CustomerContact:
    """Map a Pipedrive activity to a contact-history entry."""
    now = now or datetime.now(timezone.utc)
    external = str(activity["id"])
    return CustomerContact(
        id=vendor_id(CustomerSource.PIPEDRIVE, external, ACTIVITY_KIND),
        customer_id=customer_id,
        type=pipedrive_to_contact_type(activity.get("type")),
        subject=activity.get("subject") or "Activity",
        content=activity.get("note") or "",
        timestamp=parse_timestamp(activity.get("add_time"), now),
        external_id=external,
    )
