"""Namespace-prefixed identifiers.

Every customer/deal/contact ID starts with its owning provider's name and an
underscore (``native_``, ``hubspot_``, ``pipedrive_``). CustomerService uses
the prefix to route per-entity operations; vendor providers strip it to get
the vendor's own key.

ID shapes:
    native customer    native_<epoch-ms>_<9 base36 chars>
    native deal        native_deal_<epoch-ms>_<9 base36 chars>
    native contact     native_contact_<epoch-ms>_<9 base36 chars>
    vendor customer    hubspot_<vendor id> / pipedrive_<vendor id>
    vendor deal        hubspot_deal_<vendor id> / pipedrive_deal_<vendor id>
"""

from __future__ import annotations

import secrets
import string
import time

from src.chargecrm.customers.errors import NamespaceMismatchError
from src.chargecrm.customers.schemas import CustomerSource

_BASE36 = string.digits + string.ascii_lowercase

DEAL_KIND = "deal"
CONTACT_KIND = "contact"
ACTIVITY_KIND = "activity"


def namespace_prefix(source: CustomerSource) -> str:
    return f"{source.value}_"


def detect_source(entity_id: str) -> CustomerSource | None:
    """Return the provider whose namespace prefixes ``entity_id``.

    Anything without an exact ``<provider>_`` prefix yields None so the
    caller can fall back to the active provider.
    """
    if not isinstance(entity_id, str):
        return None
    for source in CustomerSource:
        prefix = namespace_prefix(source)
        if entity_id.startswith(prefix) and len(entity_id) > len(prefix):
            return source
    return None


def require_namespace(entity_id: str, source: CustomerSource) -> None:
    """Raise NamespaceMismatchError if ``entity_id`` is prefixed for another provider."""
    detected = detect_source(entity_id)
    if detected is not None and detected != source:
        msg = f"'{entity_id}' belongs to {detected.value}, not {source.value}"
        raise NamespaceMismatchError(msg)


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_native_id(kind: str | None = None) -> str:
    """Generate a practically unique native ID without a central counter."""
    millis = int(time.time() * 1000)
    middle = f"{kind}_" if kind else ""
    return f"native_{middle}{millis}_{_random_suffix()}"


def vendor_id(source: CustomerSource, external_id: str | int, kind: str | None = None) -> str:
    """Build a namespaced ID for a vendor record, e.g. ``hubspot_deal_42``."""
    middle = f"{kind}_" if kind else ""
    return f"{source.value}_{middle}{external_id}"


def external_key(entity_id: str, source: CustomerSource, kind: str | None = None) -> str:
    """Strip the namespace (and optional kind) prefix to get the vendor's key.

    IDs without the prefix are assumed to already be raw vendor keys.
    """
    require_namespace(entity_id, source)
    prefix = namespace_prefix(source) + (f"{kind}_" if kind else "")
    if entity_id.startswith(prefix):
        return entity_id[len(prefix):]
    plain = namespace_prefix(source)
    if entity_id.startswith(plain):
        return entity_id[len(plain):]
    return entity_id
