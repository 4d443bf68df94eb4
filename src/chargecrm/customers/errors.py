"""Error taxonomy for the customer/CRM integration layer."""

from __future__ import annotations


class CRMError(Exception):
    """Base class for every error raised by the CRM layer."""


class CRMConfigurationError(CRMError, ValueError):
    """A required credential or setting (API key, domain) is missing.

    Raised before any network call is attempted.
    """


class NotAuthenticatedError(CRMError):
    """A vendor operation was attempted before a successful authenticate()."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Not authenticated with {provider}")
        self.provider = provider


class VendorAPIError(CRMError):
    """The vendor answered with a non-success status or a failure envelope.

    Args:
        provider: Provider name (hubspot, pipedrive).
        message: Human-readable description, usually the vendor status text.
        status_code: HTTP status, or None when no response was received.
    """

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.status_code = status_code


class VendorTransportError(VendorAPIError):
    """The vendor could not be reached (connection failure, timeout)."""


class RecordNotFoundError(CRMError, LookupError):
    """A referenced customer or deal does not exist in the owning provider."""


class NamespaceMismatchError(CRMError, ValueError):
    """An identifier's namespace prefix belongs to a different provider."""


class ProviderNotFoundError(CRMError, KeyError):
    """No provider is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Provider {name} not found")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])
