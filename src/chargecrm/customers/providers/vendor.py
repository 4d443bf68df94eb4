"""Shared behaviour for REST-backed CRM vendor providers.

Provides VendorCustomerProvider with:
- credential storage and the in-memory authenticated flag
- an httpx.AsyncClient per request (injectable transport for tests)
- optional transport-level retry via tenacity (off unless max_attempts > 1);
  HTTP error statuses are never retried
- error wrapping into VendorAPIError / VendorTransportError
- full-list sync that maps every vendor record and counts failures
- sync status bookkeeping and no-op host application hooks
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime, timedelta
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.chargecrm.customers.errors import (
    NotAuthenticatedError,
    VendorAPIError,
    VendorTransportError,
)
from src.chargecrm.customers.providers.base import CustomerProvider
from src.chargecrm.customers.schemas import (
    CRMConfig,
    Customer,
    SyncFrequency,
    SyncResult,
    SyncStatus,
    utc_now,
)

logger = structlog.get_logger(__name__)

_TRANSIENT_ERRORS = (httpx.ConnectError, httpx.TimeoutException)

_SYNC_INTERVALS: dict[SyncFrequency, timedelta] = {
    SyncFrequency.HOURLY: timedelta(hours=1),
    SyncFrequency.DAILY: timedelta(days=1),
}


class VendorCustomerProvider(CustomerProvider):
    """Base class for HubSpot/Pipedrive providers.

    Args:
        base_url: Vendor API root, e.g. ``https://api.hubapi.com``.
        timeout: Per-request timeout in seconds; None keeps the httpx default.
        max_attempts: Attempts for connect/timeout failures (1 = no retry).
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        page_size: Records requested per page during sync.
    """

    requires_auth = True

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        max_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        page_size: int = 100,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._transport = transport
        self._page_size = page_size
        self._config: CRMConfig | None = None
        self._authenticated = False
        self._last_sync: datetime | None = None
        self._last_result: SyncResult | None = None

    # ── Vendor-specific hooks ──────────────────────────────────────────────

    @abstractmethod
    def _validate_credentials(self, config: CRMConfig) -> None:
        """Raise CRMConfigurationError when a required field is missing."""
        ...

    @abstractmethod
    def _auth_headers(self, api_key: str) -> dict[str, str]:
        ...

    @abstractmethod
    def _auth_params(self, api_key: str) -> dict[str, str]:
        ...

    @abstractmethod
    async def _probe(self, api_key: str) -> httpx.Response:
        """Lightweight request used to test credentials."""
        ...

    @abstractmethod
    def _iter_raw_customers(self) -> AsyncIterator[dict[str, Any]]:
        """Yield every vendor contact/person record, page by page."""
        ...

    @abstractmethod
    def _map_customer(self, raw: dict[str, Any]) -> Customer:
        ...

    # ── HTTP ───────────────────────────────────────────────────────────────

    def _client(self, api_key: str) -> httpx.AsyncClient:
        """Create a new httpx client bound to the vendor base URL."""
        kwargs: dict[str, Any] = {
            "base_url": self._base_url,
            "headers": {"Content-Type": "application/json", **self._auth_headers(api_key)},
        }
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        api_key: str | None = None,
    ) -> httpx.Response:
        """Issue one request; transport failures surface as VendorTransportError."""
        key = api_key if api_key is not None else self._api_key()
        query = {**self._auth_params(key), **(params or {})}
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    async with self._client(key) as client:
                        return await client.request(method, path, params=query, json=json)
        except httpx.HTTPError as exc:
            logger.error(
                f"{self.name.value}.transport_error",
                method=method,
                path=path,
                error=str(exc),
            )
            raise VendorTransportError(self.name.value, str(exc) or type(exc).__name__) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        logger.warning(
            f"{self.name.value}.api_error",
            status_code=response.status_code,
            path=response.request.url.path,
        )
        raise VendorAPIError(
            self.name.value,
            response.reason_phrase or str(response.status_code),
            status_code=response.status_code,
        )

    # ── Authentication ─────────────────────────────────────────────────────

    def _api_key(self) -> str:
        self._require_auth()
        assert self._config is not None and self._config.api_key
        return self._config.api_key

    def _require_auth(self) -> None:
        if not self.is_authenticated():
            raise NotAuthenticatedError(self.name.value)

    async def authenticate(self, config: CRMConfig) -> bool:
        """Probe the vendor with the given credentials and keep them on success.

        Missing fields raise CRMConfigurationError before any request. Bad
        credentials, non-2xx answers and network failures return False and
        leave any previously stored credentials untouched.
        """
        self._validate_credentials(config)
        assert config.api_key is not None

        try:
            response = await self._probe(config.api_key)
        except VendorTransportError as exc:
            logger.warning(f"{self.name.value}.auth_error", error=str(exc))
            return False

        if not response.is_success:
            logger.warning(
                f"{self.name.value}.auth_failed",
                status_code=response.status_code,
                reason=response.reason_phrase,
            )
            return False

        self._config = config.model_copy(update={"provider": self.name})
        self._authenticated = True
        logger.info(f"{self.name.value}.authenticated")
        return True

    def is_authenticated(self) -> bool:
        return self._authenticated and bool(self._config and self._config.api_key)

    def apply_config(self, config: CRMConfig) -> None:
        """Adopt the new settings while keeping the credentials that last authenticated."""
        if self._config is None:
            return
        self._config = config.model_copy(
            update={
                "provider": self.name,
                "api_key": self._config.api_key,
                "domain": self._config.domain,
            }
        )

    # ── Sync ───────────────────────────────────────────────────────────────

    async def sync(self) -> SyncResult:
        """Pull the full contact list and map every record to the canonical shape.

        Records that fail canonical validation are counted as failed and
        reported in ``errors``; a vendor/transport failure ends the run with
        ``success=False``.
        """
        self._require_auth()

        processed = 0
        failed = 0
        errors: list[str] = []

        try:
            async for raw in self._iter_raw_customers():
                processed += 1
                try:
                    self._map_customer(raw)
                except (ValidationError, KeyError, TypeError, ValueError) as exc:
                    failed += 1
                    errors.append(f"Record {raw.get('id', '?')} could not be mapped: {exc}")
        except VendorAPIError as exc:
            result = SyncResult(
                success=False,
                records_processed=processed,
                records_failed=processed,
                errors=[f"Sync failed: {exc}"],
            )
        else:
            result = SyncResult(
                success=failed == 0,
                records_processed=processed,
                records_failed=failed,
                errors=errors,
            )

        self._last_sync = result.timestamp
        self._last_result = result
        logger.info(
            f"{self.name.value}.sync_complete",
            processed=result.records_processed,
            failed=result.records_failed,
            success=result.success,
        )
        return result

    async def get_last_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_active=False,
            last_sync=self._last_sync,
            last_result=self._last_result,
            next_sync=self._next_sync(),
        )

    def _next_sync(self) -> datetime | None:
        if self._config is None or not self._config.sync_enabled or self._last_sync is None:
            return None
        interval = _SYNC_INTERVALS.get(self._config.sync_frequency)
        return self._last_sync + interval if interval else None

    # ── Host Application Hooks ─────────────────────────────────────────────
    # Vendors have no link tables; the association is only logged.

    async def link_project_to_customer(self, project_id: str, customer_id: str) -> bool:
        logger.info(
            f"{self.name.value}.project_link_not_persisted",
            project_id=project_id,
            customer_id=customer_id,
        )
        return True

    async def link_quote_to_customer(self, quote_id: str, customer_id: str) -> bool:
        logger.info(
            f"{self.name.value}.quote_link_not_persisted",
            quote_id=quote_id,
            customer_id=customer_id,
        )
        return True

    async def notify_quote_status_change(
        self, quote_id: str, status: str, customer_id: str
    ) -> bool:
        logger.info(
            f"{self.name.value}.quote_status_not_pushed",
            quote_id=quote_id,
            status=status,
            customer_id=customer_id,
        )
        return True

    @staticmethod
    def now() -> datetime:
        return utc_now()
