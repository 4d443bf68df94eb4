"""Shared fixtures for the customer/CRM tests.

Provides:
- In-memory key-value store and settings that never read a .env file
- MockVendorAPI: route table driving httpx.MockTransport, recording every request
- Mock vendor providers spec'd against CustomerProvider for service routing tests
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
import structlog

from src.chargecrm.config import Settings, StoreBackend
from src.chargecrm.core.storage import MemoryKeyValueStore
from src.chargecrm.customers.providers.base import CustomerProvider
from src.chargecrm.customers.schemas import CustomerSource

RouteHandler = Callable[[httpx.Request], httpx.Response]


class MockVendorAPI:
    """Callable handler for httpx.MockTransport keyed by (method, path).

    Unregistered routes answer 404. Each route holds either a fixed
    ``(status, json_body)`` pair or a handler receiving the request.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], tuple[int, Any] | RouteHandler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self.routes[(method, path)] = (status_code, body)

    def add_handler(self, method: str, path: str, handler: RouteHandler) -> None:
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(route):
            return route(request)
        status_code, body = route
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        CRM_STORE_BACKEND=StoreBackend.memory,
        CRM_HTTP_MAX_ATTEMPTS=1,
    )


@pytest.fixture
def vendor_api() -> MockVendorAPI:
    return MockVendorAPI()


def make_mock_provider(source: CustomerSource, authenticated: bool = True) -> MagicMock:
    """MagicMock spec'd on CustomerProvider; async methods become AsyncMock."""
    provider = MagicMock(spec=CustomerProvider)
    provider.name = source
    provider.requires_auth = source != CustomerSource.NATIVE
    provider.is_authenticated.return_value = authenticated
    provider.get_customers.return_value = []
    provider.get_customer_deals.return_value = []
    provider.get_project_customer.return_value = None
    provider.get_quote_customer.return_value = None
    return provider


@pytest.fixture
def mock_provider_factory():
    return make_mock_provider
