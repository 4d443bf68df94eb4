"""Unit tests for key-value store backends and the native record store."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

from src.chargecrm.config import Settings, StoreBackend
from src.chargecrm.core.storage import (
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    create_store,
)
from src.chargecrm.customers.schemas import (
    Customer,
    CustomerDeal,
    CustomerSource,
    DealStage,
    SyncResult,
)
from src.chargecrm.customers.store import (
    CUSTOMERS_KEY,
    DEALS_KEY,
    LAST_SYNC_KEY,
    PROJECT_LINKS_KEY,
    CustomerRecordStore,
)

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _customer(customer_id: str = "native_1_a") -> Customer:
    return Customer(
        id=customer_id,
        name="Ada",
        email="ada@example.com",
        source=CustomerSource.NATIVE,
        created_at=T0,
        updated_at=T0,
    )


class TestMemoryKeyValueStore:
    def test_get_set_delete(self):
        store = MemoryKeyValueStore()
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"
        store.delete("k")
        store.delete("missing")
        assert store.get("k") is None

    def test_json_helpers(self):
        store = MemoryKeyValueStore()
        store.set_json("k", {"a": [1, 2]})
        assert store.get_json("k") == {"a": [1, 2]}
        assert store.get_json("absent", default=[]) == []

    def test_invalid_json_returns_default(self):
        store = MemoryKeyValueStore({"k": "{not json"})
        assert store.get_json("k", default={}) == {}


class TestJsonFileKeyValueStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        JsonFileKeyValueStore(path).set("nativeCustomers", "[]")

        assert json.loads(path.read_text()) == {"nativeCustomers": "[]"}
        assert JsonFileKeyValueStore(path).get("nativeCustomers") == "[]"

    def test_delete_rewrites_file(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileKeyValueStore(path)
        store.set("a", "1")
        store.delete("a")
        assert json.loads(path.read_text()) == {}

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("garbage")
        assert JsonFileKeyValueStore(path).get("a") is None


class TestRedisKeyValueStore:
    def test_keys_are_prefixed(self):
        client = MagicMock()
        client.get.return_value = "v"
        store = RedisKeyValueStore(client, prefix="crm:")

        store.set("k", "v")
        assert store.get("k") == "v"
        store.delete("k")

        client.set.assert_called_once_with("crm:k", "v")
        client.get.assert_called_once_with("crm:k")
        client.delete.assert_called_once_with("crm:k")


class TestCreateStore:
    def test_memory_backend(self):
        settings = Settings(_env_file=None, CRM_STORE_BACKEND=StoreBackend.memory)
        assert isinstance(create_store(settings), MemoryKeyValueStore)

    def test_file_backend(self, tmp_path):
        settings = Settings(
            _env_file=None,
            CRM_STORE_BACKEND=StoreBackend.file,
            CRM_STORE_PATH=str(tmp_path / "store.json"),
        )
        assert isinstance(create_store(settings), JsonFileKeyValueStore)


class TestCustomerRecordStore:
    def test_empty_store(self, memory_store):
        records = CustomerRecordStore(memory_store)
        assert records.customers == []
        assert records.deals == []
        assert records.last_sync is None

    def test_round_trip_through_storage(self, memory_store):
        records = CustomerRecordStore(memory_store)
        records.customers.append(_customer())
        records.save()

        stored = json.loads(memory_store.get(CUSTOMERS_KEY))
        assert stored[0]["createdAt"] == "2024-03-01T00:00:00Z"
        assert CustomerRecordStore(memory_store).customers == [_customer()]

    def test_corrupt_records_degrade_to_empty(self, memory_store):
        memory_store.set(CUSTOMERS_KEY, json.dumps([{"id": "broken"}]))
        assert CustomerRecordStore(memory_store).customers == []

    def test_remove_customer_cascades(self, memory_store):
        records = CustomerRecordStore(memory_store)
        records.customers.append(_customer())
        records.deals.append(
            CustomerDeal(
                id="native_deal_1_a",
                customer_id="native_1_a",
                title="Roof",
                value=1.0,
                stage=DealStage.NEW,
                probability=0,
                source=CustomerSource.NATIVE,
                created_at=T0,
                updated_at=T0,
            )
        )
        records.save()

        assert records.remove_customer("native_1_a") is True
        assert records.remove_customer("native_1_a") is False
        assert json.loads(memory_store.get(DEALS_KEY)) == []

    def test_record_sync_persists_marker(self, memory_store):
        records = CustomerRecordStore(memory_store)
        result = SyncResult(success=True, records_processed=3, timestamp=T0)
        records.record_sync(result)

        reloaded = CustomerRecordStore(memory_store)
        assert memory_store.get(LAST_SYNC_KEY) is not None
        assert reloaded.last_sync == T0
        assert reloaded.last_result == result

    def test_link_tables(self, memory_store):
        records = CustomerRecordStore(memory_store)
        records.link_project("proj-1", "native_1_a")
        records.link_quote("quote-1", "hubspot_9")

        assert records.project_customer("proj-1") == "native_1_a"
        assert records.quote_customer("quote-1") == "hubspot_9"
        assert records.project_customer("proj-2") is None
        assert json.loads(memory_store.get(PROJECT_LINKS_KEY)) == {"proj-1": "native_1_a"}
