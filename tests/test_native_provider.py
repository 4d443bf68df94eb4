"""Unit tests for the native customer provider backed by an in-memory store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.chargecrm.core.storage import MemoryKeyValueStore
from src.chargecrm.customers.errors import NamespaceMismatchError, RecordNotFoundError
from src.chargecrm.customers.providers.native import NativeCustomerProvider
from src.chargecrm.customers.schemas import (
    ContactCreate,
    ContactType,
    CRMConfig,
    CustomerCreate,
    CustomerDeal,
    CustomerSource,
    CustomerUpdate,
    DealCreate,
    DealStage,
    DealUpdate,
)


@pytest.fixture
def provider(memory_store) -> NativeCustomerProvider:
    return NativeCustomerProvider(memory_store)


async def _create(provider: NativeCustomerProvider, name: str = "Ada Lovelace", **fields):
    return await provider.create_customer(
        CustomerCreate(name=name, email=fields.pop("email", "ada@example.com"), **fields)
    )


class TestNativeAuthentication:
    async def test_always_authenticated(self, provider):
        assert provider.requires_auth is False
        assert provider.is_authenticated() is True
        assert await provider.authenticate(CRMConfig()) is True


class TestNativeCustomers:
    async def test_create_assigns_identity(self, provider):
        customer = await _create(provider, tags=["vip"])

        assert customer.id.startswith("native_")
        assert customer.source is CustomerSource.NATIVE
        assert customer.created_at == customer.updated_at
        assert customer.tags == ["vip"]
        assert await provider.get_customer(customer.id) == customer

    async def test_get_unknown_returns_none(self, provider):
        assert await provider.get_customer("native_0_missing") is None

    async def test_list_pagination(self, provider):
        created = [await _create(provider, name=f"Customer {i}") for i in range(5)]

        page = await provider.get_customers(limit=2, offset=1)
        assert [c.id for c in page] == [created[1].id, created[2].id]
        assert len(await provider.get_customers()) == 5

    async def test_update_merges_and_keeps_identity(self, provider):
        customer = await _create(provider, company="Acme")

        updated = await provider.update_customer(
            customer.id, CustomerUpdate(name="Ada King", email=None)
        )

        assert updated.id == customer.id
        assert updated.name == "Ada King"
        assert updated.email == "ada@example.com"
        assert updated.company == "Acme"
        assert updated.created_at == customer.created_at
        assert updated.updated_at >= customer.updated_at

    async def test_update_unknown_raises(self, provider):
        with pytest.raises(RecordNotFoundError):
            await provider.update_customer("native_0_missing", CustomerUpdate(name="x"))

    async def test_records_survive_new_instance(self, memory_store):
        first = NativeCustomerProvider(memory_store)
        customer = await _create(first)

        second = NativeCustomerProvider(memory_store)
        assert await second.get_customer(customer.id) == customer

    async def test_delete_unknown_returns_false(self, provider):
        assert await provider.delete_customer("native_0_missing") is False

    async def test_returned_records_are_detached_from_store(self, provider):
        customer = await _create(provider)
        customer.name = "Mutated"
        customer.tags.append("stray")

        fetched = await provider.get_customer(customer.id)
        fetched.email = "other@example.com"
        [listed] = await provider.get_customers()
        listed.company = "Other"

        stored = await provider.get_customer(customer.id)
        assert stored.name == "Ada Lovelace"
        assert stored.email == "ada@example.com"
        assert stored.company is None
        assert stored.tags == []

    async def test_returned_deals_are_detached_from_store(self, provider):
        customer = await _create(provider)
        deal = await provider.create_deal(DealCreate(customer_id=customer.id, title="Roof"))
        deal.title = "Mutated"

        [stored] = await provider.get_customer_deals(customer.id)
        assert stored.title == "Roof"


class TestNativeDealsAndContacts:
    async def test_create_deal_for_unknown_customer_raises(self, provider):
        with pytest.raises(RecordNotFoundError):
            await provider.create_deal(DealCreate(customer_id="native_0_missing", title="Roof"))

    async def test_create_deal_for_foreign_customer_raises(self, provider):
        with pytest.raises(NamespaceMismatchError):
            await provider.create_deal(DealCreate(customer_id="hubspot_12", title="Roof"))

    async def test_update_deal_never_reparents(self, provider):
        owner = await _create(provider)
        other = await _create(provider, name="Grace", email="grace@example.com")
        deal = await provider.create_deal(DealCreate(customer_id=owner.id, title="Roof", value=100))

        updated = await provider.update_deal(
            deal.id, DealUpdate(customer_id=other.id, stage=DealStage.PROPOSAL, probability=50)
        )

        assert updated.customer_id == owner.id
        assert updated.stage is DealStage.PROPOSAL
        assert updated.probability == 50
        assert updated.value == 100

    async def test_update_unknown_deal_raises(self, provider):
        with pytest.raises(RecordNotFoundError):
            await provider.update_deal("native_deal_0_missing", DealUpdate(title="x"))

    async def test_add_contact_for_unknown_customer_raises(self, provider):
        with pytest.raises(RecordNotFoundError):
            await provider.add_contact(
                ContactCreate(
                    customer_id="native_0_missing",
                    type=ContactType.NOTE,
                    subject="s",
                    content="c",
                )
            )

    async def test_native_scenario(self, provider):
        """Create customer, deal and contact; progress the deal; delete cascades."""
        customer = await _create(provider)
        deal = await provider.create_deal(
            DealCreate(customer_id=customer.id, title="Solar array", value=25000, probability=10)
        )
        contact = await provider.add_contact(
            ContactCreate(
                customer_id=customer.id,
                type=ContactType.PHONE,
                subject="Intro call",
                content="Discussed roof size",
            )
        )

        assert deal.id.startswith("native_deal_")
        assert contact.id.startswith("native_contact_")
        assert await provider.get_customer_deals(customer.id) == [deal]
        assert await provider.get_customer_contacts(customer.id) == [contact]

        won = await provider.update_deal(deal.id, DealUpdate(stage=DealStage.CLOSED_WON))
        assert won.stage is DealStage.CLOSED_WON
        assert not won.is_open

        assert await provider.delete_customer(customer.id) is True
        assert await provider.get_customer(customer.id) is None
        assert await provider.get_customer_deals(customer.id) == []
        assert await provider.get_customer_contacts(customer.id) == []


class TestNativeSync:
    async def test_clean_store_syncs_successfully(self, provider):
        await _create(provider)

        result = await provider.sync()

        assert result.success is True
        assert result.records_processed == 1
        assert result.errors == []
        status = await provider.get_last_sync_status()
        assert status.last_sync == result.timestamp
        assert status.last_result == result
        assert status.next_sync is None

    async def test_reports_missing_fields_and_orphan_deals(self, provider):
        incomplete = await _create(provider, email="")
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        provider.store.deals.append(
            CustomerDeal(
                id="native_deal_1_orphan",
                customer_id="native_1_gone",
                title="Orphan",
                value=0,
                stage=DealStage.NEW,
                probability=0,
                source=CustomerSource.NATIVE,
                created_at=stamp,
                updated_at=stamp,
            )
        )

        result = await provider.sync()

        assert result.success is False
        assert result.records_processed == 2
        assert result.records_failed == 2
        assert any(incomplete.id in e for e in result.errors)
        assert any("native_deal_1_orphan" in e for e in result.errors)

    async def test_sync_status_persists(self, memory_store):
        await NativeCustomerProvider(memory_store).sync()
        status = await NativeCustomerProvider(memory_store).get_last_sync_status()
        assert status.last_result is not None
        assert status.last_result.success is True


class TestNativeHooks:
    async def test_link_tables(self, provider):
        customer = await _create(provider)

        assert await provider.link_project_to_customer("proj-1", customer.id) is True
        assert await provider.link_quote_to_customer("quote-1", customer.id) is True
        assert provider.get_project_customer("proj-1") == customer.id
        assert provider.get_quote_customer("quote-1") == customer.id
        assert provider.get_project_customer("proj-404") is None

    async def test_quote_status_appends_note(self, provider):
        customer = await _create(provider)

        assert await provider.notify_quote_status_change("Q-7", "accepted", customer.id) is True

        [note] = await provider.get_customer_contacts(customer.id)
        assert note.type is ContactType.NOTE
        assert note.subject == "Quote Status Updated"
        assert note.content == "Quote Q-7 status changed to: accepted"

    async def test_storage_is_shared_store(self):
        storage = MemoryKeyValueStore()
        provider = NativeCustomerProvider(storage)
        await _create(provider)
        assert storage.get("nativeCustomers") is not None
