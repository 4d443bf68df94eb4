"""Unit tests for customer schemas: namespace and timestamp invariants, aliases, storage shape."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.chargecrm.customers.schemas import (
    CRMConfig,
    Customer,
    CustomerDeal,
    CustomerSource,
    CustomerUpdate,
    DealCreate,
    DealStage,
    SyncFrequency,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _customer(**overrides) -> Customer:
    defaults = {
        "id": "native_1700000000000_abcdefghi",
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "source": CustomerSource.NATIVE,
        "created_at": T0,
        "updated_at": T0,
    }
    defaults.update(overrides)
    return Customer(**defaults)


def _deal(**overrides) -> CustomerDeal:
    defaults = {
        "id": "native_deal_1_abc",
        "customer_id": "native_1_abc",
        "title": "Solar install",
        "value": 12000.0,
        "stage": DealStage.NEW,
        "probability": 20,
        "source": CustomerSource.NATIVE,
        "created_at": T0,
        "updated_at": T0,
    }
    defaults.update(overrides)
    return CustomerDeal(**defaults)


class TestCustomerInvariants:
    def test_valid_customer(self):
        customer = _customer()
        assert customer.tags == []
        assert customer.custom_fields == {}

    def test_id_prefix_must_match_source(self):
        with pytest.raises(ValidationError, match="must start with 'hubspot_'"):
            _customer(id="native_1_abc", source=CustomerSource.HUBSPOT)

    def test_updated_before_created_rejected(self):
        with pytest.raises(ValidationError, match="updatedAt precedes createdAt"):
            _customer(updated_at=T0 - timedelta(seconds=1))

    def test_naive_datetimes_are_utc(self):
        customer = _customer(created_at=datetime(2024, 1, 1), updated_at=datetime(2024, 1, 2))
        assert customer.created_at.tzinfo == timezone.utc

    def test_camel_case_aliases_accepted(self):
        customer = Customer.model_validate(
            {
                "id": "hubspot_42",
                "externalId": "42",
                "name": "Grace",
                "email": "grace@example.com",
                "source": "hubspot",
                "customFields": {"segment": "residential"},
                "createdAt": "2024-01-01T00:00:00Z",
                "updatedAt": "2024-01-02T00:00:00Z",
            }
        )
        assert customer.external_id == "42"
        assert customer.custom_fields == {"segment": "residential"}
        assert customer.source is CustomerSource.HUBSPOT

    def test_to_storage_uses_camel_case_and_drops_none(self):
        stored = _customer(company=None).to_storage()
        assert stored["createdAt"] == "2024-01-01T00:00:00Z"
        assert "customFields" in stored
        assert "company" not in stored
        assert "created_at" not in stored

    def test_update_has_no_identity_fields(self):
        assert "id" not in CustomerUpdate.model_fields
        assert "source" not in CustomerUpdate.model_fields
        assert "created_at" not in CustomerUpdate.model_fields


class TestDealInvariants:
    def test_deal_customer_must_share_namespace(self):
        with pytest.raises(ValidationError, match="customerId"):
            _deal(customer_id="hubspot_7")

    def test_probability_bounds(self):
        with pytest.raises(ValidationError):
            DealCreate(customer_id="native_1", title="x", probability=101)

    def test_negative_value_rejected(self):
        with pytest.raises(ValidationError):
            DealCreate(customer_id="native_1", title="x", value=-1)

    def test_is_open(self):
        assert _deal(stage=DealStage.NEGOTIATION).is_open
        assert not _deal(stage=DealStage.CLOSED_WON).is_open
        assert not _deal(stage=DealStage.CLOSED_LOST).is_open


class TestCRMConfig:
    def test_defaults(self):
        config = CRMConfig()
        assert config.provider is CustomerSource.NATIVE
        assert config.sync_enabled is False
        assert config.sync_frequency is SyncFrequency.HOURLY
        assert config.api_key is None

    def test_storage_shape(self):
        stored = CRMConfig(provider=CustomerSource.PIPEDRIVE, api_key="k", domain="acme").to_storage()
        assert stored["provider"] == "pipedrive"
        assert stored["apiKey"] == "k"
        assert stored["syncEnabled"] is False
