"""Client-side customer filtering and sorting.

Applied by CustomerService after customers are fetched from the provider(s).
Filters combine with AND; sorting is stable so equal keys keep fetch order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from src.chargecrm.customers.schemas import (
    Customer,
    CustomerSearchFilters,
    CustomerSortField,
    SortOrder,
)


def matches_query(customer: Customer, query: str) -> bool:
    """Case-insensitive substring match on name, email and company."""
    needle = query.lower()
    haystacks = (customer.name, customer.email, customer.company or "")
    return any(needle in value.lower() for value in haystacks)


def apply_filters(
    customers: Iterable[Customer],
    filters: CustomerSearchFilters,
    active_deal_customer_ids: set[str] | None = None,
) -> list[Customer]:
    """Return the customers matching every filter that is set.

    Args:
        customers: Fetched customers, in provider order.
        filters: Query, tag and creation-date filters.
        active_deal_customer_ids: Customers with at least one open deal; only
            consulted when ``filters.has_active_deals`` is set.
    """
    result = list(customers)

    if filters.query:
        result = [c for c in result if matches_query(c, filters.query)]

    if filters.tags:
        wanted = set(filters.tags)
        result = [c for c in result if wanted.intersection(c.tags)]

    if filters.created_after is not None:
        result = [c for c in result if c.created_at >= filters.created_after]

    if filters.created_before is not None:
        result = [c for c in result if c.created_at <= filters.created_before]

    if filters.has_active_deals is not None and active_deal_customer_ids is not None:
        result = [
            c for c in result
            if (c.id in active_deal_customer_ids) == filters.has_active_deals
        ]

    return result


_SORT_KEYS: dict[CustomerSortField, Callable[[Customer], Any]] = {
    CustomerSortField.NAME: lambda c: c.name.lower(),
    CustomerSortField.COMPANY: lambda c: (c.company or "").lower(),
    CustomerSortField.CREATED_AT: lambda c: c.created_at,
    CustomerSortField.UPDATED_AT: lambda c: c.updated_at,
}


def sort_customers(
    customers: Iterable[Customer],
    sort_by: CustomerSortField,
    sort_order: SortOrder = SortOrder.ASC,
) -> list[Customer]:
    return sorted(customers, key=_SORT_KEYS[sort_by], reverse=sort_order == SortOrder.DESC)
