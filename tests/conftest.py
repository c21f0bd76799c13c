"""Shared fakes for the shop store and catalog source."""

from __future__ import annotations

import uuid
from typing import Any

import pytest

from ai_filter.models.contracts import CatalogPage, PriceRange, ProductOption, ShopRecord


class FakeShopStore:
    """In-memory ShopStore. Records every update and query-log write."""

    def __init__(self) -> None:
        self.records: dict[str, ShopRecord] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.queries: list[tuple[str, str, str, int]] = []
        self.record_query_error: Exception | None = None

    def seed(self, domain: str, **fields: Any) -> ShopRecord:
        record = ShopRecord(id=str(uuid.uuid4()), domain=domain, **fields)
        self.records[domain] = record
        return record

    async def find(self, domain: str) -> ShopRecord | None:
        return self.records.get(domain)

    async def create(self, domain: str) -> ShopRecord:
        return self.seed(domain)

    async def get_or_create(self, domain: str) -> ShopRecord:
        return self.records.get(domain) or await self.create(domain)

    async def update(self, domain: str, **fields: Any) -> ShopRecord | None:
        record = self.records.get(domain)
        if record is None:
            return None
        self.updates.append((domain, fields))
        record = record.model_copy(update=fields)
        self.records[domain] = record
        return record

    async def record_query(
        self,
        shop_id: str,
        user_query: str,
        filters_returned: str,
        latency_ms: int,
    ) -> None:
        if self.record_query_error is not None:
            raise self.record_query_error
        self.queries.append((shop_id, user_query, filters_returned, latency_ms))


def _paged(items: list[str], page_size: int, calls: list[str | None]):
    async def fetch(cursor: str | None) -> CatalogPage:
        calls.append(cursor)
        start = int(cursor) if cursor else 0
        chunk = items[start : start + page_size]
        end = start + len(chunk)
        return CatalogPage(items=chunk, has_next_page=end < len(items), end_cursor=str(end))

    return fetch


class FakeCatalog:
    """CatalogSource over fixed lists, paginated by offset cursors."""

    def __init__(
        self,
        product_types: list[str] | None = None,
        vendors: list[str] | None = None,
        tags: list[str] | None = None,
        price: PriceRange | None = None,
        products: list[list[ProductOption]] | None = None,
        page_size: int = 250,
    ) -> None:
        self.product_type_calls: list[str | None] = []
        self.vendor_calls: list[str | None] = []
        self.tag_calls: list[str | None] = []
        self.sample_limits: list[int] = []
        self.error: Exception | None = None

        self.list_product_types = _paged(product_types or [], page_size, self.product_type_calls)
        self.list_vendors = _paged(vendors or [], page_size, self.vendor_calls)
        self.list_tags = _paged(tags or [], page_size, self.tag_calls)
        self._price = price or PriceRange(min=5.0, max=250.0, currency="USD")
        self._products = products or []

    async def price_extremes(self) -> PriceRange:
        if self.error is not None:
            raise self.error
        return self._price

    async def sample_product_options(self, limit: int) -> list[list[ProductOption]]:
        self.sample_limits.append(limit)
        return self._products[:limit]


@pytest.fixture
def shops() -> FakeShopStore:
    return FakeShopStore()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(
        product_types=["Shoes", "Sweater", "Sunglasses"],
        vendors=["Nike", "Adidas"],
        tags=["sale", "new"],
        products=[
            [ProductOption(name="Color", values=["Red", "Blue"])],
            [
                ProductOption(name="Color", values=["Red", "Green"]),
                ProductOption(name="Size", values=["S", "M"]),
            ],
        ],
    )


@pytest.fixture
def make_catalog() -> type[FakeCatalog]:
    return FakeCatalog
