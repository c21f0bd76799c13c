"""Tests for the Shopify Admin GraphQL catalog client (httpx MockTransport)."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from ai_filter.models.contracts import PriceRange, ProductOption
from ai_filter.services.catalog import (
    CatalogError,
    ShopifyCatalogClient,
    shopify_catalog_factory,
)
from ai_filter.services.taxonomy import fetch_all_pages

SHOP = "demo.myshopify.com"


def _run(handler, call):
    """Build a client over ``handler`` and run ``call(client)`` to completion."""

    async def _go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            catalog = ShopifyCatalogClient(http, SHOP, "shpat_test", "2025-01")
            return await call(catalog)

    return asyncio.run(_go())


def _connection(nodes, has_next=False, cursor=None):
    return {
        "edges": [{"node": n} for n in nodes],
        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
    }


class TestRequests:
    def test_posts_graphql_with_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"productTypes": _connection(["Shoes"])}})

        page = _run(handler, lambda c: c.list_product_types(None))

        assert page.items == ["Shoes"]
        request = seen[0]
        assert str(request.url) == f"https://{SHOP}/admin/api/2025-01/graphql.json"
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
        body = json.loads(request.content)
        assert body["variables"] == {"first": 250, "after": None}

    def test_pagination_through_fetch_all_pages(self):
        pages = {
            None: _connection(["a", "b"], has_next=True, cursor="c1"),
            "c1": _connection(["c"], has_next=False, cursor="c2"),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            after = json.loads(request.content)["variables"]["after"]
            return httpx.Response(200, json={"data": {"productTags": pages[after]}})

        tags = _run(handler, lambda c: fetch_all_pages(c.list_tags))
        assert tags == ["a", "b", "c"]

    def test_vendors_nested_under_shop(self):
        def handler(request: httpx.Request) -> httpx.Response:
            data = {"shop": {"productVendors": _connection(["Nike", "Adidas"])}}
            return httpx.Response(200, json={"data": data})

        page = _run(handler, lambda c: c.list_vendors(None))
        assert page.items == ["Nike", "Adidas"]
        assert page.has_next_page is False


class TestPriceExtremes:
    def test_reads_both_ends_and_currency(self):
        def handler(request: httpx.Request) -> httpx.Response:
            data = {
                "shop": {"currencyCode": "CAD"},
                "cheapest": {
                    "edges": [{"node": {"priceRangeV2": {"minVariantPrice": {"amount": "4.5"}}}}]
                },
                "expensive": {
                    "edges": [{"node": {"priceRangeV2": {"maxVariantPrice": {"amount": "310.0"}}}}]
                },
            }
            return httpx.Response(200, json={"data": data})

        price = _run(handler, lambda c: c.price_extremes())
        assert price == PriceRange(min=4.5, max=310.0, currency="CAD")

    def test_empty_catalog_prices_are_zero(self):
        def handler(request: httpx.Request) -> httpx.Response:
            data = {"shop": {"currencyCode": None}, "cheapest": {"edges": []}, "expensive": None}
            return httpx.Response(200, json={"data": data})

        price = _run(handler, lambda c: c.price_extremes())
        assert price == PriceRange(min=0.0, max=0.0, currency=None)


class TestProductOptions:
    def test_sample_options(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["variables"] == {"first": 100}
            data = {
                "products": {
                    "edges": [
                        {"node": {"options": [{"name": "Color", "values": ["Red"]}]}},
                        {"node": {"options": [{"name": "Title", "values": ["Default Title"]}]}},
                    ]
                }
            }
            return httpx.Response(200, json={"data": data})

        products = _run(handler, lambda c: c.sample_product_options(100))
        assert products == [
            [ProductOption(name="Color", values=["Red"])],
            [ProductOption(name="Title", values=["Default Title"])],
        ]


class TestErrors:
    def test_http_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"errors": "Invalid API key"})

        with pytest.raises(CatalogError, match="HTTP 401"):
            _run(handler, lambda c: c.list_tags(None))

    def test_graphql_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "Throttled"}]})

        with pytest.raises(CatalogError, match="GraphQL"):
            _run(handler, lambda c: c.list_tags(None))

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CatalogError, match="ConnectError"):
            _run(handler, lambda c: c.list_tags(None))


def test_factory_binds_shop_domain():
    http = httpx.AsyncClient()
    factory = shopify_catalog_factory(http, access_token="t", api_version="2025-01")
    assert factory("a.myshopify.com").shop_domain == "a.myshopify.com"
    assert factory("b.myshopify.com").shop_domain == "b.myshopify.com"
    asyncio.run(http.aclose())
