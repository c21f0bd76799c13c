"""Shopify Admin GraphQL catalog source used by taxonomy sync.

One shared ``httpx.AsyncClient`` serves every shop; each
``ShopifyCatalogClient`` only carries the shop domain and its token.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import structlog

from ai_filter.models.contracts import CatalogPage, PriceRange, ProductOption

log = structlog.get_logger("catalog")

PAGE_SIZE = 250
REQUEST_TIMEOUT = 15.0


class CatalogError(Exception):
    """Catalog API call failed (transport, HTTP status, or GraphQL errors)."""


_PRODUCT_TYPES_QUERY = """
query ProductTypes($first: Int!, $after: String) {
  productTypes(first: $first, after: $after) {
    edges { node }
    pageInfo { hasNextPage endCursor }
  }
}
"""

_VENDORS_QUERY = """
query ProductVendors($first: Int!, $after: String) {
  shop {
    productVendors(first: $first, after: $after) {
      edges { node }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

_TAGS_QUERY = """
query ProductTags($first: Int!, $after: String) {
  productTags(first: $first, after: $after) {
    edges { node }
    pageInfo { hasNextPage endCursor }
  }
}
"""

_PRICE_EXTREMES_QUERY = """
query PriceExtremes {
  shop { currencyCode }
  cheapest: products(first: 1, sortKey: PRICE, reverse: false) {
    edges { node { priceRangeV2 { minVariantPrice { amount } } } }
  }
  expensive: products(first: 1, sortKey: PRICE, reverse: true) {
    edges { node { priceRangeV2 { maxVariantPrice { amount } } } }
  }
}
"""

_PRODUCT_OPTIONS_QUERY = """
query ProductOptions($first: Int!) {
  products(first: $first) {
    edges { node { options { name values } } }
  }
}
"""


def _connection_page(connection: dict[str, Any] | None) -> CatalogPage:
    if not connection:
        return CatalogPage()
    page_info = connection.get("pageInfo") or {}
    return CatalogPage(
        items=[edge["node"] for edge in connection.get("edges", []) if edge.get("node")],
        has_next_page=bool(page_info.get("hasNextPage")),
        end_cursor=page_info.get("endCursor"),
    )


def _first_amount(data: dict[str, Any], alias: str, field: str) -> float:
    edges = (data.get(alias) or {}).get("edges") or []
    if not edges:
        return 0.0
    price_range = (edges[0].get("node") or {}).get("priceRangeV2") or {}
    amount = (price_range.get(field) or {}).get("amount")
    try:
        return float(amount) if amount is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


class ShopifyCatalogClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        shop_domain: str,
        access_token: str,
        api_version: str,
    ) -> None:
        self._http = http_client
        self.shop_domain = shop_domain
        self._access_token = access_token
        self._url = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"

    async def _graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            resp = await self._http.post(
                self._url,
                headers={"X-Shopify-Access-Token": self._access_token},
                json={"query": query, "variables": variables or {}},
                timeout=REQUEST_TIMEOUT,
            )
        except httpx.HTTPError as exc:
            raise CatalogError(
                f"Catalog request failed for {self.shop_domain}: {type(exc).__name__}"
            ) from exc

        if resp.status_code >= 400:
            raise CatalogError(f"Catalog API returned HTTP {resp.status_code} for {self.shop_domain}")

        payload = resp.json()
        if payload.get("errors"):
            log.warning("catalog_graphql_errors", shop=self.shop_domain, errors=payload["errors"])
            raise CatalogError(f"Catalog GraphQL errors for {self.shop_domain}")
        data: dict[str, Any] = payload.get("data") or {}
        return data

    async def list_product_types(self, cursor: str | None) -> CatalogPage:
        data = await self._graphql(_PRODUCT_TYPES_QUERY, {"first": PAGE_SIZE, "after": cursor})
        return _connection_page(data.get("productTypes"))

    async def list_vendors(self, cursor: str | None) -> CatalogPage:
        data = await self._graphql(_VENDORS_QUERY, {"first": PAGE_SIZE, "after": cursor})
        return _connection_page((data.get("shop") or {}).get("productVendors"))

    async def list_tags(self, cursor: str | None) -> CatalogPage:
        data = await self._graphql(_TAGS_QUERY, {"first": PAGE_SIZE, "after": cursor})
        return _connection_page(data.get("productTags"))

    async def price_extremes(self) -> PriceRange:
        data = await self._graphql(_PRICE_EXTREMES_QUERY)
        return PriceRange(
            min=_first_amount(data, "cheapest", "minVariantPrice"),
            max=_first_amount(data, "expensive", "maxVariantPrice"),
            currency=(data.get("shop") or {}).get("currencyCode"),
        )

    async def sample_product_options(self, limit: int) -> list[list[ProductOption]]:
        data = await self._graphql(_PRODUCT_OPTIONS_QUERY, {"first": limit})
        edges = (data.get("products") or {}).get("edges") or []
        return [
            [
                ProductOption(name=opt["name"], values=opt.get("values") or [])
                for opt in (edge.get("node") or {}).get("options") or []
                if opt.get("name")
            ]
            for edge in edges
        ]


def shopify_catalog_factory(
    http_client: httpx.AsyncClient,
    access_token: str,
    api_version: str,
) -> Callable[[str], ShopifyCatalogClient]:
    """Build the per-shop catalog factory the orchestrator uses for syncs."""

    def _factory(shop_domain: str) -> ShopifyCatalogClient:
        return ShopifyCatalogClient(http_client, shop_domain, access_token, api_version)

    return _factory
