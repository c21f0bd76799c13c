"""Per-shop catalog vocabulary: staleness, (de)serialization, and sync.

The taxonomy grounds the LLM prompt and the fuzzy correction pass. It is
rebuilt wholesale from the catalog on every sync and persisted as five
JSON text columns on the shop record; everything above the persistence
boundary works with the typed ``TaxonomyContext``.
"""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

import structlog
from pydantic import ValidationError

from ai_filter.models.contracts import (
    CatalogPage,
    PriceRange,
    ProductOption,
    ShopRecord,
    TaxonomyContext,
    VariantOptionGroup,
)
from ai_filter.services.shop_store import ShopStore

log = structlog.get_logger("taxonomy")

MAX_AGE_SECONDS = 6 * 60 * 60
MAX_ENTRIES_PER_TYPE = 1000
PRODUCT_SAMPLE_SIZE = 100
DEFAULT_CURRENCY = "USD"

# Shopify gives single-variant products a "Title" option with one
# "Default Title" value. It carries no filterable meaning.
_PLACEHOLDER_OPTION = "Title"
_PLACEHOLDER_VALUE = "Default Title"


class CatalogSource(Protocol):
    async def list_product_types(self, cursor: str | None) -> CatalogPage: ...

    async def list_vendors(self, cursor: str | None) -> CatalogPage: ...

    async def list_tags(self, cursor: str | None) -> CatalogPage: ...

    async def price_extremes(self) -> PriceRange: ...

    async def sample_product_options(self, limit: int) -> list[list[ProductOption]]: ...


# === Staleness ===


def is_stale(
    record: ShopRecord,
    max_age_seconds: float = MAX_AGE_SECONDS,
    now: datetime | None = None,
) -> bool:
    """True if never synced, invalidated by a catalog change, or older than max age."""
    synced_at = record.taxonomy_synced_at
    if synced_at is None or record.taxonomy_invalidated:
        return True
    if synced_at.tzinfo is None:
        synced_at = synced_at.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return (now - synced_at).total_seconds() > max_age_seconds


# === Persistence Boundary ===


def parse_taxonomy(record: ShopRecord) -> TaxonomyContext:
    """Decode the stored JSON columns. Never raises: bad data yields an empty context."""
    try:
        return TaxonomyContext(
            product_types=json.loads(record.product_types or "[]"),
            vendors=json.loads(record.vendors or "[]"),
            tags=json.loads(record.tags or "[]"),
            price_range=json.loads(record.price_range or "{}"),
            variant_options=json.loads(record.variant_options or "[]"),
        )
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        log.error(
            "taxonomy_parse_failed",
            shop=record.domain,
            error_type=type(exc).__name__,
            error=str(exc)[:200],
        )
        return TaxonomyContext()


def serialize_taxonomy(context: TaxonomyContext) -> dict[str, str]:
    """Column values for a shop record update."""
    return {
        "product_types": json.dumps(context.product_types),
        "vendors": json.dumps(context.vendors),
        "tags": json.dumps(context.tags),
        "price_range": context.price_range.model_dump_json(),
        "variant_options": json.dumps([g.model_dump() for g in context.variant_options]),
    }


# === Catalog Fetching ===


async def fetch_all_pages(
    fetch_page: Callable[[str | None], Awaitable[CatalogPage]],
    cap: int = MAX_ENTRIES_PER_TYPE,
) -> list[str]:
    """Follow cursors until the listing ends or ``cap`` items are collected."""
    items: list[str] = []
    cursor: str | None = None
    has_next = True

    while has_next and len(items) < cap:
        page = await fetch_page(cursor)
        items.extend(item for item in page.items if item)
        has_next = page.has_next_page
        cursor = page.end_cursor

    return items[:cap]


def build_variant_options(
    products: list[list[ProductOption]],
    max_values: int = MAX_ENTRIES_PER_TYPE,
) -> list[VariantOptionGroup]:
    """Merge sampled product options into deduplicated name -> values groups.

    First-seen order is kept for both option names and values.
    """
    option_map: dict[str, dict[str, None]] = {}
    for options in products:
        for option in options:
            values = option_map.setdefault(option.name, {})
            for value in option.values:
                if len(values) < max_values:
                    values.setdefault(value, None)

    groups: list[VariantOptionGroup] = []
    for name, values in option_map.items():
        if name == _PLACEHOLDER_OPTION and list(values) == [_PLACEHOLDER_VALUE]:
            continue
        groups.append(VariantOptionGroup(name=name, values=list(values)))
    return groups


async def fetch_taxonomy(catalog: CatalogSource) -> TaxonomyContext:
    """Pull a full vocabulary snapshot from the catalog. Failures propagate."""
    product_types = await fetch_all_pages(catalog.list_product_types)
    vendors = await fetch_all_pages(catalog.list_vendors)
    tags = await fetch_all_pages(catalog.list_tags)

    extremes = await catalog.price_extremes()
    price_range = PriceRange(
        min=extremes.min if extremes.min is not None else 0.0,
        max=extremes.max if extremes.max is not None else 0.0,
        currency=extremes.currency or DEFAULT_CURRENCY,
    )

    products = await catalog.sample_product_options(PRODUCT_SAMPLE_SIZE)

    return TaxonomyContext(
        product_types=product_types,
        vendors=vendors,
        tags=tags,
        price_range=price_range,
        variant_options=build_variant_options(products),
    )


def _invalidated_since(record: ShopRecord | None, started_at: datetime) -> bool:
    if record is None or not record.taxonomy_invalidated:
        return False
    return (
        record.taxonomy_invalidated_at is not None
        and record.taxonomy_invalidated_at > started_at
    )


async def sync_taxonomy(
    catalog: CatalogSource,
    shop_domain: str,
    shops: ShopStore,
) -> TaxonomyContext:
    """Fetch the catalog vocabulary and persist it in one record update.

    Nothing is written unless every fetch succeeds, so a failed sync
    leaves the previous taxonomy in place. Safe to retry.

    A catalog change that lands while the fetch is running keeps the
    invalidation flag set, so the next query schedules another sync.
    """
    log.info("taxonomy_sync_start", shop=shop_domain)
    start = time.monotonic()
    started_at = datetime.now(UTC)

    try:
        context = await fetch_taxonomy(catalog)
        changed_during_sync = _invalidated_since(await shops.find(shop_domain), started_at)
        await shops.update(
            shop_domain,
            **serialize_taxonomy(context),
            taxonomy_synced_at=datetime.now(UTC),
            taxonomy_invalidated=changed_during_sync,
        )
    except Exception as exc:
        log.error(
            "taxonomy_sync_failed",
            shop=shop_domain,
            error_type=type(exc).__name__,
            error=str(exc)[:200],
        )
        raise

    log.info(
        "taxonomy_sync_complete",
        shop=shop_domain,
        changed_during_sync=changed_during_sync,
        elapsed_ms=int((time.monotonic() - start) * 1000),
        product_types=len(context.product_types),
        vendors=len(context.vendors),
        tags=len(context.tags),
        price_min=context.price_range.min,
        price_max=context.price_range.max,
        currency=context.price_range.currency,
        option_groups=len(context.variant_options),
    )
    return context


async def invalidate_taxonomy(shops: ShopStore, shop_domain: str) -> bool:
    """Mark a shop's taxonomy stale after a catalog change. False if the shop is unknown."""
    record = await shops.update(
        shop_domain, taxonomy_invalidated=True, taxonomy_invalidated_at=datetime.now(UTC)
    )
    if record is None:
        return False
    log.info("taxonomy_invalidated", shop=shop_domain)
    return True
