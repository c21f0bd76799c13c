"""Per-query orchestration for the storefront proxy.

received -> validated -> taxonomy-checked -> cache-checked
    -> cache hit: respond
    -> cache miss: resolve -> cache store -> respond
and, detached from the response path, analytics.

Every rejection is returned as ``QueryResponse(error=...)``; the HTTP
layer always answers 200 so the widget has a single shape to handle.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Coroutine
from typing import Any

import structlog
from pydantic import ValidationError

from ai_filter.config import Settings
from ai_filter.models.contracts import (
    CachedResolution,
    FilterDescriptor,
    QueryRequest,
    QueryResponse,
    ShopRecord,
    TaxonomyContext,
)
from ai_filter.services.query_cache import QueryCache
from ai_filter.services.rate_limiter import RateLimiter
from ai_filter.services.resolver import FilterResolver
from ai_filter.services.shop_store import ShopStore
from ai_filter.services.taxonomy import (
    CatalogSource,
    invalidate_taxonomy,
    is_stale,
    parse_taxonomy,
    sync_taxonomy,
)
from ai_filter.utils.url_params import fallback_search_terms, filter_url_params

log = structlog.get_logger("orchestrator")

RATE_LIMIT_KEY_PREFIX = "ai:"

UNAUTHORIZED = "Unauthorized"
RATE_LIMITED = "Too many requests. Please wait a moment and try again."
INVALID_BODY = "Invalid request body"
EMPTY_QUERY = "Please enter a search query"
QUERY_TOO_LONG = "Query is too long. Please keep it under {limit} characters."
SHOP_DISABLED = "AI Filter is currently disabled for this store."
GENERIC_FAILURE = "Something went wrong. Please try again."


class QueryOrchestrator:
    def __init__(
        self,
        shops: ShopStore,
        resolver: FilterResolver,
        cache: QueryCache,
        rate_limiter: RateLimiter,
        catalog_factory: Callable[[str], CatalogSource],
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._shops = shops
        self._resolver = resolver
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._catalog_factory = catalog_factory
        self._settings = settings
        self._clock = clock
        self._tasks: set[asyncio.Task[Any]] = set()
        self._syncs: dict[str, asyncio.Task[None]] = {}
        self._sync_failed_at: dict[str, float] = {}

    # --- Entry points ---

    async def handle_query(self, shop: str | None, body: Any) -> QueryResponse:
        try:
            return await self._handle_query(shop, body)
        except Exception:
            log.exception("query_unexpected_error", shop=shop)
            return QueryResponse.failure(GENERIC_FAILURE)

    async def shop_settings(self, shop: str) -> dict[str, bool]:
        record = await self._shops.find(shop)
        return {"enabled": record.enabled if record is not None else True}

    async def mark_catalog_changed(self, shop: str) -> bool:
        """Catalog-change event: the next query refreshes this shop's taxonomy."""
        return await invalidate_taxonomy(self._shops, shop)

    async def drain(self) -> None:
        """Wait for detached analytics and sync tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Pipeline ---

    async def _handle_query(self, shop: str | None, body: Any) -> QueryResponse:
        start = self._clock()

        if not shop:
            return QueryResponse.failure(UNAUTHORIZED)

        limit = self._rate_limiter.check(
            f"{RATE_LIMIT_KEY_PREFIX}{shop}",
            self._settings.rate_limit_max_requests,
            self._settings.rate_limit_window_seconds,
        )
        if not limit.allowed:
            log.info("query_rate_limited", shop=shop)
            return QueryResponse.failure(RATE_LIMITED)

        request = self._parse_body(body)
        if request is None:
            return QueryResponse.failure(INVALID_BODY)

        query = request.query
        if not isinstance(query, str) or not query.strip():
            return QueryResponse.failure(EMPTY_QUERY)
        if len(query) > self._settings.max_query_length:
            return QueryResponse.failure(
                QUERY_TOO_LONG.format(limit=self._settings.max_query_length)
            )

        record = await self._shops.get_or_create(shop)
        if not record.enabled:
            return QueryResponse.failure(SHOP_DISABLED)

        record, taxonomy = await self._load_taxonomy(record)

        key = QueryCache.build_key(shop, request.collection_handle, query)
        cached = self._cache.get(key)
        if cached is not None:
            log.info("query_cache_hit", shop=shop, key=key)
            self._record_analytics(record, query, cached.filters, latency_ms=0)
            return self._respond(cached.filters, cached.explanation, cached.search_query)

        log.info("query_cache_miss", shop=shop, key=key)
        try:
            result = await self._resolver.resolve(
                query.strip(),
                taxonomy,
                request.available_filters or [],
                request.collection_handle,
            )
        except Exception as exc:
            log.error(
                "filter_resolution_failed",
                shop=shop,
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            return QueryResponse.failure(GENERIC_FAILURE)

        # An empty answer is more likely a transient miss than a stable one
        if not result.is_empty:
            self._cache.set(
                key,
                CachedResolution(
                    filters=result.filters,
                    explanation=result.explanation,
                    search_query=result.search_query,
                ),
            )

        self._record_analytics(record, query, result.filters, latency_ms=result.latency_ms)

        log.info(
            "query_complete",
            shop=shop,
            filters=len(result.filters),
            has_search_query=result.search_query is not None,
            llm_latency_ms=result.latency_ms,
            total_ms=int((self._clock() - start) * 1000),
        )
        return self._respond(result.filters, result.explanation, result.search_query)

    @staticmethod
    def _parse_body(body: Any) -> QueryRequest | None:
        if not isinstance(body, dict):
            return None
        try:
            return QueryRequest.model_validate(body)
        except ValidationError as exc:
            log.info("query_invalid_body", errors=exc.error_count())
            return None

    @staticmethod
    def _respond(
        filters: list[FilterDescriptor],
        explanation: str,
        search_query: str | None,
    ) -> QueryResponse:
        return QueryResponse(
            filters=filters,
            explanation=explanation,
            search_query=search_query,
            params=filter_url_params(filters),
            fallback_search=fallback_search_terms(filters, search_query) or None,
        )

    # --- Taxonomy ---

    async def _load_taxonomy(self, record: ShopRecord) -> tuple[ShopRecord, TaxonomyContext]:
        """Never synced: wait on an inline sync. Stale: serve as-is, refresh in background.

        A shop whose last sync failed gets no new attempt until the cooldown
        passes; a never-synced shop is served an empty taxonomy meanwhile.
        """
        if record.taxonomy_synced_at is None:
            if self._cooling_down(record.domain):
                return record, TaxonomyContext()
            try:
                # Shared with concurrent first queries, so shielded from this request
                await asyncio.shield(self._start_sync(record.domain))
            except Exception as exc:
                log.warning(
                    "taxonomy_inline_sync_degraded",
                    shop=record.domain,
                    error_type=type(exc).__name__,
                )
                return record, TaxonomyContext()
            record = await self._shops.find(record.domain) or record
        elif is_stale(record, self._settings.taxonomy_max_age_seconds):
            if not self._cooling_down(record.domain):
                self._start_sync(record.domain)

        return record, parse_taxonomy(record)

    def _cooling_down(self, shop: str) -> bool:
        failed_at = self._sync_failed_at.get(shop)
        if failed_at is None:
            return False
        if self._clock() - failed_at < self._settings.taxonomy_retry_cooldown_seconds:
            log.debug("taxonomy_sync_cooling_down", shop=shop)
            return True
        return False

    def _start_sync(self, shop: str) -> asyncio.Task[None]:
        """Start a sync for ``shop``, or return the one already running."""
        task = self._syncs.get(shop)
        if task is None:
            task = asyncio.create_task(self._sync_and_flush(shop), name="taxonomy_sync")
            self._syncs[shop] = task
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._on_sync_done(t, shop))
        return task

    async def _sync_and_flush(self, shop: str) -> None:
        await sync_taxonomy(self._catalog_factory(shop), shop, self._shops)
        self._cache.flush_shop(shop)

    def _on_sync_done(self, task: asyncio.Task[None], shop: str) -> None:
        self._tasks.discard(task)
        self._syncs.pop(shop, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            self._sync_failed_at.pop(shop, None)
            return
        # Whatever taxonomy the shop has stays in place until the cooldown passes
        self._sync_failed_at[shop] = self._clock()
        log.warning(
            "taxonomy_sync_cooldown_started",
            shop=shop,
            error_type=type(exc).__name__,
            cooldown_s=self._settings.taxonomy_retry_cooldown_seconds,
        )

    # --- Analytics ---

    def _record_analytics(
        self,
        record: ShopRecord,
        query: str,
        filters: list[FilterDescriptor],
        latency_ms: int,
    ) -> None:
        filters_json = json.dumps([f.to_wire() for f in filters])
        self._spawn(
            self._shops.record_query(
                record.id,
                query.strip()[: self._settings.max_query_length],
                filters_json,
                latency_ms,
            ),
            label="analytics",
        )

    # --- Background tasks ---

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, label: str) -> None:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, label))

    def _on_task_done(self, task: asyncio.Task[Any], label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "background_task_failed",
                task=label,
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
