"""Shop record persistence: per-shop settings, taxonomy columns, query log.

``ShopStore`` is the interface the services depend on; ``SqlShopStore`` is
the PostgreSQL implementation on SQLAlchemy's asyncio extension.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_filter.models.contracts import ShopRecord
from ai_filter.models.db import FilterQuery, Shop

log = structlog.get_logger("shop_store")

# Columns callers may write through update(); everything else is managed here.
UPDATABLE_FIELDS = frozenset(
    {
        "enabled",
        "product_types",
        "vendors",
        "tags",
        "price_range",
        "variant_options",
        "taxonomy_synced_at",
        "taxonomy_invalidated",
        "taxonomy_invalidated_at",
    }
)


class ShopStore(Protocol):
    async def find(self, domain: str) -> ShopRecord | None: ...

    async def create(self, domain: str) -> ShopRecord: ...

    async def get_or_create(self, domain: str) -> ShopRecord: ...

    async def update(self, domain: str, **fields: Any) -> ShopRecord | None: ...

    async def record_query(
        self,
        shop_id: str,
        user_query: str,
        filters_returned: str,
        latency_ms: int,
    ) -> None: ...


def _to_record(row: Shop) -> ShopRecord:
    return ShopRecord(
        id=str(row.id),
        domain=row.domain,
        enabled=row.enabled,
        query_count=row.query_count,
        product_types=row.product_types,
        vendors=row.vendors,
        tags=row.tags,
        price_range=row.price_range,
        variant_options=row.variant_options,
        taxonomy_synced_at=row.taxonomy_synced_at,
        taxonomy_invalidated=row.taxonomy_invalidated,
        taxonomy_invalidated_at=row.taxonomy_invalidated_at,
    )


class SqlShopStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def find(self, domain: str) -> ShopRecord | None:
        async with self._sessionmaker() as session:
            row = await session.scalar(select(Shop).where(Shop.domain == domain))
            return _to_record(row) if row is not None else None

    async def create(self, domain: str) -> ShopRecord:
        async with self._sessionmaker() as session, session.begin():
            row = Shop(domain=domain)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            log.info("shop_created", shop=domain)
            return _to_record(row)

    async def get_or_create(self, domain: str) -> ShopRecord:
        """Upsert on the unique domain so concurrent first queries do not collide."""
        async with self._sessionmaker() as session, session.begin():
            await session.execute(
                insert(Shop)
                .values(id=uuid.uuid4(), domain=domain)
                .on_conflict_do_nothing(index_elements=[Shop.domain])
            )
            row = await session.scalar(select(Shop).where(Shop.domain == domain))
            assert row is not None
            return _to_record(row)

    async def update(self, domain: str, **fields: Any) -> ShopRecord | None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update shop fields: {sorted(unknown)}")

        async with self._sessionmaker() as session, session.begin():
            row = await session.scalar(select(Shop).where(Shop.domain == domain))
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            await session.flush()
            await session.refresh(row)
            return _to_record(row)

    async def record_query(
        self,
        shop_id: str,
        user_query: str,
        filters_returned: str,
        latency_ms: int,
    ) -> None:
        """Append to the query log and bump the shop's running counter."""
        shop_uuid = uuid.UUID(shop_id)
        async with self._sessionmaker() as session, session.begin():
            session.add(
                FilterQuery(
                    shop_id=shop_uuid,
                    user_query=user_query,
                    filters_returned=filters_returned,
                    latency_ms=latency_ms,
                )
            )
            await session.execute(
                update(Shop)
                .where(Shop.id == shop_uuid)
                .values(query_count=Shop.query_count + 1)
            )
