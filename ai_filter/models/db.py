"""SQLAlchemy ORM models for the AI filter service.

Taxonomy columns hold JSON-encoded text; decoding happens in
ai_filter.services.taxonomy, never in the ORM layer.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Shop(Base):
    __tablename__ = "shops"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    query_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    product_types: Mapped[str] = mapped_column(Text, default="[]", server_default="[]")
    vendors: Mapped[str] = mapped_column(Text, default="[]", server_default="[]")
    tags: Mapped[str] = mapped_column(Text, default="[]", server_default="[]")
    price_range: Mapped[str] = mapped_column(Text, default="{}", server_default="{}")
    variant_options: Mapped[str] = mapped_column(Text, default="[]", server_default="[]")
    taxonomy_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    taxonomy_invalidated: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    taxonomy_invalidated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    queries: Mapped[list["FilterQuery"]] = relationship(
        back_populates="shop", cascade="all, delete"
    )


class FilterQuery(Base):
    __tablename__ = "filter_queries"
    __table_args__ = (Index("idx_filter_queries_shop_created", "shop_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("shops.id", ondelete="CASCADE"), nullable=False
    )
    user_query: Mapped[str] = mapped_column(Text, nullable=False)
    filters_returned: Mapped[str | None] = mapped_column(Text, nullable=True)
    latency_ms: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    shop: Mapped["Shop"] = relationship(back_populates="queries")
