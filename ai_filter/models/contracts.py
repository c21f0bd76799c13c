"""AI filter contract models.

Wire format is camelCase (what the storefront widget sends and reads);
Python attributes are snake_case. Every model accepts either spelling.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Filter Descriptors ===


class PriceFilter(BaseModel):
    min: float | None = None
    max: float | None = None


class VariantOptionFilter(BaseModel):
    name: str
    value: str


class FilterDescriptor(BaseModel):
    """One narrowing condition. At most one value per dimension."""

    model_config = _CAMEL

    product_type: str | None = None
    product_vendor: str | None = None
    tag: str | None = None
    available: bool | None = None
    price: PriceFilter | None = None
    variant_option: VariantOptionFilter | None = None

    def populated(self) -> list[str]:
        """Names of the dimensions that carry a value."""
        return [name for name in type(self).model_fields if getattr(self, name) is not None]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ResolutionResult(BaseModel):
    filters: list[FilterDescriptor] = []
    explanation: str = ""
    search_query: str | None = None
    latency_ms: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.filters and not self.search_query


class CachedResolution(BaseModel):
    """What the query cache stores for a resolved query."""

    filters: list[FilterDescriptor] = []
    explanation: str = ""
    search_query: str | None = None


# === Taxonomy ===


class PriceRange(BaseModel):
    min: float | None = None
    max: float | None = None
    currency: str | None = None


class VariantOptionGroup(BaseModel):
    name: str
    values: list[str] = []


class TaxonomyContext(BaseModel):
    """A shop's catalog vocabulary snapshot."""

    model_config = _CAMEL

    product_types: list[str] = []
    vendors: list[str] = []
    tags: list[str] = []
    price_range: PriceRange = Field(default_factory=PriceRange)
    variant_options: list[VariantOptionGroup] = []

    def is_empty(self) -> bool:
        return not (
            self.product_types
            or self.vendors
            or self.tags
            or self.variant_options
            or self.price_range.min is not None
            or self.price_range.max is not None
        )


class CatalogPage(BaseModel):
    """One page of a cursor-paginated catalog listing."""

    items: list[str] = []
    has_next_page: bool = False
    end_cursor: str | None = None


class ProductOption(BaseModel):
    name: str
    values: list[str] = []


# === Persistence Snapshots ===


class ShopRecord(BaseModel):
    """Read-side view of a shop row. Taxonomy fields stay JSON-encoded here."""

    id: str
    domain: str
    enabled: bool = True
    query_count: int = 0
    product_types: str = "[]"
    vendors: str = "[]"
    tags: str = "[]"
    price_range: str = "{}"
    variant_options: str = "[]"
    taxonomy_synced_at: datetime | None = None
    taxonomy_invalidated: bool = False
    taxonomy_invalidated_at: datetime | None = None


# === Storefront Proxy API ===


class AvailableFilterValue(BaseModel):
    """A filter value scraped from the storefront page."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    label: str = ""
    value: str | float | None = None
    param_name: str | None = None
    min: float | str | None = None
    max: float | str | None = None


class AvailableFilter(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    type: str | None = None
    values: list[AvailableFilterValue] = []


class QueryRequest(BaseModel):
    model_config = _CAMEL

    query: Any = None
    collection_handle: str | None = None
    available_filters: list[AvailableFilter] | None = None


class UrlParam(BaseModel):
    name: str
    value: str


class QueryResponse(BaseModel):
    model_config = _CAMEL

    filters: list[FilterDescriptor] | None = None
    explanation: str | None = None
    search_query: str | None = None
    error: str | None = None
    params: list[UrlParam] | None = None
    fallback_search: str | None = None

    @classmethod
    def failure(cls, message: str) -> QueryResponse:
        return cls(error=message)

    def to_wire(self) -> dict[str, Any]:
        """Top-level nulls stay in the payload; empty filter dimensions do not."""
        return {
            "filters": (
                [f.to_wire() for f in self.filters] if self.filters is not None else None
            ),
            "explanation": self.explanation,
            "searchQuery": self.search_query,
            "error": self.error,
            "params": (
                [p.model_dump() for p in self.params] if self.params is not None else None
            ),
            "fallbackSearch": self.fallback_search,
        }


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool = False
