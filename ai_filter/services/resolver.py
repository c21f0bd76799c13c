"""Filter resolution: shopping query -> storefront filter descriptors.

Pipeline:
1. Prompt construction (query, collection, catalog vocabulary, page filters)
2. Claude tool call forced onto ``apply_filters``, bounded by a hard timeout
3. Post-processing: sanitize -> merge price fragments -> fuzzy-correct

A timeout or a response without the tool call degrades to an empty result
carrying a user-facing explanation. Every other failure propagates.
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from pathlib import Path
from typing import Any

import anthropic
import httpx
import structlog

from ai_filter.models.contracts import (
    AvailableFilter,
    FilterDescriptor,
    PriceFilter,
    ResolutionResult,
    TaxonomyContext,
    VariantOptionFilter,
)
from ai_filter.services.fuzzy import correct_filters

log = structlog.get_logger("resolver")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

DEFAULT_MODEL = "claude-haiku-4-5"
DEFAULT_MAX_TOKENS = 256
DEFAULT_TIMEOUT_SECONDS = 8.0

TOOL_NAME = "apply_filters"
TIMEOUT_EXPLANATION = "The request took too long. Please try a simpler query."
NO_TOOL_EXPLANATION = "I couldn't process your request. Please try again."

APPLY_FILTERS_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Apply product filters based on the customer's query.",
    "input_schema": {
        "type": "object",
        "properties": {
            "filters": {
                "type": "array",
                "description": "Array of filter objects to apply",
                "items": {
                    "type": "object",
                    "properties": {
                        "productType": {
                            "type": "string",
                            "description": 'Product type, e.g. "Shoes", "Jacket"',
                        },
                        "productVendor": {
                            "type": "string",
                            "description": 'Brand/vendor, e.g. "Nike"',
                        },
                        "tag": {
                            "type": "string",
                            "description": 'Product tag, e.g. "sale"',
                        },
                        "available": {
                            "type": "boolean",
                            "description": "true = in stock, false = out of stock",
                        },
                        "price": {
                            "type": "object",
                            "description": "Price range filter in store currency major units",
                            "properties": {
                                "min": {"type": "number"},
                                "max": {"type": "number"},
                            },
                        },
                        "variantOption": {
                            "type": "object",
                            "description": 'Variant option, e.g. {"name": "Color", "value": "Red"}',
                            "properties": {
                                "name": {"type": "string"},
                                "value": {"type": "string"},
                            },
                            "required": ["name", "value"],
                        },
                    },
                },
            },
            "searchQuery": {
                "type": "string",
                "description": (
                    "Text search terms for descriptive words that don't map to any "
                    "filter (e.g. 'cozy', 'lightweight'). Leave empty if all terms "
                    "map to filters."
                ),
            },
            "explanation": {
                "type": "string",
                "description": "Brief, friendly explanation (1 sentence)",
            },
        },
        "required": ["filters", "explanation"],
    },
}


# === Prompt Construction ===

_system_prompt_cache: str | None = None
_user_template_cache: str | None = None


def _load_system_prompt() -> str:
    """Load the system prompt (cached after first read)."""
    global _system_prompt_cache  # noqa: PLW0603
    if _system_prompt_cache is None:
        _system_prompt_cache = (PROMPTS_DIR / "filter_system.txt").read_text()
    return _system_prompt_cache


def _load_user_template() -> str:
    global _user_template_cache  # noqa: PLW0603
    if _user_template_cache is None:
        _user_template_cache = (PROMPTS_DIR / "filter_user.txt").read_text()
    return _user_template_cache


def _format_amount(value: float) -> str:
    return f"{value:g}"


def build_catalog_section(taxonomy: TaxonomyContext | None) -> str:
    """Catalog vocabulary block. Only non-empty fields appear; empty taxonomy -> ""."""
    if taxonomy is None:
        return ""

    lines = ["STORE CATALOG (use ONLY these exact values when matching):"]
    if taxonomy.product_types:
        lines.append(f"- Product types: {json.dumps(taxonomy.product_types)}")
    if taxonomy.vendors:
        lines.append(f"- Vendors: {json.dumps(taxonomy.vendors)}")
    if taxonomy.tags:
        lines.append(f"- Tags: {json.dumps(taxonomy.tags)}")

    price = taxonomy.price_range
    if price.min is not None or price.max is not None:
        low = _format_amount(price.min or 0)
        high = _format_amount(price.max or 0)
        lines.append(f"- Price range: {low} to {high} {price.currency or 'USD'}")

    if taxonomy.variant_options:
        groups = "; ".join(f"{g.name}: [{', '.join(g.values)}]" for g in taxonomy.variant_options)
        lines.append(f"- Variant options: {groups}")

    return "\n".join(lines) if len(lines) > 1 else ""


def build_filters_section(available_filters: list[AvailableFilter]) -> str:
    if not available_filters:
        return (
            "No filter list is available for this page. Generate standard Shopify "
            "filters based on the query (productType, variantOption, tag, price, "
            "available, productVendor)."
        )
    scraped = json.dumps(
        [f.model_dump(by_alias=True, exclude_none=True) for f in available_filters]
    )
    return (
        f"Available filters on this page:\n{scraped}\n\n"
        "Use matching values from the available filters when possible."
    )


def build_user_message(
    query: str,
    taxonomy: TaxonomyContext | None,
    available_filters: list[AvailableFilter],
    collection_handle: str | None,
) -> str:
    catalog = build_catalog_section(taxonomy)
    return _load_user_template().format(
        query=query,
        collection=collection_handle or "all products",
        catalog_section=f"{catalog}\n\n" if catalog else "",
        filters_section=build_filters_section(available_filters),
    )


# === Post-processing ===

_STRING_FIELDS = {
    "productType": "product_type",
    "productVendor": "product_vendor",
    "tag": "tag",
}


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _coerce_price_bound(value: Any) -> float | None:
    """Numeric price bound or None. Strings like "$1,299.50" are parsed."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip().lstrip("$").replace(",", "")
        try:
            value = float(cleaned)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _sanitize_price(value: Any) -> PriceFilter | None:
    if not isinstance(value, dict):
        return None
    low = _coerce_price_bound(value.get("min"))
    high = _coerce_price_bound(value.get("max"))
    if low is not None and high is not None and low > high:
        low, high = high, low
    if low is None and high is None:
        return None
    return PriceFilter(min=low, max=high)


def _sanitize_variant_option(value: Any) -> VariantOptionFilter | None:
    if not isinstance(value, dict):
        return None
    name = _clean_str(value.get("name"))
    option_value = _clean_str(value.get("value"))
    if name is None or option_value is None:
        return None
    return VariantOptionFilter(name=name, value=option_value)


def sanitize_filters(raw: Any) -> list[FilterDescriptor]:
    """Turn raw tool output into well-formed descriptors, dropping empty ones."""
    if not isinstance(raw, list):
        return []

    sanitized: list[FilterDescriptor] = []
    for item in raw:
        if not isinstance(item, dict):
            continue

        fields: dict[str, Any] = {}
        for key, attr in _STRING_FIELDS.items():
            text = _clean_str(item.get(key))
            if text is not None:
                fields[attr] = text

        available = item.get("available")
        if isinstance(available, bool):
            fields["available"] = available

        price = _sanitize_price(item.get("price"))
        if price is not None:
            fields["price"] = price

        option = _sanitize_variant_option(item.get("variantOption"))
        if option is not None:
            fields["variant_option"] = option

        if not fields:
            log.debug("filter_dropped_empty", raw_keys=list(item.keys()))
            continue
        sanitized.append(FilterDescriptor(**fields))

    return sanitized


def merge_price_filters(filters: list[FilterDescriptor]) -> list[FilterDescriptor]:
    """Collapse every price fragment into one combined price filter.

    The model sometimes splits a range into {price: {min}} and
    {price: {max}}. Price-only descriptors are absorbed; mixed descriptors
    keep their other dimensions. The merged range takes the lowest min and
    the highest max and is appended as its own descriptor.
    """
    prices: list[PriceFilter] = []
    merged: list[FilterDescriptor] = []
    for f in filters:
        if f.price is None:
            merged.append(f)
            continue
        prices.append(f.price)
        if f.populated() != ["price"]:
            merged.append(f.model_copy(update={"price": None}))

    if not prices:
        return merged

    mins = [p.min for p in prices if p.min is not None]
    maxes = [p.max for p in prices if p.max is not None]
    low = min(mins) if mins else None
    high = max(maxes) if maxes else None
    if low is not None and high is not None and low > high:
        low, high = high, low
    if low is not None or high is not None:
        merged.append(FilterDescriptor(price=PriceFilter(min=low, max=high)))
    return merged


def postprocess_filters(raw: Any, taxonomy: TaxonomyContext | None) -> list[FilterDescriptor]:
    """sanitize -> merge -> fuzzy-correct, in that order."""
    filters = sanitize_filters(raw)
    filters = merge_price_filters(filters)
    return correct_filters(filters, taxonomy)


def extract_tool_input(response: anthropic.types.Message) -> dict[str, Any] | None:
    """Return the apply_filters tool input, or None if the model didn't call it."""
    for block in response.content:
        if block.type == "tool_use" and block.name == TOOL_NAME and isinstance(block.input, dict):
            return block.input
    return None


# === Resolver ===


def build_llm_client(
    api_key: str,
    max_retries: int = 0,
    http_client: httpx.AsyncClient | None = None,
) -> anthropic.AsyncAnthropic:
    """AsyncAnthropic client for the resolver.

    SDK retries are off by default: one query makes one request, and a
    failed call surfaces to the caller instead of being replayed inside
    the timeout window.
    """
    return anthropic.AsyncAnthropic(
        api_key=api_key, max_retries=max_retries, http_client=http_client
    )


class FilterResolver:
    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._client = client
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens

    async def resolve(
        self,
        query: str,
        taxonomy: TaxonomyContext | None,
        available_filters: list[AvailableFilter],
        collection_handle: str | None,
    ) -> ResolutionResult:
        """Map ``query`` to filters. ``latency_ms`` covers only the LLM round trip."""
        user_message = build_user_message(query, taxonomy, available_filters, collection_handle)

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=_load_system_prompt(),
                    tools=[APPLY_FILTERS_TOOL],  # type: ignore[list-item]
                    tool_choice={"type": "tool", "name": TOOL_NAME},
                    messages=[{"role": "user", "content": user_message}],
                ),
                timeout=self.timeout_seconds,
            )
        except (TimeoutError, anthropic.APITimeoutError):
            latency_ms = int((time.monotonic() - start) * 1000)
            log.warning(
                "filter_resolution_timeout",
                latency_ms=latency_ms,
                timeout_s=self.timeout_seconds,
            )
            return ResolutionResult(explanation=TIMEOUT_EXPLANATION, latency_ms=latency_ms)
        latency_ms = int((time.monotonic() - start) * 1000)

        usage = getattr(response, "usage", None)
        if usage is not None:
            log.info(
                "filter_resolution_tokens",
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                model=self.model,
                latency_ms=latency_ms,
            )

        tool_input = extract_tool_input(response)
        if tool_input is None:
            log.warning("filter_resolution_no_tool_call", stop_reason=response.stop_reason)
            return ResolutionResult(explanation=NO_TOOL_EXPLANATION, latency_ms=latency_ms)

        filters = postprocess_filters(tool_input.get("filters"), taxonomy)
        explanation = tool_input.get("explanation")

        return ResolutionResult(
            filters=filters,
            explanation=explanation if isinstance(explanation, str) else "",
            search_query=_clean_str(tool_input.get("searchQuery")),
            latency_ms=latency_ms,
        )
