"""Filter descriptor -> storefront URL query parameters.

Mirrors the Shopify storefront filtering convention the widget navigates
with (``filter.p.*`` for product fields, ``filter.v.*`` for variant fields).
"""

from __future__ import annotations

from ai_filter.models.contracts import FilterDescriptor, UrlParam

PRODUCT_TYPE_PARAM = "filter.p.product_type"
VENDOR_PARAM = "filter.p.vendor"
TAG_PARAM = "filter.p.tag"
AVAILABILITY_PARAM = "filter.v.availability"
PRICE_MIN_PARAM = "filter.v.price.gte"
PRICE_MAX_PARAM = "filter.v.price.lte"
OPTION_PARAM_PREFIX = "filter.v.option."


def _format_price(value: float) -> str:
    return f"{value:g}"


def filter_url_params(filters: list[FilterDescriptor]) -> list[UrlParam]:
    """Flatten descriptors into ordered (name, value) pairs. Repeated names are allowed."""
    params: list[UrlParam] = []
    for f in filters:
        if f.product_type:
            params.append(UrlParam(name=PRODUCT_TYPE_PARAM, value=f.product_type))
        if f.product_vendor:
            params.append(UrlParam(name=VENDOR_PARAM, value=f.product_vendor))
        if f.tag:
            params.append(UrlParam(name=TAG_PARAM, value=f.tag))
        if f.available is not None:
            params.append(UrlParam(name=AVAILABILITY_PARAM, value="1" if f.available else "0"))
        if f.price is not None:
            if f.price.min is not None:
                params.append(UrlParam(name=PRICE_MIN_PARAM, value=_format_price(f.price.min)))
            if f.price.max is not None:
                params.append(UrlParam(name=PRICE_MAX_PARAM, value=_format_price(f.price.max)))
        if f.variant_option is not None:
            params.append(
                UrlParam(
                    name=f"{OPTION_PARAM_PREFIX}{f.variant_option.name.lower()}",
                    value=f.variant_option.value,
                )
            )
    return params


def fallback_search_terms(filters: list[FilterDescriptor], search_query: str | None) -> str:
    """Text for the storefront search page when filter navigation yields nothing.

    Combines the descriptive search query with the string filter values.
    """
    terms: list[str] = []
    if search_query:
        terms.append(search_query)
    for f in filters:
        for value in (f.product_type, f.product_vendor, f.tag):
            if value:
                terms.append(value)
        if f.variant_option is not None:
            terms.append(f.variant_option.value)
    return " ".join(terms)
