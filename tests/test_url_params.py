"""Tests for filter descriptor -> storefront URL parameter mapping."""

from ai_filter.models.contracts import FilterDescriptor, PriceFilter, VariantOptionFilter
from ai_filter.utils.url_params import fallback_search_terms, filter_url_params


def _pairs(filters):
    return [(p.name, p.value) for p in filter_url_params(filters)]


class TestFilterUrlParams:
    def test_product_fields(self):
        filters = [FilterDescriptor(product_type="Shoes", product_vendor="Nike", tag="sale")]
        assert _pairs(filters) == [
            ("filter.p.product_type", "Shoes"),
            ("filter.p.vendor", "Nike"),
            ("filter.p.tag", "sale"),
        ]

    def test_availability(self):
        assert _pairs([FilterDescriptor(available=True)]) == [("filter.v.availability", "1")]
        assert _pairs([FilterDescriptor(available=False)]) == [("filter.v.availability", "0")]

    def test_price_bounds_formatted_compactly(self):
        filters = [FilterDescriptor(price=PriceFilter(min=20, max=79.99))]
        assert _pairs(filters) == [
            ("filter.v.price.gte", "20"),
            ("filter.v.price.lte", "79.99"),
        ]

    def test_open_ended_price(self):
        assert _pairs([FilterDescriptor(price=PriceFilter(max=50))]) == [
            ("filter.v.price.lte", "50")
        ]

    def test_variant_option_name_lowercased(self):
        filters = [FilterDescriptor(variant_option=VariantOptionFilter(name="Color", value="Red"))]
        assert _pairs(filters) == [("filter.v.option.color", "Red")]

    def test_repeated_names_kept(self):
        filters = [FilterDescriptor(tag="sale"), FilterDescriptor(tag="new")]
        assert _pairs(filters) == [("filter.p.tag", "sale"), ("filter.p.tag", "new")]

    def test_no_filters(self):
        assert filter_url_params([]) == []


class TestFallbackSearchTerms:
    def test_combines_search_query_and_string_values(self):
        filters = [
            FilterDescriptor(product_type="Sweater"),
            FilterDescriptor(variant_option=VariantOptionFilter(name="Color", value="Blue")),
            FilterDescriptor(price=PriceFilter(max=50)),
        ]
        assert fallback_search_terms(filters, "cozy") == "cozy Sweater Blue"

    def test_empty(self):
        assert fallback_search_terms([], None) == ""
