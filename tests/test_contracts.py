"""Tests for the wire contracts: camelCase aliases, omission rules, response shape."""

import pytest
from pydantic import ValidationError

from ai_filter.models.contracts import (
    AvailableFilter,
    ErrorResponse,
    FilterDescriptor,
    PriceFilter,
    QueryRequest,
    QueryResponse,
    ResolutionResult,
    TaxonomyContext,
    UrlParam,
    VariantOptionFilter,
)


class TestFilterDescriptor:
    def test_accepts_camel_case(self):
        f = FilterDescriptor.model_validate(
            {"productType": "Shoes", "variantOption": {"name": "Color", "value": "Red"}}
        )
        assert f.product_type == "Shoes"
        assert f.variant_option == VariantOptionFilter(name="Color", value="Red")

    def test_wire_omits_absent_dimensions(self):
        f = FilterDescriptor(product_vendor="Nike", price=PriceFilter(min=10))
        assert f.to_wire() == {"productVendor": "Nike", "price": {"min": 10.0}}

    def test_populated(self):
        f = FilterDescriptor(tag="sale", available=False)
        assert f.populated() == ["tag", "available"]
        assert FilterDescriptor().populated() == []

    def test_variant_option_requires_both_parts(self):
        with pytest.raises(ValidationError):
            FilterDescriptor.model_validate({"variantOption": {"name": "Color"}})


class TestResolutionResult:
    def test_empty_when_no_filters_and_no_search(self):
        assert ResolutionResult(explanation="Nothing").is_empty

    def test_search_query_alone_is_not_empty(self):
        assert not ResolutionResult(search_query="cozy").is_empty


class TestTaxonomyContext:
    def test_camel_case_input(self):
        context = TaxonomyContext.model_validate(
            {"productTypes": ["Shoes"], "priceRange": {"min": 1, "max": 2, "currency": "USD"}}
        )
        assert context.product_types == ["Shoes"]
        assert context.price_range.max == 2

    def test_is_empty(self):
        assert TaxonomyContext().is_empty()
        assert not TaxonomyContext(tags=["sale"]).is_empty()


class TestQueryRequest:
    def test_camel_case_body(self):
        request = QueryRequest.model_validate(
            {
                "query": "red shoes",
                "collectionHandle": "sale",
                "availableFilters": [
                    {
                        "name": "Price",
                        "type": "price_range",
                        "values": [{"label": "Price", "paramName": "filter.v.price", "max": "200"}],
                    }
                ],
            }
        )
        assert request.collection_handle == "sale"
        assert request.available_filters[0].values[0].param_name == "filter.v.price"

    def test_unknown_filter_keys_preserved(self):
        f = AvailableFilter.model_validate({"name": "Color", "presentation": "swatch"})
        assert f.model_dump()["presentation"] == "swatch"

    def test_query_may_be_any_type(self):
        assert QueryRequest.model_validate({"query": 42}).query == 42


class TestQueryResponse:
    def test_failure_shape(self):
        assert QueryResponse.failure("Unauthorized").to_wire() == {
            "filters": None,
            "explanation": None,
            "searchQuery": None,
            "error": "Unauthorized",
            "params": None,
            "fallbackSearch": None,
        }

    def test_success_shape(self):
        resp = QueryResponse(
            filters=[FilterDescriptor(tag="sale")],
            explanation="On sale",
            search_query="cozy",
            params=[UrlParam(name="filter.p.tag", value="sale")],
            fallback_search="cozy sale",
        )
        wire = resp.to_wire()
        assert wire["filters"] == [{"tag": "sale"}]
        assert wire["searchQuery"] == "cozy"
        assert wire["params"] == [{"name": "filter.p.tag", "value": "sale"}]
        assert wire["fallbackSearch"] == "cozy sale"


def test_error_response_defaults():
    er = ErrorResponse(error="internal_error", message="boom")
    assert er.retryable is False
