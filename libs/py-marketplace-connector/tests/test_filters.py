"""Tests for filter building, validation and the fluent product filter."""

import httpx
import pytest

from marketplace_connector.catalog_types import ProductQuery
from marketplace_connector.exceptions import ValidationError
from marketplace_connector.filters import (
    FilterBuilder,
    FilterOperator,
    FilterRule,
    FilterValidator,
)

RECORDS = [
    {"id": "1", "name": "Alpha Quest", "price": 10.0, "qty": 5, "platform": "steam"},
    {"id": "2", "name": "Beta Racer", "price": 25.0, "qty": 0, "platform": "origin"},
    {"id": "3", "name": "Gamma Quest", "price": 15.0, "qty": 2, "platform": "steam"},
    {"id": "4", "name": "Delta", "price": None, "qty": 1, "platform": "gog"},
]


class TestFilterBuilder:
    """Tests for FilterBuilder."""

    def test_operators(self):
        """Each where_* method adds the matching operator."""
        built = (
            FilterBuilder("Product")
            .where("platform", "steam")
            .where_not("id", "9")
            .where_greater_than("qty", 0)
            .where_less_than_or_equal("price", 20)
            .where_in("region", ["EU", "GLOBAL"])
            .where_like("name", "quest")
            .build()
        )

        assert [c.operator for c in built.criteria] == [
            FilterOperator.EQ,
            FilterOperator.NE,
            FilterOperator.GT,
            FilterOperator.LTE,
            FilterOperator.IN,
            FilterOperator.LIKE,
        ]

    def test_apply_filters_and_sorts(self):
        """Criteria, search and descending sort combine."""
        built = (
            FilterBuilder()
            .where("platform", "steam")
            .search("quest", ["name"])
            .sort_by("price", "desc")
            .build()
        )

        assert [r["id"] for r in built.apply(RECORDS)] == ["3", "1"]

    def test_multi_key_sort_with_missing_values(self):
        """Records without the sort field go last; ties keep secondary order."""
        built = FilterBuilder().sort_by("price").sort_by("id", "desc").build()

        assert [r["id"] for r in built.apply(RECORDS)] == ["1", "3", "2", "4"]

    def test_descending_sort_keeps_missing_values_last(self):
        """A descending sort still puts records without the field at the end."""
        built = FilterBuilder().sort_by("price", "desc").build()

        assert [r["id"] for r in built.apply(RECORDS)] == ["2", "3", "1", "4"]

    def test_between_and_comparisons_skip_missing(self):
        """Comparisons never match a missing value."""
        built = FilterBuilder().where_between("price", 10, 20).build()

        assert [r["id"] for r in built.apply(RECORDS)] == ["1", "3"]

    @pytest.mark.parametrize(
        "page,page_size",
        [(0, 50), (1, 501), (1, 0), (-1, 10)],
    )
    def test_invalid_pagination(self, page, page_size):
        """Pages start at 1 and page size is limited to 1..500."""
        with pytest.raises(ValidationError):
            FilterBuilder().paginate(page, page_size)

    def test_invalid_arguments(self):
        """Empty lists, inverted ranges and empty searches are rejected."""
        builder = FilterBuilder()

        with pytest.raises(ValidationError):
            builder.where_in("id", [])
        with pytest.raises(ValidationError):
            builder.where_not_in("id", [])
        with pytest.raises(ValidationError):
            builder.where_between("price", 20, 10)
        with pytest.raises(ValidationError):
            builder.search("  ", ["name"])
        with pytest.raises(ValidationError):
            builder.search("quest", [])
        with pytest.raises(ValidationError):
            builder.sort_by("price", "sideways")

    def test_clone_and_reset(self):
        """Clones are independent and reset clears everything."""
        builder = FilterBuilder().where("platform", "steam").paginate(2, 10)
        clone = builder.clone().where("qty", 1)

        builder.reset()

        assert builder.build().is_empty
        assert builder.build().pagination is None
        assert len(clone.build().criteria) == 2
        assert clone.build().pagination.page == 2


class TestFilterValidator:
    """Tests for FilterValidator."""

    @pytest.fixture
    def validator(self):
        return FilterValidator.for_products()

    def test_valid_values(self, validator):
        """Well-formed parameters pass."""
        assert validator.validate("page", 3).valid
        assert validator.validate("updatedAtFrom", "2024-01-01 10:00:00").valid
        assert validator.validate("updatedAtFrom", "2024-01-01").valid
        assert validator.validate("includeOutOfStock", True).valid

    def test_invalid_values(self, validator):
        """Out-of-range, mistyped and malformed values fail."""
        assert not validator.validate("page", 0).valid
        assert not validator.validate("minQty", -1).valid
        assert not validator.validate("minQty", "five").valid
        assert not validator.validate("updatedAtFrom", "01/02/2024").valid

    def test_validate_all(self, validator):
        """Only failing fields are reported."""
        failures = validator.validate_all({"page": 0, "minQty": 3})

        assert list(failures) == ["page"]

    def test_custom_rule(self):
        """Rules can be added for other entities."""
        validator = FilterValidator().add_rule(FilterRule("status", "string", required=True))

        assert not validator.validate("status", None).valid
        assert validator.validate("status", "complete").valid

    def test_inverted_price_range(self, validator):
        """minPriceFrom above minPriceTo is rejected."""
        with pytest.raises(ValidationError):
            validator.validate_product_query(ProductQuery(min_price_from=20, min_price_to=10))


class TestProductFilter:
    """Tests for the fluent ProductFilter."""

    @pytest.mark.asyncio
    async def test_invalid_pagination_makes_no_request(self, make_client):
        """Pagination is validated before anything is sent."""
        seen = []
        client = make_client(lambda request: seen.append(request))

        with pytest.raises(ValidationError):
            client.product_filter().paginate(0, 50)
        with pytest.raises(ValidationError):
            client.product_filter().paginate(1, 501)

        assert seen == []
        await client.close()

    @pytest.mark.asyncio
    async def test_server_and_client_side_filters(self, make_client, product):
        """API filters become parameters; the rest are applied to the page."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            docs = [
                product("1", platform="steam", price=12.0),
                product("2", platform="origin", price=8.0),
                product("3", platform="steam", price=5.0),
            ]
            return httpx.Response(200, json={"total": 3, "page": 1, "docs": docs})

        client = make_client(handler)

        page = await (
            client.product_filter()
            .min_quantity(1)
            .updated_since("2024-01-01 00:00:00")
            .platform("steam")
            .sort_by("price")
            .execute()
        )

        params = seen[0].url.params
        assert params["minQty"] == "1"
        assert params["updatedAtFrom"] == "2024-01-01 00:00:00"
        assert "platform" not in params
        assert [p.id for p in page.docs] == ["3", "1"]
        assert page.total == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_plain_query_returns_page_unchanged(self, make_client, product):
        """Without client-side filters the API page is returned as is."""
        client = make_client(
            lambda request: httpx.Response(
                200, json={"total": 40, "page": 1, "docs": [product("1")]}
            )
        )

        page = await client.product_filter().include_out_of_stock(False).execute()

        assert page.total == 40
        await client.close()

    def test_invalid_timestamp(self, make_client):
        """updated_since rejects malformed timestamps."""
        client = make_client(lambda request: None)

        with pytest.raises(ValidationError):
            client.product_filter().updated_since("yesterday")

    def test_clone_is_independent(self, make_client):
        """Changing a clone leaves the original untouched."""
        client = make_client(lambda request: None)
        original = client.product_filter().min_quantity(1)

        clone = original.clone().platform("steam")

        assert original.builder.build().criteria != clone.builder.build().criteria
        assert clone.query.min_qty == 1
