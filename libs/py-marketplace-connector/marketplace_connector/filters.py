"""
Filter building and validation for catalog queries.

FilterBuilder validates eagerly so that bad pagination or ranges fail before
any request is issued. ProductFilter splits a fluent filter into the query
parameters the API understands and the criteria applied client-side.
"""

import copy
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from .catalog_types import Product, ProductPage, ProductQuery
from .exceptions import ValidationError

if TYPE_CHECKING:
    from .products_api import ProductsAPI

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500
UPDATED_AT_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}( \d{2}:\d{2}:\d{2})?$")


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    LIKE = "like"
    BETWEEN = "between"


@dataclass(frozen=True)
class FilterCriterion:
    field: str
    operator: FilterOperator
    value: Any

    def matches(self, record: dict[str, Any]) -> bool:
        """Evaluate the criterion against a record (missing fields never match comparisons)."""
        actual = record.get(self.field)
        op = self.operator

        if op == FilterOperator.EQ:
            return actual == self.value
        if op == FilterOperator.NE:
            return actual != self.value
        if op == FilterOperator.IN:
            return actual in self.value
        if op == FilterOperator.NIN:
            return actual not in self.value
        if op == FilterOperator.LIKE:
            return isinstance(actual, str) and self.value.lower() in actual.lower()

        if actual is None:
            return False
        try:
            if op == FilterOperator.GT:
                return actual > self.value
            if op == FilterOperator.GTE:
                return actual >= self.value
            if op == FilterOperator.LT:
                return actual < self.value
            if op == FilterOperator.LTE:
                return actual <= self.value
            if op == FilterOperator.BETWEEN:
                low, high = self.value
                return low <= actual <= high
        except TypeError:
            return False
        return True


@dataclass(frozen=True)
class SortCriterion:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int


@dataclass(frozen=True)
class SearchQuery:
    query: str
    fields: tuple[str, ...]

    def matches(self, record: dict[str, Any]) -> bool:
        needle = self.query.lower()
        return any(
            isinstance(record.get(name), str) and needle in record[name].lower()
            for name in self.fields
        )


@dataclass(frozen=True)
class BuiltFilter:
    """Immutable snapshot produced by FilterBuilder.build()."""

    criteria: tuple[FilterCriterion, ...] = ()
    sort: tuple[SortCriterion, ...] = ()
    pagination: Pagination | None = None
    search: SearchQuery | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.criteria or self.sort or self.search)

    def apply(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Apply search, criteria and multi-key sort to plain records."""
        result = [
            r
            for r in records
            if (self.search is None or self.search.matches(r))
            and all(c.matches(r) for c in self.criteria)
        ]
        # Stable sorts applied from the least significant key; records
        # missing the field go last in either direction
        for criterion in reversed(self.sort):
            name = criterion.field
            present = [r for r in result if r.get(name) is not None]
            missing = [r for r in result if r.get(name) is None]
            present.sort(key=lambda r: r[name], reverse=criterion.descending)
            result = present + missing
        return result


class FilterBuilder:
    """
    Fluent builder for filter criteria, sorting, pagination and search.

    Every method validates its arguments immediately and raises
    ValidationError on bad input.
    """

    def __init__(self, entity_name: str = "entity"):
        self.entity_name = entity_name
        self._criteria: list[FilterCriterion] = []
        self._sort: list[SortCriterion] = []
        self._pagination: Pagination | None = None
        self._search: SearchQuery | None = None

    def _add(self, field_name: str, operator: FilterOperator, value: Any) -> "FilterBuilder":
        self._criteria.append(FilterCriterion(field_name, operator, value))
        return self

    def where(self, field_name: str, value: Any) -> "FilterBuilder":
        return self._add(field_name, FilterOperator.EQ, value)

    def where_not(self, field_name: str, value: Any) -> "FilterBuilder":
        return self._add(field_name, FilterOperator.NE, value)

    def where_greater_than(self, field_name: str, value: Any) -> "FilterBuilder":
        return self._add(field_name, FilterOperator.GT, value)

    def where_greater_than_or_equal(self, field_name: str, value: Any) -> "FilterBuilder":
        return self._add(field_name, FilterOperator.GTE, value)

    def where_less_than(self, field_name: str, value: Any) -> "FilterBuilder":
        return self._add(field_name, FilterOperator.LT, value)

    def where_less_than_or_equal(self, field_name: str, value: Any) -> "FilterBuilder":
        return self._add(field_name, FilterOperator.LTE, value)

    def where_in(self, field_name: str, values: list[Any]) -> "FilterBuilder":
        if not values:
            raise ValidationError("where_in requires a non-empty list", field=field_name, value=values)
        return self._add(field_name, FilterOperator.IN, tuple(values))

    def where_not_in(self, field_name: str, values: list[Any]) -> "FilterBuilder":
        if not values:
            raise ValidationError(
                "where_not_in requires a non-empty list", field=field_name, value=values
            )
        return self._add(field_name, FilterOperator.NIN, tuple(values))

    def where_like(self, field_name: str, pattern: str) -> "FilterBuilder":
        if not isinstance(pattern, str):
            raise ValidationError("where_like requires a string pattern", field=field_name, value=pattern)
        return self._add(field_name, FilterOperator.LIKE, pattern)

    def where_between(self, field_name: str, low: Any, high: Any) -> "FilterBuilder":
        if low > high:
            raise ValidationError(
                "where_between: min must be less than or equal to max",
                field=field_name,
                value={"min": low, "max": high},
            )
        return self._add(field_name, FilterOperator.BETWEEN, (low, high))

    def sort_by(self, field_name: str, direction: str = "asc") -> "FilterBuilder":
        if direction not in ("asc", "desc"):
            raise ValidationError("Sort direction must be 'asc' or 'desc'", field="direction", value=direction)
        self._sort.append(SortCriterion(field_name, descending=direction == "desc"))
        return self

    def paginate(self, page: int, page_size: int) -> "FilterBuilder":
        """
        Set pagination.

        Raises:
            ValidationError: If page < 1 or page_size is outside 1..500
        """
        if page < 1:
            raise ValidationError("Page number must be >= 1", field="page", value=page)
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(
                f"Page size must be between 1 and {MAX_PAGE_SIZE}", field="page_size", value=page_size
            )
        self._pagination = Pagination(page, page_size)
        return self

    def search(self, query: str, fields: list[str]) -> "FilterBuilder":
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty", field="query", value=query)
        if not fields:
            raise ValidationError("Search requires at least one field", field="fields", value=fields)
        self._search = SearchQuery(query.strip(), tuple(fields))
        return self

    def build(self) -> BuiltFilter:
        logger.debug(
            "Building filter for %s: %d criteria, %d sort keys, pagination=%s, search=%s",
            self.entity_name,
            len(self._criteria),
            len(self._sort),
            self._pagination is not None,
            self._search is not None,
        )
        return BuiltFilter(
            criteria=tuple(self._criteria),
            sort=tuple(self._sort),
            pagination=self._pagination,
            search=self._search,
        )

    def reset(self) -> "FilterBuilder":
        self._criteria.clear()
        self._sort.clear()
        self._pagination = None
        self._search = None
        return self

    def clone(self) -> "FilterBuilder":
        return copy.deepcopy(self)


@dataclass
class FilterRule:
    """Validation rule for a single filter parameter."""

    field: str
    type: str  # string | number | boolean | array | date
    required: bool = False
    min: float | None = None
    max: float | None = None
    allowed_values: list[Any] | None = None
    pattern: re.Pattern | None = None


@dataclass
class FilterValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


class FilterValidator:
    """Rule-based validation of filter parameters. Fields without a rule pass."""

    def __init__(self):
        self.rules: dict[str, FilterRule] = {}

    def add_rule(self, rule: FilterRule) -> "FilterValidator":
        self.rules[rule.field] = rule
        return self

    def add_rules(self, rules: list[FilterRule]) -> "FilterValidator":
        for rule in rules:
            self.add_rule(rule)
        return self

    def _check_type(self, rule: FilterRule, value: Any) -> str | None:
        if rule.type == "string" and not isinstance(value, str):
            return f"{rule.field} must be a string"
        if rule.type == "number" and (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or (isinstance(value, float) and math.isnan(value))
        ):
            return f"{rule.field} must be a number"
        if rule.type == "boolean" and not isinstance(value, bool):
            return f"{rule.field} must be a boolean"
        if rule.type == "array" and not isinstance(value, (list, tuple)):
            return f"{rule.field} must be an array"
        if rule.type == "date" and not isinstance(value, datetime):
            try:
                datetime.fromisoformat(str(value))
            except ValueError:
                return f"{rule.field} must be a valid date"
        return None

    def validate(self, field_name: str, value: Any) -> FilterValidationResult:
        rule = self.rules.get(field_name)
        if rule is None:
            return FilterValidationResult(valid=True)

        if value is None or value == "":
            if rule.required:
                return FilterValidationResult(valid=False, errors=[f"{field_name} is required"])
            return FilterValidationResult(valid=True)

        errors: list[str] = []
        type_error = self._check_type(rule, value)
        if type_error:
            errors.append(type_error)
        else:
            if rule.type == "number":
                size, unit = value, ""
            elif rule.type == "string":
                size, unit = len(value), " characters"
            elif rule.type == "array":
                size, unit = len(value), " items"
            else:
                size, unit = None, ""
            if size is not None:
                if rule.min is not None and size < rule.min:
                    errors.append(f"{field_name} must be at least {rule.min:g}{unit}")
                if rule.max is not None and size > rule.max:
                    errors.append(f"{field_name} must be at most {rule.max:g}{unit}")

        if rule.allowed_values is not None and value not in rule.allowed_values:
            allowed = ", ".join(str(v) for v in rule.allowed_values)
            errors.append(f"{field_name} must be one of: {allowed}")

        if rule.pattern is not None and isinstance(value, str) and not rule.pattern.match(value):
            errors.append(f"{field_name} must match pattern {rule.pattern.pattern}")

        return FilterValidationResult(valid=not errors, errors=errors)

    def validate_all(self, filters: dict[str, Any]) -> dict[str, list[str]]:
        """Validate every entry. Returns field -> errors for invalid fields only."""
        failures = {}
        for name, value in filters.items():
            result = self.validate(name, value)
            if not result.valid:
                failures[name] = result.errors
        return failures

    def validate_or_raise(self, field_name: str, value: Any) -> None:
        result = self.validate(field_name, value)
        if not result.valid:
            raise ValidationError(", ".join(result.errors), field=field_name, value=value)

    @classmethod
    def for_products(cls) -> "FilterValidator":
        """Validator for the product listing's query parameters."""
        return cls().add_rules(
            [
                FilterRule("page", "number", min=1, max=MAX_PAGE_SIZE),
                FilterRule("minQty", "number", min=0),
                FilterRule("minPriceFrom", "number", min=0),
                FilterRule("minPriceTo", "number", min=0),
                FilterRule("includeOutOfStock", "boolean"),
                FilterRule("id", "string", min=1),
                FilterRule("platform", "string", min=1),
                FilterRule("region", "string", min=1),
                FilterRule("type", "string", min=1),
                FilterRule("updatedAtFrom", "string", pattern=UPDATED_AT_PATTERN),
                FilterRule("updatedAtTo", "string", pattern=UPDATED_AT_PATTERN),
            ]
        )

    def validate_product_query(self, query: ProductQuery) -> None:
        """
        Validate a product query before it is sent.

        Raises:
            ValidationError: On the first invalid parameter or an inverted price range
        """
        params = query.to_params()
        # Booleans are serialized as strings for the wire; validate the model value
        if query.include_out_of_stock is not None:
            params["includeOutOfStock"] = query.include_out_of_stock
        for name, value in params.items():
            self.validate_or_raise(name, value)

        low, high = query.min_price_from, query.min_price_to
        if low is not None and high is not None and low > high:
            raise ValidationError(
                "minPriceFrom must be less than or equal to minPriceTo",
                field="minPriceFrom",
                value={"min": low, "max": high},
            )


class ProductFilter:
    """
    Fluent product filter.

    Filters the API supports are sent as query parameters; the rest
    (platform, region, type, search, sorting) are applied to the returned page.
    """

    def __init__(self, products_api: "ProductsAPI"):
        self.products_api = products_api
        self.builder = FilterBuilder("Product")
        self.query = ProductQuery()
        self.validator = FilterValidator.for_products()

    def _set(self, **params: Any) -> None:
        self.query = self.query.model_copy(update=params)

    def id(self, product_id: str) -> "ProductFilter":
        self._set(id=product_id)
        self.builder.where("id", product_id)
        return self

    def min_quantity(self, qty: int) -> "ProductFilter":
        self.validator.validate_or_raise("minQty", qty)
        self._set(min_qty=qty)
        self.builder.where_greater_than_or_equal("qty", qty)
        return self

    def price_range(self, low: float, high: float) -> "ProductFilter":
        self.builder.where_between("price", low, high)
        self._set(min_price_from=low, min_price_to=high)
        return self

    def min_price(self, price: float) -> "ProductFilter":
        self._set(min_price_from=price)
        self.builder.where_greater_than_or_equal("price", price)
        return self

    def max_price(self, price: float) -> "ProductFilter":
        self._set(min_price_to=price)
        self.builder.where_less_than_or_equal("price", price)
        return self

    def include_out_of_stock(self, include: bool = True) -> "ProductFilter":
        self._set(include_out_of_stock=include)
        return self

    def in_stock(self) -> "ProductFilter":
        self._set(include_out_of_stock=False)
        self.builder.where_greater_than("qty", 0)
        return self

    def platform(self, platform: str) -> "ProductFilter":
        self.builder.where("platform", platform)
        return self

    def platforms(self, platforms: list[str]) -> "ProductFilter":
        self.builder.where_in("platform", platforms)
        return self

    def region(self, region: str) -> "ProductFilter":
        self.builder.where("region", region)
        return self

    def type(self, product_type: str) -> "ProductFilter":
        self.builder.where("type", product_type)
        return self

    def updated_since(self, timestamp: str) -> "ProductFilter":
        self.validator.validate_or_raise("updatedAtFrom", timestamp)
        self._set(updated_at_from=timestamp)
        return self

    def updated_until(self, timestamp: str) -> "ProductFilter":
        self.validator.validate_or_raise("updatedAtTo", timestamp)
        self._set(updated_at_to=timestamp)
        return self

    def updated_between(self, start: str, end: str) -> "ProductFilter":
        return self.updated_since(start).updated_until(end)

    def search(self, query: str) -> "ProductFilter":
        self.builder.search(query, ["name", "description"])
        return self

    def sort_by(self, field_name: str, direction: str = "asc") -> "ProductFilter":
        self.builder.sort_by(field_name, direction)
        return self

    def paginate(self, page: int, page_size: int = 20) -> "ProductFilter":
        self.builder.paginate(page, page_size)
        self._set(page=page)
        return self

    async def execute(self) -> ProductPage:
        """
        Fetch one page with the server-side filters and apply the rest locally.

        Returns:
            ProductPage; when client-side filtering applied, total is the filtered count
        """
        self.validator.validate_product_query(self.query)
        logger.info("Executing product filter %s", self.query.to_params())
        page = await self.products_api.list(self.query)

        built = self.builder.build()
        if built.is_empty:
            return page

        records = [p.model_dump() for p in page.docs]
        kept = built.apply(records)
        docs = [Product.model_validate(r) for r in kept]
        logger.debug("Client-side filter kept %d of %d products", len(docs), len(page.docs))
        return ProductPage(total=len(docs), page=page.page, docs=docs)

    def reset(self) -> "ProductFilter":
        self.builder.reset()
        self.query = ProductQuery()
        return self

    def clone(self) -> "ProductFilter":
        cloned = ProductFilter(self.products_api)
        cloned.builder = self.builder.clone()
        cloned.query = self.query.model_copy()
        return cloned
