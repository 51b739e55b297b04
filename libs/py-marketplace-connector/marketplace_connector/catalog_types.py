"""Type definitions, enums, and Pydantic models for the marketplace API."""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Environment(str, Enum):
    """Marketplace API environments."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"


class EndpointClass(str, Enum):
    """Authentication flow required by an endpoint."""

    SIGNED = "signed"  # export / read endpoints
    BEARER = "bearer"  # import / write endpoints


class Endpoint(str, Enum):
    """
    Known endpoint groups.

    Rate limit buckets and circuit breakers are keyed by these values.
    Plain strings are still accepted for endpoints registered at runtime.
    """

    PRODUCTS = "/products"
    ORDERS = "/orders"
    PRICES = "/prices"
    RESERVATIONS = "/reservations"
    TOKEN = "/token"


class IdempotencyStatus(str, Enum):
    """Processing state of an inbound webhook event."""

    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


def endpoint_key(endpoint: Endpoint | str) -> str:
    """Normalize an endpoint identifier to its string key."""
    return endpoint.value if isinstance(endpoint, Endpoint) else str(endpoint)


class Product(BaseModel):
    """Catalog product as returned by the marketplace API."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str = ""
    slug: str | None = None
    qty: int = 0
    price: float = 0.0
    currency: str = "EUR"
    type: str | None = None
    region: str | None = None
    platform: str | None = None
    description: str | None = None
    available_to_buy: bool = Field(default=True, alias="availableToBuy")
    images: list[str] = Field(default_factory=list)
    categories: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    def to_record(self) -> dict[str, Any]:
        """Dump using the vendor's field names (camelCase)."""
        return self.model_dump(by_alias=True)


class ProductQuery(BaseModel):
    """Server-side filters accepted by the product listing."""

    page: int | None = None
    id: str | None = None
    min_qty: int | None = None
    min_price_from: float | None = None
    min_price_to: float | None = None
    include_out_of_stock: bool | None = None
    updated_at_from: str | None = None  # "YYYY-MM-DD HH:MM:SS"
    updated_at_to: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Query parameters using the vendor's names, skipping unset values."""
        names = {
            "page": "page",
            "id": "id",
            "min_qty": "minQty",
            "min_price_from": "minPriceFrom",
            "min_price_to": "minPriceTo",
            "include_out_of_stock": "includeOutOfStock",
            "updated_at_from": "updatedAtFrom",
            "updated_at_to": "updatedAtTo",
        }
        params: dict[str, Any] = {}
        for field, param in names.items():
            value = getattr(self, field)
            if value is None:
                continue
            params[param] = str(value).lower() if isinstance(value, bool) else value
        return params


class ProductPage(BaseModel):
    """One page of the product listing."""

    total: int = 0
    page: int = 1
    docs: list[Product] = Field(default_factory=list)


class OrderCreated(BaseModel):
    """Response from order creation."""

    order_id: str
    price: float
    currency: str

    @field_validator("order_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


class OrderDetails(BaseModel):
    """Order details lookup."""

    model_config = ConfigDict(extra="allow")

    order_id: str
    status: str
    price: float
    currency: str
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("order_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


class OrderPayment(BaseModel):
    """Result of paying an order."""

    status: bool
    transaction_id: str

    @property
    def success(self) -> bool:
        return self.status


class OrderKey(BaseModel):
    """Key material delivered for a paid order."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    is_file: bool = Field(default=False, alias="isFile")


class PriceSimulation(BaseModel):
    """Outcome of a price simulation."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    product_id: str | None = Field(default=None, alias="productId")
    price: float | None = None
    income: float | None = None
    final_price: float | None = Field(default=None, alias="finalPrice")


class CachedToken(BaseModel):
    """Bearer token with absolute expiry."""

    access_token: str
    expires_at: datetime
    token_type: str = "Bearer"

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "CachedToken":
        """Build a cached token from a token endpoint response."""
        expires_in = int(data.get("expires_in", 3600))
        return cls(
            access_token=data["access_token"],
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            token_type=data.get("token_type", "Bearer"),
        )

    def seconds_remaining(self) -> float:
        """Seconds until the token expires (negative when already expired)."""
        return (self.expires_at - datetime.now(UTC)).total_seconds()

    def is_usable(self, margin_seconds: float = 0.0) -> bool:
        """True while the token is valid for longer than the safety margin."""
        return self.seconds_remaining() > margin_seconds


class WebhookEvent(BaseModel):
    """Inbound webhook event from the marketplace."""

    event_id: str
    resource_id: str
    type: str
    payload: str
    signature: str
    nonce: str
    timestamp: int

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_id}:{self.resource_id}:{self.type}"


def as_record(value: "Product | dict[str, Any]") -> dict[str, Any]:
    """Product or raw dict as a vendor-keyed (camelCase) record."""
    if isinstance(value, Product):
        return value.to_record()
    return Product.model_validate(value).to_record()
