"""Tests for the products, orders and price simulation endpoints."""

import json

import httpx
import pytest

from marketplace_connector.catalog_types import ProductQuery
from marketplace_connector.exceptions import (
    AuthenticationError,
    InvalidRequestError,
    NotFoundError,
    ValidationError,
)


class TestProductsAPI:
    """Tests for ProductsAPI."""

    @pytest.mark.asyncio
    async def test_list_sends_signed_request(self, make_client, product):
        """Listing uses signed headers and vendor parameter names."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"total": 1, "page": 2, "docs": [product("42")]})

        client = make_client(handler)

        page = await client.products.list(ProductQuery(page=2, min_price_from=1.5))

        assert page.total == 1
        assert page.docs[0].id == "42"
        assert page.docs[0].available_to_buy is True
        request = seen[0]
        assert request.url.path == "/v1/products"
        assert request.url.params["page"] == "2"
        assert request.url.params["minPriceFrom"] == "1.5"
        assert request.headers["Authorization"] == "test-client-id, test-client-secret"
        await client.close()

    @pytest.mark.asyncio
    async def test_get_not_found(self, make_client):
        """A missing product raises NotFoundError."""
        client = make_client(lambda request: httpx.Response(404, json={"message": "Not found"}))

        with pytest.raises(NotFoundError):
            await client.products.get("nope")

        await client.close()

    @pytest.mark.asyncio
    async def test_numeric_ids_are_strings(self, make_client):
        """Numeric ids from the API are normalized to strings."""
        client = make_client(
            lambda request: httpx.Response(200, json={"id": 10000004215007, "name": "Game"})
        )

        assert (await client.products.get("10000004215007")).id == "10000004215007"
        await client.close()


class TestOrdersAPI:
    """Tests for OrdersAPI."""

    @pytest.mark.asyncio
    async def test_create_order(self, make_client):
        """Order creation posts the body with an idempotency key."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"order_id": 1001, "price": 9.5, "currency": "EUR"})

        client = make_client(handler)

        order = await client.orders.create("42", currency="EUR", max_price=10, idempotency_key="k-1")

        assert order.order_id == "1001"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/v1/order"
        assert seen[0].headers["Idempotency-Key"] == "k-1"
        assert json.loads(seen[0].content) == {"product_id": "42", "currency": "EUR", "max_price": 10}
        await client.close()

    @pytest.mark.asyncio
    async def test_create_validates_before_sending(self, make_client):
        """Bad input is rejected without a request."""
        seen = []
        client = make_client(lambda request: seen.append(request))

        with pytest.raises(ValidationError):
            await client.orders.create("")
        with pytest.raises(ValidationError):
            await client.orders.create("42", max_price=0)

        assert seen == []
        await client.close()

    @pytest.mark.asyncio
    async def test_vendor_error_codes(self, make_client):
        """Vendor codes on order failures are typed."""
        responses = {
            "/v1/order": httpx.Response(400, json={"code": "ORD03", "message": "Out of stock"}),
            "/v1/order/pay/7": httpx.Response(400, json={"code": "ORD02", "message": "No order"}),
        }
        client = make_client(lambda request: responses[request.url.path])

        with pytest.raises(InvalidRequestError) as create_error:
            await client.orders.create("42")
        with pytest.raises(NotFoundError):
            await client.orders.pay("7")

        assert create_error.value.error_code == "ORD03"
        await client.close()

    @pytest.mark.asyncio
    async def test_pay_details_and_key(self, make_client):
        """Payment, details and key lookups hit their paths."""
        responses = {
            "/v1/order/pay/7": {"status": True, "transaction_id": "tx-1"},
            "/v1/order/details/7": {"order_id": "7", "status": "complete", "price": 9.5, "currency": "EUR"},
            "/v1/order/key/7": {"key": "AAAA-BBBB", "isFile": False},
        }
        client = make_client(lambda request: httpx.Response(200, json=responses[request.url.path]))

        payment = await client.orders.pay("7")
        details = await client.orders.get_details("7")
        key = await client.orders.get_key("7")

        assert payment.success is True
        assert payment.transaction_id == "tx-1"
        assert details.status == "complete"
        assert key.key == "AAAA-BBBB"
        assert key.is_file is False
        await client.close()


class TestPriceSimulationsAPI:
    """Tests for PriceSimulationsAPI."""

    @pytest.mark.asyncio
    async def test_simulate_uses_bearer_token(self, make_client):
        """Simulation fetches a bearer token first and sends it."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/v1/token":
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            return httpx.Response(200, json={"productId": "42", "income": 8.1, "finalPrice": 10.0})

        client = make_client(handler)

        simulation = await client.prices.simulate("42", 10.0, country="PL")

        assert simulation.income == 8.1
        assert simulation.final_price == 10.0
        request = seen[-1]
        assert request.url.path == "/v1/prices/simulations"
        assert request.url.params["productId"] == "42"
        assert request.url.params["country"] == "PL"
        assert request.headers["Authorization"] == "Bearer tok"
        await client.close()

    @pytest.mark.asyncio
    async def test_country_is_optional(self, make_client):
        """Unset country is not sent."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/v1/token":
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            return httpx.Response(200, json={})

        client = make_client(handler)

        await client.prices.simulate("42", 10.0)

        assert "country" not in seen[-1].url.params
        await client.close()

    @pytest.mark.asyncio
    async def test_non_positive_price(self, make_client):
        """A price of zero is rejected locally."""
        client = make_client(lambda request: None)

        with pytest.raises(ValidationError):
            await client.prices.simulate("42", 0)

        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_token_is_invalidated(self, make_client):
        """A 401 on a bearer endpoint drops the cached token."""
        tokens = iter(["first", "second"])
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/v1/token":
                return httpx.Response(200, json={"access_token": next(tokens), "expires_in": 3600})
            if request.headers["Authorization"] == "Bearer first":
                return httpx.Response(401, json={"message": "expired"})
            return httpx.Response(200, json={"income": 1.0})

        client = make_client(handler)

        with pytest.raises(AuthenticationError):
            await client.prices.simulate("42", 10.0)
        simulation = await client.prices.simulate("42", 10.0)

        assert simulation.income == 1.0
        assert seen[-1].headers["Authorization"] == "Bearer second"
        await client.close()
