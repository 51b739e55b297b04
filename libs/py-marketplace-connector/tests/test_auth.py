"""Tests for signed-header and bearer-token authentication."""

import hashlib
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from marketplace_connector.auth import AuthManager
from marketplace_connector.catalog_types import CachedToken, EndpointClass, Environment
from marketplace_connector.config import Credentials
from marketplace_connector.exceptions import AuthenticationError, InvalidCredentialsError
from marketplace_connector.signing import SignedHeaderAuthenticator
from marketplace_connector.token_cache import InMemoryTokenCache, RedisTokenCache, TokenCache
from marketplace_connector.tokens import TokenManager

BASE_URL = "https://api.test/v1"


@pytest.fixture
def sandbox_credentials():
    return Credentials(client_id="qdaiciDiyMaTjxMt", client_secret="b0d293f6-e1d6-4629-8c3c")


@pytest.fixture
def production_credentials():
    return Credentials(
        client_id="qdaiciDiyMaTjxMt",
        client_secret="b0d293f6-e1d6-4629-8c3c",
        email="seller@example.com",
        environment=Environment.PRODUCTION,
    )


def token_transport(calls: list, status: int = 200, expires_in: int = 3600):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if status != 200:
            return httpx.Response(status, json={"message": "denied"})
        return httpx.Response(
            200, json={"access_token": f"token-{len(calls)}", "expires_in": expires_in}
        )

    return httpx.MockTransport(handler)


class TestSignedHeaders:
    """Tests for SignedHeaderAuthenticator."""

    def test_sandbox_header(self, sandbox_credentials):
        """Sandbox sends the raw id and secret."""
        headers = SignedHeaderAuthenticator(sandbox_credentials).get_auth_headers()

        assert headers == {"Authorization": "qdaiciDiyMaTjxMt, b0d293f6-e1d6-4629-8c3c"}

    def test_production_header(self, production_credentials):
        """Production signs id + email + secret with sha256."""
        expected = hashlib.sha256(
            b"qdaiciDiyMaTjxMtseller@example.comb0d293f6-e1d6-4629-8c3c"
        ).hexdigest()

        headers = SignedHeaderAuthenticator(production_credentials).get_auth_headers()

        assert headers == {"Authorization": f"qdaiciDiyMaTjxMt, {expected}"}

    def test_production_requires_email(self):
        """Production signing without an email fails."""
        creds = Credentials(
            client_id="qdaiciDiyMaTjxMt",
            client_secret="b0d293f6-e1d6-4629-8c3c",
            environment=Environment.PRODUCTION,
        )

        with pytest.raises(InvalidCredentialsError):
            SignedHeaderAuthenticator(creds).get_auth_headers()

    def test_validate_credentials(self):
        """Short credentials are reported."""
        errors = SignedHeaderAuthenticator(
            Credentials(client_id="abc", client_secret="")
        ).validate_credentials()

        assert "Client secret is required" in errors
        assert any("Client ID is too short" in e for e in errors)


class TestAuthManager:
    """Tests for AuthManager bearer flow."""

    @pytest.mark.asyncio
    async def test_bearer_token_fetched_once(self, sandbox_credentials):
        """The token endpoint is called once and the token is reused."""
        calls = []
        http_client = httpx.AsyncClient(base_url=BASE_URL, transport=token_transport(calls))
        auth = AuthManager(sandbox_credentials, BASE_URL, http_client=http_client)

        first = await auth.get_auth_headers(EndpointClass.BEARER)
        second = await auth.get_auth_headers(EndpointClass.BEARER)

        assert first == {"Authorization": "Bearer token-1"}
        assert second == first
        assert len(calls) == 1
        assert calls[0].url.path == "/v1/token"
        assert calls[0].headers["Authorization"] == "qdaiciDiyMaTjxMt, b0d293f6-e1d6-4629-8c3c"
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_near_expiry_token_is_refreshed(self, sandbox_credentials):
        """A token inside the refresh threshold triggers a new fetch."""
        calls = []
        http_client = httpx.AsyncClient(
            base_url=BASE_URL, transport=token_transport(calls, expires_in=60)
        )
        auth = AuthManager(sandbox_credentials, BASE_URL, http_client=http_client)

        await auth.get_auth_headers(EndpointClass.BEARER)
        headers = await auth.get_auth_headers(EndpointClass.BEARER)

        assert headers == {"Authorization": "Bearer token-2"}
        assert len(calls) == 2
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_token_fetch_failure(self, sandbox_credentials):
        """A rejected token request raises a retryable AuthenticationError."""
        calls = []
        http_client = httpx.AsyncClient(base_url=BASE_URL, transport=token_transport(calls, 401))
        auth = AuthManager(sandbox_credentials, BASE_URL, http_client=http_client)

        with pytest.raises(AuthenticationError) as exc_info:
            await auth.get_auth_headers(EndpointClass.BEARER)

        assert exc_info.value.retryable is True
        assert exc_info.value.http_status == 401
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_signed_headers_skip_network(self, sandbox_credentials):
        """SIGNED endpoints never call the token endpoint."""
        calls = []
        http_client = httpx.AsyncClient(base_url=BASE_URL, transport=token_transport(calls))
        auth = AuthManager(sandbox_credentials, BASE_URL, http_client=http_client)

        await auth.get_auth_headers(EndpointClass.SIGNED)

        assert calls == []
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_test_authentication(self, sandbox_credentials):
        """test_authentication reports success and failure without raising."""
        good = httpx.AsyncClient(base_url=BASE_URL, transport=token_transport([]))
        bad = httpx.AsyncClient(base_url=BASE_URL, transport=token_transport([], 403))

        assert await AuthManager(sandbox_credentials, BASE_URL, http_client=good).test_authentication(
            EndpointClass.BEARER
        )
        assert not await AuthManager(sandbox_credentials, BASE_URL, http_client=bad).test_authentication(
            EndpointClass.BEARER
        )
        await good.aclose()
        await bad.aclose()


class BrokenCache(TokenCache):
    """Shared cache that is always unreachable."""

    async def get(self, key):
        return None

    async def set(self, key, token, ttl_seconds):
        return None

    async def delete(self, key):
        return None


class TestTokenManager:
    """Tests for TokenManager caching."""

    @pytest.mark.asyncio
    async def test_unreachable_cache_falls_back_to_process_copy(self):
        """With a dead shared cache the in-process token is still reused."""
        fetches = []

        async def fetch():
            fetches.append(1)
            return {"access_token": "abc", "expires_in": 3600}

        manager = TokenManager(BrokenCache())

        assert await manager.get_token(Environment.SANDBOX, fetch) == "abc"
        assert await manager.get_token(Environment.SANDBOX, fetch) == "abc"
        assert len(fetches) == 1

    @pytest.mark.asyncio
    async def test_shared_cache_hit(self):
        """A token in the shared cache is used without fetching."""
        cache = InMemoryTokenCache()
        token = CachedToken(access_token="shared", expires_at=datetime.now(UTC) + timedelta(hours=1))
        await cache.set(TokenManager.cache_key(Environment.SANDBOX), token, 3600)

        async def fetch():
            raise AssertionError("should not fetch")

        assert await TokenManager(cache).get_token(Environment.SANDBOX, fetch) == "shared"

    @pytest.mark.asyncio
    async def test_tokens_are_per_environment(self):
        """Sandbox and production tokens are cached separately."""
        counter = {"n": 0}

        async def fetch():
            counter["n"] += 1
            return {"access_token": f"t{counter['n']}", "expires_in": 3600}

        manager = TokenManager()

        assert await manager.get_token(Environment.SANDBOX, fetch) == "t1"
        assert await manager.get_token(Environment.PRODUCTION, fetch) == "t2"
        assert await manager.get_token(Environment.SANDBOX, fetch) == "t1"

    @pytest.mark.asyncio
    async def test_refresh_token(self):
        """refresh_token always fetches a new token."""
        counter = {"n": 0}

        async def fetch():
            counter["n"] += 1
            return {"access_token": f"t{counter['n']}", "expires_in": 3600}

        manager = TokenManager()
        await manager.get_token("sandbox", fetch)

        assert await manager.refresh_token("sandbox", fetch) == "t2"

    @pytest.mark.asyncio
    async def test_fetch_error_is_wrapped(self):
        """Unexpected fetch errors become retryable AuthenticationError."""

        async def fetch():
            raise KeyError("access_token")

        with pytest.raises(AuthenticationError) as exc_info:
            await TokenManager().get_token("sandbox", fetch)

        assert exc_info.value.retryable is True


class TestRedisTokenCache:
    """Redis cache failures degrade to misses."""

    @pytest.mark.asyncio
    async def test_unreachable_redis_is_a_miss(self):
        """Nothing listens on port 1; reads return None and writes do not raise."""
        cache = RedisTokenCache("redis://127.0.0.1:1/0", timeout=0.2)
        token = CachedToken(access_token="abc", expires_at=datetime.now(UTC) + timedelta(hours=1))

        await cache.set("key", token, 60)
        assert await cache.get("key") is None
        await cache.delete("key")
        await cache.close()

    @pytest.mark.asyncio
    async def test_token_manager_survives_unreachable_redis(self):
        """TokenManager keeps working when Redis is down."""
        fetches = []

        async def fetch():
            fetches.append(1)
            return {"access_token": "abc", "expires_in": 3600}

        manager = TokenManager(RedisTokenCache("redis://127.0.0.1:1/0", timeout=0.2))

        assert await manager.get_token("sandbox", fetch) == "abc"
        assert await manager.get_token("sandbox", fetch) == "abc"
        assert len(fetches) == 1
        await manager.close()
