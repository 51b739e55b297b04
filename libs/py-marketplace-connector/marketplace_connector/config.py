"""
Connector configuration.

All durations are in seconds. Defaults mirror the vendor's documented limits.

Usage:
    config = ConnectorConfig.from_env()          # reads MARKETPLACE_* variables
    config = ConnectorConfig(credentials=Credentials(...), retry=RetryConfig(max_retries=5))
"""

import os

from pydantic import BaseModel, ConfigDict, Field

from .catalog_types import Environment
from .exceptions import ValidationError

SANDBOX_BASE_URL = "https://sandboxapi.g2a.com/v1"
PRODUCTION_BASE_URL = "https://api.g2a.com/integration-api/v1"

MIN_CREDENTIAL_LENGTH = 8


class Credentials(BaseModel):
    """API credentials, immutable for the lifetime of a client."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    email: str | None = None
    environment: Environment = Environment.SANDBOX


class RetryConfig(BaseModel):
    """Retry/backoff tunables."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retry_budget: float | None = None  # total seconds across all attempts


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker tunables."""

    enabled: bool = True
    failure_threshold: int = 5
    failure_window: float = 60.0
    reset_timeout: float = 30.0
    half_open_success_threshold: int = 2


class EndpointRateLimit(BaseModel):
    """Token bucket parameters for a single endpoint."""

    requests_per_second: float
    burst_size: int


class RateLimitingConfig(BaseModel):
    """Global and per-endpoint rate limits."""

    enabled: bool = True
    requests_per_second: float = 10.0
    burst_size: int = 20
    # Longest a single request may wait for a token before QuotaExceededError
    max_wait: float = 30.0
    per_endpoint: dict[str, EndpointRateLimit] = Field(
        default_factory=lambda: {
            "/products": EndpointRateLimit(requests_per_second=5, burst_size=10),
            "/orders": EndpointRateLimit(requests_per_second=3, burst_size=5),
            "/reservations": EndpointRateLimit(requests_per_second=2, burst_size=3),
        }
    )


class BatchConfig(BaseModel):
    """Batch execution tunables."""

    max_batch_size: int = 100
    max_concurrent_requests: int = 3
    product_fetch_chunk_size: int = 10
    page_delay: float = 0.2
    error_backoff: float = 2.0
    # Unlimited page walks stop after this many failed pages in a row
    max_consecutive_page_failures: int = 5


class LoggingConfig(BaseModel):
    """Logging tunables."""

    level: str = "INFO"
    mask_secrets: bool = True


class ConnectorConfig(BaseModel):
    """Complete connector configuration."""

    credentials: Credentials
    base_url: str | None = None
    timeout: float = 8.0
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics_enabled: bool = True
    cache_url: str | None = None  # e.g. redis://localhost:6379/0

    @property
    def environment(self) -> Environment:
        return self.credentials.environment

    @property
    def resolved_base_url(self) -> str:
        """Base URL with trailing slash removed, defaulting per environment."""
        if self.base_url:
            return self.base_url.rstrip("/")
        if self.credentials.environment == Environment.PRODUCTION:
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    @classmethod
    def from_env(cls, **overrides) -> "ConnectorConfig":
        """
        Build configuration from environment variables.

        Reads MARKETPLACE_CLIENT_ID, MARKETPLACE_CLIENT_SECRET, MARKETPLACE_EMAIL,
        MARKETPLACE_ENV, MARKETPLACE_API_URL, MARKETPLACE_TIMEOUT, MARKETPLACE_MAX_RETRIES,
        REDIS_URL, LOG_LEVEL and LOG_MASK_SECRETS.

        Args:
            **overrides: Fields that take precedence over the environment

        Returns:
            ConnectorConfig

        Raises:
            ValidationError: If required variables are missing or invalid
        """
        env_name = os.getenv("MARKETPLACE_ENV", "sandbox").lower()
        if env_name == "live":
            env_name = Environment.PRODUCTION.value
        try:
            environment = Environment(env_name)
        except ValueError as e:
            raise ValidationError(
                f"Invalid MARKETPLACE_ENV value: {env_name}. Must be 'sandbox' or 'production'",
                field="MARKETPLACE_ENV",
                value=env_name,
            ) from e

        client_id = os.getenv("MARKETPLACE_CLIENT_ID", "")
        client_secret = os.getenv("MARKETPLACE_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            raise ValidationError(
                "MARKETPLACE_CLIENT_ID and MARKETPLACE_CLIENT_SECRET are required",
                field="credentials",
            )

        values = {
            "credentials": Credentials(
                client_id=client_id,
                client_secret=client_secret,
                email=os.getenv("MARKETPLACE_EMAIL") or None,
                environment=environment,
            ),
            "base_url": os.getenv("MARKETPLACE_API_URL") or None,
            "timeout": float(os.getenv("MARKETPLACE_TIMEOUT", "8")),
            "retry": RetryConfig(max_retries=int(os.getenv("MARKETPLACE_MAX_RETRIES", "3"))),
            "logging": LoggingConfig(
                level=os.getenv("LOG_LEVEL", "INFO").upper(),
                mask_secrets=os.getenv("LOG_MASK_SECRETS", "true").lower() == "true",
            ),
            "cache_url": os.getenv("REDIS_URL") or None,
        }
        values.update(overrides)
        return cls(**values)

    def summary(self) -> dict[str, str]:
        """Human readable summary with secrets truncated."""
        creds = self.credentials
        return {
            "environment": creds.environment.value,
            "base_url": self.resolved_base_url,
            "client_id": f"{creds.client_id[:8]}...",
            "client_secret": f"{creds.client_secret[:4]}...",
            "email": creds.email or "-",
            "timeout": f"{self.timeout}s",
            "max_retries": str(self.retry.max_retries),
            "cache": "redis" if self.cache_url else "in-process",
        }


def validate_config(config: ConnectorConfig) -> None:
    """
    Validate configuration before a client is built.

    Raises:
        ValidationError: On missing or malformed settings
    """
    creds = config.credentials
    if len(creds.client_id) < MIN_CREDENTIAL_LENGTH:
        raise ValidationError("client_id is too short", field="client_id")
    if len(creds.client_secret) < MIN_CREDENTIAL_LENGTH:
        raise ValidationError("client_secret is too short", field="client_secret")
    if creds.environment == Environment.PRODUCTION and not creds.email:
        raise ValidationError(
            "email is required to derive the production API key",
            field="email",
        )
    if config.timeout <= 0:
        raise ValidationError("timeout must be positive", field="timeout", value=config.timeout)
    if config.retry.max_retries < 0:
        raise ValidationError(
            "max_retries must be >= 0", field="max_retries", value=config.retry.max_retries
        )
    if config.rate_limiting.requests_per_second <= 0:
        raise ValidationError(
            "requests_per_second must be positive",
            field="requests_per_second",
            value=config.rate_limiting.requests_per_second,
        )
    if config.batch.max_concurrent_requests < 1 or config.batch.max_batch_size < 1:
        raise ValidationError("batch sizes must be >= 1", field="batch")
