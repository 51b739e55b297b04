"""
Inbound webhook verification and idempotent processing.

Events are signed with HMAC-SHA256(secret, payload + timestamp + nonce + secret)
and de-duplicated on event_id:resource_id:type for 24 hours.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError
from redis.exceptions import RedisError

from .catalog_types import IdempotencyStatus, WebhookEvent
from .exceptions import WebhookError
from .metrics import Metrics

logger = logging.getLogger(__name__)

CLOCK_SKEW_SECONDS = 300
IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60
ALREADY_PROCESSED = "Event already processed"
PROCESSED = "Webhook processed successfully"

WebhookHandler = Callable[[WebhookEvent], Awaitable[None]]


def normalize_timestamp(timestamp: int) -> float:
    """Event timestamp in seconds; millisecond values are scaled down."""
    return timestamp / 1000 if timestamp > 10**11 else float(timestamp)


class WebhookVerifier:
    """
    Verifies webhook signatures and rejects stale or future-dated events.

    Args:
        secret: Shared signing secret
        skew_seconds: Maximum allowed clock difference
    """

    def __init__(self, secret: str, skew_seconds: int = CLOCK_SKEW_SECONDS):
        if not secret:
            raise ValueError("Webhook secret is required")
        self.secret = secret
        self.skew_seconds = skew_seconds

    def compute_signature(self, payload: str, timestamp: int, nonce: str) -> str:
        """Hex HMAC-SHA256 of payload + timestamp + nonce + secret."""
        message = f"{payload}{timestamp}{nonce}{self.secret}"
        return hmac.new(self.secret.encode(), message.encode(), hashlib.sha256).hexdigest()

    def verify_timestamp(self, timestamp: int, now: float | None = None) -> None:
        """
        Raises:
            WebhookError: If the timestamp is outside the skew window (HTTP 400)
        """
        current = time.time() if now is None else now
        if abs(current - normalize_timestamp(timestamp)) > self.skew_seconds:
            raise WebhookError(
                f"Webhook timestamp outside allowed skew ({self.skew_seconds}s)",
                http_status=400,
            )

    def verify_signature(self, event: WebhookEvent) -> None:
        """
        Constant-time signature check.

        Raises:
            WebhookError: If the signature does not match (HTTP 401)
        """
        expected = self.compute_signature(event.payload, event.timestamp, event.nonce)
        if not hmac.compare_digest(expected, event.signature.lower()):
            raise WebhookError("Invalid webhook signature", http_status=401)

    def verify(self, event: WebhookEvent) -> None:
        self.verify_timestamp(event.timestamp)
        self.verify_signature(event)


class IdempotencyRecord(BaseModel):
    key: str
    status: IdempotencyStatus
    attempts: int = 1
    last_error: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class IdempotencyStore(ABC):
    """Processing state per idempotency key, retained for a TTL."""

    def __init__(self, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def get(self, key: str) -> IdempotencyRecord | None:
        """Return the record for key, or None when unknown or expired."""

    @abstractmethod
    async def put(self, record: IdempotencyRecord) -> None:
        """Store a record for the TTL."""

    async def mark(
        self, key: str, status: IdempotencyStatus, error: str | None = None
    ) -> IdempotencyRecord:
        """Store a new status, counting attempts."""
        existing = await self.get(key)
        record = IdempotencyRecord(
            key=key,
            status=status,
            attempts=(existing.attempts + 1) if existing else 1,
            last_error=error,
        )
        await self.put(record)
        return record

    async def close(self) -> None:
        """Release connections."""


class InMemoryIdempotencyStore(IdempotencyStore):
    def __init__(self, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS):
        super().__init__(ttl_seconds)
        self._records: dict[str, tuple[IdempotencyRecord, float]] = {}

    async def get(self, key: str) -> IdempotencyRecord | None:
        item = self._records.get(key)
        if item is None:
            return None
        record, expires = item
        if time.monotonic() >= expires:
            del self._records[key]
            return None
        return record

    async def put(self, record: IdempotencyRecord) -> None:
        self._records[record.key] = (record, time.monotonic() + self.ttl_seconds)


class RedisIdempotencyStore(IdempotencyStore):
    """
    Redis-backed store shared by every receiver instance.

    Read failures are logged and treated as unknown keys.
    """

    KEY_PREFIX = "marketplace:idempotency:"

    def __init__(self, url: str, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS, timeout: float = 2.0):
        super().__init__(ttl_seconds)
        self._client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )

    async def get(self, key: str) -> IdempotencyRecord | None:
        try:
            raw = await self._client.get(f"{self.KEY_PREFIX}{key}")
        except (RedisError, OSError) as e:
            logger.warning("Idempotency read failed for %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return IdempotencyRecord.model_validate_json(raw)
        except ModelValidationError:
            logger.warning("Discarding malformed idempotency record %s", key)
            return None

    async def put(self, record: IdempotencyRecord) -> None:
        try:
            await self._client.setex(
                f"{self.KEY_PREFIX}{record.key}", self.ttl_seconds, record.model_dump_json()
            )
        except (RedisError, OSError) as e:
            logger.warning("Idempotency write failed for %s: %s", record.key, e)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Idempotency store close failed: %s", e)


class WebhookResult(BaseModel):
    success: bool
    message: str
    duplicate: bool = False


class WebhookProcessor:
    """
    Verifies, de-duplicates and dispatches webhook events.

    Handlers are registered per event type; events of unknown types are
    acknowledged and logged.
    """

    def __init__(
        self,
        verifier: WebhookVerifier,
        store: IdempotencyStore | None = None,
        metrics: Metrics | None = None,
        processing_wait: float = 1.0,
    ):
        self.verifier = verifier
        self.store = store or InMemoryIdempotencyStore()
        self.metrics = metrics or Metrics(enabled=False)
        self.processing_wait = processing_wait
        self.handlers: dict[str, WebhookHandler] = {}

    def register(self, event_type: str, handler: WebhookHandler) -> None:
        self.handlers[event_type] = handler

    async def _is_done(self, key: str) -> bool:
        record = await self.store.get(key)
        if record is None:
            return False
        if record.status == IdempotencyStatus.PROCESSING:
            # Another delivery is in flight; give it a moment to finish
            await asyncio.sleep(self.processing_wait)
            record = await self.store.get(key)
        return record is not None and record.status == IdempotencyStatus.DONE

    async def process(self, event: WebhookEvent) -> WebhookResult:
        """
        Process one event.

        Returns:
            WebhookResult; duplicates of completed events are acknowledged
            without invoking the handler

        Raises:
            WebhookError: On stale timestamp (400) or bad signature (401)
        """
        self.metrics.increment("webhooks.total")
        key = event.idempotency_key

        try:
            self.verifier.verify(event)
        except WebhookError:
            self.metrics.increment("webhooks.invalid")
            logger.warning("Rejected webhook %s", key)
            raise

        if await self._is_done(key):
            self.metrics.increment("webhooks.duplicate")
            logger.info("Webhook %s already processed", key)
            return WebhookResult(success=True, message=ALREADY_PROCESSED, duplicate=True)

        await self.store.mark(key, IdempotencyStatus.PROCESSING)
        try:
            handler = self.handlers.get(event.type)
            if handler is None:
                logger.info("Unhandled webhook type %s for %s", event.type, event.resource_id)
            else:
                await handler(event)
        except Exception as e:
            await self.store.mark(key, IdempotencyStatus.FAILED, error=str(e))
            self.metrics.increment("webhooks.failed")
            raise

        await self.store.mark(key, IdempotencyStatus.DONE)
        self.metrics.increment("webhooks.processed")
        return WebhookResult(success=True, message=PROCESSED)
