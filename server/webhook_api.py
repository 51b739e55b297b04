"""FastAPI receiver for marketplace order webhooks."""

import json
import logging
import os
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as ModelValidationError

from marketplace_connector import MarketplaceError, WebhookEvent, WebhookProcessor, WebhookVerifier, __version__
from marketplace_connector.log import configure_logging
from marketplace_connector.metrics import Metrics
from marketplace_connector.webhooks import (
    IdempotencyStore,
    InMemoryIdempotencyStore,
    RedisIdempotencyStore,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-marketplace-signature"
NONCE_HEADER = "x-marketplace-nonce"
TIMESTAMP_HEADER = "x-marketplace-timestamp"


def _build_processor() -> WebhookProcessor | None:
    """Processor from MARKETPLACE_WEBHOOK_SECRET / REDIS_URL, or None when no secret is set."""
    secret = os.getenv("MARKETPLACE_WEBHOOK_SECRET", "")
    if not secret:
        logger.warning("MARKETPLACE_WEBHOOK_SECRET not set; webhook endpoint disabled")
        return None

    redis_url = os.getenv("REDIS_URL")
    store: IdempotencyStore = (
        RedisIdempotencyStore(redis_url) if redis_url else InMemoryIdempotencyStore()
    )
    return WebhookProcessor(WebhookVerifier(secret), store, metrics=Metrics())


def parse_event(body: dict[str, Any], headers: dict[str, str]) -> WebhookEvent:
    """
    Build a WebhookEvent from a request body, preferring signature headers.

    Object payloads are signed in their compact JSON form.
    """
    payload = body.get("payload", "")
    if not isinstance(payload, str):
        payload = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    fields = {
        "event_id": str(body.get("event_id") or ""),
        "resource_id": str(body.get("resource_id") or body.get("order_id") or ""),
        "type": body.get("type") or "",
        "signature": headers.get(SIGNATURE_HEADER) or body.get("signature") or "",
        "nonce": headers.get(NONCE_HEADER) or body.get("nonce") or "",
    }
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValueError(f"Missing required webhook fields: {', '.join(missing)}")

    return WebhookEvent(
        payload=payload,
        timestamp=headers.get(TIMESTAMP_HEADER) or body.get("timestamp"),
        **fields,
    )


def create_app(processor: WebhookProcessor | None = None) -> FastAPI:
    """
    Create the webhook application.

    Args:
        processor: Webhook processor; built from the environment when omitted
    """
    app = FastAPI(
        title="Marketplace Webhook Receiver",
        description="Receives signed order events from the marketplace",
        version=__version__,
    )
    app.state.processor = processor if processor is not None else _build_processor()

    # ============================================================================
    # Health Check (unversioned)
    # ============================================================================

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": __version__,
            "service": "marketplace-webhooks",
            "checks": {"webhook_secret": "ok" if app.state.processor else "missing"},
        }

    # ============================================================================
    # Webhook Routes
    # ============================================================================

    @app.post("/v1/webhooks/orders")
    async def order_webhook(request: Request) -> JSONResponse:
        """Order status webhook."""
        processor: WebhookProcessor | None = app.state.processor
        if processor is None:
            return JSONResponse(
                status_code=503,
                content={"error": {"code": "not_configured", "message": "Webhook secret not configured"}},
            )

        try:
            body = json.loads(await request.body())
            if not isinstance(body, dict):
                raise ValueError("Webhook body must be a JSON object")
            event = parse_event(body, {k.lower(): v for k, v in request.headers.items()})
        except (ValueError, ModelValidationError) as e:
            logger.warning("Malformed webhook: %s", e)
            return JSONResponse(
                status_code=400,
                content={"error": {"code": "malformed_event", "message": "Malformed webhook event"}},
            )

        result = await processor.process(event)
        return JSONResponse(content=result.model_dump())

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        """Handle MarketplaceError exceptions."""
        return JSONResponse(
            status_code=exc.http_status or 500,
            content=exc.to_dict(),
        )

    return app


configure_logging(os.getenv("LOG_LEVEL", "INFO"))
app = create_app()
