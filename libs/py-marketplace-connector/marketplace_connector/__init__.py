"""Marketplace Connector - Resilient async client for the marketplace catalog and order API."""

from .batch import BatchFailure, BatchOperations, BatchResult
from .catalog_types import (
    Endpoint,
    EndpointClass,
    Environment,
    OrderCreated,
    Product,
    ProductPage,
    ProductQuery,
    WebhookEvent,
)
from .checkpoints import CheckpointStore, SyncCheckpoint
from .client import MarketplaceClient
from .config import ConnectorConfig, Credentials
from .conflicts import ConflictOutcome, ConflictResolver, ConflictStrategy
from .delta_sync import DeltaSync, DeltaSyncResult
from .exceptions import (
    CircuitOpenError,
    ErrorKind,
    MarketplaceError,
    QuotaExceededError,
    RateLimitError,
    ValidationError,
    WebhookError,
)
from .filters import FilterBuilder, FilterValidator, ProductFilter
from .orchestrator import SyncOrchestrator, SyncReport, SyncStream
from .reconciliation import SyncReconciliation
from .webhooks import WebhookProcessor, WebhookVerifier

__version__ = "0.1.0"

__all__ = [
    "MarketplaceClient",
    "ConnectorConfig",
    "Credentials",
    "Environment",
    "Endpoint",
    "EndpointClass",
    "Product",
    "ProductPage",
    "ProductQuery",
    "OrderCreated",
    "WebhookEvent",
    "MarketplaceError",
    "ErrorKind",
    "CircuitOpenError",
    "QuotaExceededError",
    "RateLimitError",
    "ValidationError",
    "WebhookError",
    "BatchOperations",
    "BatchResult",
    "BatchFailure",
    "FilterBuilder",
    "FilterValidator",
    "ProductFilter",
    "DeltaSync",
    "DeltaSyncResult",
    "ConflictResolver",
    "ConflictStrategy",
    "ConflictOutcome",
    "SyncOrchestrator",
    "SyncStream",
    "SyncReport",
    "SyncReconciliation",
    "CheckpointStore",
    "SyncCheckpoint",
    "WebhookVerifier",
    "WebhookProcessor",
]
