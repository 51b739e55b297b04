"""Conflict resolution between local and remote versions of a product."""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel, Field

from .catalog_types import Product, as_record

logger = logging.getLogger(__name__)

# Fields compared when reporting what a resolution changed
TRACKED_FIELDS = (
    "name",
    "slug",
    "qty",
    "price",
    "currency",
    "type",
    "region",
    "platform",
    "description",
    "availableToBuy",
)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class ConflictStrategy(str, Enum):
    SOURCE_WINS = "source_wins"
    DESTINATION_WINS = "destination_wins"
    NEWER_WINS = "newer_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ConflictOutcome(str, Enum):
    KEPT_LOCAL = "kept_local"
    KEPT_REMOTE = "kept_remote"
    MERGED = "merged"
    NEEDS_MANUAL_REVIEW = "needs_manual_review"


class ConflictRecord(BaseModel):
    """Result of resolving one entity; resolved is the record to persist."""

    entity_id: str
    local: dict[str, Any]
    remote: dict[str, Any]
    outcome: ConflictOutcome
    strategy: ConflictStrategy
    changes: list[str] = Field(default_factory=list)
    resolved: dict[str, Any]


def detect_changes(
    before: dict[str, Any], after: dict[str, Any], fields: tuple[str, ...] = TRACKED_FIELDS
) -> list[str]:
    """Describe field changes as "field: old -> new"."""
    return [
        f"{name}: {before.get(name)} -> {after.get(name)}"
        for name in fields
        if before.get(name) != after.get(name)
    ]


def parse_timestamp(value: Any) -> datetime:
    """Parse a vendor timestamp to aware UTC; missing or unparseable values sort first."""
    if not value:
        return EPOCH
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError):
        logger.warning("Unparseable timestamp %r", value)
        return EPOCH
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class ConflictResolver:
    """
    Resolves conflicts with one of five strategies.

    MANUAL never raises: the record is queued in pending_reviews and the
    local version is kept until someone decides.
    """

    def __init__(self, default_strategy: ConflictStrategy = ConflictStrategy.NEWER_WINS):
        self.default_strategy = default_strategy
        self.pending_reviews: list[ConflictRecord] = []

    def resolve(
        self,
        local: Product | dict[str, Any],
        remote: Product | dict[str, Any],
        strategy: ConflictStrategy | None = None,
    ) -> ConflictRecord:
        """
        Resolve one conflict.

        Args:
            local: Destination (our) version
            remote: Source (marketplace) version
            strategy: Overrides the default strategy

        Returns:
            ConflictRecord
        """
        strategy = ConflictStrategy(strategy or self.default_strategy)
        local_rec = as_record(local)
        remote_rec = as_record(remote)
        entity_id = str(remote_rec.get("id") or local_rec.get("id"))

        logger.debug("Resolving conflict for %s with %s", entity_id, strategy.value)

        if strategy == ConflictStrategy.SOURCE_WINS:
            outcome, resolved = ConflictOutcome.KEPT_REMOTE, remote_rec
            changes = detect_changes(local_rec, remote_rec)
        elif strategy == ConflictStrategy.DESTINATION_WINS:
            outcome, resolved, changes = ConflictOutcome.KEPT_LOCAL, local_rec, []
        elif strategy == ConflictStrategy.NEWER_WINS:
            remote_newer = parse_timestamp(remote_rec.get("updatedAt")) >= parse_timestamp(
                local_rec.get("updatedAt")
            )
            if remote_newer:
                outcome, resolved = ConflictOutcome.KEPT_REMOTE, remote_rec
                changes = detect_changes(local_rec, remote_rec)
            else:
                outcome, resolved, changes = ConflictOutcome.KEPT_LOCAL, local_rec, []
        elif strategy == ConflictStrategy.MERGE:
            resolved, changes = self._merge(local_rec, remote_rec)
            outcome = ConflictOutcome.MERGED
        else:
            outcome, resolved, changes = ConflictOutcome.NEEDS_MANUAL_REVIEW, local_rec, []

        record = ConflictRecord(
            entity_id=entity_id,
            local=local_rec,
            remote=remote_rec,
            outcome=outcome,
            strategy=strategy,
            changes=changes,
            resolved=resolved,
        )
        if outcome == ConflictOutcome.NEEDS_MANUAL_REVIEW:
            logger.info("Queued %s for manual review", entity_id)
            self.pending_reviews.append(record)
        return record

    def resolve_many(
        self,
        pairs: list[tuple[Product | dict[str, Any], Product | dict[str, Any]]],
        strategy: ConflictStrategy | None = None,
    ) -> list[ConflictRecord]:
        """Resolve (local, remote) pairs in order."""
        return [self.resolve(local, remote, strategy) for local, remote in pairs]

    def take_pending_reviews(self) -> list[ConflictRecord]:
        """Return and clear the manual review queue."""
        pending, self.pending_reviews = self.pending_reviews, []
        return pending

    @staticmethod
    def _merge(local: dict[str, Any], remote: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
        merged = dict(local)
        for name, value in remote.items():
            if name in ("images", "categories") or value is None:
                continue
            merged[name] = value
        changes = detect_changes(local, merged, TRACKED_FIELDS + ("updatedAt",))

        local_images = list(local.get("images") or [])
        images = local_images + [i for i in remote.get("images") or [] if i not in local_images]
        if len(images) != len(local_images):
            changes.append("images: merged")
        merged["images"] = images

        local_categories = list(local.get("categories") or [])
        known = {c.get("id") for c in local_categories}
        added = [c for c in remote.get("categories") or [] if c.get("id") not in known]
        if added:
            changes.append("categories: merged")
        merged["categories"] = local_categories + added

        return merged, changes
