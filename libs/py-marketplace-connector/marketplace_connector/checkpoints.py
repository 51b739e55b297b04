"""
Sync checkpoint persistence.

Stores the last successful sync timestamp per stream in DynamoDB, or in
memory when running in local mode.

Usage:
    store = CheckpointStore(table_name="marketplace_sync")

    checkpoint = store.get("products")
    since = checkpoint.last_sync_at if checkpoint else None

    store.advance("products", result.checkpoint, records_synced=result.total_fetched)

    # Force a full sync next time
    store.reset("products")
"""

import logging
import os
from datetime import UTC, datetime

import boto3
from botocore.exceptions import ClientError
from dateutil import parser as date_parser
from pydantic import BaseModel

from .exceptions import CheckpointError

logger = logging.getLogger(__name__)

KEY_PREFIX = "CHECKPOINT#"
SORT_KEY = "CURSOR"


def to_utc(value: datetime | str) -> datetime:
    """Parse/normalize a timestamp to an aware UTC datetime (naive values are UTC)."""
    parsed = date_parser.isoparse(value) if isinstance(value, str) else value
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class SyncCheckpoint(BaseModel):
    """
    Sync checkpoint for one stream.

    Attributes:
        stream: Stream name (e.g. "products")
        last_sync_ts: Last successful sync timestamp (ISO8601 UTC)
        records_synced: Total records synced across runs
        last_resource_id: Last resource id seen, if the stream tracks one
        created_at: Checkpoint creation timestamp
        updated_at: Last update timestamp
    """

    stream: str
    last_sync_ts: str
    records_synced: int = 0
    last_resource_id: str | None = None
    created_at: str
    updated_at: str

    @property
    def last_sync_at(self) -> datetime:
        return to_utc(self.last_sync_ts)


class CheckpointStore:
    """
    Manages sync checkpoints in DynamoDB.

    Items are keyed as:
    - pk: "CHECKPOINT#{stream}"
    - sk: "CURSOR"

    advance() never moves a checkpoint backwards.
    """

    def __init__(
        self,
        table_name: str | None = None,
        region: str | None = None,
        local_mode: bool | None = None,
    ):
        """
        Initialize the checkpoint store.

        Args:
            table_name: DynamoDB table name (defaults to DYNAMODB_TABLE)
            region: AWS region (defaults to AWS_REGION)
            local_mode: Keep checkpoints in memory (defaults to LOCAL_MODE)
        """
        self.table_name = table_name or os.getenv("DYNAMODB_TABLE", "marketplace_sync")
        self.region = region or os.getenv("AWS_REGION", "us-east-1")
        if local_mode is None:
            local_mode = os.getenv("LOCAL_MODE", "false").lower() == "true"
        self.local_mode = local_mode

        if self.local_mode:
            self._local: dict[str, dict] = {}
        else:
            self.dynamodb = boto3.resource("dynamodb", region_name=self.region)
            self.table = self.dynamodb.Table(self.table_name)

    @staticmethod
    def _make_key(stream: str) -> dict[str, str]:
        return {"pk": f"{KEY_PREFIX}{stream}", "sk": SORT_KEY}

    @staticmethod
    def _from_item(item: dict) -> SyncCheckpoint:
        return SyncCheckpoint(
            stream=item["stream"],
            last_sync_ts=item["last_sync_ts"],
            records_synced=int(item.get("records_synced", 0)),
            last_resource_id=item.get("last_resource_id"),
            created_at=item["created_at"],
            updated_at=item["updated_at"],
        )

    @staticmethod
    def _wrap(action: str, stream: str, error: ClientError) -> CheckpointError:
        error_code = error.response.get("Error", {}).get("Code", "Unknown")
        return CheckpointError(
            f"Failed to {action} checkpoint: {error_code}",
            error_code=error_code,
            context={"stream": stream},
        )

    def get(self, stream: str) -> SyncCheckpoint | None:
        """
        Get the checkpoint for a stream.

        Returns:
            SyncCheckpoint if one exists, None otherwise

        Raises:
            CheckpointError: On DynamoDB failures
        """
        if self.local_mode:
            data = self._local.get(stream)
            return SyncCheckpoint(**data) if data else None

        try:
            response = self.table.get_item(Key=self._make_key(stream))
        except ClientError as e:
            raise self._wrap("get", stream, e) from e

        if "Item" not in response:
            return None
        return self._from_item(response["Item"])

    def advance(
        self,
        stream: str,
        last_sync_ts: datetime | str,
        records_synced: int = 0,
        last_resource_id: str | None = None,
    ) -> SyncCheckpoint:
        """
        Move the checkpoint forward after a successful sync.

        An older timestamp than the stored one is ignored (the stored one is
        kept) while the record count is still accumulated.

        Args:
            stream: Stream name
            last_sync_ts: Timestamp the sync covered up to
            records_synced: Records synced in this run (added to the total)
            last_resource_id: Last resource id seen

        Returns:
            The stored SyncCheckpoint
        """
        now = datetime.now(UTC).isoformat()
        candidate = to_utc(last_sync_ts)
        existing = self.get(stream)

        if existing and existing.last_sync_at > candidate:
            logger.warning(
                "Ignoring checkpoint regression for %s: %s < %s",
                stream,
                candidate.isoformat(),
                existing.last_sync_ts,
            )
            candidate = existing.last_sync_at

        data = {
            "stream": stream,
            "last_sync_ts": candidate.isoformat(),
            "records_synced": (existing.records_synced if existing else 0) + records_synced,
            "last_resource_id": last_resource_id
            or (existing.last_resource_id if existing else None),
            "created_at": existing.created_at if existing else now,
            "updated_at": now,
        }

        if self.local_mode:
            self._local[stream] = data
        else:
            try:
                self.table.put_item(Item={**self._make_key(stream), **data})
            except ClientError as e:
                raise self._wrap("advance", stream, e) from e

        logger.info("Checkpoint %s advanced to %s", stream, data["last_sync_ts"])
        return SyncCheckpoint(**data)

    def reset(self, stream: str) -> None:
        """Delete a stream's checkpoint (forces a full sync next time)."""
        if self.local_mode:
            self._local.pop(stream, None)
            return

        try:
            self.table.delete_item(Key=self._make_key(stream))
        except ClientError as e:
            raise self._wrap("reset", stream, e) from e

    def list(self, limit: int = 100) -> list[SyncCheckpoint]:
        """List stored checkpoints."""
        if self.local_mode:
            return [SyncCheckpoint(**data) for data in list(self._local.values())[:limit]]

        try:
            response = self.table.scan(
                Limit=limit,
                FilterExpression="begins_with(pk, :prefix)",
                ExpressionAttributeValues={":prefix": KEY_PREFIX},
            )
        except ClientError as e:
            raise self._wrap("list", "*", e) from e

        return [self._from_item(item) for item in response.get("Items", [])]
