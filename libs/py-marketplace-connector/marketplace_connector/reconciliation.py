"""Post-sync integrity checks using order-independent checksums."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .catalog_types import Product, as_record

logger = logging.getLogger(__name__)

CHECKSUM_FIELDS = ("id", "name", "price", "qty", "updatedAt")
COMPARED_FIELDS = ("name", "price", "qty", "currency")


@dataclass
class FieldMismatch:
    entity_id: str
    field: str
    expected: Any
    actual: Any


@dataclass
class ReconciliationReport:
    """
    Outcome of comparing a remote snapshot against the local copy.

    expected values come from the remote side, actual values from local.
    """

    valid: bool
    total_records: int
    checksum: str
    local_checksum: str
    missing_locally: list[str] = field(default_factory=list)
    unexpected_locally: list[str] = field(default_factory=list)
    drifted_ids: list[str] = field(default_factory=list)
    mismatches: list[FieldMismatch] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SyncReconciliation:
    """Verifies that a local copy matches what the marketplace returned."""

    @staticmethod
    def checksum(items: list[Product | dict[str, Any]]) -> str:
        """sha256 over the items sorted by id, hashing only CHECKSUM_FIELDS."""
        records = sorted((as_record(i) for i in items), key=lambda r: str(r.get("id")))
        digest = hashlib.sha256()
        for record in records:
            subset = {name: record.get(name) for name in CHECKSUM_FIELDS}
            digest.update(json.dumps(subset, sort_keys=True, default=str).encode())
        return digest.hexdigest()

    def verify(
        self,
        remote: list[Product | dict[str, Any]],
        local: list[Product | dict[str, Any]],
    ) -> ReconciliationReport:
        """
        Compare remote and local item sets.

        Returns:
            ReconciliationReport; valid only when counts, checksums and every
            compared field agree
        """
        logger.info("Reconciling %d remote against %d local records", len(remote), len(local))

        remote_by_id = {str(r["id"]): r for r in (as_record(i) for i in remote)}
        local_by_id = {str(r["id"]): r for r in (as_record(i) for i in local)}

        report = ReconciliationReport(
            valid=True,
            total_records=len(remote),
            checksum=self.checksum(remote),
            local_checksum=self.checksum(local),
        )

        if len(remote) != len(local):
            report.errors.append(
                f"Record count mismatch: expected {len(remote)}, got {len(local)}"
            )

        if report.checksum != report.local_checksum:
            report.errors.append("Checksum mismatch detected")
            report.missing_locally = sorted(remote_by_id.keys() - local_by_id.keys())
            report.unexpected_locally = sorted(local_by_id.keys() - remote_by_id.keys())

            for entity_id in sorted(remote_by_id.keys() & local_by_id.keys()):
                expected, actual = remote_by_id[entity_id], local_by_id[entity_id]
                diffs = [
                    FieldMismatch(entity_id, name, expected.get(name), actual.get(name))
                    for name in COMPARED_FIELDS
                    if expected.get(name) != actual.get(name)
                ]
                hashed_drift = any(
                    expected.get(name) != actual.get(name) for name in CHECKSUM_FIELDS
                )
                if diffs or hashed_drift:
                    report.drifted_ids.append(entity_id)
                report.mismatches.extend(diffs)

        report.valid = not report.errors and not report.mismatches
        logger.info(
            "Reconciliation %s: %d errors, %d field mismatches",
            "passed" if report.valid else "failed",
            len(report.errors),
            len(report.mismatches),
        )
        return report
