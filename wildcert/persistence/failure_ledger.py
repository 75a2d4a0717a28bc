"""Consecutive order failure count per domain pattern."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import boto3

from wildcert.models import domain_key
from wildcert.persistence.s3_objects import dump_json, read_json_object

logger = logging.getLogger(__name__)


@dataclass
class FailureRecord:
    """Failure state of one domain pattern."""

    domain_pattern: str
    consecutive_failures: int = 0
    last_reason: str = ""
    last_failure_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "domain_pattern": self.domain_pattern,
            "consecutive_failures": self.consecutive_failures,
            "last_reason": self.last_reason,
            "last_failure_at": (
                self.last_failure_at.isoformat() if self.last_failure_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailureRecord":
        """Create from dictionary."""
        last_failure_at = data.get("last_failure_at")
        return cls(
            domain_pattern=data["domain_pattern"],
            consecutive_failures=data.get("consecutive_failures", 0),
            last_reason=data.get("last_reason", ""),
            last_failure_at=(
                datetime.fromisoformat(last_failure_at) if last_failure_at else None
            ),
        )


class FailureLedger:
    """
    Counts consecutive OrderFailed outcomes per domain pattern in S3.

    Repeated permanent failures (e.g. a CAA record forbidding the CA) would
    otherwise burn through CA rate limits on every scheduled run.
    """

    def __init__(self, bucket: str, prefix: str = "certificates", s3_client=None):
        """
        Initialize the ledger.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix shared with the artifact store
            s3_client: Optional boto3 S3 client (for testing)
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._s3_client = s3_client

    @property
    def s3_client(self):
        """Lazy-load S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client("s3")
        return self._s3_client

    def ledger_key(self, domain_pattern: str) -> str:
        """S3 key of the ledger object for a domain pattern."""
        return f"{self.prefix}/{domain_key(domain_pattern)}/order-failures.json"

    def load(self, domain_pattern: str) -> FailureRecord:
        """Load the failure record, empty if none was stored."""
        data, _ = read_json_object(
            self.s3_client, self.bucket, self.ledger_key(domain_pattern)
        )
        if data is None:
            return FailureRecord(domain_pattern=domain_pattern)
        return FailureRecord.from_dict(data)

    def _save(self, record: FailureRecord) -> None:
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=self.ledger_key(record.domain_pattern),
            Body=dump_json(record.to_dict()),
            ContentType="application/json",
        )

    def record_failure(
        self, domain_pattern: str, reason: str, now: datetime | None = None
    ) -> FailureRecord:
        """Count one more consecutive failure."""
        record = self.load(domain_pattern)
        record.consecutive_failures += 1
        record.last_reason = reason
        record.last_failure_at = now or datetime.now(UTC)
        self._save(record)
        logger.warning(
            f"Order for {domain_pattern} failed "
            f"({record.consecutive_failures} in a row): {reason}"
        )
        return record

    def reset(self, domain_pattern: str) -> None:
        """Clear the failure count after a success or an operator acknowledgement."""
        record = self.load(domain_pattern)
        if record.consecutive_failures == 0:
            return
        self._save(FailureRecord(domain_pattern=domain_pattern))
        logger.info(f"Reset order failure count for {domain_pattern}")

    def is_suspended(self, domain_pattern: str, threshold: int) -> bool:
        """Check if issuance is suspended after too many consecutive failures."""
        if threshold <= 0:
            return False
        return self.load(domain_pattern).consecutive_failures >= threshold
