"""Per-domain order lock stored as a conditional S3 object."""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from wildcert.exceptions import OrderInProgress
from wildcert.models import domain_key
from wildcert.persistence.s3_objects import (
    dump_json,
    is_precondition_failure,
    read_json_object,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 900


class OrderLock:
    """
    At most one outstanding ACME order per domain pattern.

    The lock is an S3 object created with IfNoneMatch="*", so only one
    writer can create it. A lock older than its lease is considered
    abandoned (e.g. the invocation holding it timed out) and is taken over
    with IfMatch on the stale object's ETag.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "certificates",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        s3_client=None,
    ):
        """
        Initialize the lock.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix shared with the artifact store
            ttl_seconds: Lease duration of a lock
            s3_client: Optional boto3 S3 client (for testing)
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._s3_client = s3_client

    @property
    def s3_client(self):
        """Lazy-load S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client("s3")
        return self._s3_client

    def lock_key(self, domain_pattern: str) -> str:
        """S3 key of the lock object for a domain pattern."""
        return f"{self.prefix}/{domain_key(domain_pattern)}/order.lock.json"

    def _write(self, key: str, body: dict, **conditions) -> None:
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=dump_json(body),
            ContentType="application/json",
            **conditions,
        )

    def acquire(self, domain_pattern: str, now: datetime | None = None) -> str:
        """
        Acquire the lock.

        Returns:
            Owner token to pass to release()

        Raises:
            OrderInProgress: If a live lock is held by someone else
        """
        now = now or datetime.now(UTC)
        key = self.lock_key(domain_pattern)
        owner = uuid.uuid4().hex
        body = {
            "owner": owner,
            "domain_pattern": domain_pattern,
            "acquired_at": now.isoformat(),
            "expires_at": (now + self.ttl).isoformat(),
        }

        try:
            self._write(key, body, IfNoneMatch="*")
            logger.debug(f"Acquired order lock for {domain_pattern}")
            return owner
        except ClientError as e:
            if not is_precondition_failure(e):
                raise

        existing, etag = read_json_object(self.s3_client, self.bucket, key)
        if existing is None:
            raise OrderInProgress(
                f"Order lock for {domain_pattern} changed while acquiring"
            )

        expires_at = datetime.fromisoformat(existing["expires_at"])
        if expires_at > now:
            raise OrderInProgress(
                f"An order for {domain_pattern} is already in progress "
                f"(since {existing.get('acquired_at')})"
            )

        try:
            self._write(key, body, IfMatch=etag)
        except ClientError as e:
            if is_precondition_failure(e):
                raise OrderInProgress(
                    f"Stale order lock for {domain_pattern} was taken by another run"
                ) from e
            raise
        logger.warning(
            f"Took over stale order lock for {domain_pattern} "
            f"(expired {existing['expires_at']})"
        )
        return owner

    def release(self, domain_pattern: str, owner: str) -> bool:
        """
        Release the lock if it is still ours.

        Returns:
            True if the lock object was deleted
        """
        key = self.lock_key(domain_pattern)
        existing, _ = read_json_object(self.s3_client, self.bucket, key)
        if existing is None:
            return False
        if existing.get("owner") != owner:
            logger.warning(f"Order lock for {domain_pattern} is held by another run")
            return False
        self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        logger.debug(f"Released order lock for {domain_pattern}")
        return True

    @contextmanager
    def hold(self, domain_pattern: str) -> Iterator[str]:
        """Hold the lock for the duration of the block."""
        owner = self.acquire(domain_pattern)
        try:
            yield owner
        finally:
            try:
                self.release(domain_pattern, owner)
            except (ClientError, BotoCoreError) as e:
                # The lease expires on its own
                logger.error(f"Failed to release order lock for {domain_pattern}: {e}")
