"""Versioned certificate artifacts in S3."""

import logging
import re
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from wildcert.exceptions import ArtifactWriteFailed, ConcurrentUpdateError
from wildcert.models import ArtifactVersion, CertificateArtifact, domain_key
from wildcert.persistence.s3_objects import (
    dump_json,
    is_missing,
    is_precondition_failure,
    read_json_object,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
POINTER_NAME = "current.json"
PEM_CONTENT_TYPE = "application/x-pem-file"
DEFAULT_RETENTION_DAYS = 30

_VERSION_DIR_RE = re.compile(r"/versions/(\d{8})/([^/]+)$")


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ArtifactStore:
    """
    Durable, versioned certificate storage.

    Layout under ``{prefix}/{domain_key}/``::

        versions/00000001/certificate.pem
        versions/00000001/chain.pem
        versions/00000001/fullchain.pem
        versions/00000001/private_key.pem
        versions/00000001/manifest.json   (written last, marks completion)
        current.json                      (pointer to the current version)

    Every object is written once with IfNoneMatch="*". The pointer is only
    moved with a conditional write after the manifest exists, so readers
    never see a partially written version as current.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "certificates",
        kms_key_id: str = "",
        retention_days: int = DEFAULT_RETENTION_DAYS,
        s3_client=None,
    ):
        """
        Initialize the artifact store.

        Args:
            bucket: S3 bucket name
            prefix: Key prefix for all domains
            kms_key_id: KMS key for SSE-KMS; SSE-S3 (AES256) when empty
            retention_days: How long a superseded version is kept
            s3_client: Optional boto3 S3 client (for testing)
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.kms_key_id = kms_key_id
        self.retention = timedelta(days=retention_days)
        self._s3_client = s3_client

    @property
    def s3_client(self):
        """Lazy-load S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client("s3")
        return self._s3_client

    # Key layout

    def domain_prefix(self, domain_pattern: str) -> str:
        """Key prefix for everything stored for a domain pattern."""
        return f"{self.prefix}/{domain_key(domain_pattern)}/"

    def version_prefix(self, domain_pattern: str, version: int) -> str:
        """Key prefix of one version."""
        return f"{self.domain_prefix(domain_pattern)}versions/{version:08d}/"

    def pointer_key(self, domain_pattern: str) -> str:
        """Key of the current-version pointer."""
        return f"{self.domain_prefix(domain_pattern)}{POINTER_NAME}"

    def manifest_key(self, domain_pattern: str, version: int) -> str:
        """Key of a version's manifest."""
        return f"{self.version_prefix(domain_pattern, version)}{MANIFEST_NAME}"

    # Low-level S3 access

    def _encryption_args(self) -> dict[str, str]:
        if self.kms_key_id:
            return {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": self.kms_key_id}
        return {"ServerSideEncryption": "AES256"}

    def _put(self, key: str, body: str, content_type: str, **conditions) -> dict:
        return self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType=content_type,
            **self._encryption_args(),
            **conditions,
        )

    def _read_text(self, key: str) -> str:
        response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read().decode("utf-8")

    def _list_keys(self, prefix: str) -> Iterator[str]:
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                yield obj["Key"]

    def _scan_versions(self, domain_pattern: str) -> tuple[set[int], set[int]]:
        """
        Find all version numbers ever written, and the complete ones.

        Returns:
            Tuple of (all version numbers, versions with a manifest)
        """
        found: set[int] = set()
        complete: set[int] = set()
        prefix = f"{self.domain_prefix(domain_pattern)}versions/"
        for key in self._list_keys(prefix):
            match = _VERSION_DIR_RE.search(key)
            if not match:
                continue
            version = int(match.group(1))
            found.add(version)
            if match.group(2) == MANIFEST_NAME:
                complete.add(version)
        return found, complete

    def _read_pointer(self, domain_pattern: str) -> tuple[dict | None, str | None]:
        return read_json_object(
            self.s3_client, self.bucket, self.pointer_key(domain_pattern)
        )

    def _read_manifest(self, domain_pattern: str, version: int) -> dict | None:
        data, _ = read_json_object(
            self.s3_client, self.bucket, self.manifest_key(domain_pattern, version)
        )
        return data

    # Public API

    def current_version(self, domain_pattern: str) -> int | None:
        """Get the current version number, or None if nothing was committed."""
        pointer, _ = self._read_pointer(domain_pattern)
        return pointer["version"] if pointer else None

    def commit(self, artifact: CertificateArtifact) -> int:
        """
        Write a new version and make it current.

        Args:
            artifact: Artifact from a valid order (its version is ignored)

        Returns:
            The new version number

        Raises:
            ConcurrentUpdateError: If another writer moved the pointer or
                claimed the same version number
            ArtifactWriteFailed: On any other storage error; the current
                pointer is unchanged
        """
        domain = artifact.domain_pattern
        try:
            pointer, etag = self._read_pointer(domain)
            found, _ = self._scan_versions(domain)
        except (ClientError, BotoCoreError) as e:
            raise ArtifactWriteFailed(f"Failed to read state for {domain}: {e}") from e

        if pointer:
            found.add(pointer["version"])
        version = max(found, default=0) + 1
        prefix = self.version_prefix(domain, version)
        manifest_key = self.manifest_key(domain, version)

        files = {
            "certificate.pem": artifact.certificate_pem,
            "chain.pem": artifact.chain_pem,
            "fullchain.pem": artifact.fullchain_pem,
            "private_key.pem": artifact.private_key_pem,
        }
        object_versions: dict[str, str] = {}

        try:
            for name, body in files.items():
                response = self._put(
                    prefix + name, body, PEM_CONTENT_TYPE, IfNoneMatch="*"
                )
                if response.get("VersionId"):
                    object_versions[name] = response["VersionId"]

            manifest = self._manifest(artifact, version, files, object_versions)
            self._put(
                manifest_key, dump_json(manifest), "application/json", IfNoneMatch="*"
            )
        except ClientError as e:
            if is_precondition_failure(e):
                raise ConcurrentUpdateError(
                    f"Version {version} of {domain} is being written by another run"
                ) from e
            raise ArtifactWriteFailed(
                f"Failed to write version {version} of {domain}: {e}"
            ) from e
        except BotoCoreError as e:
            raise ArtifactWriteFailed(
                f"Failed to write version {version} of {domain}: {e}"
            ) from e

        self._swap_pointer(artifact, version, manifest_key, etag)
        logger.info(
            f"Committed version {version} of {domain} (expires {artifact.expires_at})"
        )

        try:
            self.purge_expired(domain)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to purge old versions of {domain}: {e}")

        return version

    def _manifest(
        self,
        artifact: CertificateArtifact,
        version: int,
        files: dict[str, str],
        object_versions: dict[str, str],
    ) -> dict[str, Any]:
        prefix = self.version_prefix(artifact.domain_pattern, version)
        return {
            "version": version,
            "domain_pattern": artifact.domain_pattern,
            "issued_at": artifact.issued_at.isoformat(),
            "expires_at": artifact.expires_at.isoformat(),
            "not_before": (
                artifact.not_before.isoformat() if artifact.not_before else None
            ),
            "serial_number": artifact.serial_number,
            "fingerprint_sha256": artifact.fingerprint_sha256,
            "files": {name: prefix + name for name in files},
            "object_versions": object_versions,
        }

    def _swap_pointer(
        self,
        artifact: CertificateArtifact,
        version: int,
        manifest_key: str,
        etag: str | None,
    ) -> None:
        """Move the pointer with compare-and-swap on the ETag read before writing."""
        domain = artifact.domain_pattern
        pointer = {
            "version": version,
            "manifest_key": manifest_key,
            "issued_at": artifact.issued_at.isoformat(),
            "expires_at": artifact.expires_at.isoformat(),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        conditions = {"IfMatch": etag} if etag else {"IfNoneMatch": "*"}
        try:
            self._put(
                self.pointer_key(domain),
                dump_json(pointer),
                "application/json",
                **conditions,
            )
        except ClientError as e:
            if is_precondition_failure(e):
                self._withdraw_manifest(domain, version)
                raise ConcurrentUpdateError(
                    f"Current version of {domain} was updated by another run"
                ) from e
            raise ArtifactWriteFailed(
                f"Failed to update current version of {domain}: {e}"
            ) from e
        except BotoCoreError as e:
            raise ArtifactWriteFailed(
                f"Failed to update current version of {domain}: {e}"
            ) from e

    def _withdraw_manifest(self, domain_pattern: str, version: int) -> None:
        """Mark a version that lost the pointer race as incomplete."""
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket, Key=self.manifest_key(domain_pattern, version)
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                f"Failed to withdraw manifest of version {version} "
                f"of {domain_pattern}: {e}"
            )

    def get_version(
        self, domain_pattern: str, version: int
    ) -> CertificateArtifact | None:
        """
        Load a complete version.

        Returns:
            The artifact, or None if the version has no manifest
        """
        manifest = self._read_manifest(domain_pattern, version)
        if manifest is None:
            return None
        prefix = self.version_prefix(domain_pattern, version)
        return CertificateArtifact(
            version=version,
            domain_pattern=manifest["domain_pattern"],
            certificate_pem=self._read_text(prefix + "certificate.pem"),
            chain_pem=self._read_text(prefix + "chain.pem"),
            private_key_pem=self._read_text(prefix + "private_key.pem"),
            issued_at=manifest["issued_at"],
            expires_at=manifest["expires_at"],
            not_before=manifest.get("not_before"),
            serial_number=manifest.get("serial_number", ""),
            fingerprint_sha256=manifest.get("fingerprint_sha256", ""),
        )

    def get_current(self, domain_pattern: str) -> CertificateArtifact | None:
        """Load the current artifact, or None if nothing was committed."""
        version = self.current_version(domain_pattern)
        if version is None:
            logger.info(f"No current certificate for {domain_pattern}")
            return None
        artifact = self.get_version(domain_pattern, version)
        if artifact is None:
            logger.error(
                f"Current version {version} of {domain_pattern} has no manifest"
            )
        return artifact

    def list_versions(self, domain_pattern: str) -> Iterator[ArtifactVersion]:
        """
        List committed versions, newest first.

        Only complete versions not newer than the current one are listed,
        so the first entry is always the current version. Each call starts
        a fresh listing.
        """
        current = self.current_version(domain_pattern)
        if current is None:
            return
        _, complete = self._scan_versions(domain_pattern)
        for version in sorted((v for v in complete if v <= current), reverse=True):
            manifest = self._read_manifest(domain_pattern, version)
            if manifest is None:
                continue
            yield ArtifactVersion(
                version=version,
                domain_pattern=manifest["domain_pattern"],
                issued_at=manifest["issued_at"],
                expires_at=manifest["expires_at"],
                manifest_key=self.manifest_key(domain_pattern, version),
                fingerprint_sha256=manifest.get("fingerprint_sha256", ""),
                object_versions=manifest.get("object_versions", {}),
            )

    def purge_expired(
        self, domain_pattern: str, now: datetime | None = None
    ) -> list[int]:
        """
        Delete versions that are no longer needed.

        A superseded version is deleted once the version that replaced it
        has been current for longer than the retention period. Incomplete
        versions older than the current one are deleted. The current version
        is never deleted.

        Returns:
            Deleted version numbers
        """
        now = now or datetime.now(UTC)
        pointer, _ = self._read_pointer(domain_pattern)
        if pointer is None:
            return []
        current = pointer["version"]
        found, complete = self._scan_versions(domain_pattern)

        # Time each complete version became current, approximated by issue time
        issued: dict[int, datetime] = {current: _parse_time(pointer["issued_at"])}
        kept = sorted(v for v in complete if v < current)

        purged = []
        for version in sorted(v for v in found if v < current):
            if version not in complete:
                self._delete_version(domain_pattern, version)
                purged.append(version)
                continue

            successor = next((v for v in kept if v > version), current)
            if successor not in issued:
                manifest = self._read_manifest(domain_pattern, successor)
                if manifest is None:
                    continue
                issued[successor] = _parse_time(manifest["issued_at"])
            if issued[successor] + self.retention < now:
                self._delete_version(domain_pattern, version)
                purged.append(version)

        if purged:
            logger.info(f"Purged versions {purged} of {domain_pattern}")
        return purged

    def _delete_version(self, domain_pattern: str, version: int) -> None:
        """Delete a version, manifest first so it never looks complete while partial."""
        manifest_key = self.manifest_key(domain_pattern, version)
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=manifest_key)
        except ClientError as e:
            if not is_missing(e):
                raise
        keys = [
            key
            for key in self._list_keys(self.version_prefix(domain_pattern, version))
            if key != manifest_key
        ]
        if keys:
            self.s3_client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )
