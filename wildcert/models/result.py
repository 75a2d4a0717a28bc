"""Structured result of an issuance cycle."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from wildcert.exceptions import CertificateLifecycleError


class CycleStatus(StrEnum):
    """Outcome of an issuance cycle."""

    SKIPPED = "skipped"
    ISSUED = "issued"
    FAILED = "failed"


class CycleResult(BaseModel):
    """Result returned to the trigger, suitable for alerting."""

    status: CycleStatus
    domain_pattern: str
    version: int | None = None
    reason: str = ""
    error_type: str | None = None
    retryable: bool = False
    expires_at: datetime | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def skipped(
        cls, domain_pattern: str, reason: str, expires_at: datetime | None = None
    ) -> "CycleResult":
        """Nothing to do, current certificate is fine."""
        return cls(
            status=CycleStatus.SKIPPED,
            domain_pattern=domain_pattern,
            reason=reason,
            expires_at=expires_at,
        )

    @classmethod
    def issued(
        cls,
        domain_pattern: str,
        version: int,
        expires_at: datetime,
        warnings: list[str] | None = None,
    ) -> "CycleResult":
        """A new version was committed."""
        return cls(
            status=CycleStatus.ISSUED,
            domain_pattern=domain_pattern,
            version=version,
            expires_at=expires_at,
            warnings=warnings or [],
        )

    @classmethod
    def failed(
        cls,
        domain_pattern: str,
        error: CertificateLifecycleError | str,
        retryable: bool | None = None,
        error_type: str | None = None,
    ) -> "CycleResult":
        """Cycle aborted; the previous artifact is untouched."""
        if isinstance(error, CertificateLifecycleError):
            reason = error.reason
            error_type = error_type or error.__class__.__name__
            retryable = error.retryable if retryable is None else retryable
        else:
            reason = error
        return cls(
            status=CycleStatus.FAILED,
            domain_pattern=domain_pattern,
            reason=reason,
            error_type=error_type,
            retryable=bool(retryable),
        )

    @property
    def ok(self) -> bool:
        """Check if the cycle did not fail."""
        return self.status != CycleStatus.FAILED

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")
