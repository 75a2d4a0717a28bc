"""Certificate request and DNS challenge record models."""

import re
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# A single DNS label: letters, digits and inner hyphens
_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")

CHALLENGE_LABEL = "_acme-challenge"


def domain_key(domain_pattern: str) -> str:
    """
    Storage-safe key for a domain pattern.

    "*.example.com" becomes "wildcard.example.com"; exact names are unchanged.
    """
    if domain_pattern.startswith("*."):
        return "wildcard." + domain_pattern[2:]
    return domain_pattern


class CertificateRequest(BaseModel):
    """A request for one certificate, immutable once submitted to an order."""

    model_config = ConfigDict(frozen=True)

    domain_pattern: str = Field(
        ..., description="Wildcard (*.example.com) or exact domain name"
    )
    contact_email: str = Field(default="", description="ACME account contact")
    zone_id: str = Field(..., min_length=1, description="Route53 hosted zone ID")

    @field_validator("domain_pattern")
    @classmethod
    def validate_domain_pattern(cls, value: str) -> str:
        """Normalize and validate the domain pattern."""
        pattern = value.strip().lower().rstrip(".")
        labels = pattern.split(".")
        if len(labels) < 2:
            raise ValueError(f"Domain pattern needs at least two labels: {value!r}")

        first, rest = labels[0], labels[1:]
        if first != "*" and not _LABEL_RE.match(first):
            raise ValueError(f"Invalid label {first!r} in {value!r}")
        for label in rest:
            if not _LABEL_RE.match(label):
                raise ValueError(f"Invalid label {label!r} in {value!r}")
        return pattern

    @field_validator("zone_id")
    @classmethod
    def strip_zone_prefix(cls, value: str) -> str:
        """Accept both "Z123" and "/hostedzone/Z123"."""
        return value.strip().removeprefix("/hostedzone/")

    @property
    def is_wildcard(self) -> bool:
        """Check if this is a wildcard request."""
        return self.domain_pattern.startswith("*.")

    @property
    def base_domain(self) -> str:
        """Domain name without the wildcard label."""
        return self.domain_pattern.removeprefix("*.")

    @property
    def key(self) -> str:
        """Storage key for this domain pattern."""
        return domain_key(self.domain_pattern)

    def identifiers(self, include_apex: bool = True) -> list[str]:
        """
        Names to put in the CSR.

        Wildcard certificates do not cover the apex name, so it is added
        when include_apex is set.
        """
        names = [self.domain_pattern]
        if self.is_wildcard and include_apex:
            names.append(self.base_domain)
        return names


def validation_name(identifier: str) -> str:
    """TXT record name for validating an identifier (wildcard label dropped)."""
    return f"{CHALLENGE_LABEL}.{identifier.removeprefix('*.')}"


class ChallengeRecord(BaseModel):
    """
    A DNS-01 validation record.

    Owned by the DNS challenge solver for the duration of one authorization.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Fully qualified TXT record name")
    value: str = Field(..., description="Expected TXT value (key authorization digest)")
    zone_id: str = Field(..., description="Route53 hosted zone ID")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def fqdn(self) -> str:
        """Record name with the trailing dot used by Route53."""
        return self.name if self.name.endswith(".") else f"{self.name}."
