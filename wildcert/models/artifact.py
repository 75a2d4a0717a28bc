"""Certificate artifact models."""

import re
from datetime import UTC, datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from pydantic import BaseModel, Field

_PEM_CERT_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----\r?\n.+?\r?\n-----END CERTIFICATE-----",
    re.DOTALL,
)


def split_fullchain(fullchain_pem: str) -> tuple[str, str]:
    """
    Split a fullchain PEM into the leaf certificate and the issuer chain.

    Returns:
        Tuple of (certificate_pem, chain_pem); chain_pem may be empty

    Raises:
        ValueError: If no certificate is found
    """
    blocks = _PEM_CERT_RE.findall(fullchain_pem)
    if not blocks:
        raise ValueError("No PEM certificate found in fullchain")
    certificate = blocks[0] + "\n"
    chain = "".join(block + "\n" for block in blocks[1:])
    return certificate, chain


class CertificateArtifact(BaseModel):
    """
    An issued certificate with its private key and chain.

    Written once per successful issuance and never mutated in place. The
    version is assigned by the artifact store on commit.
    """

    version: int | None = Field(default=None, description="Store-assigned version")
    domain_pattern: str
    certificate_pem: str
    private_key_pem: str
    chain_pem: str = ""
    issued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime
    not_before: datetime | None = None
    serial_number: str = ""
    fingerprint_sha256: str = ""

    @classmethod
    def from_pem(
        cls,
        domain_pattern: str,
        fullchain_pem: str,
        private_key_pem: str,
        issued_at: datetime | None = None,
    ) -> "CertificateArtifact":
        """
        Build an artifact from a CA-issued fullchain.

        Validity dates, serial and fingerprint are read from the leaf
        certificate.
        """
        certificate_pem, chain_pem = split_fullchain(fullchain_pem)
        cert = x509.load_pem_x509_certificate(certificate_pem.encode("ascii"))
        return cls(
            domain_pattern=domain_pattern,
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
            chain_pem=chain_pem,
            issued_at=issued_at or datetime.now(UTC),
            expires_at=cert.not_valid_after_utc,
            not_before=cert.not_valid_before_utc,
            serial_number=format(cert.serial_number, "x"),
            fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        )

    @property
    def fullchain_pem(self) -> str:
        """Leaf certificate followed by the chain."""
        return self.certificate_pem + self.chain_pem

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        """Check if the certificate expires within the given number of seconds."""
        now = now or datetime.now(UTC)
        return (self.expires_at - now).total_seconds() <= seconds


class ArtifactVersion(BaseModel):
    """Listing entry for one committed artifact version (no key material)."""

    version: int
    domain_pattern: str
    issued_at: datetime
    expires_at: datetime
    manifest_key: str
    fingerprint_sha256: str = ""
    object_versions: dict[str, str] = Field(
        default_factory=dict, description="S3 VersionId per stored file"
    )
