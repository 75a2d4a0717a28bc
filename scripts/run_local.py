#!/usr/bin/env python3
"""Run one certificate issuance cycle locally, or inspect stored versions."""

import argparse
import json
import logging
import os
from datetime import timedelta

from dotenv import load_dotenv

from wildcert.config import LETSENCRYPT_STAGING_DIRECTORY_URL, get_settings
from wildcert.lambda_handlers.issuance import build_orchestrator
from wildcert.models import CertificateRequest
from wildcert.persistence.artifact_store import ArtifactStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def list_versions(settings, domain_pattern: str) -> None:
    """Print the stored versions of a domain, newest first."""
    store = ArtifactStore(
        settings.artifact_bucket,
        prefix=settings.artifact_prefix,
        kms_key_id=settings.kms_key_id,
        retention_days=settings.retention_days,
    )
    versions = list(store.list_versions(domain_pattern))
    if not versions:
        print(f"No versions stored for {domain_pattern}")
        return

    print(f"\nVersions of {domain_pattern} (newest first):")
    for entry in versions:
        marker = "*" if entry is versions[0] else " "
        print(
            f" {marker} v{entry.version:<4} issued {entry.issued_at:%Y-%m-%d %H:%M} "
            f"expires {entry.expires_at:%Y-%m-%d}  {entry.fingerprint_sha256[:16]}"
        )


def main():
    """Main entry point."""
    # Load environment variables from .env file
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Issue or renew a wildcard certificate via ACME DNS-01",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Issue against the Let's Encrypt staging CA
  uv run python scripts/run_local.py --domain '*.example.com' --zone-id Z123 --staging

  # Renew when expiring within 45 days
  uv run python scripts/run_local.py --renewal-window-days 45

  # Show stored versions
  uv run python scripts/run_local.py --domain '*.example.com' --list-versions
""",
    )
    parser.add_argument(
        "--domain",
        "-d",
        help="Domain pattern, e.g. '*.example.com'",
        default=os.environ.get("DOMAIN_PATTERN"),
    )
    parser.add_argument(
        "--email",
        "-e",
        help="ACME account contact email",
        default=os.environ.get("CONTACT_EMAIL"),
    )
    parser.add_argument(
        "--zone-id",
        "-z",
        help="Route53 hosted zone ID",
        default=os.environ.get("HOSTED_ZONE_ID"),
    )
    parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Issue even if the current certificate is not due for renewal",
    )
    parser.add_argument(
        "--renewal-window-days",
        type=int,
        help="Renew when the certificate expires within this many days",
    )
    parser.add_argument(
        "--acknowledge-failures",
        action="store_true",
        help="Resume issuance after repeated failed orders",
    )
    parser.add_argument(
        "--staging",
        action="store_true",
        help="Use the Let's Encrypt staging directory",
    )
    parser.add_argument(
        "--list-versions",
        action="store_true",
        help="List stored versions instead of running a cycle",
    )
    args = parser.parse_args()

    settings = get_settings()
    if args.staging:
        settings = settings.model_copy(
            update={"acme_directory_url": LETSENCRYPT_STAGING_DIRECTORY_URL}
        )
    if not settings.artifact_bucket:
        parser.error("ARTIFACT_BUCKET must be set (environment or .env)")

    domain_pattern = args.domain or settings.domain_pattern
    if not domain_pattern:
        parser.error("--domain or DOMAIN_PATTERN is required")

    if args.list_versions:
        list_versions(settings, domain_pattern)
        return

    request = CertificateRequest(
        domain_pattern=domain_pattern,
        contact_email=args.email or settings.contact_email,
        zone_id=args.zone_id or settings.hosted_zone_id,
    )
    window_days = (
        args.renewal_window_days
        if args.renewal_window_days is not None
        else settings.renewal_window_days
    )

    orchestrator = build_orchestrator(settings, request.contact_email)
    result = orchestrator.run_issuance_cycle(
        request,
        force=args.force,
        renewal_window=timedelta(days=window_days),
        acknowledge_failures=args.acknowledge_failures,
    )
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
