"""
Lambda handler for the certificate issuance cycle.

Invoked on a schedule (EventBridge) or on demand. Each invocation runs one
issuance cycle for one domain pattern and returns a structured result.
"""

import json
import logging
from datetime import UTC, datetime, timedelta

import boto3
from pydantic import BaseModel, ValidationError

from wildcert.config import Settings, get_settings
from wildcert.dns import DnsChallengeSolver, PropagationChecker, Route53Zone
from wildcert.issuer import AccountKeyStore, AcmeClient, OrderCoordinator
from wildcert.lifecycle import LifecycleOrchestrator
from wildcert.models import CertificateRequest, CycleResult
from wildcert.notify import NotificationPublisher
from wildcert.persistence.artifact_store import ArtifactStore
from wildcert.persistence.failure_ledger import FailureLedger
from wildcert.persistence.order_lock import OrderLock

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Stop starting new work when less than this is left (1 minute buffer)
MIN_REMAINING_TIME_MS = 60_000

# Lazy-loaded AWS clients
_clients: dict = {}


def _get_client(service: str, region_name: str | None = None):
    """Get or create a boto3 client for a service."""
    key = (service, region_name)
    if key not in _clients:
        _clients[key] = boto3.client(service, region_name=region_name)
    return _clients[key]


class IssuanceTrigger(BaseModel):
    """Trigger payload; unset fields fall back to settings."""

    domain_pattern: str | None = None
    contact_email: str | None = None
    zone_id: str | None = None
    renewal_window_days: int | None = None
    force: bool = False
    acknowledge_failures: bool = False

    @classmethod
    def from_event(cls, event: dict | None) -> "IssuanceTrigger":
        """Read the trigger from a direct or EventBridge event."""
        event = event or {}
        data = dict(event.get("detail") or {})
        for field in cls.model_fields:
            if field in event:
                data.setdefault(field, event[field])
        return cls.model_validate(data)

    def to_request(self, settings: Settings) -> CertificateRequest:
        """Build the certificate request."""
        return CertificateRequest(
            domain_pattern=self.domain_pattern or settings.domain_pattern,
            contact_email=self.contact_email or settings.contact_email,
            zone_id=self.zone_id or settings.hosted_zone_id,
        )

    def renewal_window(self, settings: Settings) -> timedelta:
        """Renewal window for this run."""
        days = self.renewal_window_days
        if days is None:
            days = settings.renewal_window_days
        return timedelta(days=days)


def compute_deadline(
    context, buffer_ms: int = MIN_REMAINING_TIME_MS
) -> datetime | None:
    """Deadline for the cycle from the remaining Lambda execution time."""
    if context is None:
        return None  # For local testing
    remaining = context.get_remaining_time_in_millis() - buffer_ms
    return datetime.now(UTC) + timedelta(milliseconds=max(remaining, 0))


def build_orchestrator(
    settings: Settings, contact_email: str = ""
) -> LifecycleOrchestrator:
    """Wire up the orchestrator and its collaborators from settings."""
    region = settings.aws_region or None
    s3_client = _get_client("s3", region)

    zone = Route53Zone(
        route53_client=_get_client("route53", region),
        ttl=settings.dns_record_ttl,
        change_policy=settings.dns_change_policy,
    )
    solver = DnsChallengeSolver(
        zone,
        PropagationChecker(
            public_resolvers=settings.public_resolvers,
            timeout=settings.dns_query_timeout,
        ),
        propagation_policy=settings.dns_propagation_policy,
    )

    account_key = AccountKeyStore(
        settings.account_key_secret_id,
        secrets_client=_get_client("secretsmanager", region),
    ).load_or_create()
    client = AcmeClient(
        settings.acme_directory_url,
        account_key,
        contact_email=contact_email or settings.contact_email,
        user_agent=settings.acme_user_agent,
    )
    coordinator = OrderCoordinator(
        client,
        order_lock=OrderLock(
            settings.artifact_bucket,
            prefix=settings.artifact_prefix,
            ttl_seconds=settings.order_lock_ttl_seconds,
            s3_client=s3_client,
        ),
        step_policy=settings.step_policy,
        rate_limit_policy=settings.rate_limit_policy,
        poll_policy=settings.order_poll_policy,
        key_size=settings.certificate_key_size,
        include_apex=settings.include_apex,
    )

    return LifecycleOrchestrator(
        store=ArtifactStore(
            settings.artifact_bucket,
            prefix=settings.artifact_prefix,
            kms_key_id=settings.kms_key_id,
            retention_days=settings.retention_days,
            s3_client=s3_client,
        ),
        coordinator=coordinator,
        solver=solver,
        publisher=NotificationPublisher(
            settings.notification_queue_url,
            policy=settings.notification_policy,
            sqs_client=_get_client("sqs", region),
        ),
        ledger=FailureLedger(
            settings.artifact_bucket,
            prefix=settings.artifact_prefix,
            s3_client=s3_client,
        ),
        renewal_window=timedelta(days=settings.renewal_window_days),
        cycle_policy=settings.cycle_policy,
        max_consecutive_failures=settings.max_consecutive_order_failures,
    )


def handler(event, context):
    """
    Issuance Lambda handler.

    Event payload options (top level or under "detail"):
        domain_pattern: str - Wildcard or exact domain, e.g. "*.example.com"
        contact_email: str - ACME account contact
        zone_id: str - Route53 hosted zone ID
        renewal_window_days: int - Renew when expiring within this many days
        force: bool - Issue even if the current certificate is not due
        acknowledge_failures: bool - Resume after repeated failed orders

    Returns:
        CycleResult as a dictionary
    """
    logger.info("Issuance handler started")
    logger.info(f"Event: {json.dumps(event, default=str)}")

    settings = get_settings()
    domain = ""

    try:
        trigger = IssuanceTrigger.from_event(event)
        domain = trigger.domain_pattern or settings.domain_pattern
        request = trigger.to_request(settings)
    except ValidationError as e:
        logger.error(f"Invalid trigger: {e}")
        return CycleResult.failed(
            domain, f"Invalid trigger: {e}", error_type="InvalidTrigger"
        ).to_dict()

    if not settings.artifact_bucket:
        raise ValueError("ARTIFACT_BUCKET not configured")

    try:
        orchestrator = build_orchestrator(settings, request.contact_email)
        result = orchestrator.run_issuance_cycle(
            request,
            force=trigger.force,
            renewal_window=trigger.renewal_window(settings),
            acknowledge_failures=trigger.acknowledge_failures,
            deadline=compute_deadline(context),
        )
    except Exception as e:
        logger.exception(f"Issuance cycle for {request.domain_pattern} crashed")
        return CycleResult.failed(
            request.domain_pattern, str(e), retryable=True, error_type=type(e).__name__
        ).to_dict()

    logger.info(f"Issuance cycle result: {result.status} ({result.reason})")
    return result.to_dict()
