"""Lifecycle orchestrator: one issuance cycle per invocation."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from botocore.exceptions import BotoCoreError, ClientError

from wildcert.dns.solver import DnsChallengeSolver
from wildcert.exceptions import (
    ArtifactWriteFailed,
    CycleTimeout,
    DeliveryFailed,
    DnsProvisionFailed,
    OrderFailed,
    OrderInProgress,
    RateLimited,
    TransientNetworkError,
)
from wildcert.issuer.coordinator import IssuedCertificate, OrderCoordinator
from wildcert.models import CertificateArtifact, CertificateRequest, CycleResult
from wildcert.notify.publisher import NotificationPublisher
from wildcert.persistence.artifact_store import ArtifactStore
from wildcert.persistence.failure_ledger import FailureLedger
from wildcert.retry import BackoffPolicy

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_WINDOW = timedelta(days=30)
DEFAULT_CYCLE_POLICY = BackoffPolicy(max_attempts=3, base_delay=30.0)

# Failures that a fresh order may get past
RETRYABLE_ORDER_ERRORS = (TransientNetworkError, RateLimited, DnsProvisionFailed)


class LifecycleOrchestrator:
    """
    Decides whether a certificate needs issuing and drives the cycle.

    A cycle reads the current artifact, then either skips or runs an
    order, commits the new version and announces it. A notification is
    only sent after the version is durably committed.
    """

    def __init__(
        self,
        store: ArtifactStore,
        coordinator: OrderCoordinator,
        solver: DnsChallengeSolver,
        publisher: NotificationPublisher,
        ledger: FailureLedger | None = None,
        renewal_window: timedelta = DEFAULT_RENEWAL_WINDOW,
        cycle_policy: BackoffPolicy = DEFAULT_CYCLE_POLICY,
        max_consecutive_failures: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Artifact store
            coordinator: ACME order coordinator
            solver: DNS challenge solver
            publisher: Notification publisher
            ledger: Failure ledger; None disables failure tracking
            renewal_window: Renew when the certificate expires within this
            cycle_policy: Backoff between fresh orders after retryable errors
            max_consecutive_failures: Suspend issuance after this many
                consecutive failed orders (0 disables)
            sleep: Sleep function (for testing)
        """
        self.store = store
        self.coordinator = coordinator
        self.solver = solver
        self.publisher = publisher
        self.ledger = ledger
        self.renewal_window = renewal_window
        self.cycle_policy = cycle_policy
        self.max_consecutive_failures = max_consecutive_failures
        self._sleep = sleep

    def needs_renewal(
        self,
        current: CertificateArtifact | None,
        renewal_window: timedelta | None = None,
        force: bool = False,
        now: datetime | None = None,
    ) -> bool:
        """Check whether a new certificate should be issued."""
        if force:
            logger.info("Forced issuance requested")
            return True
        if current is None:
            logger.info("No current certificate")
            return True
        window = renewal_window if renewal_window is not None else self.renewal_window
        if current.expires_within(window.total_seconds(), now=now):
            logger.info(
                f"Version {current.version} expires {current.expires_at}, "
                f"within the {window.days}-day renewal window"
            )
            return True
        return False

    def run_issuance_cycle(
        self,
        request: CertificateRequest,
        force: bool = False,
        renewal_window: timedelta | None = None,
        acknowledge_failures: bool = False,
        deadline: datetime | None = None,
    ) -> CycleResult:
        """
        Run one issuance cycle for a request.

        Args:
            request: Certificate request
            force: Issue even if the current certificate is not due
            renewal_window: Override of the default renewal window
            acknowledge_failures: Reset a suspended failure count and retry
            deadline: Time by which the cycle must have finished

        Returns:
            CycleResult with status skipped, issued or failed
        """
        domain = request.domain_pattern
        logger.info(f"Starting issuance cycle for {domain}")

        try:
            suspended = self._check_suspended(domain, acknowledge_failures)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failure ledger unavailable for {domain}: {e}")
            return CycleResult.failed(
                domain,
                f"Failure ledger unavailable: {e}",
                retryable=True,
                error_type="FailureLedgerUnavailable",
            )
        if suspended:
            return suspended

        try:
            current = self.store.get_current(domain)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Could not read current certificate for {domain}: {e}")
            return CycleResult.failed(
                domain,
                f"Could not read current certificate: {e}",
                retryable=True,
                error_type="ArtifactReadFailed",
            )

        if not self.needs_renewal(current, renewal_window, force):
            logger.info(f"Version {current.version} of {domain} is current, skipping")
            return CycleResult.skipped(
                domain,
                f"Version {current.version} is valid until {current.expires_at}",
                expires_at=current.expires_at,
            )

        outcome = self._obtain_certificate(request, deadline)
        if isinstance(outcome, CycleResult):
            return outcome

        try:
            artifact = CertificateArtifact.from_pem(
                domain, outcome.fullchain_pem, outcome.private_key_pem
            )
        except ValueError as e:
            error = OrderFailed(
                f"CA returned an unreadable certificate: {e}",
                order_url=outcome.order.order_url,
            )
            self._record_failure(domain, error)
            return CycleResult.failed(domain, error)

        try:
            version = self.store.commit(artifact)
        except ArtifactWriteFailed as e:
            logger.error(f"Could not commit certificate for {domain}: {e}")
            return CycleResult.failed(domain, e, retryable=True)

        warnings = []
        try:
            self.publisher.announce(version, domain, artifact.issued_at)
        except DeliveryFailed as e:
            logger.warning(
                f"Version {version} of {domain} committed but not announced: {e}"
            )
            warnings.append(f"Notification failed: {e.reason}")

        self._reset_failures(domain)
        logger.info(f"Issued version {version} of {domain}")
        return CycleResult.issued(domain, version, artifact.expires_at, warnings)

    def _obtain_certificate(
        self, request: CertificateRequest, deadline: datetime | None
    ) -> IssuedCertificate | CycleResult:
        """Run orders until one succeeds, or return the failed result."""
        domain = request.domain_pattern
        policy = self.cycle_policy

        for attempt in range(policy.max_attempts):
            try:
                if deadline is not None and datetime.now(UTC) >= deadline:
                    raise CycleTimeout(f"Deadline passed before order {attempt + 1}")
                return self.coordinator.fulfill_order(
                    request, self.solver, deadline=deadline
                )
            except RETRYABLE_ORDER_ERRORS as e:
                if not policy.has_attempts_left(attempt):
                    logger.error(
                        f"Giving up on {domain} after {attempt + 1} orders: {e}"
                    )
                    return CycleResult.failed(domain, e)
                delay = policy.delay(attempt)
                if isinstance(e, RateLimited) and e.retry_after:
                    delay = max(delay, e.retry_after)
                if deadline is not None and datetime.now(UTC) + timedelta(
                    seconds=delay
                ) >= deadline:
                    return CycleResult.failed(
                        domain, CycleTimeout(f"No time left to retry after: {e}")
                    )
                logger.warning(
                    f"Order {attempt + 1} for {domain} failed: {e}, "
                    f"retrying with a fresh order in {delay:.0f}s"
                )
                self._sleep(delay)
            except OrderFailed as e:
                logger.error(f"Order for {domain} failed: {e}")
                self._record_failure(domain, e)
                return CycleResult.failed(domain, e)
            except (OrderInProgress, CycleTimeout) as e:
                logger.error(f"Issuance cycle for {domain} aborted: {e}")
                return CycleResult.failed(domain, e)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Storage error during order for {domain}: {e}")
                return CycleResult.failed(
                    domain,
                    f"Storage error during order: {e}",
                    retryable=True,
                    error_type=e.__class__.__name__,
                )

        return CycleResult.failed(domain, "No order attempts configured")

    def _check_suspended(
        self, domain: str, acknowledge_failures: bool
    ) -> CycleResult | None:
        if self.ledger is None:
            return None
        if acknowledge_failures:
            self.ledger.reset(domain)
            return None
        if not self.ledger.is_suspended(domain, self.max_consecutive_failures):
            return None
        record = self.ledger.load(domain)
        logger.error(
            f"Issuance for {domain} suspended after "
            f"{record.consecutive_failures} consecutive failed orders"
        )
        return CycleResult.failed(
            domain,
            f"Suspended after {record.consecutive_failures} consecutive failed "
            f"orders (last: {record.last_reason}); acknowledge to resume",
            retryable=False,
            error_type="IssuanceSuspended",
        )

    def _record_failure(self, domain: str, error: OrderFailed) -> None:
        if self.ledger is None:
            return
        try:
            self.ledger.record_failure(domain, error.reason)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not record order failure for {domain}: {e}")

    def _reset_failures(self, domain: str) -> None:
        if self.ledger is None:
            return
        try:
            self.ledger.reset(domain)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not reset order failures for {domain}: {e}")
