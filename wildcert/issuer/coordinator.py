"""ACME order coordinator: drives an order from creation to a signed certificate."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from wildcert.dns.solver import DnsChallengeSolver
from wildcert.exceptions import OrderFailed, RateLimited, TransientNetworkError
from wildcert.issuer import keys
from wildcert.issuer.client import AcmeClient
from wildcert.models import (
    CertificateRequest,
    ChallengeRecord,
    Order,
    OrderStatus,
    split_fullchain,
    validation_name,
)
from wildcert.persistence.order_lock import OrderLock
from wildcert.retry import BackoffPolicy, check_deadline

logger = logging.getLogger(__name__)

DEFAULT_STEP_POLICY = BackoffPolicy(max_attempts=4, base_delay=2.0)
DEFAULT_RATE_LIMIT_POLICY = BackoffPolicy(
    max_attempts=3, base_delay=60.0, max_delay=600.0
)
DEFAULT_POLL_POLICY = BackoffPolicy(
    max_attempts=30, base_delay=2.0, max_delay=15.0, multiplier=1.5
)

# CA statuses that mean the order is still being worked on
_ORDER_IN_FLIGHT = {"pending", "processing"}


@dataclass
class IssuedCertificate:
    """Outcome of a fulfilled order."""

    order: Order
    fullchain_pem: str
    private_key_pem: str

    @property
    def certificate_pem(self) -> str:
        """Leaf certificate."""
        return split_fullchain(self.fullchain_pem)[0]

    @property
    def chain_pem(self) -> str:
        """Issuer chain without the leaf."""
        return split_fullchain(self.fullchain_pem)[1]


def _status_name(resource: Any) -> str:
    """Status of an acme order or authorization resource as a plain string."""
    return resource.body.status.name


class OrderCoordinator:
    """
    Runs one ACME order per call to fulfill_order.

    The order moves pending -> processing (challenges answered) -> ready ->
    processing (finalizing) -> valid. Any failure reported by the CA moves
    it to invalid and raises OrderFailed; a fresh order is needed after that.
    """

    def __init__(
        self,
        client: AcmeClient,
        order_lock: OrderLock | None = None,
        step_policy: BackoffPolicy = DEFAULT_STEP_POLICY,
        rate_limit_policy: BackoffPolicy = DEFAULT_RATE_LIMIT_POLICY,
        poll_policy: BackoffPolicy = DEFAULT_POLL_POLICY,
        key_size: int = keys.DEFAULT_KEY_SIZE,
        include_apex: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the coordinator.

        Args:
            client: AcmeClient, opened for each order
            order_lock: Per-domain lock; None disables locking
            step_policy: Retries for a CA request failing with network errors
            rate_limit_policy: Retries for a CA request that was rate limited
            poll_policy: Polling of authorization and order status
            key_size: RSA key size for the certificate key
            include_apex: Add the apex name to wildcard certificates
            sleep: Sleep function (for testing)
        """
        self.client = client
        self.order_lock = order_lock
        self.step_policy = step_policy
        self.rate_limit_policy = rate_limit_policy
        self.poll_policy = poll_policy
        self.key_size = key_size
        self.include_apex = include_apex
        self._sleep = sleep

    def fulfill_order(
        self,
        request: CertificateRequest,
        solver: DnsChallengeSolver,
        deadline: datetime | None = None,
    ) -> IssuedCertificate:
        """
        Obtain a signed certificate for the request.

        Args:
            request: Certificate request
            solver: DNS challenge solver for the request's zone
            deadline: Optional cycle deadline

        Returns:
            IssuedCertificate with the valid order, fullchain and private key

        Raises:
            OrderFailed: If the CA rejects the order or rate limits persist
            OrderInProgress: If another order holds the domain lock
            TransientNetworkError: If CA requests keep failing
            DnsProvisionFailed: If a challenge record cannot be published
            CycleTimeout: If the deadline passes
        """
        if self.order_lock is None:
            with self.client:
                return self._run_order(request, solver, deadline)
        with self.order_lock.hold(request.domain_pattern), self.client:
            return self._run_order(request, solver, deadline)

    def _run_order(
        self,
        request: CertificateRequest,
        solver: DnsChallengeSolver,
        deadline: datetime | None,
    ) -> IssuedCertificate:
        identifiers = request.identifiers(include_apex=self.include_apex)
        private_key_pem = keys.generate_private_key(self.key_size)
        csr_pem = keys.make_csr(private_key_pem, identifiers)

        orderr = self._call(
            self.client.new_order, csr_pem, action="creating order", deadline=deadline
        )
        order = Order(
            order_url=orderr.uri,
            status=OrderStatus(_status_name(orderr)),
            identifiers=identifiers,
            authorizations=[authzr.uri for authzr in orderr.authorizations],
            expires=orderr.body.expires,
        )
        logger.info(
            f"Created order {order.order_url} for {', '.join(identifiers)} "
            f"({order.status})"
        )

        try:
            if order.status == OrderStatus.PENDING:
                for authzr in orderr.authorizations:
                    self._authorize(request, authzr, solver, deadline)
                order.transition_to(OrderStatus.PROCESSING)
                orderr = self._await_order(
                    order, orderr, {OrderStatus.READY, OrderStatus.VALID}, deadline
                )

            if order.status == OrderStatus.READY:
                orderr = self._call(
                    self.client.begin_finalization,
                    orderr,
                    action="finalizing order",
                    deadline=deadline,
                )
                order.transition_to(OrderStatus.PROCESSING)
                self._apply_status(order, orderr)
                if order.status != OrderStatus.VALID:
                    orderr = self._await_order(
                        order, orderr, {OrderStatus.VALID}, deadline
                    )

            if order.status != OrderStatus.VALID:
                self._fail(order, f"Order ended in unexpected status {order.status}")

            fullchain_pem = self._call(
                self.client.download_certificate,
                orderr,
                action="downloading certificate",
                deadline=deadline,
            )
        except OrderFailed as e:
            if e.order_url is None:
                e.order_url = order.order_url
            if not order.is_terminal:
                order.transition_to(OrderStatus.INVALID)
            raise

        logger.info(f"Order {order.order_url} is valid, certificate downloaded")
        return IssuedCertificate(
            order=order, fullchain_pem=fullchain_pem, private_key_pem=private_key_pem
        )

    def _authorize(
        self,
        request: CertificateRequest,
        authzr: Any,
        solver: DnsChallengeSolver,
        deadline: datetime | None,
    ) -> None:
        """Prove one authorization with a DNS-01 challenge."""
        identifier = authzr.body.identifier.value
        if _status_name(authzr) == "valid":
            logger.info(f"Authorization for {identifier} is already valid")
            return

        selected = self.client.dns_challenge(authzr)
        if selected is None:
            raise OrderFailed(f"CA offered no DNS-01 challenge for {identifier}")
        challb, validation = selected

        # Wildcard authorizations carry the bare name, so this covers both
        record = ChallengeRecord(
            name=validation_name(identifier),
            value=validation,
            zone_id=request.zone_id,
        )
        with solver.challenge(record, deadline=deadline):
            self._call(
                self.client.answer_challenge,
                challb,
                action="answering challenge",
                deadline=deadline,
            )
            self._await_authorization(authzr, identifier, deadline)

    def _await_authorization(
        self, authzr: Any, identifier: str, deadline: datetime | None
    ) -> None:
        """Poll an answered authorization until the CA decides."""
        action = f"validating {identifier}"
        for attempt in range(self.poll_policy.max_attempts):
            check_deadline(deadline, action)
            authzr = self._call(
                self.client.poll_authorization,
                authzr,
                action="polling authorization",
                deadline=deadline,
            )
            status = _status_name(authzr)
            if status == "valid":
                logger.info(f"Authorization for {identifier} is valid")
                return
            if status != "pending":
                raise OrderFailed(
                    f"Authorization for {identifier} is {status}: "
                    f"{self._challenge_errors(authzr)}"
                )
            if self.poll_policy.has_attempts_left(attempt):
                self._wait(self.poll_policy.delay(attempt), deadline, action)

        raise OrderFailed(f"Authorization for {identifier} still pending")

    @staticmethod
    def _challenge_errors(authzr: Any) -> str:
        errors = [
            str(challb.error) for challb in authzr.body.challenges if challb.error
        ]
        return "; ".join(errors) or "no details"

    def _await_order(
        self,
        order: Order,
        orderr: Any,
        targets: set[OrderStatus],
        deadline: datetime | None,
    ) -> Any:
        """Poll the order until it reaches one of the target statuses."""
        action = f"waiting for order {order.order_url}"
        for attempt in range(self.poll_policy.max_attempts):
            check_deadline(deadline, action)
            orderr = self._call(
                self.client.fetch_order,
                orderr,
                action="polling order",
                deadline=deadline,
            )
            self._apply_status(order, orderr)
            if order.status in targets:
                return orderr
            if self.poll_policy.has_attempts_left(attempt):
                self._wait(self.poll_policy.delay(attempt), deadline, action)

        self._fail(
            order,
            f"Order {order.order_url} did not reach "
            f"{'/'.join(sorted(targets))} in time",
        )

    def _apply_status(self, order: Order, orderr: Any) -> None:
        """Move the local order to the status reported by the CA."""
        status = _status_name(orderr)
        if status in _ORDER_IN_FLIGHT:
            return
        if status == OrderStatus.INVALID:
            error = getattr(orderr.body, "error", None)
            order.transition_to(OrderStatus.INVALID)
            raise OrderFailed(
                f"Order {order.order_url} is invalid: {error or 'no details'}",
                order_url=order.order_url,
            )
        order.transition_to(OrderStatus(status))

    def _fail(self, order: Order, message: str) -> None:
        order.transition_to(OrderStatus.INVALID)
        raise OrderFailed(message, order_url=order.order_url)

    def _wait(self, delay: float, deadline: datetime | None, action: str) -> None:
        """Sleep before the next attempt, unless that would pass the deadline."""
        check_deadline(deadline, action, delay=delay)
        self._sleep(delay)

    def _call(
        self,
        func: Callable[..., Any],
        *args: Any,
        action: str,
        deadline: datetime | None = None,
    ) -> Any:
        """
        Call the CA with local retries.

        Network errors are retried with the step policy and rate limits
        with the rate-limit policy. No retry sleeps past the deadline.

        Raises:
            OrderFailed: If still rate limited after the last attempt
            TransientNetworkError: If network errors persist
            CycleTimeout: If the deadline passes or the next backoff would
                run past it
        """
        network_attempt = 0
        rate_attempt = 0
        while True:
            check_deadline(deadline, action)
            try:
                return func(*args)
            except RateLimited as e:
                if not self.rate_limit_policy.has_attempts_left(rate_attempt):
                    raise OrderFailed(
                        f"Still rate limited after {rate_attempt + 1} attempts "
                        f"while {action}: {e}"
                    ) from e
                delay = self.rate_limit_policy.delay(rate_attempt)
                if e.retry_after:
                    delay = max(delay, e.retry_after)
                logger.warning(f"Rate limited while {action}, retrying in {delay:.0f}s")
                self._wait(delay, deadline, action)
                rate_attempt += 1
            except TransientNetworkError as e:
                if not self.step_policy.has_attempts_left(network_attempt):
                    raise
                delay = self.step_policy.delay(network_attempt)
                logger.warning(f"{e}, retrying in {delay:.0f}s")
                self._wait(delay, deadline, action)
                network_attempt += 1
