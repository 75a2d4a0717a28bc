"""DNS-01 challenge solver: publish, confirm and remove validation records."""

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from botocore.exceptions import BotoCoreError, ClientError

from wildcert.dns.propagation import PropagationChecker
from wildcert.dns.route53 import Route53Zone
from wildcert.exceptions import DnsProvisionFailed
from wildcert.models import ChallengeRecord
from wildcert.retry import BackoffPolicy, check_deadline

logger = logging.getLogger(__name__)

DEFAULT_PROPAGATION_POLICY = BackoffPolicy(
    max_attempts=20, base_delay=5.0, max_delay=30.0, multiplier=1.5
)
DEFAULT_CLEANUP_POLICY = BackoffPolicy(max_attempts=3, base_delay=2.0)


class DnsChallengeSolver:
    """
    Proves control of a domain by publishing DNS-01 TXT records.

    Each record written by prove_challenge is owned by the solver until
    cleanup removes it. Use challenge() to get both steps with cleanup
    guaranteed on every exit path.
    """

    def __init__(
        self,
        zone: Route53Zone,
        checker: PropagationChecker,
        propagation_policy: BackoffPolicy = DEFAULT_PROPAGATION_POLICY,
        cleanup_policy: BackoffPolicy = DEFAULT_CLEANUP_POLICY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.zone = zone
        self.checker = checker
        self.propagation_policy = propagation_policy
        self.cleanup_policy = cleanup_policy
        self._sleep = sleep

    def prove_challenge(
        self, record: ChallengeRecord, deadline: datetime | None = None
    ) -> None:
        """
        Publish the record and wait until it is visible.

        The record is removed again if this raises.

        Args:
            record: Challenge record to publish
            deadline: Optional cycle deadline

        Raises:
            DnsProvisionFailed: If the record cannot be written, or is not
                observed on all name servers within the propagation policy
            CycleTimeout: If the deadline passes while waiting
        """
        change_id = self.zone.upsert_txt(record)
        try:
            self._await_visible(record, change_id, deadline)
        except BaseException:
            self.cleanup(record)
            raise

    def _await_visible(
        self, record: ChallengeRecord, change_id: str, deadline: datetime | None
    ) -> None:
        self.zone.wait_for_change(change_id)

        try:
            name_servers = self.zone.name_servers(record.zone_id)
        except (ClientError, BotoCoreError) as e:
            raise DnsProvisionFailed(
                f"Failed to look up name servers for zone {record.zone_id}: {e}"
            ) from e

        action = f"waiting for {record.name} to propagate"
        for attempt in range(self.propagation_policy.max_attempts):
            check_deadline(deadline, action)
            if self.checker.is_visible(record, name_servers):
                logger.info(f"TXT record {record.name} is visible on all servers")
                return
            if self.propagation_policy.has_attempts_left(attempt):
                delay = self.propagation_policy.delay(attempt)
                logger.debug(
                    f"TXT record {record.name} not propagated "
                    f"(attempt {attempt + 1}), retrying in {delay:.0f}s"
                )
                check_deadline(deadline, action, delay=delay)
                self._sleep(delay)

        raise DnsProvisionFailed(
            f"TXT record {record.name} not visible after "
            f"{self.propagation_policy.max_attempts} checks"
        )

    def cleanup(self, record: ChallengeRecord) -> bool:
        """
        Remove a challenge record.

        Failures are retried, then logged. Nothing is raised.

        Returns:
            True if the record is gone
        """
        for attempt in range(self.cleanup_policy.max_attempts):
            try:
                self.zone.delete_txt(record)
                return True
            except (ClientError, BotoCoreError) as e:
                if self.cleanup_policy.has_attempts_left(attempt):
                    delay = self.cleanup_policy.delay(attempt)
                    logger.warning(
                        f"Failed to delete TXT record {record.name}: {e}, "
                        f"retrying in {delay:.0f}s"
                    )
                    self._sleep(delay)
                else:
                    logger.error(
                        f"Giving up deleting TXT record {record.name} "
                        f"after {attempt + 1} attempts: {e}"
                    )
        return False

    @contextmanager
    def challenge(
        self, record: ChallengeRecord, deadline: datetime | None = None
    ) -> Iterator[ChallengeRecord]:
        """
        Publish a record for the duration of the block.

        The record is removed when the block exits, whether it succeeded
        or raised. If prove_challenge fails the block does not run.
        """
        self.prove_challenge(record, deadline=deadline)
        try:
            yield record
        finally:
            self.cleanup(record)

    def record_present(self, record: ChallengeRecord) -> bool:
        """Check whether the record value is still stored in the zone."""
        return record.value in self.zone.txt_values(record)
