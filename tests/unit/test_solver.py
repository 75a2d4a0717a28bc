"""Tests for the DNS challenge solver."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from wildcert.dns.solver import DnsChallengeSolver
from wildcert.exceptions import CycleTimeout, DnsProvisionFailed
from wildcert.retry import BackoffPolicy


def _solver(zone, visible=True, attempts=3):
    checker = MagicMock()
    if isinstance(visible, list):
        checker.is_visible.side_effect = visible
    else:
        checker.is_visible.return_value = visible
    sleep = MagicMock()
    solver = DnsChallengeSolver(
        zone,
        checker,
        propagation_policy=BackoffPolicy(max_attempts=attempts, base_delay=1.0),
        cleanup_policy=BackoffPolicy(max_attempts=3, base_delay=1.0),
        sleep=sleep,
    )
    return solver, checker, sleep


class TestProveChallenge:
    """Tests for publishing a challenge record."""

    def test_record_published_and_visible(self, fake_zone, challenge_record):
        """Test the record is written and checked on the zone's servers."""
        solver, checker, sleep = _solver(fake_zone)

        solver.prove_challenge(challenge_record)

        assert solver.record_present(challenge_record)
        checker.is_visible.assert_called_once_with(
            challenge_record, ["ns-1.awsdns-01.org"]
        )
        sleep.assert_not_called()

    def test_waits_for_propagation(self, fake_zone, challenge_record):
        """Test polling continues until the record is visible."""
        solver, checker, sleep = _solver(fake_zone, visible=[False, False, True])

        solver.prove_challenge(challenge_record)

        assert checker.is_visible.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_propagation_timeout(self, fake_zone, challenge_record):
        """Test a record never seen raises DnsProvisionFailed."""
        solver, checker, _ = _solver(fake_zone, visible=False, attempts=3)

        with pytest.raises(DnsProvisionFailed, match="not visible"):
            solver.prove_challenge(challenge_record)

        assert checker.is_visible.call_count == 3
        assert fake_zone.records == {}
        assert fake_zone.deleted == [challenge_record]

    def test_deadline(self, fake_zone, challenge_record):
        """Test a passed deadline stops the wait."""
        solver, _, _ = _solver(fake_zone, visible=False)

        with pytest.raises(CycleTimeout):
            solver.prove_challenge(
                challenge_record, deadline=datetime.now(UTC) - timedelta(seconds=1)
            )

        assert fake_zone.records == {}

    def test_name_server_lookup_failure(self, challenge_record):
        """Test a failed name server lookup removes the published record."""
        zone = MagicMock()
        zone.upsert_txt.return_value = "/change/C1"
        zone.name_servers.side_effect = ClientError(
            {"Error": {"Code": "NoSuchHostedZone", "Message": ""}}, "GetHostedZone"
        )
        solver, checker, _ = _solver(zone)

        with pytest.raises(DnsProvisionFailed, match="name servers"):
            solver.prove_challenge(challenge_record)

        zone.delete_txt.assert_called_once_with(challenge_record)
        checker.is_visible.assert_not_called()


class TestCleanup:
    """Tests for removing challenge records."""

    def test_cleanup_removes_record(self, fake_zone, challenge_record):
        """Test cleanup deletes the record."""
        solver, _, _ = _solver(fake_zone)
        solver.prove_challenge(challenge_record)

        assert solver.cleanup(challenge_record) is True
        assert not solver.record_present(challenge_record)

    def test_cleanup_missing_record(self, fake_zone, challenge_record):
        """Test a record that is already gone counts as removed."""
        solver, _, _ = _solver(fake_zone)

        assert solver.cleanup(challenge_record) is True

    def test_cleanup_retries(self, challenge_record):
        """Test failed deletes are retried."""
        zone = MagicMock()
        zone.delete_txt.side_effect = [
            ClientError({"Error": {"Code": "Throttling", "Message": ""}}, "Change"),
            "/change/C9",
        ]
        solver, _, sleep = _solver(zone)

        assert solver.cleanup(challenge_record) is True
        assert zone.delete_txt.call_count == 2
        sleep.assert_called_once_with(1.0)

    def test_cleanup_gives_up_without_raising(self, challenge_record):
        """Test persistent delete failures are logged, not raised."""
        zone = MagicMock()
        zone.delete_txt.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": ""}}, "Change"
        )
        solver, _, _ = _solver(zone)

        assert solver.cleanup(challenge_record) is False
        assert zone.delete_txt.call_count == 3


class TestChallengeScope:
    """Tests for the challenge() context manager."""

    def test_record_removed_after_block(self, fake_zone, challenge_record):
        """Test the record exists inside the block and not after."""
        solver, _, _ = _solver(fake_zone)

        with solver.challenge(challenge_record) as record:
            assert solver.record_present(record)

        assert not solver.record_present(challenge_record)
        assert fake_zone.records == {}

    def test_record_removed_when_block_raises(self, fake_zone, challenge_record):
        """Test cleanup runs when validation fails inside the block."""
        solver, _, _ = _solver(fake_zone)

        with pytest.raises(RuntimeError):
            with solver.challenge(challenge_record):
                raise RuntimeError("validation failed")

        assert fake_zone.records == {}

    def test_record_removed_when_prove_fails(self, fake_zone, challenge_record):
        """Test a record written before a propagation timeout is removed."""
        solver, _, _ = _solver(fake_zone, visible=False)

        with pytest.raises(DnsProvisionFailed):
            with solver.challenge(challenge_record):
                pytest.fail("block must not run")

        assert len(fake_zone.upserted) == 1
        assert fake_zone.records == {}
        assert fake_zone.deleted == [challenge_record]

    def test_cleanup_failure_does_not_mask_error(self, challenge_record):
        """Test the original exception survives a failing cleanup."""
        zone = MagicMock()
        zone.name_servers.return_value = ["ns-1.awsdns-01.org"]
        zone.delete_txt.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": ""}}, "Change"
        )
        solver, _, _ = _solver(zone)

        with pytest.raises(ValueError, match="original"):
            with solver.challenge(challenge_record):
                raise ValueError("original")
