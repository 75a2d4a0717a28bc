"""Tests for the local runner script."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from wildcert.config import Settings
from wildcert.models import CycleResult


@pytest.fixture
def settings() -> Settings:
    """Settings with a bucket and a 30-day renewal window."""
    return Settings(
        _env_file=None,
        domain_pattern="*.example.com",
        contact_email="ops@example.com",
        hosted_zone_id="Z0123456789ABC",
        artifact_bucket="certs-bucket",
        renewal_window_days=30,
    )


def _run(argv: list[str], settings: Settings):
    from scripts import run_local

    with (
        patch.object(run_local, "load_dotenv"),
        patch.object(run_local, "get_settings", return_value=settings),
        patch.object(run_local, "build_orchestrator") as mock_build,
        patch("sys.argv", ["run_local.py", *argv]),
    ):
        orchestrator = mock_build.return_value
        orchestrator.run_issuance_cycle.return_value = CycleResult.skipped(
            "*.example.com", "current", expires_at=datetime(2026, 12, 1, tzinfo=UTC)
        )
        run_local.main()
    return orchestrator.run_issuance_cycle.call_args


class TestRunLocal:
    """Tests for the run_local entry point."""

    def test_default_renewal_window(self, settings, capsys):
        """Test the configured window is used without an override."""
        call = _run([], settings)

        assert call.kwargs["renewal_window"] == timedelta(days=30)
        assert '"status": "skipped"' in capsys.readouterr().out

    def test_zero_renewal_window(self, settings):
        """Test an explicit zero-day window is not replaced by the default."""
        call = _run(["--renewal-window-days", "0"], settings)

        assert call.kwargs["renewal_window"] == timedelta(0)
