"""
Unit tests for settings loading.
"""

import pytest
from pydantic import ValidationError

from leaseworker.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.worker_lock_check_interval_seconds == 1.0
        assert settings.queue_names == ["main"]

    def test_reads_environment(self, monkeypatch):
        """Test that LEASEWORKER_* variables override the defaults."""
        monkeypatch.setenv("LEASEWORKER_QUEUES", "high, low,")
        monkeypatch.setenv("LEASEWORKER_WORKER_LOCK_CHECK_INTERVAL_SECONDS", "0.5")

        settings = Settings(_env_file=None)

        assert settings.queue_names == ["high", "low"]
        assert settings.worker_lock_check_interval_seconds == 0.5

    @pytest.mark.parametrize("value", ["0", "-1"])
    def test_lock_check_interval_must_be_positive(self, monkeypatch, value: str):
        """Test that a lease check interval of zero or less is rejected."""
        monkeypatch.setenv("LEASEWORKER_WORKER_LOCK_CHECK_INTERVAL_SECONDS", value)

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_intervals_cannot_be_negative(self, monkeypatch):
        monkeypatch.setenv("LEASEWORKER_WORKER_INTERVAL_SECONDS", "-5")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
