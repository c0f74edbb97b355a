"""Tests for settings.py."""

from __future__ import annotations

from datetime import timedelta

import pydantic
import pytest

from hubcore.settings import Settings, load_settings


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings({})
        assert settings.github_api_url == "https://api.github.com"
        assert settings.cache_max_age_seconds == 300
        assert settings.retry_count == 3
        assert settings.retry_do_not_retry == (400, 401, 403, 404, 422)
        assert settings.webhook_strict_signatures is True
        assert settings.webhook_port == 8080

    def test_environment_values(self) -> None:
        settings = load_settings(
            {
                "RETRY_COUNT": "5",
                "RETRY_BASE_DELAY_MS": "250",
                "RETRY_DO_NOT_RETRY": "400, 404",
                "CIRCUIT_BREAKER_ENABLED": "false",
                "CIRCUIT_RECOVERY_TIMEOUT_MS": "5000",
                "WEBHOOK_MAX_PROCESSED": "500",
                "UNRELATED": "ignored",
            }
        )
        assert settings.retry_count == 5
        assert settings.retry_do_not_retry == (400, 404)
        assert settings.circuit_breaker_enabled is False
        assert settings.webhook_max_processed == 500

    @pytest.mark.parametrize(
        "env",
        [
            {"RETRY_COUNT": "11"},
            {"RETRY_COUNT": "-1"},
            {"CACHE_MAX_ENTRIES": "0"},
            {"CIRCUIT_FAILURE_THRESHOLD": "0"},
            {"CIRCUIT_RECOVERY_TIMEOUT_MS": "999"},
            {"WEBHOOK_MAX_PROCESSED": "50"},
            {"WEBHOOK_MAX_PROCESSED": "200000"},
        ],
    )
    def test_out_of_range_rejected(self, env: dict[str, str]) -> None:
        with pytest.raises(pydantic.ValidationError):
            load_settings(env)


class TestRuntimeConfig:
    def test_builds_runtime_objects(self) -> None:
        settings = Settings(
            retry_count=2,
            retry_base_delay_ms=500,
            circuit_failure_threshold=4,
            circuit_recovery_timeout_ms=2000,
            cache_max_entries=10,
        )

        policy = settings.retry_policy()
        assert policy.retries == 2
        assert policy.base_delay == timedelta(milliseconds=500)
        assert policy.circuit_breaker.failure_threshold == 4
        assert policy.circuit_breaker.recovery_timeout == timedelta(seconds=2)

        assert settings.cache_config().max_entries == 10
        assert settings.circuit_breaker_config().enabled is True
