"""Tests for environment-driven settings and credential checks."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from steadfast.core.errors import MissingConfigError
from steadfast.core.settings import GuardSettings, SteadfastSettings, require_env
from steadfast.execution.circuit_breaker import BreakerRegistry


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # keep a developer's .env out of the test run
    monkeypatch.chdir(tmp_path)
    for name in ("ASSEMBLYAI_TIMEOUT", "ASSEMBLYAI_RETRIES", "KIE_POLL_INTERVAL", "STEADFAST_FANOUT_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)


class TestGuardSettings:
    def test_defaults(self):
        settings = GuardSettings.for_dependency("ASSEMBLYAI")
        assert settings.timeout == 120.0
        assert settings.breaker_fails == 3
        assert settings.retries == 1

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("ASSEMBLYAI_TIMEOUT", "45")
        monkeypatch.setenv("ASSEMBLYAI_RETRIES", "0")
        settings = GuardSettings.for_dependency("assemblyai")
        assert settings.timeout == 45.0
        assert settings.retries == 0

    def test_dependency_defaults_lose_to_environment(self, monkeypatch):
        monkeypatch.setenv("KIE_POLL_INTERVAL", "10")
        settings = GuardSettings.for_dependency("KIE", defaults={"poll_interval": 30.0, "timeout": 60.0})
        assert settings.poll_interval == 10.0
        assert settings.timeout == 60.0

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("ASSEMBLYAI_TIMEOUT", "45")
        assert GuardSettings.for_dependency("ASSEMBLYAI", timeout=5.0).timeout == 5.0

    def test_invalid_values_rejected(self, monkeypatch):
        monkeypatch.setenv("ASSEMBLYAI_TIMEOUT", "0")
        with pytest.raises(ValidationError):
            GuardSettings.for_dependency("ASSEMBLYAI")

    def test_to_guarded_call(self):
        registry = BreakerRegistry()
        settings = GuardSettings(timeout=30.0, breaker_fails=4, breaker_cooldown=10.0, retries=2)
        guard = settings.to_guarded_call("assemblyai:ad-transcripts", registry=registry)

        assert guard.breaker_key == "assemblyai:ad-transcripts"
        assert guard.timeout == 30.0
        assert guard.breaker.failure_threshold == 4
        assert guard.breaker.cooldown == 10.0
        assert guard.retry.retries == 2
        assert guard.registry is registry


class TestSteadfastSettings:
    def test_fanout_concurrency_from_env(self, monkeypatch):
        monkeypatch.setenv("STEADFAST_FANOUT_CONCURRENCY", "8")
        assert SteadfastSettings().fanout_concurrency == 8

    def test_fanout_concurrency_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("STEADFAST_FANOUT_CONCURRENCY", "0")
        with pytest.raises(ValidationError):
            SteadfastSettings()


class TestRequireEnv:
    def test_returns_stripped_values(self):
        env = {"APIFY_TOKEN": " tok ", "APIFY_ACTOR_ID": "actor"}
        assert require_env(["APIFY_TOKEN", "APIFY_ACTOR_ID"], "Apify", env) == {
            "APIFY_TOKEN": "tok",
            "APIFY_ACTOR_ID": "actor",
        }

    def test_lists_every_missing_name(self):
        with pytest.raises(MissingConfigError) as exc_info:
            require_env(["APIFY_TOKEN", "APIFY_ACTOR_ID"], "Apify", {"APIFY_TOKEN": "  "})
        assert exc_info.value.names == ["APIFY_TOKEN", "APIFY_ACTOR_ID"]
        assert str(exc_info.value) == "Apify: APIFY_TOKEN, APIFY_ACTOR_ID must be set"

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("KIE_API_KEY", "k")
        assert require_env(["KIE_API_KEY"], "KIE") == {"KIE_API_KEY": "k"}
