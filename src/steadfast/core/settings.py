"""Environment-driven settings for steadfast.

Two layers:

- ``SteadfastSettings`` (prefix ``STEADFAST_``): process-wide knobs such as
  log level and default fan-out concurrency.
- ``GuardSettings``: the resilience profile of one remote dependency, read
  under that dependency's own prefix so each service can be tuned alone::

      ASSEMBLYAI_TIMEOUT=120
      ASSEMBLYAI_BREAKER_FAILS=3
      ASSEMBLYAI_BREAKER_COOLDOWN=60
      ASSEMBLYAI_RETRIES=1

      >>> settings = GuardSettings.for_dependency("ASSEMBLYAI")
      >>> guard = settings.to_guarded_call("assemblyai:ad-transcripts")

Credentials are not settings fields; they are checked with
:func:`require_env`, which raises :class:`~steadfast.core.errors.MissingConfigError`
so the job fails immediately with a ``[config]`` tag instead of tripping a
breaker.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from steadfast.core.errors import MissingConfigError
from steadfast.execution.circuit_breaker import BreakerOptions, BreakerRegistry
from steadfast.execution.guarded import GuardedCall
from steadfast.execution.retry import RetryPolicy


class SteadfastSettings(BaseSettings):
    """Process-wide settings.

    Fields
    ──────
    log_level           : structlog log level
    log_json            : JSON output (None = auto-detect from tty)
    service_name        : ``service.name`` in every log line
    fanout_concurrency  : default K for bounded fan-out
    """

    model_config = SettingsConfigDict(
        env_prefix="STEADFAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_json: bool | None = None
    service_name: str = "steadfast"
    fanout_concurrency: int = Field(default=5, ge=1)


class GuardSettings(BaseSettings):
    """Resilience profile for one remote dependency (seconds throughout)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timeout: float = Field(default=120.0, gt=0)
    breaker_fails: int = Field(default=3, ge=1)
    breaker_cooldown: float = Field(default=60.0, ge=0)
    retries: int = Field(default=1, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)
    poll_interval: float = Field(default=3.0, gt=0)
    poll_budget: float = Field(default=720.0, gt=0)

    @classmethod
    def for_dependency(
        cls,
        prefix: str,
        *,
        defaults: Mapping[str, float | int] | None = None,
        **overrides,
    ) -> GuardSettings:
        """Read settings from ``{PREFIX}_*`` environment variables.

        ``defaults`` replace the class defaults for this dependency but still
        lose to the environment; ``overrides`` win over everything.
        """
        env_prefix = prefix.upper().rstrip("_") + "_"
        settings = cls(_env_prefix=env_prefix, **overrides)
        unset = {k: v for k, v in (defaults or {}).items() if k not in settings.model_fields_set}
        return settings.model_copy(update=unset) if unset else settings

    @property
    def breaker_options(self) -> BreakerOptions:
        return BreakerOptions(
            failure_threshold=self.breaker_fails,
            cooldown=self.breaker_cooldown,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retries=self.retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    def to_guarded_call(
        self,
        breaker_key: str,
        *,
        label: str | None = None,
        registry: BreakerRegistry | None = None,
    ) -> GuardedCall:
        """Build a reusable :class:`GuardedCall` for this dependency."""
        return GuardedCall(
            breaker_key=breaker_key,
            breaker=self.breaker_options,
            timeout=self.timeout,
            retry=self.retry_policy,
            label=label,
            registry=registry,
        )


def require_env(
    names: list[str],
    scope: str,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the stripped values of ``names``; raise if any is missing or blank.

    Raises:
        MissingConfigError: Listing every missing variable for ``scope``.
    """
    env = os.environ if environ is None else environ
    values = {name: (env.get(name) or "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingConfigError(scope, missing)
    return values
