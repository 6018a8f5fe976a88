"""Ordered provider fallback for generation tasks.

A generation request (one video scene, one image) has a primary provider
configuration and one or more alternates. The chain switches configuration
**only** when the provider rejects the request shape itself; transient
failures (timeouts, 5xx, rate limits) belong to the retry policy of the
current configuration and are raised at once.

::

    chain.run(request, attempt, has_reference_images=...)
      │
      ├── start: primary, or the first text-only config when there are
      │          no reference images (branch on input, not on error)
      │
      ├── attempt(config, config.request_shape(request))
      │     ├── ok                 ──► FallbackResult
      │     ├── RequestShapeError  ──► next config ("fallback.next_config")
      │     └── anything else      ──► raise
      │
      └── chain exhausted ──► FallbackExhaustedError (last error chained)

The chain holds no state between invocations: every ``run`` starts over.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from steadfast.core.errors import FallbackExhaustedError, RequestShapeError, one_line
from steadfast.core.logging import get_logger

Req = TypeVar("Req")
R = TypeVar("R")

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderConfig(Generic[Req]):
    """One element of a fallback chain.

    Attributes:
        name: Stable identifier for logs (``"kie:image-to-video"``)
        model_id: Provider model identifier sent with the request
        request_shape: Builds the provider request body from the semantic request
        requires_reference_images: Config is image-conditioned
    """

    name: str
    model_id: str
    request_shape: Callable[[Req, ProviderConfig[Req]], dict[str, Any]]
    requires_reference_images: bool = False

    def build_request(self, request: Req) -> dict[str, Any]:
        return self.request_shape(request, self)


@dataclass(frozen=True)
class FallbackStep:
    """A configuration that rejected the request."""

    config_name: str
    error: BaseException

    @property
    def message(self) -> str:
        return one_line(self.error)


@dataclass
class FallbackResult(Generic[R]):
    """What a successful chain run produced and which config produced it."""

    value: R
    config: ProviderConfig
    body: dict[str, Any]
    steps: list[FallbackStep] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.steps)


class FallbackChain(Generic[Req]):
    """Ordered, stateless list of provider configurations."""

    def __init__(self, configs: Sequence[ProviderConfig[Req]], *, name: str = "fallback"):
        if not configs:
            raise ValueError("a fallback chain needs at least one configuration")
        self.configs: tuple[ProviderConfig[Req], ...] = tuple(configs)
        self.name = name

    def __len__(self) -> int:
        return len(self.configs)

    def plan(self, *, has_reference_images: bool = True) -> list[ProviderConfig[Req]]:
        """Configurations to try, in order, for an input of this kind."""
        if has_reference_images:
            return list(self.configs)
        for index, config in enumerate(self.configs):
            if not config.requires_reference_images:
                return [c for c in self.configs[index:] if not c.requires_reference_images]
        return []

    async def run(
        self,
        request: Req,
        attempt: Callable[[ProviderConfig[Req], dict[str, Any]], Awaitable[R]],
        *,
        has_reference_images: bool = True,
    ) -> FallbackResult[R]:
        """Try each planned configuration until one accepts the request.

        Args:
            request: The semantic request, reshaped per configuration
            attempt: Performs one provider call (normally a GuardedCall body)
            has_reference_images: ``False`` skips image-conditioned configs

        Raises:
            FallbackExhaustedError: Every config raised ``RequestShapeError``
            ValueError: No configuration can serve this kind of input
            Exception: Any non-shape error, unchanged
        """
        plan = self.plan(has_reference_images=has_reference_images)
        if not plan:
            raise ValueError(f"{self.name}: no configuration accepts requests without reference images")
        if len(plan) < len(self.configs):
            logger.info(
                "fallback.skipped_image_configs",
                chain=self.name,
                start=plan[0].name,
            )

        steps: list[FallbackStep] = []
        for index, config in enumerate(plan):
            body = config.build_request(request)
            try:
                value = await attempt(config, body)
            except RequestShapeError as e:
                steps.append(FallbackStep(config.name, e))
                if index + 1 < len(plan):
                    logger.warning(
                        "fallback.next_config",
                        chain=self.name,
                        rejected=config.name,
                        next=plan[index + 1].name,
                        error=e,
                    )
                continue
            return FallbackResult(value=value, config=config, body=body, steps=steps)

        logger.error(
            "fallback.exhausted",
            chain=self.name,
            tried=[s.config_name for s in steps],
        )
        raise FallbackExhaustedError([(s.config_name, s.error) for s in steps])
