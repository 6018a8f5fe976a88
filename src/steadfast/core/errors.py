"""
Structured error types for steadfast.

Every failure that crosses a remote-call boundary is re-classified into this
hierarchy so that the layers above it (retry, circuit breaker, fallback chain,
fan-out, job runner) can make decisions from the error's *type* and flags
instead of from message substrings.

Manifesto:
    - **Typed hierarchy:** One class per handling decision
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Breaker semantics:** Each error knows if it counts against a breaker
    - **Rich context:** Dependency key, provider, item id, HTTP status
    - **Error chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       SteadfastError                             │
        │  (category, retryable, counts_against_breaker, context, cause)   │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError        RequestShapeError    ConfigError          │
        │  (retryable)           (fallback trigger)   (never retried,      │
        │       │                                      never counted)      │
        │  NetworkError                                    │               │
        │  RateLimitError        TerminalProviderError  MissingConfigError │
        │  ServiceUnavailable         │                                    │
        │  TimeoutExpired        UnknownProviderStateError                 │
        │  PollTimeoutError                                                │
        │                                                                  │
        │  BreakerOpenError      ItemProcessingError   FallbackExhausted   │
        │  OperationCancelled    BatchFailedError      SceneGeneration     │
        │  (never counted)                             InvalidTransition   │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = classify_http_status(503, "upstream busy", provider="kie")
    >>> type(err).__name__, err.retryable
    ('ServiceUnavailableError', True)

    >>> err = classify_http_status(422, "image_urls: This field is required")
    >>> isinstance(err, RequestShapeError)
    True

Guardrails:
    ❌ DON'T: Decide retryability from ``str(err)`` at call sites
    ✅ DO: Raise or classify into the right subclass once, at the boundary

    ❌ DON'T: Count ConfigError against a circuit breaker
    ✅ DO: Let ``counts_against_breaker`` carry that decision

Tags:
    error-handling, exception-hierarchy, retry-logic, circuit-breaker
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from steadfast.execution.fanout import BatchOutcome


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"           # Connection, timeout, DNS
    RATE_LIMIT = "RATE_LIMIT"     # 429 and provider throttling
    REQUEST = "REQUEST"           # Payload rejected by the provider
    PROVIDER = "PROVIDER"         # Provider reported a terminal failure
    CONFIG = "CONFIG"             # Missing credential or setting
    BREAKER = "BREAKER"           # Synthetic, load shedding
    CANCELLED = "CANCELLED"       # Caller withdrew the work
    ITEM = "ITEM"                 # One work item inside a batch
    JOB = "JOB"                   # Job record state machine
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        dependency: Breaker key of the remote dependency (``"assemblyai:ad-transcripts"``)
        provider: Provider name (``"kie"``, ``"apify"``)
        item_id: Work item the error belongs to
        job_id: Enclosing job record
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    dependency: str | None = None
    provider: str | None = None
    item_id: str | None = None
    job_id: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["dependency", "provider", "item_id", "job_id", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SteadfastError(Exception):
    """Base exception for all steadfast errors.

    Subclasses set ``default_category``, ``default_retryable`` and
    ``counts_against_breaker`` to describe how the resilience layers treat
    them.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False
    counts_against_breaker: bool = True

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SteadfastError:
        """Add context to this error (fluent API).

        Usage:
            raise RequestShapeError("bad body").with_context(provider="kie")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (retryable, counted by breakers)
# =============================================================================


class TransientError(SteadfastError):
    """Temporary failure that may succeed on retry with the same request."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection-level failure (DNS, reset, refused, read error)."""


class ServiceUnavailableError(TransientError):
    """Provider answered 5xx."""


class RateLimitError(TransientError):
    """Provider answered 429 or reported throttling."""

    default_category = ErrorCategory.RATE_LIMIT


class TimeoutExpired(TransientError):
    """A unit of work did not settle before its deadline.

    Attributes:
        label: Name of the guarded operation
        timeout: Deadline in seconds
    """

    def __init__(self, label: str, timeout: float, **kwargs: Any):
        self.label = label
        self.timeout = timeout
        super().__init__(f"{label} timed out after {timeout:g}s", **kwargs)


class PollTimeoutError(TransientError):
    """A submitted provider task did not finish within the polling budget."""

    def __init__(self, task_id: str, budget: float, **kwargs: Any):
        self.task_id = task_id
        self.budget = budget
        super().__init__(f"task {task_id} did not complete within {budget:g}s", **kwargs)


# =============================================================================
# PERMANENT ERRORS
# =============================================================================


class RequestShapeError(SteadfastError):
    """The provider rejected the payload itself (4xx other than 429).

    Never retried with the same configuration; a FallbackChain moves to its
    next configuration instead. Not counted against the breaker: the
    dependency answered.
    """

    default_category = ErrorCategory.REQUEST
    counts_against_breaker = False


class TerminalProviderError(SteadfastError):
    """The provider explicitly reported that the task failed."""

    default_category = ErrorCategory.PROVIDER

    def __init__(self, message: str, *, reason: str | None = None, **kwargs: Any):
        self.reason = reason
        super().__init__(message, **kwargs)


class UnknownProviderStateError(TerminalProviderError):
    """The provider returned a state string missing from its status map."""

    def __init__(self, provider: str, state: str, **kwargs: Any):
        self.provider = provider
        self.state = state
        super().__init__(
            f"{provider} returned unmapped task state {state!r}",
            reason=state,
            **kwargs,
        )


class ConfigError(SteadfastError):
    """A required credential or setting is missing or invalid."""

    default_category = ErrorCategory.CONFIG
    counts_against_breaker = False


class MissingConfigError(ConfigError):
    """Required environment variables are unset or blank."""

    def __init__(self, scope: str, names: list[str], **kwargs: Any):
        self.scope = scope
        self.names = list(names)
        super().__init__(f"{scope}: {', '.join(names)} must be set", **kwargs)


class BreakerOpenError(SteadfastError):
    """Raised without invoking the call when a dependency's breaker is open."""

    default_category = ErrorCategory.BREAKER
    counts_against_breaker = False

    def __init__(self, key: str, label: str | None = None, retry_in: float | None = None):
        self.key = key
        self.label = label or key
        super().__init__(
            f"{self.label} blocked: circuit breaker open for {key}",
            retry_after=retry_in,
            context=ErrorContext(dependency=key),
        )


class OperationCancelledError(SteadfastError):
    """Work observed a tripped :class:`CancellationToken` and stopped.

    Raised in place of ``asyncio.CancelledError`` so retry loops, breakers
    and fan-out see an ordinary exception. Never retried, never counted.
    """

    default_category = ErrorCategory.CANCELLED
    counts_against_breaker = False

    def __init__(self, reason: str, **kwargs: Any):
        self.reason = reason
        super().__init__(f"cancelled: {reason}", **kwargs)


# =============================================================================
# BATCH / GENERATION / JOB ERRORS
# =============================================================================


class ItemProcessingError(SteadfastError):
    """One work item failed; isolated to that item."""

    default_category = ErrorCategory.ITEM

    def __init__(self, item_id: str, error: BaseException):
        self.item_id = item_id
        self.error = error
        super().__init__(
            f"{item_id}: {one_line(error)}",
            cause=error,
            context=ErrorContext(item_id=item_id),
        )


class BatchFailedError(SteadfastError):
    """A fan-out finished with at least one failed item."""

    default_category = ErrorCategory.ITEM

    def __init__(self, outcome: BatchOutcome):
        self.outcome = outcome
        first = outcome.failures[0]
        super().__init__(
            f"{len(outcome.failures)}/{outcome.total} items failed "
            f"(first: {first.item_id}: {first.message})",
            cause=first.error,
        )


class FallbackExhaustedError(RequestShapeError):
    """Every configuration of a fallback chain rejected the request.

    Still a :class:`RequestShapeError`, so ``except RequestShapeError``
    handlers keep matching. The last configuration's own error is on
    ``last_error`` (and ``__cause__``).
    """

    def __init__(self, attempts: list[tuple[str, BaseException]]):
        self.attempts = attempts
        last_name, last_error = attempts[-1]
        tried = ", ".join(name for name, _ in attempts)
        super().__init__(
            f"all provider configurations rejected the request ({tried}); "
            f"last {last_name}: {one_line(last_error)}",
            cause=last_error,
        )

    @property
    def last_error(self) -> BaseException:
        return self.attempts[-1][1]


class SceneGenerationError(SteadfastError):
    """A scene failed during sequential generation."""

    default_category = ErrorCategory.ITEM

    def __init__(self, scene_number: int | None, succeeded: int, error: BaseException):
        self.scene_number = scene_number
        self.succeeded = succeeded
        self.error = error
        label = scene_number if scene_number else "unknown"
        super().__init__(
            f"Scene {label} failed after {succeeded} successful scene(s): {one_line(error)}",
            cause=error,
        )


class InvalidTransitionError(SteadfastError):
    """An illegal status transition was attempted on a job or provider task."""

    default_category = ErrorCategory.JOB

    def __init__(self, current: str, target: str, kind: str = "job status"):
        self.current = current
        self.target = target
        self.kind = kind
        super().__init__(f"Invalid {kind} transition: {current} -> {target}")


class JobNotFoundError(SteadfastError):
    """No job record exists for the given id."""

    default_category = ErrorCategory.JOB

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}", context=ErrorContext(job_id=job_id))


# =============================================================================
# CLASSIFICATION
# =============================================================================

# Body fragments a provider uses to say "your request is malformed" while
# answering with 200 and no task id.
_SHAPE_MARKERS = (
    "this field is required",
    "missing required",
    "invalid field",
    "unsupported parameter",
)


def one_line(error: BaseException | str) -> str:
    """Collapse an error message to a single line."""
    text = str(error) if str(error) else type(error).__name__
    return " ".join(text.split())


def looks_like_shape_rejection(body: str) -> bool:
    """True if a provider body reports a missing or invalid request field."""
    lowered = body.lower()
    return any(marker in lowered for marker in _SHAPE_MARKERS)


def classify_http_status(
    status: int,
    body: str = "",
    *,
    provider: str | None = None,
    retry_after: float | None = None,
) -> SteadfastError:
    """Map an HTTP status code to the error taxonomy."""
    snippet = one_line(body)[:300]
    message = f"{provider or 'provider'} returned HTTP {status}" + (f": {snippet}" if snippet else "")
    context = ErrorContext(provider=provider, http_status=status)

    if status == 429:
        return RateLimitError(message, retry_after=retry_after, context=context)
    if status in (401, 403):
        return ConfigError(message, context=context)
    if 400 <= status < 500:
        return RequestShapeError(message, context=context)
    if status >= 500:
        return ServiceUnavailableError(message, context=context)
    return SteadfastError(message, context=context)


def classify_exception(error: BaseException) -> BaseException:
    """Re-classify a raw exception into the taxonomy.

    SteadfastErrors pass through unchanged. Unknown exception types are
    returned as-is so that callers' own classifiers still see them.
    """
    if isinstance(error, SteadfastError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        classified = classify_http_status(
            error.response.status_code,
            error.response.text,
            provider=error.request.url.host,
        )
        classified.__cause__ = error
        classified.cause = error
        return classified
    if isinstance(error, httpx.TimeoutException):
        return NetworkError(f"request timed out: {one_line(error)}", cause=error)
    if isinstance(error, httpx.TransportError):
        return NetworkError(f"transport error: {one_line(error)}", cause=error)
    if isinstance(error, asyncio.TimeoutError):
        return TimeoutExpired("operation", 0.0, cause=error)
    if isinstance(error, (ConnectionError, OSError)):
        return NetworkError(one_line(error), cause=error)
    return error


def is_retryable(error: BaseException) -> bool:
    """Default retry classifier."""
    if isinstance(error, SteadfastError):
        return error.retryable
    return isinstance(error, (ConnectionError, OSError, asyncio.TimeoutError))


def counts_against_breaker(error: BaseException) -> bool:
    """Whether a failure should increment a dependency's breaker."""
    if isinstance(error, SteadfastError):
        return error.counts_against_breaker
    return True


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SteadfastError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SteadfastError",
    # Transient
    "TransientError",
    "NetworkError",
    "ServiceUnavailableError",
    "RateLimitError",
    "TimeoutExpired",
    "PollTimeoutError",
    # Permanent
    "RequestShapeError",
    "TerminalProviderError",
    "UnknownProviderStateError",
    "ConfigError",
    "MissingConfigError",
    "BreakerOpenError",
    "OperationCancelledError",
    # Batch / generation / job
    "ItemProcessingError",
    "BatchFailedError",
    "FallbackExhaustedError",
    "SceneGenerationError",
    "InvalidTransitionError",
    "JobNotFoundError",
    # Utilities
    "one_line",
    "looks_like_shape_rejection",
    "classify_http_status",
    "classify_exception",
    "is_retryable",
    "counts_against_breaker",
    "categorize_error",
]
