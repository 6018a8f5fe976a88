"""Steadfast core: error taxonomy, structured logging, settings and field resolution.

``settings`` is not re-exported here because it builds on
``steadfast.execution``; import it as ``steadfast.core.settings``.
"""

from steadfast.core.errors import (
    BatchFailedError,
    BreakerOpenError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    FallbackExhaustedError,
    InvalidTransitionError,
    ItemProcessingError,
    JobNotFoundError,
    MissingConfigError,
    NetworkError,
    OperationCancelledError,
    PollTimeoutError,
    RateLimitError,
    RequestShapeError,
    SceneGenerationError,
    ServiceUnavailableError,
    SteadfastError,
    TerminalProviderError,
    TimeoutExpired,
    TransientError,
    UnknownProviderStateError,
    classify_exception,
    classify_http_status,
    is_retryable,
    one_line,
)
from steadfast.core.fields import FieldResolver, first_number, first_string, lookup
from steadfast.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    # errors
    "SteadfastError",
    "ErrorCategory",
    "ErrorContext",
    "TransientError",
    "NetworkError",
    "ServiceUnavailableError",
    "RateLimitError",
    "TimeoutExpired",
    "PollTimeoutError",
    "RequestShapeError",
    "TerminalProviderError",
    "UnknownProviderStateError",
    "ConfigError",
    "MissingConfigError",
    "BreakerOpenError",
    "OperationCancelledError",
    "ItemProcessingError",
    "BatchFailedError",
    "FallbackExhaustedError",
    "SceneGenerationError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "classify_exception",
    "classify_http_status",
    "is_retryable",
    "one_line",
    # fields
    "FieldResolver",
    "first_string",
    "first_number",
    "lookup",
    # logging
    "configure_logging",
    "get_logger",
    "LogContext",
]
