"""Steadfast - resilient external-task execution for batch pipelines.

Layers::

    steadfast.core        errors, logging, settings, field resolution
    steadfast.execution   timeout, retry, circuit breaker, guarded call,
                          bounded fan-out, resumable items, fallback chain,
                          provider polling
    steadfast.providers   submit/poll/fetch adapters (httpx)
    steadfast.jobs        job record, state machine, run_job
    steadfast.generation  sequential scene video generation
"""

__version__ = "0.1.0"
