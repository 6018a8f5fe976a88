"""Outermost job wrapper.

``run_job`` owns a job record's lifecycle around a pipeline body::

    PENDING ──► RUNNING ──► body(job) ──┬──► COMPLETED  result_summary = summary
                                        └──► FAILED     error = single line

The body returns either a summary string or a
:class:`~steadfast.execution.fanout.BatchOutcome`. Error lines are built so
an operator can tell failure kinds apart at a glance:

- configuration problems are prefixed ``[config]``
- a batch that partially failed reads
  ``"8/10 items processed; 2 failed (first: a3: HTTP 503)"``
- everything else is the error's message collapsed to one line
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from steadfast.core.errors import BatchFailedError, ConfigError, JobNotFoundError, one_line
from steadfast.core.logging import LogContext, get_logger
from steadfast.execution.fanout import BatchOutcome
from steadfast.jobs.models import Job, JobStatus
from steadfast.jobs.store import JobStore

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1000

JobBody = Callable[[Job], Awaitable[str | BatchOutcome | None]]


def format_job_error(error: BaseException) -> str:
    """Single-line error for a job record."""
    if isinstance(error, BatchFailedError):
        text = error.outcome.summary()
    elif isinstance(error, ConfigError):
        text = f"[config] {one_line(error)}"
    else:
        text = one_line(error)
    return text[:MAX_ERROR_LENGTH]


def format_job_summary(result: Any) -> str | None:
    if result is None:
        return None
    if isinstance(result, BatchOutcome):
        return result.summary()
    return one_line(str(result))


async def run_job(
    job_id: str,
    store: JobStore,
    body: JobBody,
    *,
    reraise: bool = False,
) -> Job:
    """Run ``body`` for the job ``job_id`` and record the result on the job.

    Args:
        job_id: Id of a PENDING job in ``store``
        store: Where the job is read from and written to
        body: The pipeline; receives the RUNNING job
        reraise: Re-raise the body's error after recording it

    Returns:
        The job in its terminal state

    Raises:
        JobNotFoundError: ``store`` has no such job
        InvalidTransitionError: The job is not PENDING
    """
    job = await store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    job.transition_to(JobStatus.RUNNING)
    await store.save(job)

    async with LogContext(job_id=job.id, job_type=job.type):
        logger.info("job.started")
        try:
            result = await body(job)
        except Exception as e:
            job.error = format_job_error(e)
            job.transition_to(JobStatus.FAILED)
            await store.save(job)
            logger.error(
                "job.failed",
                error_type=type(e).__name__,
                error=job.error,
            )
            if reraise:
                raise
            return job

        job.result_summary = format_job_summary(result)
        job.error = None
        job.transition_to(JobStatus.COMPLETED)
        await store.save(job)
        logger.info("job.completed", summary=job.result_summary)
        return job
