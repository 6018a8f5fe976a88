"""Job records and the outermost job wrapper."""

from steadfast.jobs.models import JOB_VALID_TRANSITIONS, Job, JobStatus, can_transition, validate_transition
from steadfast.jobs.runner import format_job_error, run_job
from steadfast.jobs.store import InMemoryJobStore, JobStore

__all__ = [
    "Job",
    "JobStatus",
    "JOB_VALID_TRANSITIONS",
    "can_transition",
    "validate_transition",
    "JobStore",
    "InMemoryJobStore",
    "run_job",
    "format_job_error",
]
