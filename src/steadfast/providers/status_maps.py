"""Status tables for the providers the pipelines talk to.

Every string a provider is known to return is listed explicitly. Anything
else raises ``UnknownProviderStateError`` at poll time.
"""

from __future__ import annotations

from steadfast.execution.polling import StatusMap

# Video/image generation. An empty state is reported while a task is queued;
# "ing" is a truncated in-progress state some KIE models return.
KIE_STATUS_MAP = StatusMap.build(
    "kie",
    succeeded=["success", "succeeded", "completed"],
    in_progress=["", "ing", "waiting", "queued", "queuing", "pending", "running", "processing", "generating"],
    failed=["fail", "failed", "error", "cancelled", "canceled"],
)

# Scraping actor runs.
APIFY_STATUS_MAP = StatusMap.build(
    "apify",
    succeeded=["SUCCEEDED"],
    in_progress=["READY", "RUNNING", "TIMING-OUT", "ABORTING"],
    failed=["FAILED", "TIMED-OUT", "ABORTED"],
)

# Transcription.
ASSEMBLYAI_STATUS_MAP = StatusMap.build(
    "assemblyai",
    succeeded=["completed"],
    in_progress=["queued", "processing"],
    failed=["error"],
)
