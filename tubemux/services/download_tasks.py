"""In-memory registry of running and recently finished mux jobs.

Each job started through the API gets registered here under its
``job_id`` so the status and SSE endpoints can find it again.
"""

import threading
import time
from typing import Optional

from tubemux.core.logging import get_logger
from tubemux.services.downloader import JobHandle

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Global store  (dict + lock keeps things simple for a self-hosted app)
# ---------------------------------------------------------------------------

_jobs: dict[str, JobHandle] = {}
_lock = threading.Lock()


def register_job(handle: JobHandle) -> str:
    """Register a job handle and return its id."""
    with _lock:
        _jobs[handle.job_id] = handle
    return handle.job_id


def get_job(job_id: str) -> Optional[JobHandle]:
    """Get a job by ID (returns ``None`` if not found)."""
    with _lock:
        return _jobs.get(job_id)


def remove_job(job_id: str) -> Optional[JobHandle]:
    """Remove a job from the store and return it.

    Does **not** delete the output file.
    """
    with _lock:
        return _jobs.pop(job_id, None)


def cleanup_stale(max_age: int = 1800) -> None:
    """Forget finished jobs that ended more than *max_age* seconds ago."""
    now = time.time()
    with _lock:
        stale_ids = [
            jid
            for jid, job in _jobs.items()
            if job.finished_at is not None and now - job.finished_at > max_age
        ]
        for jid in stale_ids:
            del _jobs[jid]

    for jid in stale_ids:
        logger.info(f"Forgot finished download job {jid}")
