"""
Evaluation job types, client polling schedule and job bookkeeping.

Intent:
    The grading service is external. The web adapter only needs to know who
    submitted a job, where it stands, and whether the completion reward has
    already been paid out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

JOB_STATUSES = ("pending", "processing", "done", "failed")

INITIAL_POLL_SECONDS = 2.0
POLL_STEP_SECONDS = 1.0
MAX_POLL_SECONDS = 8.0
ERROR_RETRY_SECONDS = 5.0

JOBS_COLLECTION = "evaluation_jobs"
REWARDS_COLLECTION = "evaluation_rewards"
JOB_RETENTION_SECONDS = 7 * 24 * 3600


@dataclass
class EvaluationJob:
    job_id: str
    owner_sub: str
    filename: str
    status: str = "pending"
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def finished(self) -> bool:
        return self.status in ("done", "failed")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "progress": self.progress,
            "filename": self.filename,
            "result": self.result,
            "error": self.error,
            "createdAt": self.created_at,
        }


def poll_backoff(attempt: int, *, after_error: bool = False) -> float:
    """Seconds to wait before status poll number `attempt` (0-based).

    Starts at 2 s, grows by 1 s per attempt and is capped at 8 s. After a
    failed poll the client waits a flat 5 s.
    """
    if after_error:
        return ERROR_RETRY_SECONDS
    attempt = max(0, int(attempt))
    return min(MAX_POLL_SECONDS, INITIAL_POLL_SECONDS + POLL_STEP_SECONDS * attempt)


class JobTracker:
    """Remember job ownership and one-time completion rewards.

    State lives in the record store (`evaluation_jobs`, `evaluation_rewards`),
    so it survives restarts and is shared across instances when the store is
    Postgres-backed. A reward is claimed by inserting a row keyed by the job
    id; the store rejects the second insert, which makes the claim atomic.
    Jobs older than `retention_seconds` are pruned whenever a new job is
    tracked.
    """

    def __init__(self, store, *, retention_seconds: int = JOB_RETENTION_SECONDS) -> None:
        self._store = store
        self._retention = timedelta(seconds=max(1, int(retention_seconds)))

    def track(self, job: EvaluationJob) -> None:
        self.prune()
        self._store.add(JOBS_COLLECTION, {"id": job.job_id, "owner_sub": job.owner_sub, "filename": job.filename})

    def owner_of(self, job_id: str) -> Optional[str]:
        row = self._store.get(JOBS_COLLECTION, job_id)
        return row.get("owner_sub") if row else None

    def claim_reward(self, job_id: str) -> bool:
        """Return True exactly once per tracked job."""
        if self.owner_of(job_id) is None:
            return False
        try:
            self._store.add(REWARDS_COLLECTION, {"id": job_id})
        except ValueError:
            return False
        return True

    def prune(self, *, now: Optional[datetime] = None) -> int:
        """Forget jobs (and their reward markers) created before the retention window."""
        cutoff = ((now or datetime.now(timezone.utc)) - self._retention).isoformat()
        removed = 0
        while True:
            page = self._store.list(
                JOBS_COLLECTION,
                page_size=100,
                order_by="created_at",
                direction="asc",
                filters=[("created_at", "lt", cutoff)],
            )
            ids = [row["id"] for row in page.items]
            if not ids:
                return removed
            self._store.bulk_delete(REWARDS_COLLECTION, ids)
            deleted = self._store.bulk_delete(JOBS_COLLECTION, ids)
            if not deleted:
                return removed
            removed += deleted
