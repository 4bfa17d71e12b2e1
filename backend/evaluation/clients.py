"""
Evaluation service clients (stub and HTTP).

Intent:
    Answer-sheet grading happens in an external service. The web adapter talks
    to it through `EvaluationClientProtocol` so local development and tests use
    the deterministic stub while deployments forward to the real service.

Selection:
    `build_client()` reads `EVALUATION_BACKEND` (`stub` default, `http`).
    Production config refuses `stub` at startup (see `config.py`).
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol
import logging
import os
import threading
import uuid

import requests

from .jobs import JOB_STATUSES, EvaluationJob

logger = logging.getLogger("prepmint.evaluation")

DEFAULT_TIMEOUT_SECONDS = 10.0


class EvaluationError(Exception):
    """Base class for evaluation client failures."""


class EvaluationUnavailable(EvaluationError):
    """The grading service could not be reached or answered with 5xx."""


class EvaluationJobNotFound(EvaluationError, LookupError):
    """The grading service does not know the job id."""


class EvaluationClientProtocol(Protocol):
    def submit(self, *, owner_sub: str, filename: str, content: bytes, content_type: str) -> EvaluationJob:
        ...

    def status(self, job_id: str) -> EvaluationJob:
        ...


class StubEvaluationClient:
    """Deterministic progression: pending -> processing (50%) -> done (100%).

    Each `status` call advances the job by one step, so a test can walk a job to
    completion with a known number of polls.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, EvaluationJob] = {}
        self._lock = threading.Lock()

    def submit(self, *, owner_sub: str, filename: str, content: bytes, content_type: str) -> EvaluationJob:
        job = EvaluationJob(job_id=uuid.uuid4().hex, owner_sub=owner_sub, filename=filename)
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info("evaluation_submitted job=%s size=%s adapter=stub", job.job_id, len(content or b""))
        return _snapshot(job)

    def status(self, job_id: str) -> EvaluationJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise EvaluationJobNotFound(job_id)
            if job.status == "pending":
                job.status, job.progress = "processing", 50
            elif job.status == "processing":
                job.status, job.progress = "done", 100
                job.result = {
                    "score": 0,
                    "maxScore": 100,
                    "feedback": "Placeholder result: no grading performed in stub mode.",
                }
            return _snapshot(job)


def _snapshot(job: EvaluationJob) -> EvaluationJob:
    return EvaluationJob(
        job_id=job.job_id,
        owner_sub=job.owner_sub,
        filename=job.filename,
        status=job.status,
        progress=job.progress,
        result=dict(job.result) if job.result else None,
        error=job.error,
        created_at=job.created_at,
    )


class HttpEvaluationClient:
    """Forward jobs to `EVALUATION_BASE_URL` (`POST /evaluate`, `GET /evaluate/{id}/status`)."""

    def __init__(self, base_url: str, *, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        if not base_url:
            raise ValueError("EVALUATION_BASE_URL is required for the http backend")
        self._base = base_url.rstrip("/")
        self._timeout = timeout

    def submit(self, *, owner_sub: str, filename: str, content: bytes, content_type: str) -> EvaluationJob:
        try:
            r = requests.post(
                f"{self._base}/evaluate",
                files={"file": (filename, content, content_type)},
                data={"owner": owner_sub},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise EvaluationUnavailable(exc.__class__.__name__) from exc
        if r.status_code >= 500:
            raise EvaluationUnavailable(f"status_{r.status_code}")
        if r.status_code >= 400:
            raise EvaluationError(f"status_{r.status_code}")
        body = _json(r)
        job_id = str(body.get("jobId") or body.get("job_id") or "")
        if not job_id:
            raise EvaluationError("missing_job_id")
        return EvaluationJob(
            job_id=job_id,
            owner_sub=owner_sub,
            filename=filename,
            status=_status(body.get("status")),
            progress=int(body.get("progress") or 0),
        )

    def status(self, job_id: str) -> EvaluationJob:
        try:
            r = requests.get(f"{self._base}/evaluate/{job_id}/status", timeout=self._timeout)
        except requests.RequestException as exc:
            raise EvaluationUnavailable(exc.__class__.__name__) from exc
        if r.status_code == 404:
            raise EvaluationJobNotFound(job_id)
        if r.status_code >= 500:
            raise EvaluationUnavailable(f"status_{r.status_code}")
        if r.status_code >= 400:
            raise EvaluationError(f"status_{r.status_code}")
        body = _json(r)
        return EvaluationJob(
            job_id=job_id,
            owner_sub=str(body.get("owner") or ""),
            filename=str(body.get("filename") or ""),
            status=_status(body.get("status")),
            progress=max(0, min(100, int(body.get("progress") or 0))),
            result=body.get("result") if isinstance(body.get("result"), dict) else None,
            error=body.get("error") if isinstance(body.get("error"), str) else None,
        )


def _json(response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise EvaluationError("invalid_json") from exc
    if not isinstance(data, dict):
        raise EvaluationError("invalid_json")
    return data


def _status(value: Any) -> str:
    status = str(value or "pending").lower()
    return status if status in JOB_STATUSES else "pending"


def build_client(backend: Optional[str] = None) -> EvaluationClientProtocol:
    """Instantiate the configured client (evaluated per call for tests)."""
    name = (backend or os.getenv("EVALUATION_BACKEND") or "stub").strip().lower()
    if name == "http":
        try:
            timeout = float(os.getenv("EVALUATION_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS)
        except ValueError:
            timeout = DEFAULT_TIMEOUT_SECONDS
        return HttpEvaluationClient(os.getenv("EVALUATION_BASE_URL", ""), timeout=timeout)
    if name != "stub":
        raise ValueError(f"Unknown EVALUATION_BACKEND: {name}")
    return StubEvaluationClient()
