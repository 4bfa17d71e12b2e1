"""
Evaluation API routes: submit answer sheets and poll grading jobs.

Why:
    Grading runs in an external service. Teachers upload a scanned answer sheet,
    receive a job id and poll its status; the browser follows `poll_backoff`
    between polls. When a job finishes, its owner earns the completion XP once.

Permissions:
    - Submit: teacher, institution, admin, dev.
    - Status: the job owner, admin, dev.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, File, Request, UploadFile

from evaluation.clients import EvaluationError, EvaluationJobNotFound, EvaluationUnavailable
from gamification.levels import XP_REWARDS
from gamification.service import GamificationService
from identity_access.domain import ROLE_MANAGERS

import wiring

from .common import current_profile, current_user, json_private, private_error
from .security import csrf_guard

evaluations_router = APIRouter(tags=["Evaluation"])
logger = logging.getLogger("prepmint.web.evaluation")

SUBMIT_ROLES = frozenset({"teacher", "institution", "admin", "dev"})
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg"})


@evaluations_router.post("/api/evaluate")
async def submit_evaluation(request: Request, file: UploadFile = File(...)):
    """Forward one answer sheet to the grading service.

    Behavior:
        - 403 for students
        - 400 `unsupported_type` unless pdf/png/jpeg, `empty_file`, 413 above 10 MiB
        - 503 when the grading service is unreachable
        - 202 `{jobId, status, progress, ...}`
    """
    if not current_user(request):
        return private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None or profile.role not in SUBMIT_ROLES:
        return private_error("forbidden", status_code=403)
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        return private_error("bad_request", status_code=400, detail="unsupported_type")
    # Read one byte past the limit to detect oversized uploads without loading more.
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if not content:
        return private_error("bad_request", status_code=400, detail="empty_file")
    if len(content) > MAX_UPLOAD_BYTES:
        return private_error("payload_too_large", status_code=413, detail="max_10_mib")

    filename = (file.filename or "upload").rsplit("/", 1)[-1][:255]
    try:
        job = wiring.get_evaluation_client().submit(
            owner_sub=profile.uid,
            filename=filename,
            content=content,
            content_type=content_type,
        )
    except EvaluationUnavailable as exc:
        logger.warning("evaluation_submit_unavailable error=%s", exc)
        return private_error("service_unavailable", status_code=503)
    except EvaluationError as exc:
        logger.warning("evaluation_submit_failed error=%s", exc)
        return private_error("bad_gateway", status_code=502)
    wiring.get_job_tracker().track(job)
    logger.info("evaluation_submitted owner=%s job=%s", profile.uid, job.job_id)
    return json_private(job.to_dict(), status_code=202)


@evaluations_router.get("/api/evaluate/{job_id}/status")
async def evaluation_status(request: Request, job_id: str):
    """Current job state; pays the completion reward on the first `done` read."""
    if not current_user(request):
        return private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None:
        return private_error("unauthenticated", status_code=401)
    tracker = wiring.get_job_tracker()
    owner = tracker.owner_of(job_id)
    if owner is None:
        return private_error("not_found", status_code=404)
    if owner != profile.uid and profile.role not in ROLE_MANAGERS:
        return private_error("forbidden", status_code=403)
    try:
        job = wiring.get_evaluation_client().status(job_id)
    except EvaluationJobNotFound:
        return private_error("not_found", status_code=404)
    except EvaluationUnavailable as exc:
        logger.warning("evaluation_status_unavailable job=%s error=%s", job_id, exc)
        return private_error("service_unavailable", status_code=503)
    except EvaluationError as exc:
        logger.warning("evaluation_status_failed job=%s error=%s", job_id, exc)
        return private_error("bad_gateway", status_code=502)

    body = job.to_dict()
    if job.status == "done" and tracker.claim_reward(job_id):
        try:
            award = GamificationService(wiring.get_profiles()).award_system_xp(
                user_id=owner,
                amount=XP_REWARDS["EVALUATION_COMPLETE"],
                reason="Evaluation completed",
            )
            body["reward"] = award.to_dict()
        except (ValueError, LookupError) as exc:
            logger.warning("evaluation_reward_failed job=%s error=%s", job_id, exc.__class__.__name__)
    return json_private(body)
