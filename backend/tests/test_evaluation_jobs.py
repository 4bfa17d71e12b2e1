"""Evaluation jobs: polling schedule, reward bookkeeping and the stub client."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from evaluation.clients import EvaluationJobNotFound, StubEvaluationClient, build_client, HttpEvaluationClient
from evaluation.jobs import REWARDS_COLLECTION, EvaluationJob, JobTracker, poll_backoff
from records.store import RecordStore


@pytest.mark.parametrize("attempt,expected", [(0, 2.0), (1, 3.0), (5, 7.0), (6, 8.0), (50, 8.0), (-1, 2.0)])
def test_poll_backoff(attempt, expected):
    assert poll_backoff(attempt) == expected


def test_poll_backoff_after_error():
    assert poll_backoff(3, after_error=True) == 5.0


def test_stub_client_progression():
    client = StubEvaluationClient()
    job = client.submit(owner_sub="t1", filename="sheet.pdf", content=b"%PDF", content_type="application/pdf")
    assert (job.status, job.progress) == ("pending", 0)
    assert client.status(job.job_id).status == "processing"
    done = client.status(job.job_id)
    assert (done.status, done.progress, done.finished) == ("done", 100, True)
    assert done.result["maxScore"] == 100
    # Finished jobs stay finished.
    assert client.status(job.job_id).status == "done"
    with pytest.raises(EvaluationJobNotFound):
        client.status("unknown")


def test_tracker_pays_reward_once():
    tracker = JobTracker(RecordStore())
    job = EvaluationJob(job_id="j1", owner_sub="t1", filename="a.pdf")
    assert tracker.claim_reward("j1") is False
    tracker.track(job)
    assert tracker.owner_of("j1") == "t1"
    assert tracker.claim_reward("j1") is True
    assert tracker.claim_reward("j1") is False
    assert tracker.owner_of("j2") is None


def test_tracker_state_is_shared_through_the_store():
    store = RecordStore()
    JobTracker(store).track(EvaluationJob(job_id="j1", owner_sub="t1", filename="a.pdf"))
    other_instance = JobTracker(store)
    assert other_instance.owner_of("j1") == "t1"
    assert other_instance.claim_reward("j1") is True
    assert JobTracker(store).claim_reward("j1") is False


def test_tracker_prunes_expired_jobs():
    store = RecordStore()
    tracker = JobTracker(store, retention_seconds=60)
    tracker.track(EvaluationJob(job_id="old", owner_sub="t1", filename="a.pdf"))
    tracker.claim_reward("old")
    later = datetime.now(timezone.utc) + timedelta(minutes=5)
    assert tracker.prune(now=later) == 1
    assert tracker.owner_of("old") is None
    assert store.get(REWARDS_COLLECTION, "old") is None
    tracker.track(EvaluationJob(job_id="new", owner_sub="t1", filename="b.pdf"))
    assert tracker.prune() == 0
    assert tracker.owner_of("new") == "t1"


def test_job_to_dict():
    data = EvaluationJob(job_id="j1", owner_sub="t1", filename="a.pdf").to_dict()
    assert data["jobId"] == "j1" and data["status"] == "pending" and "ownerSub" not in data


def test_build_client_selection(monkeypatch: pytest.MonkeyPatch):
    assert isinstance(build_client(), StubEvaluationClient)
    monkeypatch.setenv("EVALUATION_BACKEND", "http")
    monkeypatch.setenv("EVALUATION_BASE_URL", "http://grader.local/")
    assert isinstance(build_client(), HttpEvaluationClient)
    with pytest.raises(ValueError):
        build_client("carrier-pigeon")
