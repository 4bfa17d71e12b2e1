"""
Shared wiring of stores and external clients for the web adapter.

Why:
    Middleware and several routers need the same session store, profile
    repository, record store and evaluation client. This module builds them
    lazily (Postgres when configured, in-memory otherwise) and lets tests swap
    any of them with the `set_*` helpers.

Selection:
    - Sessions: `SESSIONS_BACKEND=db` -> `DBSessionStore`, else memory.
    - Profiles/records: `PREPMINT_DB_BACKEND=db` -> psycopg-backed, else memory.
    - Evaluation: `EVALUATION_BACKEND` (`stub` default, `http`).
    Under pytest everything defaults to memory; tests opt in explicitly.
    Outside prod-like environments a DB backend that cannot be built falls
    back to memory with a warning; in production the error propagates.
"""
from __future__ import annotations

import logging
import os
import sys

import config
from evaluation.clients import build_client
from evaluation.jobs import JobTracker
from identity_access.profiles import ProfileRepo
from identity_access.stores import SessionStore
from records.feed import ChangeFeed
from records.store import RecordStore

logger = logging.getLogger("prepmint.web")

_SESSIONS = None
_PROFILES = None
_RECORDS = None
_EVALUATION = None
_JOBS = None


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _db_enabled(var: str) -> bool:
    return (not _under_pytest()) and (os.getenv(var, "memory") or "").strip().lower() == "db"


def _fallback(what: str, exc: Exception) -> None:
    """Log and continue in memory; prod-like environments must not degrade."""
    if config.is_prod_like_env():
        raise exc
    logger.warning("%s unavailable (%s); using in-memory fallback", what, exc.__class__.__name__)


def build_session_store():
    if _db_enabled("SESSIONS_BACKEND"):
        try:
            from identity_access.stores_db import DBSessionStore

            return DBSessionStore()
        except (ImportError, RuntimeError) as exc:
            _fallback("Session store", exc)
    return SessionStore()


def build_profile_repo():
    if _db_enabled("PREPMINT_DB_BACKEND"):
        try:
            from identity_access.profiles_db import DBProfileRepo

            return DBProfileRepo()
        except (ImportError, RuntimeError) as exc:
            _fallback("Profile repo", exc)
    return ProfileRepo()


def build_record_store():
    feed = ChangeFeed()
    if _db_enabled("PREPMINT_DB_BACKEND"):
        try:
            from records.store_db import DBRecordStore

            return DBRecordStore(feed=feed)
        except (ImportError, RuntimeError) as exc:
            _fallback("Record store", exc)
    return RecordStore(feed=feed)


def get_sessions():
    global _SESSIONS
    if _SESSIONS is None:
        _SESSIONS = build_session_store()
    return _SESSIONS


def get_profiles():
    global _PROFILES
    if _PROFILES is None:
        _PROFILES = build_profile_repo()
    return _PROFILES


def get_records():
    global _RECORDS
    if _RECORDS is None:
        _RECORDS = build_record_store()
    return _RECORDS


def get_evaluation_client():
    global _EVALUATION
    if _EVALUATION is None:
        _EVALUATION = build_client()
    return _EVALUATION


def get_job_tracker() -> JobTracker:
    global _JOBS
    if _JOBS is None:
        _JOBS = JobTracker(get_records())
    return _JOBS


def set_sessions(store) -> None:
    """Allow tests to swap the session store implementation."""
    global _SESSIONS
    _SESSIONS = store


def set_profiles(repo) -> None:
    global _PROFILES
    _PROFILES = repo


def set_records(store) -> None:
    global _RECORDS, _JOBS
    _RECORDS = store
    _JOBS = None


def set_evaluation_client(client) -> None:
    global _EVALUATION
    _EVALUATION = client


def reset() -> None:
    """Drop every wired instance; the next access rebuilds the defaults."""
    global _SESSIONS, _PROFILES, _RECORDS, _EVALUATION, _JOBS
    _SESSIONS = _PROFILES = _RECORDS = _EVALUATION = _JOBS = None


__all__ = [
    "get_sessions",
    "get_profiles",
    "get_records",
    "get_evaluation_client",
    "get_job_tracker",
    "set_sessions",
    "set_profiles",
    "set_records",
    "set_evaluation_client",
    "reset",
]
