"""
Shared authentication utilities.

Why:
    The session routes and the middleware both read and write the session
    cookie. Keeping the cookie policy and the redirect guard in one place keeps
    them consistent.

Design:
    The helpers are framework-agnostic and pure. Callers decide where the
    environment comes from (e.g., settings object).
"""

from __future__ import annotations

import os
import re

from identity_access.stores import DEFAULT_SESSION_TTL_SECONDS

SESSION_COOKIE_NAME = "__session"

# Disallow double slashes and path traversal (".."), allow dots in names
INAPP_PATH_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_INAPP_REDIRECT_LEN = 256


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("PREPMINT_ENV", "dev").lower()

    @property
    def session_ttl_seconds(self) -> int:
        try:
            ttl = int(os.getenv("SESSION_TTL_SECONDS", "") or DEFAULT_SESSION_TTL_SECONDS)
        except ValueError:
            return DEFAULT_SESSION_TTL_SECONDS
        return ttl if ttl > 0 else DEFAULT_SESSION_TTL_SECONDS

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


SETTINGS = AuthSettings()


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # cookie must survive the top-level redirect after login
    """
    return {"secure": True, "samesite": "lax"}


def is_inapp_path(value: object) -> bool:
    """Return True if value is an absolute in-app path, e.g. "/", "/dashboard/student".

    Rejected: "dashboard" (not absolute), "https://evil.com", "//evil.com",
    "/a?b", "/a#b", "/..".
    """
    if not value or not isinstance(value, str):
        return False
    if len(value) > MAX_INAPP_REDIRECT_LEN:
        return False
    return bool(INAPP_PATH_PATTERN.match(value))
