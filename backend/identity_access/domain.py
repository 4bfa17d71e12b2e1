"""
Identity domain constants and simple helpers.

Why:
- Centralize role sets so middleware, API routes and dashboards agree on who
  may do what.
- Keep the role -> dashboard mapping in one place; redirects must never drift
  from the navigation.
"""

from __future__ import annotations

from typing import Iterable

# Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "teacher", "admin", "institution", "dev"})

# Roles that may be assigned through the claims endpoint. `dev` is reserved for
# the role endpoint so it cannot be self-provisioned via signup tooling.
CLAIMABLE_ROLES = frozenset({"student", "teacher", "admin", "institution"})

# Roles allowed to change other users' roles and claims.
ROLE_MANAGERS = frozenset({"admin", "dev"})

# Roles allowed to award XP and badges. Students never award to anyone.
AWARDING_ROLES = frozenset({"teacher", "admin", "dev"})

# Roles allowed to look up other users in the directory.
DIRECTORY_ROLES = frozenset({"teacher", "institution", "admin", "dev"})

ACCOUNT_TYPES = frozenset({"individual", "institution"})

DEFAULT_ROLE = "student"

_ROLE_PRIORITY = ("dev", "admin", "institution", "teacher", "student")

_DASHBOARDS = {
    "student": "/dashboard/student",
    "teacher": "/dashboard/teacher",
    "institution": "/dashboard/institution",
    "admin": "/dashboard/admin",
    "dev": "/dashboard/admin",
}


def primary_role(roles: Iterable[str] | None) -> str:
    """Pick the most privileged known role; default to `student`."""
    lowered = {r.lower() for r in (roles or []) if isinstance(r, str)}
    for role in _ROLE_PRIORITY:
        if role in lowered:
            return role
    return DEFAULT_ROLE


def dashboard_path(role: str | None) -> str:
    """Return the landing dashboard for a role (unknown roles land as student)."""
    return _DASHBOARDS.get((role or "").lower(), _DASHBOARDS[DEFAULT_ROLE])


__all__ = [
    "ALLOWED_ROLES",
    "CLAIMABLE_ROLES",
    "ROLE_MANAGERS",
    "AWARDING_ROLES",
    "DIRECTORY_ROLES",
    "ACCOUNT_TYPES",
    "DEFAULT_ROLE",
    "primary_role",
    "dashboard_path",
]
