"""
Response and request helpers shared by the API routers.

Every API response is user-scoped, so all JSON goes out with
`Cache-Control: private, no-store`.
"""
from __future__ import annotations

from typing import Any, Optional
import json

from fastapi import Request
from fastapi.responses import JSONResponse

import wiring

_PRIVATE = {"Cache-Control": "private, no-store"}


def json_private(payload: Any, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers."""
    return JSONResponse(content=payload, status_code=status_code, headers=dict(_PRIVATE))


def private_error(error: str, *, status_code: int, detail: str | None = None) -> JSONResponse:
    payload = {"error": error}
    if detail:
        payload["detail"] = detail
    return JSONResponse(content=payload, status_code=status_code, headers=dict(_PRIVATE))


def current_user(request: Request) -> Optional[dict]:
    """Read-only user context set by the auth middleware (or None)."""
    user = getattr(request.state, "user", None)
    return user if isinstance(user, dict) and user.get("sub") else None


def current_profile(request: Request):
    """Re-read the caller's profile so authorization uses the stored role."""
    user = current_user(request)
    if not user:
        return None
    return wiring.get_profiles().get(str(user["sub"]))


async def read_json_object(request: Request) -> Optional[dict]:
    """Parse the body as a JSON object; None for malformed or non-object bodies."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return None
    return body if isinstance(body, dict) else None


def map_domain_error(exc: Exception) -> JSONResponse:
    """Translate domain exceptions into the API error contract."""
    code = str(exc.args[0]) if exc.args else None
    if isinstance(exc, PermissionError):
        return private_error("forbidden", status_code=403)
    if isinstance(exc, LookupError):
        return private_error("not_found", status_code=404, detail=code)
    if isinstance(exc, ValueError):
        return private_error("bad_request", status_code=400, detail=code)
    return private_error("internal_error", status_code=500)
