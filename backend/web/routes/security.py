"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the same-origin CSRF check used by every cookie-authenticated write
endpoint. Keeping a single implementation avoids security drift.
"""
from __future__ import annotations

from urllib.parse import urlparse
import os

from fastapi import Request
from fastapi.responses import JSONResponse


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    host = p.hostname.lower()
    port = p.port if p.port is not None else (443 if scheme == "https" else 80)
    return scheme, host, int(port)


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_server(request: Request) -> tuple[str, str, int]:
    trust_proxy = (os.getenv("PREPMINT_TRUST_PROXY", "false") or "").lower() == "true"
    if trust_proxy:
        xf_proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "").split(",")[0].strip()
        xf_host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
        scheme = (xf_proto or request.url.scheme or "http").lower()
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = _default_port(scheme)
            host = host_only.lower()
        else:
            host = (xf_host or (request.url.hostname or "")).lower()
            port = int(request.url.port) if request.url.port else _default_port(scheme)
        xf_port_raw = request.headers.get("x-forwarded-port") or ""
        if xf_port_raw:
            try:
                port = int(xf_port_raw.split(",")[0].strip())
            except ValueError:
                port = _default_port(scheme)
        return scheme, host, port

    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else _default_port(scheme)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when PREPMINT_TRUST_PROXY=true.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    In prod-like environments Origin or Referer must be present AND same-origin;
    elsewhere requests without both headers pass (tests, server-to-server).
    Returns a 403 response on violation, else None.
    """
    env = (os.getenv("PREPMINT_ENV", "dev") or "").lower()
    strict = env in {"prod", "production", "stage", "staging"}
    headers = {"Cache-Control": "private, no-store"}
    if strict and not (request.headers.get("origin") or request.headers.get("referer")):
        return JSONResponse({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, headers=headers)
    if not _is_same_origin(request):
        return JSONResponse({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, headers=headers)
    return None
