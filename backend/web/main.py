"PrepMint web application"
from __future__ import annotations

from urllib.parse import quote
import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response

from identity_access.domain import primary_role

import wiring
from auth_utils import SESSION_COOKIE_NAME, SETTINGS

# Ensure legacy imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _under_pytest() -> bool:
    return "pytest" in _sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via PREPMINT_ENABLE_DOTENV (default true outside
      pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("PREPMINT_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


def configure_logging() -> None:
    """Root logging for the uvicorn entrypoint; LOG_LEVEL defaults to INFO."""
    level = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()
    configure_logging()

# Fail fast on insecure production configuration before serving anything.
import config as _cfg

_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("prepmint.web")

app = FastAPI(title="PrepMint", description="Answer-sheet evaluation dashboards", version="0.1.0")

from routes.admin import admin_router
from routes.dashboard import dashboard_router
from routes.evaluations import evaluations_router
from routes.gamify import gamify_router
from routes.notifications import notifications_router
from routes.records import records_router
from routes.role import role_router
from routes.session import session_router

# --- Auth Middleware ----------------------------------------------------------

PROTECTED_PREFIXES = (
    "/admin",
    "/dashboard/admin",
    "/dashboard/teacher",
    "/dashboard/institution",
    "/dashboard/student",
    "/dashboard/analytics",
    "/profile",
    "/settings",
    "/rewards",
)


def _is_protected_page(path: str) -> bool:
    if path == "/dashboard" or path.startswith("/dashboard/"):
        return True
    return any(path == p or path.startswith(p + "/") for p in PROTECTED_PREFIXES)


def _is_public_api(method: str, path: str) -> bool:
    if path in ("/api/session", "/api/auth/session"):
        return True
    if path == "/api/auth/login" and method == "POST":
        return True
    return path == "/api/role" and method == "GET"


def _load_user(request: Request) -> dict | None:
    """Resolve the session cookie to a read-only user context (or None)."""
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if not sid:
        return None
    try:
        rec = wiring.get_sessions().get(sid)
    except Exception as exc:
        logger.warning("Session store get failed: %s", exc.__class__.__name__)
        return None
    if not rec:
        return None
    return {
        "sub": rec.sub,
        "name": rec.name,
        "email": rec.email,
        "role": primary_role(rec.roles),
        "roles": list(rec.roles),
    }


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    user = _load_user(request)
    request.state.user = user
    if user or path == "/health":
        return await call_next(request)

    if path.startswith("/api/"):
        if _is_public_api(request.method, path):
            return await call_next(request)
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
    if _is_protected_page(path):
        login_url = f"/login?next={quote(path, safe='/')}"
        if "HX-Request" in request.headers:
            # Security: prevent intermediaries from caching unauthenticated HTMX responses
            return Response(
                status_code=401,
                headers={"HX-Redirect": login_url, "Cache-Control": "private, no-store", "Vary": "HX-Request"},
            )
        return RedirectResponse(url=login_url, status_code=302, headers={"Cache-Control": "private, no-store"})
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------

PERMISSIONS_POLICY = "camera=(), microphone=(), geolocation=(), payment=()"


def content_security_policy(environment: str) -> str:
    if _cfg.is_prod_like(environment):
        # Harden CSP in production: avoid 'unsafe-inline' to reduce XSS surface.
        style_src = "'self'"
    else:
        # Developer experience: allow inline styles for local SSR components.
        style_src = "'self' 'unsafe-inline'"
    return (
        f"default-src 'self'; script-src 'self'; style-src {style_src}; "
        "img-src 'self' data:; font-src 'self' data:; connect-src 'self'; "
        "object-src 'none'; base-uri 'self'; form-action 'self'; frame-ancestors 'none'"
    )


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("Content-Security-Policy", content_security_policy(SETTINGS.environment))
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains; preload")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", PERMISSIONS_POLICY)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    """Map pydantic body/query validation failures to the 400 error contract."""
    return JSONResponse(
        {"error": "bad_request", "detail": "invalid_input"},
        status_code=400,
        headers={"Cache-Control": "private, no-store"},
    )


# --- Routers ------------------------------------------------------------------

app.include_router(session_router)
app.include_router(role_router)
app.include_router(gamify_router)
app.include_router(admin_router)
app.include_router(notifications_router)
app.include_router(records_router)
app.include_router(evaluations_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "ok"}, headers={"Cache-Control": "private, no-store"})


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run("main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
