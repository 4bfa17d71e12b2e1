"""
Configuration and startup security checks for PrepMint.

Why: Schools and institutions upload student answer sheets. We must prevent
accidental insecure deployments without burdening local development.

Permissions: The caller needs no special privileges. The function only reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

MIN_JWT_SECRET_LENGTH = 32
_PLACEHOLDER_PREFIXES = ("CHANGE_ME", "DUMMY", "SECRET")


def is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def is_prod_like_env() -> bool:
    return is_prod_like(os.getenv("PREPMINT_ENV", "dev"))


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - AUTH_JWT_SECRET must be set, not a placeholder and at least 32 chars.
    - DATABASE_URL must not explicitly disable TLS.
    - Sessions must be persisted in the database (SESSIONS_BACKEND=db).
    - Profiles and records must be persisted too (PREPMINT_DB_BACKEND=db).
    - The evaluation stub must not serve real users.
    - EVALUATION_BASE_URL must use https.
    """

    if not is_prod_like_env():
        return  # dev/test remain permissive

    # 1) Token signing secret
    secret = (os.getenv("AUTH_JWT_SECRET", "") or "").strip()
    if not secret or secret.upper().startswith(_PLACEHOLDER_PREFIXES):
        raise SystemExit(
            "Refusing to start: AUTH_JWT_SECRET is unset or a placeholder in production."
        )
    if len(secret) < MIN_JWT_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: AUTH_JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters in production."
        )

    # 2) Postgres TLS: basic guard to avoid explicit disable
    for key in ("DATABASE_URL", "SESSION_DATABASE_URL", "PREPMINT_DATABASE_URL"):
        if "sslmode=disable" in os.getenv(key, ""):
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    # 3) In-memory sessions are lost on restart and not shared across instances
    if (os.getenv("SESSIONS_BACKEND", "memory") or "").strip().lower() != "db":
        raise SystemExit(
            "Refusing to start: SESSIONS_BACKEND=db is mandatory in production/staging."
        )
    if (os.getenv("PREPMINT_DB_BACKEND", "memory") or "").strip().lower() != "db":
        raise SystemExit(
            "Refusing to start: PREPMINT_DB_BACKEND=db is mandatory in production/staging."
        )

    # 4) Evaluation backend safety: stub results must never reach users.
    backend = (os.getenv("EVALUATION_BACKEND") or "stub").strip().lower()
    if backend == "stub":
        raise SystemExit(
            "Refusing to start: EVALUATION_BACKEND=stub is not allowed in production/staging. Configure the http backend."
        )

    # 5) Evaluation endpoint must use HTTPS
    base = (os.getenv("EVALUATION_BASE_URL", "") or "").strip().lower()
    if not base.startswith("https://"):
        raise SystemExit(
            "Refusing to start: EVALUATION_BASE_URL must use https in production."
        )
