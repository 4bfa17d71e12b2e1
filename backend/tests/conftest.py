"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and give every test fresh
in-memory stores, so no state leaks between API tests.
"""
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

TEST_JWT_SECRET = "test-only-secret-with-at-least-32-characters"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolate_env_and_stores(monkeypatch: pytest.MonkeyPatch):
    """Reset wiring and env toggles per test.

    Behavior:
        - Token secret/audience are fixed so tests can mint ID tokens.
        - Env toggles that change security semantics are cleared; individual
          tests opt into prod behavior explicitly.
        - `wiring.reset()` drops every store, so each test starts empty.
    """
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("AUTH_JWT_AUDIENCE", "authenticated")
    for var in (
        "PREPMINT_ENV",
        "PREPMINT_TRUST_PROXY",
        "AUTH_JWT_ISSUER",
        "SESSIONS_BACKEND",
        "PREPMINT_DB_BACKEND",
        "EVALUATION_BACKEND",
        "EVALUATION_BASE_URL",
        "SESSION_TTL_SECONDS",
        "DEFAULT_TEMP_PASSWORD",
    ):
        monkeypatch.delenv(var, raising=False)

    import wiring  # type: ignore
    from auth_utils import SETTINGS  # type: ignore

    wiring.reset()
    SETTINGS.override_environment(None)
    yield
    wiring.reset()
    SETTINGS.override_environment(None)
