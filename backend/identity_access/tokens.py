"""
ID token verification helpers for the identity_access bounded context.

Why: Keep cryptographic validation of identity tokens outside the web adapter
so we can unit test it independently. The browser signs in with the identity
provider and posts the resulting ID token once; the server verifies it here and
then issues its own opaque session id.

Security: Tokens are HS256 JWTs signed with a shared secret
(`AUTH_JWT_SECRET`). We verify signature, audience, optional issuer and the
temporal claims with a small clock skew allowance.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import os
import time

from jose import jwt
from jose.exceptions import JOSEError

ALGORITHM = "HS256"
MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers


class TokenVerificationError(Exception):
    """Raised when the ID token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class TokenConfig:
    secret: str
    audience: str = "authenticated"
    issuer: Optional[str] = None


def load_token_config() -> TokenConfig:
    """Read token settings from the environment (evaluated per call for tests)."""
    issuer = (os.getenv("AUTH_JWT_ISSUER") or "").strip() or None
    return TokenConfig(
        secret=os.getenv("AUTH_JWT_SECRET", ""),
        audience=os.getenv("AUTH_JWT_AUDIENCE", "authenticated"),
        issuer=issuer,
    )


def verify_id_token(*, id_token: str, cfg: TokenConfig) -> Dict[str, object]:
    """Validate an ID token and return its claims.

    Raises
    ------
    TokenVerificationError:
        `not_configured` when no secret is set, `missing_token`,
        `invalid_token` (signature/audience/issuer/format), `expired_token`,
        or `missing_sub`.
    """
    if not cfg.secret:
        raise TokenVerificationError("not_configured")
    if not isinstance(id_token, str) or not id_token.strip():
        raise TokenVerificationError("missing_token")

    options = {
        "verify_signature": True,
        "verify_aud": True,
        "verify_iss": cfg.issuer is not None,
        # Temporal claims are checked below with an explicit skew.
        "verify_exp": False,
        "verify_iat": False,
        "verify_nbf": False,
    }
    try:
        claims = jwt.decode(
            id_token,
            cfg.secret,
            algorithms=[ALGORITHM],
            audience=cfg.audience,
            issuer=cfg.issuer,
            options=options,
        )
    except JOSEError as exc:
        raise TokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)

    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise TokenVerificationError("missing_sub")
    return claims


def issue_id_token(
    *,
    sub: str,
    cfg: TokenConfig,
    email: str | None = None,
    name: str | None = None,
    ttl_seconds: int = 3600,
    extra: Dict[str, object] | None = None,
) -> str:
    """Mint a token accepted by `verify_id_token` (dev tooling and tests)."""
    now = int(time.time())
    claims: Dict[str, object] = {
        "sub": sub,
        "aud": cfg.audience,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    if cfg.issuer:
        claims["iss"] = cfg.issuer
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    if extra:
        claims.update(extra)
    return jwt.encode(claims, cfg.secret, algorithm=ALGORITHM)


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise TokenVerificationError("expired_token")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise TokenVerificationError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise TokenVerificationError("invalid_token")
