"""
User profiles: role, gamification counters and account metadata.

Why:
    The role stored here is the single source of truth for authorization. The
    session cookie never carries a role; routes re-read the profile so that a
    demoted user loses access without waiting for their cookie to expire.

Design:
    `ProfileRepo` is the in-memory implementation used in dev and tests. The
    Postgres variant lives in `profiles_db` and mirrors this interface.
    Read-modify-write operations (XP, badges) hold the repo lock so concurrent
    awards never lose updates.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import threading
import uuid

from passlib.context import CryptContext

from .domain import ACCOUNT_TYPES, ALLOWED_ROLES, DEFAULT_ROLE

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def check_password(password: str, encoded: str | None) -> bool:
    """Verify against a stored hash; unknown or malformed hashes never match."""
    if not encoded or not isinstance(password, str):
        return False
    try:
        return pwd_context.verify(password, encoded)
    except (ValueError, TypeError):
        return False


@dataclass
class UserProfile:
    uid: str
    email: str
    display_name: str
    role: str = DEFAULT_ROLE
    xp: int = 0
    level: int = 1
    badges: List[str] = field(default_factory=list)
    streak: int = 0
    institution_id: Optional[str] = None
    account_type: str = "individual"
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    last_xp_awarded_at: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)

    def to_public(self) -> Dict[str, Any]:
        """Serialize without credentials."""
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
            "xp": self.xp,
            "level": self.level,
            "badges": list(self.badges),
            "streak": self.streak,
            "institutionId": self.institution_id,
            "accountType": self.account_type,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "passwordSet": bool(self.password_hash),
        }


@dataclass
class ActivityEntry:
    user_id: str
    type: str
    payload: Dict[str, Any]
    created_at: str = field(default_factory=_now_iso)


def _copy(profile: UserProfile) -> UserProfile:
    return replace(profile, badges=list(profile.badges))


def _check_role(role: str) -> str:
    if not isinstance(role, str) or role not in ALLOWED_ROLES:
        raise ValueError("invalid_role")
    return role


class ProfileRepo:
    def __init__(self) -> None:
        self._by_uid: Dict[str, UserProfile] = {}
        self._activity: List[ActivityEntry] = []
        self._lock = threading.RLock()

    # --- Lifecycle -------------------------------------------------------------

    def create(
        self,
        *,
        email: str,
        display_name: str,
        role: str = DEFAULT_ROLE,
        uid: str | None = None,
        password: str | None = None,
        institution_id: str | None = None,
        account_type: str = "individual",
    ) -> UserProfile:
        _check_role(role)
        if account_type not in ACCOUNT_TYPES:
            raise ValueError("invalid_account_type")
        normalized = (email or "").strip().lower()
        with self._lock:
            if normalized and self._find_email(normalized) is not None:
                raise ValueError("email_taken")
            new_uid = uid or uuid.uuid4().hex
            if new_uid in self._by_uid:
                raise ValueError("uid_taken")
            profile = UserProfile(
                uid=new_uid,
                email=normalized,
                display_name=display_name,
                role=role,
                institution_id=institution_id,
                account_type=account_type,
                password_hash=hash_password(password) if password else None,
            )
            self._by_uid[new_uid] = profile
            return _copy(profile)

    def get(self, uid: str) -> Optional[UserProfile]:
        with self._lock:
            profile = self._by_uid.get(uid)
            return _copy(profile) if profile else None

    def get_by_email(self, email: str) -> Optional[UserProfile]:
        with self._lock:
            profile = self._find_email((email or "").strip().lower())
            return _copy(profile) if profile else None

    def delete(self, uid: str) -> bool:
        with self._lock:
            return self._by_uid.pop(uid, None) is not None

    # --- Role & claims ---------------------------------------------------------

    def update_role(self, uid: str, role: str) -> Optional[UserProfile]:
        _check_role(role)
        with self._lock:
            profile = self._by_uid.get(uid)
            if not profile:
                return None
            profile.role = role
            profile.updated_at = _now_iso()
            return _copy(profile)

    def set_claims(self, uid: str, *, role: str, institution_id: str | None) -> Optional[UserProfile]:
        _check_role(role)
        with self._lock:
            profile = self._by_uid.get(uid)
            if not profile:
                return None
            profile.role = role
            profile.institution_id = institution_id
            profile.updated_at = _now_iso()
            return _copy(profile)

    def set_password(self, uid: str, password: str) -> bool:
        with self._lock:
            profile = self._by_uid.get(uid)
            if not profile:
                return False
            profile.password_hash = hash_password(password)
            profile.updated_at = _now_iso()
            return True

    def verify_password(self, uid: str, password: str) -> bool:
        with self._lock:
            profile = self._by_uid.get(uid)
            return bool(profile) and check_password(password, profile.password_hash)

    # --- Directory -------------------------------------------------------------

    def list_by_role(self, *, role: str, limit: int, offset: int) -> List[UserProfile]:
        with self._lock:
            items = [p for p in self._by_uid.values() if p.role == role]
        items.sort(key=lambda p: (p.display_name.lower(), p.uid))
        return [_copy(p) for p in items[offset: offset + limit]]

    def search_by_name(self, *, role: str, q: str, limit: int) -> List[UserProfile]:
        needle = (q or "").strip().lower()
        with self._lock:
            items = [
                p for p in self._by_uid.values()
                if p.role == role and (needle in p.display_name.lower() or needle in p.email)
            ]
        items.sort(key=lambda p: (p.display_name.lower(), p.uid))
        return [_copy(p) for p in items[:limit]]

    def list_by_institution(self, *, institution_id: str, role: str | None = None, limit: int) -> List[UserProfile]:
        with self._lock:
            items = [
                p for p in self._by_uid.values()
                if p.institution_id == institution_id and (role is None or p.role == role)
            ]
        items.sort(key=lambda p: (p.display_name.lower(), p.uid))
        return [_copy(p) for p in items[:limit]]

    # --- Gamification counters -------------------------------------------------

    def award_xp(self, uid: str, amount: int, reason: str, *, level_of: Callable[[int], int]) -> tuple[int, int]:
        """Atomically add XP; returns `(new_xp, new_level)`."""
        with self._lock:
            profile = self._by_uid.get(uid)
            if not profile:
                raise LookupError("user_not_found")
            now = _now_iso()
            profile.xp = int(profile.xp or 0) + int(amount)
            profile.level = level_of(profile.xp)
            profile.updated_at = now
            profile.last_xp_awarded_at = now
            self._activity.append(
                ActivityEntry(user_id=uid, type="xp_awarded", payload={"xpAmount": amount, "reason": reason})
            )
            return profile.xp, profile.level

    def award_badge(self, uid: str, badge_id: str) -> bool:
        """Add a badge once; returns False when the user already holds it."""
        with self._lock:
            profile = self._by_uid.get(uid)
            if not profile:
                raise LookupError("user_not_found")
            if badge_id in profile.badges:
                return False
            profile.badges.append(badge_id)
            profile.updated_at = _now_iso()
            self._activity.append(ActivityEntry(user_id=uid, type="badge_awarded", payload={"badgeId": badge_id}))
            return True

    def list_activity(self, uid: str, *, limit: int = 50) -> List[ActivityEntry]:
        with self._lock:
            items = [a for a in self._activity if a.user_id == uid]
        return list(reversed(items))[:limit]

    def _find_email(self, normalized: str) -> Optional[UserProfile]:
        for profile in self._by_uid.values():
            if profile.email == normalized:
                return profile
        return None
