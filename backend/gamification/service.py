"""Gamification service layer (XP and badges).

Why:
    Keep the award rules (who may award, bounds on amounts, idempotent badges)
    out of the web adapter so they can be unit-tested without FastAPI. The
    repository does the atomic read-modify-write; this layer only validates and
    decides.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple
import logging

from identity_access.domain import AWARDING_ROLES
from identity_access.validation import is_valid_badge_id, is_valid_uid, is_valid_xp_amount

from .levels import calculate_level

logger = logging.getLogger("prepmint.gamification")

MAX_REASON_LENGTH = 200


class ProfilesRepoProtocol(Protocol):
    def get(self, uid: str):
        ...

    def award_xp(self, uid: str, amount: int, reason: str, *, level_of) -> Tuple[int, int]:
        ...

    def award_badge(self, uid: str, badge_id: str) -> bool:
        ...


@dataclass(frozen=True)
class XPAward:
    user_id: str
    xp_awarded: int
    reason: str
    new_xp: int
    new_level: int

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "xpAwarded": self.xp_awarded,
            "reason": self.reason,
            "newXp": self.new_xp,
            "newLevel": self.new_level,
        }


def _normalize_reason(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_reason")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > MAX_REASON_LENGTH:
        raise ValueError("invalid_reason")
    return trimmed


def _require_awarding_role(requester_role: Optional[str]) -> None:
    if requester_role not in AWARDING_ROLES:
        raise PermissionError("forbidden")


class GamificationService:
    def __init__(self, repo: ProfilesRepoProtocol) -> None:
        self._repo = repo

    def award_xp(self, *, requester_role: Optional[str], user_id: str, amount: object, reason: object) -> XPAward:
        """Award XP to `user_id`.

        Raises:
            PermissionError: requester may not award XP.
            ValueError: `invalid_user_id`, `invalid_amount` or `invalid_reason`.
            LookupError: target user does not exist.
        """
        _require_awarding_role(requester_role)
        if not isinstance(user_id, str) or not is_valid_uid(user_id):
            raise ValueError("invalid_user_id")
        if not is_valid_xp_amount(amount):
            raise ValueError("invalid_amount")
        clean_reason = _normalize_reason(reason)
        new_xp, new_level = self._repo.award_xp(user_id, int(amount), clean_reason, level_of=calculate_level)
        return XPAward(
            user_id=user_id,
            xp_awarded=int(amount),
            reason=clean_reason,
            new_xp=new_xp,
            new_level=new_level,
        )

    def award_system_xp(self, *, user_id: str, amount: int, reason: str) -> XPAward:
        """Award XP on behalf of the platform (e.g. a finished evaluation)."""
        new_xp, new_level = self._repo.award_xp(user_id, int(amount), reason, level_of=calculate_level)
        logger.info("system_xp_awarded user=%s amount=%s reason=%s", user_id, amount, reason)
        return XPAward(user_id=user_id, xp_awarded=int(amount), reason=reason, new_xp=new_xp, new_level=new_level)

    def award_badge(self, *, requester_role: Optional[str], user_id: str, badge_id: object) -> bool:
        """Grant a badge once; returns False when the user already holds it."""
        _require_awarding_role(requester_role)
        if not isinstance(user_id, str) or not is_valid_uid(user_id):
            raise ValueError("invalid_user_id")
        if not is_valid_badge_id(badge_id):
            raise ValueError("invalid_badge_id")
        return self._repo.award_badge(user_id, str(badge_id))

    def get_badges(self, user_id: str) -> List[str]:
        profile = self._repo.get(user_id)
        return list(profile.badges) if profile else []
