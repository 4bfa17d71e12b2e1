"""
Postgres-backed profile repository (table `public.users`, `public.activity`).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- XP awards run inside a transaction with `select ... for update` so two
  concurrent awards serialize on the row instead of overwriting each other.
- Mirrors `profiles.ProfileRepo` so the web adapter stays storage-agnostic.
"""
from __future__ import annotations

from typing import Any, Callable, List, Optional, Tuple
import os
import uuid

try:
    import psycopg
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False
else:
    from psycopg.errors import UniqueViolation

from .domain import ACCOUNT_TYPES, ALLOWED_ROLES, DEFAULT_ROLE
from .profiles import ActivityEntry, UserProfile, check_password, hash_password

_COLUMNS_SQL = """
    id, email, display_name, role, xp, level, badges, streak, institution_id,
    account_type,
    to_char(created_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'),
    to_char(updated_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'),
    case when last_xp_awarded_at is null then null
         else to_char(last_xp_awarded_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"') end,
    password_hash
"""


def _row_to_profile(row: Tuple) -> UserProfile:
    return UserProfile(
        uid=row[0],
        email=row[1] or "",
        display_name=row[2] or "",
        role=row[3],
        xp=int(row[4] or 0),
        level=int(row[5] or 1),
        badges=list(row[6] or []),
        streak=int(row[7] or 0),
        institution_id=row[8],
        account_type=row[9] or "individual",
        created_at=row[10],
        updated_at=row[11],
        last_xp_awarded_at=row[12],
        password_hash=row[13],
    )


class DBProfileRepo:
    def __init__(self, dsn: str | None = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBProfileRepo")
        self._dsn = dsn or os.getenv("PREPMINT_DATABASE_URL") or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBProfileRepo")

    def _fetch_one(self, query: str, params: tuple) -> Optional[UserProfile]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return _row_to_profile(row) if row else None

    def _fetch_all(self, query: str, params: tuple) -> List[UserProfile]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
        return [_row_to_profile(r) for r in rows]

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
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        if account_type not in ACCOUNT_TYPES:
            raise ValueError("invalid_account_type")
        new_uid = uid or uuid.uuid4().hex
        pw_hash = hash_password(password) if password else None
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "insert into public.users (id, email, display_name, role, institution_id, account_type, password_hash) "
                        f"values (%s, nullif(lower(%s), ''), %s, %s, %s, %s, %s) returning {_COLUMNS_SQL}",
                        (new_uid, email.strip(), display_name, role, institution_id, account_type, pw_hash),
                    )
                    row = cur.fetchone()
        except UniqueViolation as exc:
            raise ValueError("email_taken") from exc
        return _row_to_profile(row)

    def get(self, uid: str) -> Optional[UserProfile]:
        return self._fetch_one(f"select {_COLUMNS_SQL} from public.users where id = %s", (uid,))

    def get_by_email(self, email: str) -> Optional[UserProfile]:
        return self._fetch_one(
            f"select {_COLUMNS_SQL} from public.users where email = lower(%s)", ((email or "").strip(),)
        )

    def delete(self, uid: str) -> bool:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.users where id = %s", (uid,))
                return bool(cur.rowcount)

    def update_role(self, uid: str, role: str) -> Optional[UserProfile]:
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        return self._fetch_one(
            f"update public.users set role = %s, updated_at = now() where id = %s returning {_COLUMNS_SQL}",
            (role, uid),
        )

    def set_claims(self, uid: str, *, role: str, institution_id: str | None) -> Optional[UserProfile]:
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        return self._fetch_one(
            "update public.users set role = %s, institution_id = %s, updated_at = now() "
            f"where id = %s returning {_COLUMNS_SQL}",
            (role, institution_id, uid),
        )

    def set_password(self, uid: str, password: str) -> bool:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "update public.users set password_hash = %s, updated_at = now() where id = %s",
                    (hash_password(password), uid),
                )
                return bool(cur.rowcount)

    def verify_password(self, uid: str, password: str) -> bool:
        profile = self.get(uid)
        return bool(profile) and check_password(password, profile.password_hash)

    def list_by_role(self, *, role: str, limit: int, offset: int) -> List[UserProfile]:
        return self._fetch_all(
            f"select {_COLUMNS_SQL} from public.users where role = %s "
            "order by lower(display_name), id limit %s offset %s",
            (role, limit, offset),
        )

    def search_by_name(self, *, role: str, q: str, limit: int) -> List[UserProfile]:
        pattern = f"%{(q or '').strip().lower()}%"
        return self._fetch_all(
            f"select {_COLUMNS_SQL} from public.users where role = %s "
            "and (lower(display_name) like %s or email like %s) "
            "order by lower(display_name), id limit %s",
            (role, pattern, pattern, limit),
        )

    def list_by_institution(self, *, institution_id: str, role: str | None = None, limit: int) -> List[UserProfile]:
        if role is None:
            return self._fetch_all(
                f"select {_COLUMNS_SQL} from public.users where institution_id = %s "
                "order by lower(display_name), id limit %s",
                (institution_id, limit),
            )
        return self._fetch_all(
            f"select {_COLUMNS_SQL} from public.users where institution_id = %s and role = %s "
            "order by lower(display_name), id limit %s",
            (institution_id, role, limit),
        )

    def award_xp(self, uid: str, amount: int, reason: str, *, level_of: Callable[[int], int]) -> tuple[int, int]:
        with psycopg.connect(self._dsn) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute("select xp from public.users where id = %s for update", (uid,))
                    row = cur.fetchone()
                    if not row:
                        raise LookupError("user_not_found")
                    new_xp = int(row[0] or 0) + int(amount)
                    new_level = level_of(new_xp)
                    cur.execute(
                        "update public.users set xp = %s, level = %s, updated_at = now(), "
                        "last_xp_awarded_at = now() where id = %s",
                        (new_xp, new_level, uid),
                    )
                    cur.execute(
                        "insert into public.activity (user_id, type, payload) values (%s, 'xp_awarded', %s)",
                        (uid, Json({"xpAmount": amount, "reason": reason})),
                    )
        return new_xp, new_level

    def award_badge(self, uid: str, badge_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute("select badges from public.users where id = %s for update", (uid,))
                    row = cur.fetchone()
                    if not row:
                        raise LookupError("user_not_found")
                    badges = list(row[0] or [])
                    if badge_id in badges:
                        return False
                    badges.append(badge_id)
                    cur.execute(
                        "update public.users set badges = %s, updated_at = now() where id = %s",
                        (Json(badges), uid),
                    )
                    cur.execute(
                        "insert into public.activity (user_id, type, payload) values (%s, 'badge_awarded', %s)",
                        (uid, Json({"badgeId": badge_id})),
                    )
        return True

    def list_activity(self, uid: str, *, limit: int = 50) -> List[ActivityEntry]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select user_id, type, payload, "
                    "to_char(created_at at time zone 'utc', 'YYYY-MM-DD\"T\"HH24:MI:SS\"+00:00\"') "
                    "from public.activity where user_id = %s order by created_at desc limit %s",
                    (uid, limit),
                )
                rows: List[Any] = cur.fetchall()
        return [ActivityEntry(user_id=r[0], type=r[1], payload=dict(r[2] or {}), created_at=r[3]) for r in rows]
