"""
Notification repository on top of the generic record store.

Why:
    Notifications are a list with the same needs as every other dashboard list
    (newest first, unread filter, realtime updates). Storing them in the
    `notifications` collection of a `RecordStore` gives persistence (memory or
    Postgres) and change publication without a second storage layer.

Ownership:
    Every operation takes the acting `user_id`. Rows of other users behave as
    missing (`LookupError`), so the web adapter answers 404 and never reveals
    whether a foreign id exists.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

COLLECTION = "notifications"
NOTIFICATION_TYPES = (
    "evaluation",
    "badge",
    "announcement",
    "reminder",
    "message",
    "info",
    "warning",
    "error",
    "success",
)
DEFAULT_LIST_LIMIT = 50


@dataclass
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    message: str
    read: bool = False
    created_at: str = ""
    updated_at: str = ""
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    sender_role: Optional[str] = None
    action_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Notification":
        return cls(
            id=str(row.get("id")),
            user_id=str(row.get("user_id") or ""),
            type=str(row.get("type") or "info"),
            title=str(row.get("title") or ""),
            message=str(row.get("message") or ""),
            read=bool(row.get("read")),
            created_at=str(row.get("created_at") or ""),
            updated_at=str(row.get("updated_at") or ""),
            sender_id=row.get("sender_id"),
            sender_name=row.get("sender_name"),
            sender_role=row.get("sender_role"),
            action_url=row.get("action_url"),
            metadata=dict(row.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "read": self.read,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "senderRole": self.sender_role,
            "actionUrl": self.action_url,
            "metadata": self.metadata,
        }


class NotificationRepo:
    def __init__(self, store) -> None:
        self._store = store

    @property
    def feed(self):
        return self._store.feed

    def create(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        sender_id: str | None = None,
        sender_name: str | None = None,
        sender_role: str | None = None,
        action_url: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> str:
        if type not in NOTIFICATION_TYPES:
            raise ValueError("invalid_type")
        return self._store.add(
            COLLECTION,
            {
                "user_id": user_id,
                "type": type,
                "title": title,
                "message": message,
                "read": False,
                "sender_id": sender_id,
                "sender_name": sender_name,
                "sender_role": sender_role,
                "action_url": action_url,
                "metadata": dict(metadata or {}),
            },
        )

    def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = DEFAULT_LIST_LIMIT,
        unread_only: bool = False,
        type: str | None = None,
    ) -> List[Notification]:
        filters: List[tuple] = [("user_id", "eq", user_id)]
        if unread_only:
            filters.append(("read", "eq", False))
        if type is not None:
            if type not in NOTIFICATION_TYPES:
                raise ValueError("invalid_type")
            filters.append(("type", "eq", type))
        page = self._store.list(
            COLLECTION,
            page=0,
            page_size=limit,
            order_by="created_at",
            direction="desc",
            filters=filters,
        )
        return [Notification.from_row(r) for r in page.items]

    def unread_count(self, user_id: str) -> int:
        page = self._store.list(
            COLLECTION,
            page_size=1,
            filters=[("user_id", "eq", user_id), ("read", "eq", False)],
        )
        return page.total

    def _owned(self, notification_id: str, user_id: str) -> Dict[str, Any]:
        row = self._store.get(COLLECTION, notification_id)
        if row is None or row.get("user_id") != user_id:
            raise LookupError("not_found")
        return row

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        self._owned(notification_id, user_id)
        return Notification.from_row(self._store.update(COLLECTION, notification_id, {"read": True}))

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of the user as read; returns the count."""
        count = 0
        while True:
            page = self._store.list(
                COLLECTION,
                page_size=100,
                filters=[("user_id", "eq", user_id), ("read", "eq", False)],
            )
            if not page.items:
                return count
            for row in page.items:
                self._store.update(COLLECTION, row["id"], {"read": True})
                count += 1

    def delete(self, notification_id: str, user_id: str) -> None:
        self._owned(notification_id, user_id)
        self._store.delete(COLLECTION, notification_id)

    def delete_many(self, ids: Iterable[str], user_id: str) -> int:
        """Delete the caller's notifications among `ids`; foreign ids are skipped."""
        owned = []
        for nid in dict.fromkeys(str(i) for i in ids):
            row = self._store.get(COLLECTION, nid)
            if row is not None and row.get("user_id") == user_id:
                owned.append(nid)
        return self._store.bulk_delete(COLLECTION, owned)

    def clear_all(self, user_id: str) -> int:
        """Delete every notification of the user; returns the count."""
        count = 0
        while True:
            page = self._store.list(COLLECTION, page_size=100, filters=[("user_id", "eq", user_id)])
            if not page.items:
                return count
            deleted = self._store.bulk_delete(COLLECTION, [row["id"] for row in page.items])
            if not deleted:
                return count
            count += deleted

    def changes_since(self, user_id: str, seq: int) -> list:
        """Feed changes after `seq` that concern the user's own rows."""
        out = []
        for change in self.feed.since(COLLECTION, seq):
            row = change.new if change.new is not None else change.old
            if row and row.get("user_id") == user_id:
                out.append(change)
        return out
