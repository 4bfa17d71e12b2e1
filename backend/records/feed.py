"""
In-process change feed for realtime list synchronization.

Why:
    Dashboards keep lists (notifications, institutions, evaluations, ...) in
    sync without reloading. Every store mutation publishes a `Change`; server
    code can `subscribe` to a collection and browsers poll the delta endpoint
    with the last `seq` they have seen (`since`).

Design:
    - One global, strictly increasing sequence number across collections so a
      client can use a single cursor.
    - Per-collection ring buffer (`collections.deque(maxlen=...)`); clients
      that fall further behind than the buffer must reload the list.
    - Subscribers run synchronously after the buffer update and outside the
      lock. A failing subscriber is logged and skipped; it never blocks the
      publisher or the other subscribers.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional
import logging
import threading

logger = logging.getLogger("prepmint.records.feed")

EVENTS = ("INSERT", "UPDATE", "DELETE")
DEFAULT_BUFFER_SIZE = 1000

Subscriber = Callable[["Change"], None]


@dataclass(frozen=True)
class Change:
    seq: int
    collection: str
    event: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def record_id(self) -> Optional[str]:
        row = self.new if self.new is not None else self.old
        if not row:
            return None
        value = row.get("id")
        return str(value) if value is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "collection": self.collection,
            "eventType": self.event,
            "new": self.new,
            "old": self.old,
            "at": self.at,
        }


class ChangeFeed:
    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._buffer_size = max(1, int(buffer_size))
        self._seq = 0
        self._buffers: Dict[str, Deque[Change]] = {}
        self._evicted: Dict[str, int] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._seq

    def publish(
        self,
        collection: str,
        event: str,
        *,
        new: Optional[Dict[str, Any]] = None,
        old: Optional[Dict[str, Any]] = None,
    ) -> Change:
        if event not in EVENTS:
            raise ValueError("invalid_event")
        with self._lock:
            self._seq += 1
            change = Change(
                seq=self._seq,
                collection=collection,
                event=event,
                new=dict(new) if new is not None else None,
                old=dict(old) if old is not None else None,
            )
            buf = self._buffers.get(collection)
            if buf is None:
                buf = deque(maxlen=self._buffer_size)
                self._buffers[collection] = buf
            elif len(buf) == buf.maxlen:
                self._evicted[collection] = buf[0].seq
            buf.append(change)
            subscribers = list(self._subscribers.get(collection, ()))
        for callback in subscribers:
            try:
                callback(change)
            except Exception as exc:
                logger.warning(
                    "change_subscriber_failed collection=%s seq=%s error=%s",
                    collection,
                    change.seq,
                    exc.__class__.__name__,
                )
        return change

    def subscribe(self, collection: str, callback: Subscriber) -> Callable[[], None]:
        """Register `callback` for `collection`; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(collection, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                subs = self._subscribers.get(collection, [])
                if callback in subs:
                    subs.remove(callback)

        return unsubscribe

    def since(self, collection: str, seq: int = 0, *, limit: int | None = None) -> List[Change]:
        """Changes of `collection` with a sequence number greater than `seq`."""
        with self._lock:
            items = [c for c in self._buffers.get(collection, ()) if c.seq > seq]
        if limit is not None:
            items = items[: max(0, int(limit))]
        return items

    def covers(self, collection: str, seq: int) -> bool:
        """False when changes after `seq` were already evicted from the buffer."""
        with self._lock:
            return self._evicted.get(collection, 0) <= seq


def apply_change(items: List[Dict[str, Any]], change: Change, direction: str = "desc") -> List[Dict[str, Any]]:
    """Merge one change into a client-side list and return the new list.

    INSERT skips rows already present and prepends (desc) or appends (asc);
    UPDATE replaces the row with the same id; DELETE removes it.
    """
    rid = change.record_id
    if change.event == "INSERT":
        if change.new is None or any(str(it.get("id")) == rid for it in items):
            return list(items)
        if direction == "asc":
            return list(items) + [dict(change.new)]
        return [dict(change.new)] + list(items)
    if change.event == "UPDATE":
        if change.new is None:
            return list(items)
        return [dict(change.new) if str(it.get("id")) == rid else it for it in items]
    if change.event == "DELETE":
        return [it for it in items if str(it.get("id")) != rid]
    return list(items)
