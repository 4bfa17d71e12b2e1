"""
NotificationList component: latest notifications on the dashboard.
"""

from typing import Any, Dict, List

from ..base import Component


class NotificationList(Component):
    def __init__(self, items: List[Dict[str, Any]], unread: int = 0):
        self.items = items
        self.unread = unread

    def render(self) -> str:
        if not self.items:
            body = '<p class="muted">No notifications.</p>'
        else:
            rows = []
            for item in self.items:
                cls = self.classes("notification", unread=not item.get("read"))
                rows.append(
                    f'<li class="{cls}" data-id="{self.escape(item.get("id"))}">'
                    f'<strong>{self.escape(item.get("title"))}</strong>'
                    f'<p>{self.escape(item.get("message"))}</p>'
                    "</li>"
                )
            body = f'<ul class="notification-list">{"".join(rows)}</ul>'
        return (
            '<section class="card notifications-card" aria-label="Notifications">'
            f'<h2>Notifications <span class="count">{int(self.unread)}</span></h2>'
            f"{body}"
            "</section>"
        )
