"""
Navigation Component for PrepMint

Role-based sidebar. Visibility of a link never grants access; every target is
guarded by the middleware and the dashboard role checks.
"""

from typing import Any, Dict, List, Optional, Tuple

from .base import Component

NavItem = Tuple[str, str]

NAV_CONFIG: Dict[str, List[NavItem]] = {
    "student": [
        ("/dashboard/student", "Dashboard"),
        ("/rewards", "Rewards"),
        ("/profile", "Profile"),
        ("/settings", "Settings"),
    ],
    "teacher": [
        ("/dashboard/teacher", "Dashboard"),
        ("/dashboard/analytics", "Analytics"),
        ("/profile", "Profile"),
        ("/settings", "Settings"),
    ],
    "institution": [
        ("/dashboard/institution", "Dashboard"),
        ("/dashboard/analytics", "Analytics"),
        ("/profile", "Profile"),
        ("/settings", "Settings"),
    ],
    "admin": [
        ("/dashboard/admin", "Dashboard"),
        ("/dashboard/analytics", "Analytics"),
        ("/profile", "Profile"),
        ("/settings", "Settings"),
    ],
}
NAV_CONFIG["dev"] = NAV_CONFIG["admin"]

PUBLIC_NAV: List[NavItem] = [("/login", "Sign in")]


class Navigation(Component):
    """Sidebar with menu items for the user's role"""

    def __init__(self, user: Optional[Dict[str, Any]] = None, current_path: str = "/"):
        self.user = user
        self.current_path = current_path or "/"

    def items(self) -> List[NavItem]:
        if not self.user:
            return list(PUBLIC_NAV)
        role = str(self.user.get("role", "")).lower()
        return list(NAV_CONFIG.get(role, NAV_CONFIG["student"]))

    def active_href(self, items: List[NavItem]) -> str:
        """Best prefix match so /dashboard/admin/users keeps Dashboard active."""
        best = ""
        for href, _ in items:
            if self.current_path == href or self.current_path.startswith(href.rstrip("/") + "/"):
                if len(href) > len(best):
                    best = href
        return best

    def render(self) -> str:
        items = self.items()
        active = self.active_href(items)
        links = "".join(self._render_link(href, label, href == active) for href, label in items)
        footer = ""
        if self.user:
            links += self._render_link("/logout", "Sign out", False)
            footer = (
                '<div class="sidebar-footer">'
                f'<div class="user-name">{self.escape(self.user.get("name", ""))}</div>'
                f'<div class="user-role">{self.escape(self.user.get("role", ""))}</div>'
                "</div>"
            )
        return (
            '<aside class="sidebar" id="sidebar" aria-label="Sidebar">'
            '<nav class="sidebar-nav" role="navigation" aria-label="Main navigation">'
            '<div class="sidebar-header"><span class="sidebar-title">PrepMint</span></div>'
            f'<div class="sidebar-items">{links}</div>'
            f"{footer}"
            "</nav></aside>"
        )

    def _render_link(self, href: str, label: str, active: bool) -> str:
        current = ' aria-current="page"' if active else ""
        cls = self.classes("nav-item", active=active)
        return f'<a href="{self.escape(href)}" class="{cls}"{current}>{self.escape(label)}</a>'
