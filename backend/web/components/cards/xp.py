"""
XPCard component.

Shows level, total XP, progress to the next level and earned badges on every
dashboard.
"""

from dataclasses import dataclass, field
from typing import List

from gamification.levels import calculate_level, level_progress, xp_for_next_level

from ..base import Component


@dataclass
class XPCard(Component):
    xp: int
    badges: List[str] = field(default_factory=list)

    def render(self) -> str:
        level = calculate_level(self.xp)
        progress = level_progress(self.xp)
        next_at = xp_for_next_level(level)
        badges = "".join(f'<li class="badge">{self.escape(b)}</li>' for b in self.badges)
        badges_html = f'<ul class="badge-list">{badges}</ul>' if badges else '<p class="muted">No badges yet.</p>'
        return (
            '<section class="card xp-card" aria-label="Experience">'
            f'<h2>Level {level}</h2>'
            f'<p class="xp-total">{int(self.xp)} XP</p>'
            f'<progress class="xp-progress" max="100" value="{progress:.0f}">{progress:.0f}%</progress>'
            f'<p class="muted">{progress:.0f}% to level {level + 1} ({next_at} XP)</p>'
            f"{badges_html}"
            "</section>"
        )
