"""
Card components for PrepMint dashboards.
"""

from .notifications import NotificationList
from .xp import XPCard

__all__ = ["NotificationList", "XPCard"]
