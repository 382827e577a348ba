"""
HTTP/WebSocket operator API for the dashboard.
"""

from .server import create_app
from .state import DashboardState

__all__ = ["DashboardState", "create_app"]
