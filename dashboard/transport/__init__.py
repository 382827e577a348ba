"""
Transport implementations bundled with the dashboard.
"""

from __future__ import annotations

from .loopback import LoopbackServer

__all__ = ["LoopbackServer"]
