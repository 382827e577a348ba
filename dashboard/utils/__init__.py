"""Utility helpers for the dashboard."""

from .logging import configure_logging

__all__ = ["configure_logging"]
