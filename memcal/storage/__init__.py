"""Persistent storage for feeds, calendars and events."""

from .database import DatabaseManager

__all__ = ["DatabaseManager"]
