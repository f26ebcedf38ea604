"""
External calendar providers.

Usage:
    from calsync.providers import CalendarProvider, GoogleCalendarProvider
"""

from calsync.providers.base import CalendarProvider, RemoteEvent
from calsync.providers.google_calendar import GoogleCalendarProvider


__all__ = ["CalendarProvider", "GoogleCalendarProvider", "RemoteEvent"]
