"""
Data Source Providers
Remote resources the engine mirrors (Google Calendar, Gmail)
"""
from mirrorsync.services.sync.providers.base import ResourceProvider
from mirrorsync.services.sync.providers.google_calendar import GoogleCalendarProvider
from mirrorsync.services.sync.providers.gmail import GmailProvider

__all__ = [
    "ResourceProvider",
    "GoogleCalendarProvider",
    "GmailProvider",
]
