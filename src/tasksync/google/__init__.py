"""Google Sheets and Google Calendar implementations of the sync stores."""

from tasksync.google.calendar import GoogleCalendarEventStore
from tasksync.google.client import GoogleApiClient, GoogleOAuthClient
from tasksync.google.credentials import (
    GoogleCredentials,
    RefreshTokenCredentials,
    ServiceAccountCredentials,
    load_credentials,
)
from tasksync.google.sheets import GoogleSheetsRowStore, SheetRange, SheetsLogSink

__all__ = [
    "GoogleApiClient",
    "GoogleCalendarEventStore",
    "GoogleCredentials",
    "GoogleOAuthClient",
    "GoogleSheetsRowStore",
    "RefreshTokenCredentials",
    "ServiceAccountCredentials",
    "SheetRange",
    "SheetsLogSink",
    "load_credentials",
]
