"""Wire a ``SyncConfig`` to the Google-backed stores and run one sync."""

from __future__ import annotations

import logging

import httpx

from tasksync.config import SyncConfig
from tasksync.core.retry import RetryPolicy
from tasksync.errors import AuthorizationError
from tasksync.google.calendar import GOOGLE_CALENDAR_API_BASE_URL, GoogleCalendarEventStore
from tasksync.google.client import GoogleApiClient, GoogleOAuthClient, new_http_client
from tasksync.google.credentials import GoogleCredentials, load_credentials
from tasksync.google.sheets import GOOGLE_SHEETS_API_BASE_URL, GoogleSheetsRowStore, SheetsLogSink
from tasksync.sync.clock import Clock
from tasksync.sync.orchestrator import SyncOrchestrator, SyncOutcome, SyncPhase, SyncTarget
from tasksync.sync.projector import EventProjector
from tasksync.sync.stores import DryRunEventStore, EventStore, LogSink, NullLogSink

logger = logging.getLogger(__name__)


def build_orchestrator(
    config: SyncConfig,
    credentials: GoogleCredentials,
    http_client: httpx.AsyncClient,
    *,
    dry_run: bool = False,
    clock: Clock | None = None,
) -> SyncOrchestrator:
    clock = clock or Clock()
    retry = RetryPolicy(
        max_attempts=config.retry.max_attempts,
        base_delay=config.retry.base_delay_s,
        max_jitter=config.retry.max_jitter_s,
    )
    oauth = GoogleOAuthClient(credentials, http_client)
    sheets_api = GoogleApiClient(GOOGLE_SHEETS_API_BASE_URL, oauth, http_client)
    calendar_api = GoogleApiClient(GOOGLE_CALENDAR_API_BASE_URL, oauth, http_client)

    row_store = GoogleSheetsRowStore(sheets_api, spreadsheet_id=config.sheet.spreadsheet_id)
    event_store: EventStore = GoogleCalendarEventStore(
        calendar_api, fallback_timezone=config.calendar.timezone
    )
    if dry_run:
        event_store = DryRunEventStore(event_store)

    log_sink: LogSink = NullLogSink()
    if config.sheet.log_range:
        log_sink = SheetsLogSink(
            row_store,
            log_range=config.sheet.log_range,
            zone=clock.zone(config.calendar.timezone),
            retry=retry,
        )

    return SyncOrchestrator(
        target=SyncTarget(
            range_name=config.sheet.range,
            calendar_id=config.calendar.calendar_id,
            last_sync_cell=None if dry_run else config.sheet.last_sync_cell,
        ),
        authorizer=oauth,
        row_store=row_store,
        event_store=event_store,
        log_sink=log_sink,
        projector=EventProjector(
            timezone=config.calendar.timezone,
            clock=clock,
            completion_marker=config.calendar.completion_marker,
            completed_statuses=config.calendar.completed_statuses,
        ),
        retry=retry,
        clock=clock,
    )


async def run_sync(
    config: SyncConfig,
    *,
    dry_run: bool = False,
    http_client: httpx.AsyncClient | None = None,
) -> SyncOutcome:
    """Run one sync.  Never raises; failures are reported in the outcome."""
    try:
        credentials = load_credentials(config.credentials_path)
    except AuthorizationError as exc:
        logger.error("Cannot load credentials: %s", exc)
        return SyncOutcome(
            success=False,
            phase=SyncPhase.AUTHORIZE,
            error_kind=exc.kind,
            error=str(exc),
        )

    owns_http_client = http_client is None
    client = http_client or new_http_client()
    try:
        orchestrator = build_orchestrator(config, credentials, client, dry_run=dry_run)
        return await orchestrator.run()
    finally:
        if owns_http_client:
            await client.aclose()
