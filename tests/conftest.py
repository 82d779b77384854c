"""Shared fixtures: in-memory stores that record every call."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from unittest.mock import AsyncMock
from urllib.parse import parse_qsl

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from tasksync.core.retry import RetryPolicy
from tasksync.google.client import GoogleApiClient, GoogleOAuthClient
from tasksync.google.credentials import GOOGLE_OAUTH_TOKEN_URL, RefreshTokenCredentials
from tasksync.sync.clock import FixedClock
from tasksync.sync.models import ROW_WIDTH, TargetEvent
from tasksync.sync.run_log import RunLog, RunLogEntry
from tasksync.sync.stores import AuthorizationProvider, EventStore, LogSink, RowStore

FIXED_NOW = datetime(2025, 2, 20, 15, 30, tzinfo=UTC)

TEST_CREDENTIALS = RefreshTokenCredentials(
    client_id="client-id",
    client_secret="client-secret",
    refresh_token="refresh-token",
)


class FakeRowStore(RowStore):
    """Row store over a list of rows.

    ``on_read`` is called with the 1-based read count before each read
    returns, so tests can simulate an external edit between reads.
    """

    def __init__(self, rows: Sequence[Sequence[str]]) -> None:
        self.rows: list[list[str]] = [list(row) for row in rows]
        self.cells: dict[str, str] = {}
        self.reads = 0
        self.writes: list[tuple[str, str]] = []
        self.on_read: Callable[[int, FakeRowStore], None] | None = None

    async def read_range(self, range_name: str) -> list[list[str]]:
        self.reads += 1
        if self.on_read is not None:
            self.on_read(self.reads, self)
        return [list(row) for row in self.rows]

    async def write_cell(self, cell_ref: str, value: str) -> None:
        self.writes.append((cell_ref, value))
        if "#" in cell_ref:
            index = int(cell_ref.rsplit("#", 1)[1])
            row = self.rows[index]
            row.extend([""] * (ROW_WIDTH - len(row)))
            row[ROW_WIDTH - 1] = value
        else:
            self.cells[cell_ref] = value

    def identity_cell(self, range_name: str, row_index: int) -> str:
        return f"{range_name}#{row_index}"


class FakeEventStore(EventStore):
    def __init__(self, events: Sequence[TargetEvent] = ()) -> None:
        self.events: dict[str, TargetEvent] = {}
        self.calls: list[tuple[str, str]] = []
        self._next_id = 1
        for event in events:
            self._store(event)

    def _store(self, event: TargetEvent) -> TargetEvent:
        event_id = event.event_id or f"evt-{self._next_id}"
        self._next_id += 1
        stored = event.model_copy(update={"event_id": event_id})
        self.events[event_id] = stored
        return stored

    def reset_calls(self) -> None:
        self.calls.clear()

    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] != "list"]

    async def list_events(self, *, calendar_id: str) -> list[TargetEvent]:
        self.calls.append(("list", calendar_id))
        return list(self.events.values())

    async def create_event(self, *, calendar_id: str, event: TargetEvent) -> TargetEvent:
        stored = self._store(event.model_copy(update={"event_id": None}))
        self.calls.append(("create", stored.event_id or ""))
        return stored

    async def update_event(
        self,
        *,
        calendar_id: str,
        event_id: str,
        event: TargetEvent,
    ) -> TargetEvent:
        self.calls.append(("update", event_id))
        stored = event.model_copy(update={"event_id": event_id})
        self.events[event_id] = stored
        return stored

    async def delete_event(self, *, calendar_id: str, event_id: str) -> None:
        self.calls.append(("delete", event_id))
        self.events.pop(event_id, None)


class FakeAuthorizer(AuthorizationProvider):
    """Raises *error* on the first *times* calls, or on every call when *times* is None."""

    def __init__(self, error: Exception | None = None, *, times: int | None = None) -> None:
        self.calls = 0
        self._error = error
        self._times = times

    async def authorize(self) -> None:
        self.calls += 1
        if self._error is None:
            return
        if self._times is None or self.calls <= self._times:
            raise self._error


class RecordingLogSink(LogSink):
    def __init__(self, error: Exception | None = None) -> None:
        self.batches: list[list[RunLogEntry]] = []
        self._error = error

    async def append(self, entries: Sequence[RunLogEntry]) -> None:
        self.batches.append(list(entries))
        if self._error is not None:
            raise self._error


class FakeGoogleBackend:
    """``httpx.MockTransport`` handler serving OAuth tokens and queued API responses.

    Token requests are answered with ``token-1``, ``token-2``, ...; every other
    request is recorded and answered with the next queued response (or an
    empty JSON object once the queue is drained).
    """

    def __init__(self, responses: Sequence[httpx.Response] = ()) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []
        self.token_requests = 0
        self.token_forms: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_OAUTH_TOKEN_URL:
            self.token_requests += 1
            self.token_forms.append(dict(parse_qsl(request.content.decode())))
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600}
            )
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(200, json={})
        return self.responses.pop(0)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def api(self, base_url: str) -> GoogleApiClient:
        http_client = self.http_client()
        oauth = GoogleOAuthClient(TEST_CREDENTIALS, http_client)
        return GoogleApiClient(base_url, oauth, http_client)


def make_row(
    *,
    origin: str = "",
    name: str = "Essay",
    due_date: str = "3/1/2025",
    due_time: str = "11:59:00 PM",
    status: str = "1 - Not Done",
    difficulty: str = "",
    priority: str = "",
    notes: str = "",
    identity: str = "",
) -> list[str]:
    return [origin, name, due_date, due_time, status, difficulty, priority, notes, identity]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def retry(no_sleep: AsyncMock) -> RetryPolicy:
    return RetryPolicy(max_attempts=5, base_delay=1.0, max_jitter=0.0, sleep=no_sleep)


@pytest.fixture
def log_sink() -> RecordingLogSink:
    return RecordingLogSink()


@pytest.fixture
def run_log(log_sink: RecordingLogSink, clock: FixedClock) -> RunLog:
    return RunLog(log_sink, clock=clock)


@pytest.fixture(scope="session")
def service_account_info() -> dict[str, str]:
    """A freshly generated service-account key in the downloaded JSON layout."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return {
        "type": "service_account",
        "project_id": "tasksync-test",
        "private_key_id": "key-1",
        "private_key": private_pem.decode("ascii"),
        "client_email": "sync@tasksync-test.iam.gserviceaccount.com",
        "client_id": "1234567890",
        "token_uri": GOOGLE_OAUTH_TOKEN_URL,
    }
