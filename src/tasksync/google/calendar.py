"""Google Calendar-backed event store.

Events created by tasksync carry their task identity in the private
extended property ``uuid``; events without it are returned with
``identity=None`` and left alone by the reconciler.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tasksync.errors import TransportError
from tasksync.google.client import GoogleApiClient, raise_for_status, safe_error_message
from tasksync.sync.models import TargetEvent
from tasksync.sync.stores import EventStore

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
IDENTITY_PRIVATE_KEY = "uuid"
LIST_PAGE_SIZE = 250


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime value: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _coerce_zoneinfo(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def _parse_event_boundary(
    payload: dict[str, Any],
    *,
    fallback_timezone: str,
) -> tuple[datetime, str]:
    timezone_raw = payload.get("timeZone")
    timezone = (
        timezone_raw.strip()
        if isinstance(timezone_raw, str) and timezone_raw.strip()
        else fallback_timezone
    )

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return _parse_google_datetime(date_time), timezone

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value)
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc
        return (
            datetime(
                parsed_date.year,
                parsed_date.month,
                parsed_date.day,
                tzinfo=_coerce_zoneinfo(timezone),
            ),
            timezone,
        )

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


def _extract_identity(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    private_payload = payload.get("private")
    if not isinstance(private_payload, dict):
        return None
    identity = private_payload.get(IDENTITY_PRIVATE_KEY)
    if isinstance(identity, str) and identity.strip():
        return identity.strip()
    return None


def google_event_to_target_event(
    payload: dict[str, Any],
    *,
    fallback_timezone: str,
) -> TargetEvent | None:
    """Convert an API event payload; returns ``None`` for cancelled events."""
    status_raw = payload.get("status")
    if isinstance(status_raw, str) and status_raw.lower() == "cancelled":
        return None

    event_id_raw = payload.get("id")
    if not isinstance(event_id_raw, str) or not event_id_raw.strip():
        raise ValueError("Google Calendar event payload is missing a non-empty id")
    event_id = event_id_raw.strip()

    start_payload = payload.get("start")
    end_payload = payload.get("end")
    if not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
        raise ValueError(f"Google Calendar event '{event_id}' is missing start/end payloads")

    start_at, timezone = _parse_event_boundary(start_payload, fallback_timezone=fallback_timezone)
    end_at, _ = _parse_event_boundary(end_payload, fallback_timezone=fallback_timezone)

    summary = payload.get("summary")
    description = payload.get("description")
    return TargetEvent(
        summary=summary if isinstance(summary, str) else "",
        description=description if isinstance(description, str) else None,
        start_at=start_at,
        end_at=end_at,
        timezone=timezone,
        identity=_extract_identity(payload.get("extendedProperties")),
        event_id=event_id,
    )


def build_google_event_body(event: TargetEvent) -> dict[str, Any]:
    """Translate a projected event into a full Google Calendar event body."""
    body: dict[str, Any] = {
        "summary": event.summary,
        "description": event.description or "",
        "start": {"dateTime": event.start_at.isoformat(), "timeZone": event.timezone},
        "end": {"dateTime": event.end_at.isoformat(), "timeZone": event.timezone},
    }
    if event.identity:
        body["extendedProperties"] = {"private": {IDENTITY_PRIVATE_KEY: event.identity}}
    return body


class GoogleCalendarEventStore(EventStore):
    def __init__(self, api: GoogleApiClient, *, fallback_timezone: str) -> None:
        self._api = api
        self._fallback_timezone = fallback_timezone

    def _events_path(self, calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path = f"{path}/{quote(event_id.strip(), safe='')}"
        return path

    def _to_event(self, payload: dict[str, Any], *, action: str) -> TargetEvent:
        try:
            event = google_event_to_target_event(payload, fallback_timezone=self._fallback_timezone)
        except ValueError as exc:
            raise TransportError(f"Unreadable event returned by {action}: {exc}") from exc
        if event is None:
            raise TransportError(f"Google Calendar returned a cancelled event after {action}")
        return event

    async def list_events(self, *, calendar_id: str) -> list[TargetEvent]:
        events: list[TargetEvent] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"showDeleted": False, "maxResults": LIST_PAGE_SIZE}
            if page_token is not None:
                params["pageToken"] = page_token
            payload = await self._api.request_json(
                "GET", self._events_path(calendar_id), params=params
            )

            items = payload.get("items", [])
            if not isinstance(items, list):
                raise TransportError("Google Calendar events.list response has a non-list items")
            for item in items:
                if not isinstance(item, dict):
                    continue
                try:
                    event = google_event_to_target_event(
                        item, fallback_timezone=self._fallback_timezone
                    )
                except ValueError as exc:
                    # Foreign events we cannot read are never ours to reconcile.
                    logger.warning("Skipping unreadable event %r: %s", item.get("id"), exc)
                    continue
                if event is not None:
                    events.append(event)

            next_token = payload.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token:
                break
            page_token = next_token

        logger.debug("Listed %d event(s) on %s", len(events), calendar_id)
        return events

    async def create_event(self, *, calendar_id: str, event: TargetEvent) -> TargetEvent:
        payload = await self._api.request_json(
            "POST",
            self._events_path(calendar_id),
            json_body=build_google_event_body(event),
        )
        return self._to_event(payload, action="create")

    async def update_event(
        self,
        *,
        calendar_id: str,
        event_id: str,
        event: TargetEvent,
    ) -> TargetEvent:
        if not event_id.strip():
            raise ValueError("event_id must be a non-empty string")
        payload = await self._api.request_json(
            "PUT",
            self._events_path(calendar_id, event_id),
            json_body=build_google_event_body(event),
        )
        return self._to_event(payload, action="update")

    async def delete_event(self, *, calendar_id: str, event_id: str) -> None:
        if not event_id.strip():
            raise ValueError("event_id must be a non-empty string")
        response = await self._api.request("DELETE", self._events_path(calendar_id, event_id))

        # 404/410 mean the event is already gone.
        if response.status_code in (404, 410):
            logger.debug(
                "delete_event: event '%s' already gone (%d): %s",
                event_id,
                response.status_code,
                safe_error_message(response),
            )
            return
        raise_for_status(response)
