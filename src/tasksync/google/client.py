"""Authenticated JSON requests against Google REST APIs.

``GoogleOAuthClient`` turns a credentials file into cached bearer tokens and
``GoogleApiClient`` attaches them to every Sheets and Calendar request.  HTTP
failures are translated into the sync error taxonomy:

- 429 / 503 (API or token endpoint) -> ``RateLimitedError``, retried by the
  caller's retry policy
- any other non-2xx from an API -> ``TransportError``
- any other non-2xx from the token endpoint -> ``AuthorizationError``
- network-level ``httpx.HTTPError`` -> ``TransportError``
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from tasksync.errors import AuthorizationError, RateLimitedError, TransportError
from tasksync.google.credentials import GoogleCredentials
from tasksync.sync.stores import AuthorizationProvider

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS_CODES = frozenset({429, 503})
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
ERROR_MESSAGE_LIMIT = 200

_SECRET_KEYS = "client_secret|refresh_token|access_token|assertion|private_key"
_REDACTIONS = (
    (re.compile(rf"(?i)\b({_SECRET_KEYS})=[^\s,;&]+"), r"\1=[REDACTED]"),
    (re.compile(rf"""(?i)(["']?(?:{_SECRET_KEYS})["']?\s*:\s*)(["']).*?\2"""), r'\1"[REDACTED]"'),
    (re.compile(r"(?i)\bBearer\s+[\w.\-]+"), "Bearer [REDACTED]"),
)


def redact_credential_values(message: str) -> str:
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def safe_error_message(response: httpx.Response) -> str:
    """Short, single-line, secret-free description of a failed response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    detail = response.text
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        if isinstance(error, str) and error.strip():
            detail = error

    detail = " ".join(detail.split())
    if not detail:
        return "Request failed without an error payload"
    return redact_credential_values(detail)[:ERROR_MESSAGE_LIMIT]


def _is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def _token_lifetime(value: Any) -> timedelta:
    if isinstance(value, int | float) and not isinstance(value, bool) and value > 0:
        return timedelta(seconds=value)
    return DEFAULT_TOKEN_LIFETIME


@dataclass(frozen=True, slots=True)
class _AccessToken:
    value: str
    expires_at: datetime

    def is_fresh(self) -> bool:
        return datetime.now(UTC) < self.expires_at


class GoogleOAuthClient(AuthorizationProvider):
    """Exchanges credentials for access tokens and caches them until near expiry."""

    def __init__(self, credentials: GoogleCredentials, http_client: httpx.AsyncClient) -> None:
        self._credentials = credentials
        self._http_client = http_client
        self._token: _AccessToken | None = None
        self._lock = asyncio.Lock()

    async def authorize(self) -> None:
        await self.get_access_token()

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        async with self._lock:
            if force_refresh or self._token is None or not self._token.is_fresh():
                self._token = await self._fetch_token()
            return self._token.value

    async def _fetch_token(self) -> _AccessToken:
        url, form = self._credentials.token_request()
        try:
            response = await self._http_client.post(
                url, data=form, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise TransportError(redact_credential_values(f"POST {url} failed: {exc}")) from exc

        if response.status_code in RATE_LIMIT_STATUS_CODES:
            raise RateLimitedError(
                f"Token endpoint rate limited ({response.status_code}): "
                f"{safe_error_message(response)}",
                status_code=response.status_code,
            )
        if not _is_success(response):
            raise AuthorizationError(
                f"Token request for {self._credentials.principal} failed "
                f"({response.status_code}): {safe_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError:
            raise AuthorizationError("Token endpoint returned invalid JSON") from None
        if not isinstance(payload, dict):
            raise AuthorizationError("Token endpoint returned an unexpected JSON payload shape")

        value = payload.get("access_token")
        if not isinstance(value, str) or not value.strip():
            raise AuthorizationError("Token response is missing a non-empty access_token")

        usable_for = max(
            _token_lifetime(payload.get("expires_in")) - TOKEN_EXPIRY_MARGIN,
            timedelta(seconds=30),
        )
        logger.debug(
            "Obtained access token for %s (valid for %ds)",
            self._credentials.principal,
            usable_for.total_seconds(),
        )
        return _AccessToken(value=value.strip(), expires_at=datetime.now(UTC) + usable_for)


class GoogleApiClient:
    """Bearer-authenticated request helper bound to one API base URL."""

    def __init__(
        self,
        base_url: str,
        oauth: GoogleOAuthClient,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._oauth = oauth
        self._http_client = http_client

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request, refreshing the token once on 401.

        Returns the raw response for any status other than a rate limit;
        callers decide which statuses count as success.
        """
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{self._base_url}{path}"

        response = await self._send(method, url, params, json_body, force_refresh=False)
        if response.status_code == 401:
            response = await self._send(method, url, params, json_body, force_refresh=True)

        if response.status_code in RATE_LIMIT_STATUS_CODES:
            raise RateLimitedError(
                f"{method} {path} rate limited ({response.status_code}): "
                f"{safe_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self.request(method, path, params=params, json_body=json_body)
        raise_for_status(response)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError:
            raise TransportError(
                f"{method} {path} returned invalid JSON for a successful response"
            ) from None
        if not isinstance(payload, dict):
            raise TransportError(f"{method} {path} returned an unexpected JSON payload shape")
        return payload

    async def _send(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        *,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self._oauth.get_access_token(force_refresh=force_refresh)
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                redact_credential_values(f"{method} {url} failed: {exc}")
            ) from exc


def raise_for_status(response: httpx.Response) -> None:
    if not _is_success(response):
        raise TransportError(safe_error_message(response), status_code=response.status_code)


def new_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT_SECONDS)
