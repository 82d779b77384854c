"""Credentials for the Sheets and Calendar APIs.

``credentials.json`` may hold either of two things:

- a service-account key (``"type": "service_account"``).  Access tokens are
  obtained with a JWT assertion signed by the key, and the spreadsheet and
  calendar must be shared with the account's ``client_email``;
- an OAuth client plus a refresh token (``client_id``, ``client_secret``,
  ``refresh_token``), at the top level or nested under ``installed``/``web``.

Both expose ``token_request()``, the URL and form body that
``GoogleOAuthClient`` posts to obtain an access token.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from google.auth import jwt
from google.oauth2 import service_account
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tasksync.errors import AuthorizationError

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/spreadsheets",
)
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600

_REFRESH_TOKEN_FIELDS = ("client_id", "client_secret", "refresh_token")


class RefreshTokenCredentials(BaseModel):
    """OAuth client credentials plus a long-lived refresh token."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1, repr=False)
    refresh_token: str = Field(min_length=1, repr=False)

    @property
    def principal(self) -> str:
        return self.client_id

    def token_request(self) -> tuple[str, dict[str, str]]:
        return GOOGLE_OAUTH_TOKEN_URL, {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RefreshTokenCredentials:
        values = {key: _lookup(payload, key) for key in _REFRESH_TOKEN_FIELDS}
        missing = [key for key in _REFRESH_TOKEN_FIELDS if values[key] is None]
        if missing:
            raise AuthorizationError(
                f"Credential JSON is missing required field(s): {', '.join(missing)}"
            )
        try:
            return cls(**values)
        except ValidationError as exc:
            invalid = sorted({str(error["loc"][0]) for error in exc.errors()})
            raise AuthorizationError(
                f"Credential JSON must contain non-empty string field(s): {', '.join(invalid)}"
            ) from None


class ServiceAccountCredentials:
    """A service-account key that signs its own token requests."""

    def __init__(
        self,
        key: service_account.Credentials,
        *,
        token_uri: str,
        scopes: Sequence[str] = GOOGLE_SCOPES,
    ) -> None:
        self._key = key
        self._token_uri = token_uri
        self._scopes = tuple(scopes)

    def __repr__(self) -> str:
        return f"ServiceAccountCredentials(client_email={self.principal!r})"

    @property
    def principal(self) -> str:
        return self._key.service_account_email

    @property
    def scopes(self) -> tuple[str, ...]:
        return self._scopes

    def token_request(self) -> tuple[str, dict[str, str]]:
        issued_at = int(datetime.now(UTC).timestamp())
        claims = {
            "iss": self.principal,
            "scope": " ".join(self._scopes),
            "aud": self._token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        assertion = jwt.encode(self._key.signer, claims)
        return self._token_uri, {
            "grant_type": JWT_BEARER_GRANT_TYPE,
            "assertion": assertion.decode("ascii"),
        }

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        scopes: Sequence[str] = GOOGLE_SCOPES,
    ) -> ServiceAccountCredentials:
        try:
            key = service_account.Credentials.from_service_account_info(
                payload, scopes=list(scopes)
            )
        except ValueError as exc:
            raise AuthorizationError(f"Invalid service account key: {exc}") from None
        return cls(key, token_uri=payload["token_uri"], scopes=scopes)


GoogleCredentials = RefreshTokenCredentials | ServiceAccountCredentials


def _lookup(payload: dict[str, Any], key: str) -> Any:
    if key in payload:
        return payload[key]
    for section in ("installed", "web"):
        nested = payload.get(section)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
    return None


def parse_credentials(raw_value: str) -> GoogleCredentials:
    try:
        payload = json.loads(raw_value)
    except json.JSONDecodeError as exc:
        raise AuthorizationError(f"Credential JSON must be valid JSON: {exc.msg}") from None
    if not isinstance(payload, dict):
        raise AuthorizationError("Credential JSON must decode to a JSON object")

    if payload.get("type") == "service_account":
        return ServiceAccountCredentials.from_payload(payload)
    return RefreshTokenCredentials.from_payload(payload)


def load_credentials(path: Path) -> GoogleCredentials:
    try:
        raw_value = path.read_text()
    except OSError as exc:
        raise AuthorizationError(f"Cannot read credentials file {path}: {exc}") from exc
    return parse_credentials(raw_value)
