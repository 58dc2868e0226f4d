"""Video meeting provider clients.

One client per supported platform:

- MEET: Google Calendar events with a Hangouts Meet conference attached
- TEAMS: Microsoft Graph online meetings
- ZOOM: Zoom scheduled meetings via Server-to-Server OAuth

All three report failures as ``MeetingProviderError`` with a
``MeetingErrorKind`` so callers can tell a consultant to reconnect an
account from a provider outage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import time
from typing import Any, Optional, cast
import uuid

import httpx
from pydantic import SecretStr
import pytz

logger = logging.getLogger(__name__)

DEFAULT_MEETING_TIMEZONE = "Asia/Kolkata"


class MeetingErrorKind(str, Enum):
    CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
    CREDENTIAL_EXPIRED = "CREDENTIAL_EXPIRED"
    INSUFFICIENT_PERMISSION = "INSUFFICIENT_PERMISSION"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    REQUEST_REJECTED = "REQUEST_REJECTED"


class MeetingProviderError(RuntimeError):
    """Raised when a meeting provider cannot create or change a meeting."""

    def __init__(
        self,
        kind: MeetingErrorKind,
        message: str,
        status_code: int | None = None,
        *,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.details = details


def classify_status(status_code: int) -> MeetingErrorKind:
    """Map an HTTP error status from a provider to an error kind."""
    if status_code == 401:
        return MeetingErrorKind.CREDENTIAL_EXPIRED
    if status_code == 403:
        return MeetingErrorKind.INSUFFICIENT_PERMISSION
    if status_code in (404, 408, 429) or status_code >= 500:
        return MeetingErrorKind.PROVIDER_UNAVAILABLE
    return MeetingErrorKind.REQUEST_REJECTED


@dataclass
class MeetingDetails:
    title: str
    start_time: datetime
    duration_minutes: int
    consultant_email: str
    client_email: str
    description: Optional[str] = None
    timezone: str = DEFAULT_MEETING_TIMEZONE

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def local(self, value: datetime) -> datetime:
        """``value`` expressed in the meeting's timezone."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(pytz.timezone(self.timezone or DEFAULT_MEETING_TIMEZONE))


@dataclass
class MeetingLink:
    meeting_link: str
    meeting_id: str
    password: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class MeetingCredential:
    """OAuth access token a consultant connected for a platform."""

    access_token: Optional[str]
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= (now or datetime.now(timezone.utc))


def require_token(credential: Optional[MeetingCredential], platform: str) -> str:
    """Return a usable bearer token or raise a credential error without any network call."""
    if credential is None or not credential.access_token:
        raise MeetingProviderError(
            MeetingErrorKind.CREDENTIAL_MISSING,
            f"{platform} account is not connected",
        )
    if credential.is_expired():
        raise MeetingProviderError(
            MeetingErrorKind.CREDENTIAL_EXPIRED,
            f"{platform} access token has expired",
        )
    return credential.access_token


class _HttpMeetingProvider:
    """Shared request handling for the HTTP-based providers."""

    platform = ""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(
                    method, url, headers=headers, json=json_body, params=params
                )
        except httpx.TransportError as exc:
            # Timeouts are transport errors too.
            logger.error("%s API unreachable for %s %s: %s", self.platform, method, path, exc)
            raise MeetingProviderError(
                MeetingErrorKind.PROVIDER_UNAVAILABLE,
                f"{self.platform} API unreachable: {exc}",
            ) from exc

        if response.status_code >= 400:
            try:
                error_body: Any = response.json()
            except ValueError:
                error_body = {"raw": response.text[:500]}
            kind = classify_status(response.status_code)
            logger.error(
                "%s API error %s for %s %s: %s",
                self.platform,
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise MeetingProviderError(
                kind,
                f"{self.platform} API error {response.status_code}",
                status_code=response.status_code,
                details=error_body,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return cast(dict[str, Any], response.json())


class GoogleMeetProvider(_HttpMeetingProvider):
    """Google Calendar event with a Meet conference on the consultant's primary calendar."""

    platform = "MEET"
    uses_consultant_token = True

    def __init__(
        self,
        *,
        base_url: str = "https://www.googleapis.com/calendar/v3",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)

    def _event_body(self, details: MeetingDetails) -> dict[str, Any]:
        tz_name = details.timezone or DEFAULT_MEETING_TIMEZONE
        return {
            "summary": details.title,
            "description": details.description or "",
            "start": {
                "dateTime": details.local(details.start_time).isoformat(),
                "timeZone": tz_name,
            },
            "end": {
                "dateTime": details.local(details.end_time).isoformat(),
                "timeZone": tz_name,
            },
            "attendees": [
                {"email": details.consultant_email},
                {"email": details.client_email},
            ],
        }

    def create_meeting(
        self, details: MeetingDetails, credential: Optional[MeetingCredential]
    ) -> MeetingLink:
        token = require_token(credential, self.platform)
        body = self._event_body(details)
        body["conferenceData"] = {
            "createRequest": {
                "requestId": uuid.uuid4().hex,
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }
        event = self._request(
            "POST",
            "calendars/primary/events",
            token=token,
            json_body=body,
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
        )
        entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
        link = (entry_points[0].get("uri") if entry_points else None) or event.get("hangoutLink")
        if not link:
            raise MeetingProviderError(
                MeetingErrorKind.REQUEST_REJECTED,
                "Google Calendar did not return a Meet link",
                details=event,
            )
        # The calendar event id is what update/cancel address.
        return MeetingLink(meeting_link=link, meeting_id=str(event.get("id")), raw=event)

    def update_meeting(
        self,
        meeting_id: str,
        details: MeetingDetails,
        credential: Optional[MeetingCredential],
    ) -> None:
        token = require_token(credential, self.platform)
        self._request(
            "PATCH",
            f"calendars/primary/events/{meeting_id}",
            token=token,
            json_body=self._event_body(details),
            params={"sendUpdates": "all"},
        )

    def cancel_meeting(self, meeting_id: str, credential: Optional[MeetingCredential]) -> None:
        token = require_token(credential, self.platform)
        self._request(
            "DELETE",
            f"calendars/primary/events/{meeting_id}",
            token=token,
            params={"sendUpdates": "all"},
        )


class TeamsProvider(_HttpMeetingProvider):
    """Microsoft Graph online meeting owned by the signed-in consultant."""

    platform = "TEAMS"
    uses_consultant_token = True

    def __init__(
        self,
        *,
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)

    @staticmethod
    def _utc_iso(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    def create_meeting(
        self, details: MeetingDetails, credential: Optional[MeetingCredential]
    ) -> MeetingLink:
        token = require_token(credential, self.platform)
        body = {
            "subject": details.title,
            "startDateTime": self._utc_iso(details.start_time),
            "endDateTime": self._utc_iso(details.end_time),
            "participants": {
                "organizer": {
                    "identity": {"user": {"id": details.consultant_email}},
                    "role": "presenter",
                },
                "attendees": [
                    {
                        "identity": {"user": {"id": details.client_email}},
                        "role": "attendee",
                    }
                ],
            },
        }
        meeting = self._request("POST", "me/onlineMeetings", token=token, json_body=body)
        link = meeting.get("joinWebUrl")
        if not link:
            raise MeetingProviderError(
                MeetingErrorKind.REQUEST_REJECTED,
                "Microsoft Graph did not return a join URL",
                details=meeting,
            )
        password = (meeting.get("audioConferencing") or {}).get("conferenceId")
        return MeetingLink(
            meeting_link=link,
            meeting_id=str(meeting.get("id")),
            password=password,
            raw=meeting,
        )

    def update_meeting(
        self,
        meeting_id: str,
        details: MeetingDetails,
        credential: Optional[MeetingCredential],
    ) -> None:
        token = require_token(credential, self.platform)
        self._request(
            "PATCH",
            f"me/onlineMeetings/{meeting_id}",
            token=token,
            json_body={
                "subject": details.title,
                "startDateTime": self._utc_iso(details.start_time),
                "endDateTime": self._utc_iso(details.end_time),
            },
        )

    def cancel_meeting(self, meeting_id: str, credential: Optional[MeetingCredential]) -> None:
        token = require_token(credential, self.platform)
        self._request("DELETE", f"me/onlineMeetings/{meeting_id}", token=token)


class ZoomProvider(_HttpMeetingProvider):
    """Zoom scheduled meeting created with an account-level Server-to-Server OAuth app."""

    platform = "ZOOM"
    uses_consultant_token = False

    def __init__(
        self,
        *,
        account_id: str | None,
        client_id: str | None,
        client_secret: str | SecretStr | None,
        base_url: str = "https://api.zoom.us/v2",
        oauth_url: str = "https://zoom.us/oauth/token",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)
        self._account_id = account_id
        self._client_id = client_id
        self._client_secret = (
            client_secret.get_secret_value()
            if isinstance(client_secret, SecretStr)
            else client_secret
        )
        self._oauth_url = oauth_url
        self._access_token: str | None = None
        self._token_refresh_at: float = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self._account_id and self._client_id and self._client_secret)

    def _fetch_access_token(self) -> tuple[str, int]:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    self._oauth_url,
                    params={
                        "grant_type": "account_credentials",
                        "account_id": self._account_id,
                    },
                    auth=(self._client_id or "", self._client_secret or ""),
                )
        except httpx.TransportError as exc:
            logger.error("Zoom OAuth unreachable: %s", exc)
            raise MeetingProviderError(
                MeetingErrorKind.PROVIDER_UNAVAILABLE, f"Zoom OAuth unreachable: {exc}"
            ) from exc

        if response.status_code >= 400:
            kind = classify_status(response.status_code)
            if response.status_code in (400, 401):
                kind = MeetingErrorKind.CREDENTIAL_EXPIRED
            logger.error("Zoom OAuth error %s: %s", response.status_code, response.text[:500])
            raise MeetingProviderError(
                kind,
                f"Zoom OAuth error {response.status_code}",
                status_code=response.status_code,
            )
        body = response.json()
        return str(body["access_token"]), int(body.get("expires_in", 3600))

    def _get_access_token(self) -> str:
        """Return a cached S2S token, refreshing before expiry."""
        if not self.is_configured:
            raise MeetingProviderError(
                MeetingErrorKind.CREDENTIAL_MISSING, "Zoom credentials are not configured"
            )
        now = time.monotonic()
        if self._access_token is None or now >= self._token_refresh_at:
            token, expires_in = self._fetch_access_token()
            self._access_token = token
            # Rotate five minutes early.
            self._token_refresh_at = now + max(expires_in - 300, 60)
        return self._access_token

    def _meeting_body(self, details: MeetingDetails) -> dict[str, Any]:
        return {
            "topic": details.title,
            "type": 2,
            "start_time": details.local(details.start_time).strftime("%Y-%m-%dT%H:%M:%S"),
            "duration": details.duration_minutes,
            "timezone": details.timezone or DEFAULT_MEETING_TIMEZONE,
            "agenda": details.description or "",
            "settings": {
                "join_before_host": False,
                "waiting_room": True,
                "approval_type": 2,
            },
        }

    def create_meeting(
        self, details: MeetingDetails, credential: Optional[MeetingCredential] = None
    ) -> MeetingLink:
        token = self._get_access_token()
        meeting = self._request(
            "POST", "users/me/meetings", token=token, json_body=self._meeting_body(details)
        )
        link = meeting.get("join_url")
        if not link:
            raise MeetingProviderError(
                MeetingErrorKind.REQUEST_REJECTED,
                "Zoom did not return a join URL",
                details=meeting,
            )
        return MeetingLink(
            meeting_link=link,
            meeting_id=str(meeting.get("id")),
            password=meeting.get("password"),
            raw=meeting,
        )

    def update_meeting(
        self,
        meeting_id: str,
        details: MeetingDetails,
        credential: Optional[MeetingCredential] = None,
    ) -> None:
        token = self._get_access_token()
        self._request(
            "PATCH", f"meetings/{meeting_id}", token=token, json_body=self._meeting_body(details)
        )

    def cancel_meeting(
        self, meeting_id: str, credential: Optional[MeetingCredential] = None
    ) -> None:
        token = self._get_access_token()
        self._request("DELETE", f"meetings/{meeting_id}", token=token)


class FakeMeetingProvider:
    """In-memory stub for testing/non-production environments."""

    def __init__(self, platform: str = "MEET", *, uses_consultant_token: bool = True) -> None:
        self.platform = platform
        self.uses_consultant_token = uses_consultant_token
        self._calls: list[dict[str, Any]] = []
        self._errors: dict[str, MeetingProviderError] = {}

    def set_error(self, method: str, error: MeetingProviderError) -> None:
        """Inject a method-specific error for deterministic failure testing."""
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def create_meeting(
        self, details: MeetingDetails, credential: Optional[MeetingCredential] = None
    ) -> MeetingLink:
        self._calls.append({"method": "create_meeting", "details": details})
        if self.uses_consultant_token:
            require_token(credential, self.platform)
        self._raise_if_injected("create_meeting")
        meeting_id = f"fake_{self.platform.lower()}_{uuid.uuid4().hex[:10]}"
        return MeetingLink(
            meeting_link=f"https://meet.example.test/{meeting_id}",
            meeting_id=meeting_id,
            password="123456" if self.platform != "MEET" else None,
        )

    def update_meeting(
        self,
        meeting_id: str,
        details: MeetingDetails,
        credential: Optional[MeetingCredential] = None,
    ) -> None:
        self._calls.append(
            {"method": "update_meeting", "meeting_id": meeting_id, "details": details}
        )
        self._raise_if_injected("update_meeting")

    def cancel_meeting(
        self, meeting_id: str, credential: Optional[MeetingCredential] = None
    ) -> None:
        self._calls.append({"method": "cancel_meeting", "meeting_id": meeting_id})
        self._raise_if_injected("cancel_meeting")
