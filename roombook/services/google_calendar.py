import json
import logging
import re
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from roombook.core.config import settings
from roombook.core.exceptions import ExternalSyncError
from roombook.db.models import Room
from roombook.schemas.calendar import CalendarEvent

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]
LIST_PAGE_SIZE = 250
_NUMERIC_ID = re.compile(r"^[0-9]+$")


class CalendarClient(Protocol):
    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[CalendarEvent]: ...

    def create_event(self, calendar_id: str, body: dict[str, Any]) -> CalendarEvent: ...

    def patch_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> CalendarEvent: ...

    def delete_event(self, calendar_id: str, event_id: str) -> None: ...


def resolve_room_calendar_id(room: Room) -> str | None:
    """Calendar id to use for a room, or None when the room is not wired to Google.

    A bare numeric ``google_resource_id`` is a Directory resource id, which the
    Calendar API always answers with 404, so it is not used as a fallback.
    """
    if room.google_calendar_id:
        return room.google_calendar_id
    if not room.google_resource_id:
        return None
    if _NUMERIC_ID.match(room.google_resource_id):
        logger.warning(
            "room_calendar_unresolved room_id=%s google_resource_id=%s",
            room.id,
            room.google_resource_id,
        )
        return None
    return room.google_resource_id


def _format_rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


class GoogleCalendarClient:
    def __init__(
        self,
        credentials: Any,
        *,
        base_url: str = GOOGLE_CALENDAR_API,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._credentials = credentials
        self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def _auth_headers(self) -> dict[str, str]:
        if not self._credentials.valid:
            self._credentials.refresh(GoogleAuthRequest())
        return {"Authorization": f"Bearer {self._credentials.token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._http.request(method, path, headers=self._auth_headers(), **kwargs)
        except GoogleAuthError as exc:
            raise ExternalSyncError(f"Google authentication failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ExternalSyncError(f"Google Calendar unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise ExternalSyncError(
                f"Google Calendar returned {response.status_code}",
                detail={"status_code": response.status_code, "path": path},
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path = f"{path}/{quote(event_id, safe='')}"
        return path

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[CalendarEvent]:
        params: dict[str, Any] = {
            "timeMin": _format_rfc3339(time_min),
            "timeMax": _format_rfc3339(time_max),
            "singleEvents": "true",
            "showDeleted": "true",
            "orderBy": "startTime",
            "maxResults": LIST_PAGE_SIZE,
        }
        events: list[CalendarEvent] = []
        while True:
            payload = self._request("GET", self._events_path(calendar_id), params=params)
            events.extend(CalendarEvent.model_validate(item) for item in payload.get("items", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    def create_event(self, calendar_id: str, body: dict[str, Any]) -> CalendarEvent:
        payload = self._request(
            "POST", self._events_path(calendar_id), params={"sendUpdates": "all"}, json=body
        )
        return CalendarEvent.model_validate(payload)

    def patch_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> CalendarEvent:
        payload = self._request(
            "PATCH", self._events_path(calendar_id, event_id), params={"sendUpdates": "all"}, json=body
        )
        return CalendarEvent.model_validate(payload)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            self._request("DELETE", self._events_path(calendar_id, event_id), params={"sendUpdates": "all"})
        except ExternalSyncError as exc:
            # Already gone on Google's side.
            if isinstance(exc.detail, dict) and exc.detail.get("status_code") in {404, 410}:
                return
            raise


def _load_credentials() -> Any | None:
    if settings.google_service_account_json:
        info = json.loads(settings.google_service_account_json)
        credentials = service_account.Credentials.from_service_account_info(info, scopes=CALENDAR_SCOPES)
    elif settings.google_service_account_file:
        credentials = service_account.Credentials.from_service_account_file(
            settings.google_service_account_file, scopes=CALENDAR_SCOPES
        )
    else:
        return None
    if settings.google_delegated_user:
        credentials = credentials.with_subject(settings.google_delegated_user)
    return credentials


@lru_cache(maxsize=1)
def get_calendar_client() -> GoogleCalendarClient | None:
    """Process-wide client, or None when no service account is configured."""
    credentials = _load_credentials()
    if credentials is None:
        logger.info("google_calendar_disabled reason=no_credentials")
        return None
    return GoogleCalendarClient(credentials, timeout=settings.google_api_timeout_seconds)
