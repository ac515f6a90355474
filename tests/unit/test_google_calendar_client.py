from datetime import UTC, datetime, timedelta

import httpx
import pytest

from roombook.core.exceptions import ExternalSyncError
from roombook.db.models import Room
from roombook.services.google_calendar import GoogleCalendarClient, resolve_room_calendar_id

CALENDAR_ID = "aurora@resource.example.com"
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class StaticCredentials:
    valid = True
    token = "test-token"

    def refresh(self, request) -> None:
        raise AssertionError("valid credentials must not be refreshed")


def _client(handler) -> GoogleCalendarClient:
    http = httpx.Client(base_url="https://calendar.test", transport=httpx.MockTransport(handler))
    return GoogleCalendarClient(StaticCredentials(), http_client=http)


def _event(event_id: str) -> dict:
    return {
        "id": event_id,
        "status": "confirmed",
        "summary": f"Event {event_id}",
        "start": {"dateTime": "2026-03-02T10:00:00+01:00"},
        "end": {"dateTime": "2026-03-02T11:00:00+01:00"},
    }


def test_list_events_follows_pagination():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "pageToken" not in request.url.params:
            return httpx.Response(200, json={"items": [_event("e1")], "nextPageToken": "page-2"})
        return httpx.Response(200, json={"items": [_event("e2")]})

    events = _client(handler).list_events(CALENDAR_ID, NOW, NOW + timedelta(days=1))

    assert [event.id for event in events] == ["e1", "e2"]
    assert events[0].start_at == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
    first = requests[0]
    assert first.url.path == "/calendars/aurora@resource.example.com/events"
    assert first.headers["Authorization"] == "Bearer test-token"
    assert first.url.params["singleEvents"] == "true"
    assert first.url.params["showDeleted"] == "true"
    assert first.url.params["timeMin"] == "2026-03-02T09:00:00Z"
    assert requests[1].url.params["pageToken"] == "page-2"


def test_server_error_becomes_external_sync_error():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(ExternalSyncError) as exc_info:
        client.list_events(CALENDAR_ID, NOW, NOW + timedelta(days=1))

    assert exc_info.value.detail["status_code"] == 500


def test_transport_error_becomes_external_sync_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalSyncError):
        _client(handler).create_event(CALENDAR_ID, {"summary": "Planning"})


@pytest.mark.parametrize("status_code", [404, 410])
def test_delete_of_missing_event_is_tolerated(status_code):
    client = _client(lambda request: httpx.Response(status_code))

    client.delete_event(CALENDAR_ID, "gone")


def test_delete_other_errors_propagate():
    client = _client(lambda request: httpx.Response(403))

    with pytest.raises(ExternalSyncError):
        client.delete_event(CALENDAR_ID, "evt")


def test_create_and_patch_send_updates_to_attendees():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_event("evt-1"))

    client = _client(handler)
    created = client.create_event(CALENDAR_ID, {"summary": "Planning"})
    client.patch_event(CALENDAR_ID, "evt-1", {"summary": "Planning"})

    assert created.id == "evt-1"
    assert [request.method for request in requests] == ["POST", "PATCH"]
    assert all(request.url.params["sendUpdates"] == "all" for request in requests)
    assert requests[1].url.path.endswith("/events/evt-1")


@pytest.mark.parametrize(
    ("calendar_id", "resource_id", "expected"),
    [
        ("room@group.calendar.google.com", "room@resource.example.com", "room@group.calendar.google.com"),
        (None, "room@resource.example.com", "room@resource.example.com"),
        (None, "123456789", None),
        (None, None, None),
    ],
)
def test_resolve_room_calendar_id(calendar_id, resource_id, expected):
    room = Room(id=1, name="Aurora", google_calendar_id=calendar_id, google_resource_id=resource_id)

    assert resolve_room_calendar_id(room) == expected
