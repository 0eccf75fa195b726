import socket
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from conftest import FIXED_NOW
from integration.base import relabel_title
from integration.calendar_integration import CalendarIntegration
from talk2task.errors import IntegrationError
from talk2task.models import IntegrationCredential, Platform, Priority, Task, TaskStatus


def _task(**overrides) -> Task:
    data = dict(
        id="task-1",
        user_id="u1",
        title="Meeting: Team sync",
        description="Weekly team sync",
        priority=Priority.HIGH,
        due_date=datetime(2025, 1, 16, 14, 0, tzinfo=timezone.utc),
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    data.update(overrides)
    return Task(**data)


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), b"error")


def _calendar(service) -> CalendarIntegration:
    return CalendarIntegration(credentials=None, service=service, clock=lambda: FIXED_NOW)


@pytest.mark.parametrize(
    "title, status, expected",
    [
        ("Team sync", TaskStatus.COMPLETED, "[Completed] Team sync"),
        ("[Completed] Team sync", TaskStatus.COMPLETED, "[Completed] Team sync"),
        ("[Completed] Team sync", TaskStatus.CANCELLED, "[Cancelled] Team sync"),
        ("[Cancelled] Team sync", TaskStatus.PENDING, "Team sync"),
        ("Team sync", TaskStatus.IN_PROGRESS, "Team sync"),
    ],
)
def test_relabel_title(title, status, expected):
    assert relabel_title(title, status) == expected


def test_relabel_is_idempotent():
    once = relabel_title("Standup", TaskStatus.CANCELLED)
    assert relabel_title(once, TaskStatus.CANCELLED) == once


def test_event_body():
    body = _calendar(MagicMock()).build_event_body(_task(), "Europe/Berlin")
    assert body["summary"] == "Meeting: Team sync"
    assert body["start"] == {"dateTime": "2025-01-16T14:00:00+00:00", "timeZone": "Europe/Berlin"}
    assert body["end"]["dateTime"] == "2025-01-16T15:00:00+00:00"
    assert body["reminders"]["overrides"] == [
        {"method": "email", "minutes": 1440},
        {"method": "popup", "minutes": 30},
    ]
    assert body["extendedProperties"]["private"] == {
        "taskId": "task-1",
        "source": "Talk2Task",
        "priority": "high",
    }


def test_event_without_due_date_starts_now():
    body = _calendar(MagicMock()).build_event_body(_task(due_date=None, description=""))
    assert body["start"]["dateTime"] == FIXED_NOW.isoformat()
    assert body["description"] == "Task: Meeting: Team sync"


@pytest.mark.asyncio
async def test_create_returns_event_id():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.return_value = {"id": "evt-123"}

    event_id = await _calendar(service).create(_task())

    assert event_id == "evt-123"
    kwargs = service.events.return_value.insert.call_args.kwargs
    assert kwargs["calendarId"] == "primary"
    assert kwargs["body"]["summary"] == "Meeting: Team sync"


@pytest.mark.asyncio
async def test_create_without_id_is_remote_error():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.return_value = {}
    with pytest.raises(IntegrationError) as exc:
        await _calendar(service).create(_task())
    assert exc.value.kind == IntegrationError.REMOTE_ERROR


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, kind",
    [(401, IntegrationError.AUTH_EXPIRED), (403, IntegrationError.REMOTE_ERROR), (500, IntegrationError.REMOTE_ERROR)],
)
async def test_http_errors_are_classified(status, kind):
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.side_effect = _http_error(status)
    with pytest.raises(IntegrationError) as exc:
        await _calendar(service).create(_task())
    assert exc.value.kind == kind
    assert exc.value.remote_status == status
    assert exc.value.platform == "google_calendar"


@pytest.mark.asyncio
async def test_network_failure():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.side_effect = socket.timeout("timed out")
    with pytest.raises(IntegrationError) as exc:
        await _calendar(service).create(_task())
    assert exc.value.kind == IntegrationError.NETWORK_ERROR


@pytest.mark.asyncio
async def test_status_update_relabels_summary():
    service = MagicMock()
    events = service.events.return_value
    events.get.return_value.execute.return_value = {"summary": "Meeting: Team sync"}

    await _calendar(service).update_status("evt-1", TaskStatus.COMPLETED)

    events.patch.assert_called_once_with(
        calendarId="primary", eventId="evt-1", body={"summary": "[Completed] Meeting: Team sync"}
    )


@pytest.mark.asyncio
async def test_status_update_skips_patch_when_label_unchanged():
    service = MagicMock()
    events = service.events.return_value
    events.get.return_value.execute.return_value = {"summary": "[Completed] Meeting: Team sync"}

    await _calendar(service).update_status("evt-1", TaskStatus.COMPLETED)

    events.patch.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 410])
async def test_delete_of_missing_event_succeeds(status):
    service = MagicMock()
    service.events.return_value.delete.return_value.execute.side_effect = _http_error(status)
    await _calendar(service).delete("evt-gone")


@pytest.mark.asyncio
async def test_delete_failure_is_raised():
    service = MagicMock()
    service.events.return_value.delete.return_value.execute.side_effect = _http_error(500)
    with pytest.raises(IntegrationError):
        await _calendar(service).delete("evt-1")


def _stored_credential() -> IntegrationCredential:
    return IntegrationCredential(
        user_id="u1",
        platform=Platform.GOOGLE_CALENDAR,
        access_token="old-access",
        refresh_token="refresh-1",
        expires_at=datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc),
        label="u1@example.com",
    )


def _refreshing_calendar(service, token: str, saved: list) -> CalendarIntegration:
    async def on_token_refresh(credential):
        saved.append(credential)

    # What google-auth leaves behind after refreshing in place.
    credentials = SimpleNamespace(token=token, refresh_token="refresh-1", expiry=datetime(2025, 1, 15, 11, 0))
    return CalendarIntegration(
        credentials=credentials,
        service=service,
        clock=lambda: FIXED_NOW,
        credential=_stored_credential(),
        on_token_refresh=on_token_refresh,
    )


@pytest.mark.asyncio
async def test_refreshed_token_is_written_back():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.return_value = {"id": "evt-123"}
    saved = []

    await _refreshing_calendar(service, "new-access", saved).create(_task())

    assert len(saved) == 1
    assert saved[0].user_id == "u1"
    assert saved[0].access_token == "new-access"
    assert saved[0].refresh_token == "refresh-1"
    assert saved[0].expires_at == datetime(2025, 1, 15, 11, 0, tzinfo=timezone.utc)
    assert saved[0].label == "u1@example.com"


@pytest.mark.asyncio
async def test_refreshed_token_is_written_back_once():
    service = MagicMock()
    events = service.events.return_value
    events.get.return_value.execute.return_value = {"summary": "Meeting: Team sync"}
    saved = []

    # get + patch both succeed with the same refreshed token
    await _refreshing_calendar(service, "new-access", saved).update_status("evt-1", TaskStatus.COMPLETED)

    assert [c.access_token for c in saved] == ["new-access"]


@pytest.mark.asyncio
async def test_unchanged_token_is_not_written_back():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.return_value = {"id": "evt-123"}
    saved = []

    await _refreshing_calendar(service, "old-access", saved).create(_task())

    assert saved == []


@pytest.mark.asyncio
async def test_failed_call_does_not_write_back():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.side_effect = _http_error(500)
    saved = []

    with pytest.raises(IntegrationError):
        await _refreshing_calendar(service, "new-access", saved).create(_task())
    assert saved == []


@pytest.mark.asyncio
async def test_write_back_failure_does_not_fail_the_call():
    service = MagicMock()
    service.events.return_value.insert.return_value.execute.return_value = {"id": "evt-123"}

    async def broken_store(credential):
        raise RuntimeError("database is down")

    calendar = _refreshing_calendar(service, "new-access", [])
    calendar.on_token_refresh = broken_store

    assert await calendar.create(_task()) == "evt-123"
